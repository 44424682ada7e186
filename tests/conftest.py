import os

os.environ["LEADERBOARD_BACKEND"] = "local"
# Keeps app import from reaching for Firebase credentials

import pytest

from levels import (
    DecoyContent,
    DecoyResponseCatalog,
    ElementSpec,
    LevelDefinition,
    LevelMode,
    ScoreScale,
    StageSpec,
)


class FakeClock:
    """Manually advanced time source."""

    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


@pytest.fixture
def fake_clock():
    return FakeClock()


@pytest.fixture
def flat_level():
    return LevelDefinition(
        level_id="flat-demo",
        title="Flat demo",
        mode=LevelMode.FLAT,
        time_limit_seconds=60,
        base_score=1000,
        time_penalty_interval=5,
        time_penalty_unit=10,
        score_scale=ScoreScale.POINTS,
        max_wrong_clicks=3,
        elements=(
            ElementSpec("Verify Profile", False, "verify"),
            ElementSpec("Verify Email", False, "verify"),
            ElementSpec("Restore Account", False, "restore"),
            ElementSpec("Continue", True),
            ElementSpec("Claim Prize", False, "prize"),
            ElementSpec("Prize Draw", False, "prize"),
        ),
        decoy_responses=DecoyResponseCatalog(
            specific={"Claim Prize": DecoyContent("YOU WON", "Claim your prize", "Claim")},
            grouped=(("verify", DecoyContent("VERIFY NOW", "Account flagged", "Verify")),),
            fallback=(
                DecoyContent("OFFER A", "a", "Go A"),
                DecoyContent("OFFER B", "b", "Go B"),
            ),
        ),
    )


@pytest.fixture
def sequential_level():
    return LevelDefinition(
        level_id="sequential-demo",
        title="Sequential demo",
        mode=LevelMode.SEQUENTIAL,
        time_limit_seconds=30,
        base_score=1200,
        time_penalty_interval=1,
        time_penalty_unit=5,
        score_scale=ScoreScale.POINTS,
        stages=(
            StageSpec("popup1", "skip", frozenset({"scan-now", "full-scan"}), group_key="malware"),
            StageSpec("popup2", "later", frozenset({"verify-sms", "verify-email"}), group_key="verify"),
            StageSpec("main", "view-statement",
                      frozenset({"transfer-money", "pay-bills"}),
                      allows_silent_dismiss=True,
                      dismiss_action_ids=frozenset({"remind-later"}),
                      group_key="banking"),
        ),
    )


class SaveSpy:
    def __init__(self):
        self.calls = []

    def __call__(self, level_id, attempt):
        self.calls.append((level_id, attempt))


@pytest.fixture
def save_spy():
    return SaveSpy()
