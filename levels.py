"""
Phishing Training Levels
Static element catalogs, decoy pop-up catalogs and level definitions.
Loaded once at startup; nothing in here changes while a session runs.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, FrozenSet, List, Optional, Tuple


class LevelConfigError(ValueError):
    """Raised when a level definition cannot be played."""


class LevelMode(str, Enum):
    FLAT = "flat"
    # One screen, many simultaneous decoys and a single real element

    SEQUENTIAL = "sequential"
    # An ordered chain of gated stages ending in the "main" stage


class ScoreScale(str, Enum):
    POINTS = "points"
    # The leaderboard receives the raw point score

    TEN_POINT = "ten_point"
    # The leaderboard receives the score normalized to 0-10


MAIN_STAGE = "main"
END_STAGE = "end"


# ── Element Catalog ───────────────────────────────────────────

@dataclass(frozen=True)
class ElementSpec:
    """An interactive element of a FLAT level."""

    label: str
    # Button text; also the action id the presentation layer forwards

    is_real: bool
    # True for the one legitimate control on the page

    group_key: Optional[str] = None
    # Decoys sharing a group_key belong to the same attack family

    description: str = ""


@dataclass(frozen=True)
class StageSpec:
    """One gated step of a SEQUENTIAL level."""

    stage_id: str
    correct_action_id: str
    decoy_action_ids: FrozenSet[str] = frozenset()
    allows_silent_dismiss: bool = False
    # When True the ids in dismiss_action_ids close a prompt without penalty

    dismiss_action_ids: FrozenSet[str] = frozenset()
    decoys_fatal: bool = True
    # Stage policy for wrong actions: end the session, or count and continue

    group_key: Optional[str] = None
    title: str = ""


# ── Decoy Response Catalog ────────────────────────────────────

@dataclass(frozen=True)
class DecoyContent:
    """What a deceptive pop-up says and which buttons it shows."""

    title: str
    body: str
    act_label: str
    close_label: str = "✕"
    kind: str = "system"
    # One of warning, prize, system, sale, dating

    icon: str = ""

    def to_dict(self) -> dict:
        return {
            "title": self.title,
            "body": self.body,
            "act_label": self.act_label,
            "close_label": self.close_label,
            "kind": self.kind,
            "icon": self.icon,
        }


GENERIC_DECOY = DecoyContent(
    title="ACTION REQUIRED",
    body="Your account needs attention. Continue to avoid interruption.",
    act_label="Continue",
    kind="warning",
    icon="⚠️",
)
# Last-resort content for catalogs that declare no fallback entries


@dataclass(frozen=True)
class DecoyResponseCatalog:
    """Maps a clicked decoy to the pop-up it triggers."""

    specific: Dict[str, DecoyContent] = field(default_factory=dict, hash=False)
    # Keyed by the exact element label; left out of the hash since dicts are unhashable

    grouped: Tuple[Tuple[str, DecoyContent], ...] = ()
    # (group_key, content) pairs, searched in order

    fallback: Tuple[DecoyContent, ...] = ()
    # Generic entries, chosen cyclically

    def resolve(self, label: Optional[str], group_key: Optional[str], spawn_index: int) -> DecoyContent:
        """Exact label first, then the first entry for the group, then the cyclic fallback."""
        if label and label in self.specific:
            return self.specific[label]
        if group_key is not None:
            for key, content in self.grouped:
                if key == group_key:
                    return content
        if self.fallback:
            return self.fallback[spawn_index % len(self.fallback)]
        return GENERIC_DECOY


# ── Level Definition ──────────────────────────────────────────

@dataclass(frozen=True)
class LevelDefinition:
    """A playable level. Immutable once authored."""

    level_id: str
    title: str
    mode: LevelMode
    time_limit_seconds: int
    base_score: int
    elements: Tuple[ElementSpec, ...] = ()
    stages: Tuple[StageSpec, ...] = ()
    time_penalty_interval: int = 1
    time_penalty_unit: int = 0
    score_scale: ScoreScale = ScoreScale.POINTS
    max_wrong_clicks: Optional[int] = None
    # FLAT only: reaching this many wrong clicks fails the session

    fail_on_repeat_group: bool = False
    # FLAT only: a second wrong click in an already touched group fails the session

    decoy_responses: DecoyResponseCatalog = field(default_factory=DecoyResponseCatalog)
    description: str = ""

    def validate(self) -> "LevelDefinition":
        """Fail fast on a level that cannot be played. Returns self."""
        if self.time_limit_seconds <= 0:
            raise LevelConfigError(f"{self.level_id}: time limit must be positive")
        if self.base_score <= 0:
            raise LevelConfigError(f"{self.level_id}: base score must be positive")
        if self.time_penalty_interval <= 0:
            raise LevelConfigError(f"{self.level_id}: time penalty interval must be positive")

        if self.mode is LevelMode.FLAT:
            self._validate_flat()
        else:
            self._validate_sequential()
        return self

    def _validate_flat(self) -> None:
        real = [e for e in self.elements if e.is_real]
        if len(real) != 1:
            raise LevelConfigError(
                f"{self.level_id}: FLAT level needs exactly one real element, found {len(real)}"
            )
        labels = [e.label for e in self.elements]
        if len(set(labels)) != len(labels):
            raise LevelConfigError(f"{self.level_id}: element labels must be unique")
        if any(not label for label in labels):
            raise LevelConfigError(f"{self.level_id}: every element needs a label")
        if self.stages:
            raise LevelConfigError(f"{self.level_id}: FLAT level cannot declare stages")
        if self.max_wrong_clicks is not None and self.max_wrong_clicks < 1:
            raise LevelConfigError(f"{self.level_id}: max_wrong_clicks must be at least 1")

    def _validate_sequential(self) -> None:
        if not self.stages:
            raise LevelConfigError(f"{self.level_id}: SEQUENTIAL level needs at least one stage")
        ids = [s.stage_id for s in self.stages]
        if len(set(ids)) != len(ids):
            raise LevelConfigError(f"{self.level_id}: stage ids must be unique")
        if END_STAGE in ids:
            raise LevelConfigError(f"{self.level_id}: '{END_STAGE}' is reserved for the terminal stage")
        if ids[-1] != MAIN_STAGE:
            raise LevelConfigError(f"{self.level_id}: the last stage must be '{MAIN_STAGE}'")
        if self.elements:
            raise LevelConfigError(f"{self.level_id}: SEQUENTIAL level cannot declare elements")
        for stage in self.stages:
            if not stage.correct_action_id:
                raise LevelConfigError(f"{self.level_id}/{stage.stage_id}: missing correct action")
            if stage.correct_action_id in stage.decoy_action_ids:
                raise LevelConfigError(
                    f"{self.level_id}/{stage.stage_id}: correct action is also listed as a decoy"
                )
            if stage.correct_action_id in stage.dismiss_action_ids:
                raise LevelConfigError(
                    f"{self.level_id}/{stage.stage_id}: correct action is also listed as a dismiss control"
                )

    # ── Lookups ───────────────────────────────────────────────

    def element(self, label: str) -> Optional[ElementSpec]:
        for element in self.elements:
            if element.label == label:
                return element
        return None

    def stage(self, stage_id: Optional[str]) -> Optional[StageSpec]:
        for stage in self.stages:
            if stage.stage_id == stage_id:
                return stage
        return None

    @property
    def stage_order(self) -> List[str]:
        return [s.stage_id for s in self.stages] + [END_STAGE]

    def to_summary(self) -> dict:
        """Level card data for the level picker."""
        summary = {
            "level_id": self.level_id,
            "title": self.title,
            "description": self.description,
            "mode": self.mode.value,
            "time_limit_seconds": self.time_limit_seconds,
            "base_score": self.base_score,
            "score_scale": self.score_scale.value,
        }
        if self.mode is LevelMode.FLAT:
            summary["elements"] = [
                {"label": e.label, "description": e.description} for e in self.elements
            ]
        else:
            summary["stages"] = [s.stage_id for s in self.stages]
        return summary


# ── Built-in Levels ───────────────────────────────────────────

_FEED_ADS = (
    DecoyContent("YOU'VE BEEN SELECTED! 🎉",
                 "You're one of 10 users selected for our exclusive beta test! Claim now!",
                 "Join Beta Now", kind="prize", icon="🎁"),
    DecoyContent("⚠️ ACCOUNT RESTRICTION",
                 "Your account has been flagged for unusual activity. Verify now to avoid suspension.",
                 "Verify Account", kind="warning", icon="🛡️"),
    DecoyContent("YOU HAVE A NEW MATCH!",
                 "Someone you might know is interested in connecting with you. View their profile now.",
                 "View Profile", kind="dating", icon="❤️"),
    DecoyContent("STORAGE ALMOST FULL",
                 "Your media storage is 90% full. Upgrade now to keep posting photos.",
                 "Free Upgrade", kind="system", icon="🔋"),
    DecoyContent("EXCLUSIVE OFFER - PREMIUM ACCESS",
                 "Limited time offer! Get Premium features at 75% off for 6 months.",
                 "Upgrade Now", kind="sale", icon="🛍️"),
)

SOCIAL_FEED = LevelDefinition(
    level_id="social-feed",
    title="Social Media Deception",
    description="Identify the single legitimate button hidden among decoys.",
    mode=LevelMode.FLAT,
    time_limit_seconds=60,
    base_score=1000,
    time_penalty_interval=5,
    time_penalty_unit=10,
    score_scale=ScoreScale.POINTS,
    max_wrong_clicks=3,
    fail_on_repeat_group=True,
    elements=(
        ElementSpec("VERIFY YOUR PROFILE", False, "verify",
                    "Verify your profile to access new features"),
        ElementSpec("Update Privacy Settings", False, "verify",
                    "Important: Update required to protect your posts"),
        ElementSpec("Continue to Feed", True, None,
                    "Access your social media feed"),
        ElementSpec("RESTORE ACCOUNT", False, "restore",
                    "Your account needs verification. Restore access now."),
        ElementSpec("Accept New Terms", False, "premium",
                    "By clicking, you agree to our updated terms"),
        ElementSpec("Claim Free Premium", False, "premium",
                    "Get 3 months of premium features for free"),
    ),
    decoy_responses=DecoyResponseCatalog(
        specific={
            "VERIFY YOUR PROFILE": DecoyContent(
                "PROFILE VERIFICATION NEEDED",
                "Your profile requires verification due to recent security updates. "
                "Complete now or face restrictions.",
                "Verify Now", kind="warning", icon="🔒"),
            "Update Privacy Settings": DecoyContent(
                "PRIVACY RISK DETECTED",
                "Your posts may be visible to unwanted audiences. Update privacy settings immediately.",
                "Fix Privacy", kind="warning", icon="🛡️"),
            "RESTORE ACCOUNT": DecoyContent(
                "ACCOUNT RECOVERY TOOL",
                "Use our secure recovery tool to regain full access to your account features.",
                "Recover Account", kind="system", icon="🔄"),
            "Accept New Terms": DecoyContent(
                "TERMS ACCEPTANCE REWARD",
                "Thank you for accepting our updated terms! Claim your special reward now.",
                "Claim Reward", kind="prize", icon="📝"),
            "Claim Free Premium": DecoyContent(
                "PREMIUM UPGRADE READY",
                "Your account is eligible for a free premium upgrade. Limited time offer!",
                "Get Premium", kind="sale", icon="⭐"),
        },
        grouped=(
            ("verify", _FEED_ADS[1]),
            ("restore", _FEED_ADS[3]),
            ("premium", _FEED_ADS[4]),
        ),
        fallback=_FEED_ADS,
    ),
)

SECURITY_GAUNTLET = LevelDefinition(
    level_id="security-gauntlet",
    title="Advanced Security Challenge",
    description="Navigate through security measures and find the legitimate action.",
    mode=LevelMode.SEQUENTIAL,
    time_limit_seconds=30,
    base_score=1200,
    time_penalty_interval=1,
    time_penalty_unit=5,
    score_scale=ScoreScale.POINTS,
    stages=(
        StageSpec("initial", "close-offer",
                  frozenset({"claim-now", "verify-and-claim"}),
                  group_key="prize", title="Lucky Visitor Gift Card"),
        StageSpec("popup1", "skip-verification",
                  frozenset({"quick-scan", "full-system-scan"}),
                  group_key="malware", title="Security Warning"),
        StageSpec("popup2", "remind-me-later",
                  frozenset({"verify-with-phone", "verify-with-email"}),
                  group_key="verify", title="Verification Required"),
        StageSpec("main", "view-statement",
                  frozenset({"verify-identity", "secure-account-now", "transfer-money",
                             "pay-bills", "block-access-now", "cancel-transaction",
                             "install-update"}),
                  allows_silent_dismiss=True,
                  dismiss_action_ids=frozenset({"remind-later", "close-urgent-popup"}),
                  group_key="banking", title="Online Banking"),
    ),
)

CYBER_DEFENSE = LevelDefinition(
    level_id="cyber-defense",
    title="Cyber Defense Challenge",
    description="Navigate through advanced security measures and identify legitimate actions.",
    mode=LevelMode.SEQUENTIAL,
    time_limit_seconds=45,
    base_score=1500,
    time_penalty_interval=1,
    time_penalty_unit=3,
    score_scale=ScoreScale.TEN_POINT,
    stages=(
        StageSpec("initial", "close-offer",
                  frozenset({"claim-now", "verify-and-claim"}),
                  group_key="prize", title="Exclusive Winner Alert"),
        StageSpec("popup1", "dismiss",
                  frozenset({"remove-threats-now", "full-system-scan"}),
                  group_key="malware", title="Malware Detected"),
        StageSpec("popup2", "later",
                  frozenset({"verify-with-sms", "verify-with-email"}),
                  group_key="verify", title="Verification Required"),
        StageSpec("popup3", "skip",
                  frozenset({"enable-2fa-now", "setup-security-key"}),
                  group_key="upgrade", title="Security Upgrade"),
        StageSpec("main", "secure-account-access",
                  frozenset({"security-warning", "fix-issues-now", "enable-advanced-protection",
                             "notifications", "account", "lock-account", "cards",
                             "mobile-banking", "view-details", "view-all", "contact",
                             "alert-action", "claim-bonus", "premium-upgrade",
                             "secure-chat", "verify-now"}),
                  allows_silent_dismiss=True,
                  dismiss_action_ids=frozenset({"close-notification", "close-urgent-popup",
                                                "remind-later"}),
                  group_key="banking", title="Secure Banking Portal"),
    ),
)

LEVELS: Dict[str, LevelDefinition] = {
    level.level_id: level.validate()
    for level in (SOCIAL_FEED, SECURITY_GAUNTLET, CYBER_DEFENSE)
}
# Registry of playable levels; validated at import so a broken level never ships


def get_level(level_id: str) -> LevelDefinition:
    """Look up a level by id. Raises KeyError for unknown ids."""
    return LEVELS[level_id]


def list_levels() -> List[LevelDefinition]:
    return list(LEVELS.values())
