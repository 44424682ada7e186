"""
Staged Decoy Challenge: Python Game Engine
Click classification, decoy pop-ups, stage sequencing, timing and scoring
for the phishing training levels. Used by the Flask API to drive a session.
"""

import json
import logging
import math
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, List, Optional, Set

from levels import (
    END_STAGE,
    DecoyContent,
    DecoyResponseCatalog,
    LevelDefinition,
    LevelMode,
    ScoreScale,
    get_level,
)

logger = logging.getLogger(__name__)

# ── Rules ─────────────────────────────────────────────────────
WRONG_CLICK_PENALTY = 50
# Points lost per wrong click, in every mode

POPUP_CAP = 3
# Most decoy pop-ups visible at the same time

POPUP_POSITIONS = (
    "top-1/4 left-1/4",
    "top-1/4 right-1/4",
    "bottom-1/4 left-1/4",
    "bottom-1/4 right-1/4",
    "top-1/2 left-1/3",
    "top-1/3 right-1/3",
    "bottom-1/3 left-1/3",
    "bottom-1/3 right-1/3",
)
# Fixed screen slots a pop-up can occupy; more slots than POPUP_CAP so none fully overlap

TERMINAL = "TERMINAL"
# Returned by StageSequencer when there is no next stage


class SessionStatus(str, Enum):
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class Classification(str, Enum):
    ADVANCE = "advance"
    # The correct action: progress, or finish the level

    PENALIZE_CONTINUE = "penalize_continue"
    # A wrong click that is counted but does not end the session

    PENALIZE_FAIL = "penalize_fail"
    # A wrong click that ends the session

    DISMISS = "dismiss"
    # A safe close/cancel; neither progress nor penalty


@dataclass
class DecoyPopup:
    """A deceptive pop-up spawned by a wrong click (FLAT mode)."""

    popup_id: str
    source_group_key: Optional[str]
    source_label: str
    # Label of the element whose click spawned this pop-up; its "act" button replays that click

    content: DecoyContent
    position: str

    def to_dict(self) -> dict:
        return {
            "popup_id": self.popup_id,
            "source_group_key": self.source_group_key,
            "source_label": self.source_label,
            "content": self.content.to_dict(),
            "position": self.position,
        }


@dataclass
class GameSession:
    """One play-through of a level. Mutated only by SessionController."""

    level_id: str
    mode: LevelMode
    started_at: float = field(default_factory=time.time)
    elapsed_seconds: int = 0
    wrong_click_count: int = 0
    distinct_decoy_groups_touched: Set[str] = field(default_factory=set)
    current_stage: Optional[str] = None
    # SEQUENTIAL only

    active_popups: List[DecoyPopup] = field(default_factory=list)
    # FLAT only; never longer than POPUP_CAP

    status: SessionStatus = SessionStatus.RUNNING
    attempts: int = 0
    # Classified clicks that were not dismissals

    interactions: int = 0
    # Every input forwarded by the presentation layer

    ended_at: Optional[float] = None
    fail_reason: Optional[str] = None

    @property
    def is_running(self) -> bool:
        return self.status is SessionStatus.RUNNING

    def to_dict(self) -> dict:
        return {
            "level_id": self.level_id,
            "mode": self.mode.value,
            "started_at": self.started_at,
            "elapsed_seconds": self.elapsed_seconds,
            "wrong_click_count": self.wrong_click_count,
            "distinct_decoy_groups_touched": sorted(self.distinct_decoy_groups_touched),
            "current_stage": self.current_stage,
            "active_popups": [p.to_dict() for p in self.active_popups],
            "status": self.status.value,
            "attempts": self.attempts,
            "interactions": self.interactions,
            "ended_at": self.ended_at,
            "fail_reason": self.fail_reason,
        }


@dataclass(frozen=True)
class ScoreResult:
    """Final score of a session. Derived, never stored on the session."""

    raw_score: int
    normalized_score: int
    # 0-10 scale

    scale: ScoreScale

    @property
    def leaderboard_score(self) -> int:
        """The score this level's leaderboard expects."""
        if self.scale is ScoreScale.TEN_POINT:
            return self.normalized_score
        return self.raw_score

    def to_dict(self) -> dict:
        return {
            "raw_score": self.raw_score,
            "normalized_score": self.normalized_score,
            "scale": self.scale.value,
            "leaderboard_score": self.leaderboard_score,
        }


# ── Interaction Classifier ────────────────────────────────────

def classify(
    level: LevelDefinition,
    session: GameSession,
    action_id: Optional[str],
    is_real_hint: Optional[bool] = None,
) -> Classification:
    """
    Decide what a click means for the current state of the session.

    An empty action id is always a close/cancel control and never penalized.
    Ids the level does not know are treated as DISMISS so that a
    presentation bug cannot end a session unfairly.
    """
    if not action_id:
        return Classification.DISMISS
        # Bare close control: no label, no penalty, in both modes

    if level.mode is LevelMode.FLAT:
        if is_real_hint:
            return Classification.ADVANCE
            # The caller marked the authoritative real control directly

        element = level.element(action_id)
        if element is None:
            return Classification.DISMISS
        if element.is_real:
            return Classification.ADVANCE
        return Classification.PENALIZE_CONTINUE

    stage = level.stage(session.current_stage)
    if stage is None:
        return Classification.DISMISS
        # Already past "main"; nothing left to classify

    if action_id == stage.correct_action_id:
        return Classification.ADVANCE
    if action_id in stage.decoy_action_ids:
        if stage.decoys_fatal:
            return Classification.PENALIZE_FAIL
        return Classification.PENALIZE_CONTINUE

    # Dismiss controls of the stage, and ids the stage does not know, are both safe
    return Classification.DISMISS


# ── Popup Manager (FLAT mode) ─────────────────────────────────

class PopupManager:
    """
    Owns the visible decoy pop-ups of one session.

    Content is resolved deterministically (exact label, then group, then a
    cyclic fallback) and every pop-up gets a free screen slot.
    """

    def __init__(
        self,
        catalog: DecoyResponseCatalog,
        popups: Optional[List[DecoyPopup]] = None,
        capacity: int = POPUP_CAP,
        positions=POPUP_POSITIONS,
    ):
        self.catalog = catalog
        self.popups = popups if popups is not None else []
        # Shared with GameSession.active_popups so the snapshot always matches

        self.capacity = capacity
        self.positions = tuple(positions)
        self._spawned = 0
        # Total pop-ups ever spawned; drives ids and the cyclic fallback

        self._cursor = 0
        self._last_assigned: Dict[str, int] = {}
        # position -> spawn number at which it was last handed out

    def spawn(self, group_key: Optional[str], source_label: str = "") -> Optional[DecoyPopup]:
        """Show a new pop-up, or return None when the screen is already full."""
        if len(self.popups) >= self.capacity:
            return None

        content = self.catalog.resolve(source_label, group_key, self._spawned)
        self._spawned += 1
        position = self._next_position()
        self._last_assigned[position] = self._spawned

        popup = DecoyPopup(
            popup_id=f"popup-{self._spawned}",
            source_group_key=group_key,
            source_label=source_label,
            content=content,
            position=position,
        )
        self.popups.append(popup)
        return popup

    def get(self, popup_id: str) -> Optional[DecoyPopup]:
        for popup in self.popups:
            if popup.popup_id == popup_id:
                return popup
        return None

    def dismiss(self, popup_id: str) -> Optional[DecoyPopup]:
        """Retire one pop-up. Unknown ids are ignored."""
        popup = self.get(popup_id)
        if popup is not None:
            self.popups.remove(popup)
        return popup

    def clear_all(self) -> None:
        del self.popups[:]
        # Clears in place so the session keeps the same list object

    def _next_position(self) -> str:
        occupied = {p.position for p in self.popups}
        count = len(self.positions)
        for offset in range(count):
            index = (self._cursor + offset) % count
            if self.positions[index] not in occupied:
                self._cursor = (index + 1) % count
                return self.positions[index]

        # Every slot is taken: reuse the one handed out longest ago
        return min(self.positions, key=lambda p: self._last_assigned.get(p, 0))


# ── Stage Sequencer (SEQUENTIAL mode) ─────────────────────────

class StageSequencer:
    """Walks the fixed stage order [stage_1 .. main, end]."""

    def __init__(self, level: LevelDefinition):
        self.order = level.stage_order
        self.index = 0
        self.failed = False

    @property
    def current(self) -> str:
        return self.order[self.index]

    @property
    def is_terminal(self) -> bool:
        return self.failed or self.current == END_STAGE

    def advance(self) -> str:
        """Move to the next stage. Returns its id, or TERMINAL on reaching "end"."""
        if self.is_terminal:
            return TERMINAL
        self.index += 1
        if self.current == END_STAGE:
            return TERMINAL
        return self.current

    def fail(self) -> str:
        """Jump straight to the terminal FAILED state from any stage."""
        self.failed = True
        return TERMINAL


# ── Session Clock ─────────────────────────────────────────────

class SessionClock:
    """
    One-second countdown for a session.

    tick() is the unit event. catch_up() replays the whole seconds the
    injected time source says have passed, for callers without a timer
    thread. Expiry always fails the session.
    """

    def __init__(
        self,
        time_limit_seconds: int,
        on_expire: Callable[[], None],
        time_source: Optional[Callable[[], float]] = None,
    ):
        self.time_limit_seconds = time_limit_seconds
        self.on_expire = on_expire
        self.time_source = time_source
        # None means ticks are only delivered explicitly

        self._running = False
        self._started: Optional[float] = None
        self._delivered = 0

    @property
    def running(self) -> bool:
        return self._running

    def start(self) -> None:
        self._running = True
        self._delivered = 0
        self._started = self.time_source() if self.time_source else None

    def stop(self) -> None:
        self._running = False

    def tick(self, session: GameSession) -> bool:
        """Advance one second. Returns True if this tick expired the session."""
        if not self._running or not session.is_running:
            return False
            # Late ticks never touch a finished session

        session.elapsed_seconds += 1
        self._delivered += 1
        if session.elapsed_seconds >= self.time_limit_seconds:
            self._running = False
            self.on_expire()
            return True
        return False

    def catch_up(self, session: GameSession) -> int:
        """Deliver every tick that is due. Returns how many were delivered."""
        if self.time_source is None or self._started is None:
            return 0

        due = int(self.time_source() - self._started) - self._delivered
        delivered = 0
        while due > 0 and self._running and session.is_running:
            self.tick(session)
            delivered += 1
            due -= 1
        return delivered


# ── Score Calculator ──────────────────────────────────────────

def compute_score(level: LevelDefinition, session: GameSession) -> ScoreResult:
    """
    Score a session. Pure: the same snapshot always gives the same result.

    Only a SUCCEEDED session scores; everything else is 0.
    raw = base - wrong_clicks * 50 - floor(elapsed / interval) * unit, floored at 0
    """
    if session.status is not SessionStatus.SUCCEEDED:
        raw_score = 0
    else:
        penalty = session.wrong_click_count * WRONG_CLICK_PENALTY
        # Flat cost of every wrong click

        time_penalty = (session.elapsed_seconds // level.time_penalty_interval) * level.time_penalty_unit
        # Whole intervals only; a partial interval costs nothing

        raw_score = max(0, level.base_score - penalty - time_penalty)
        # Never below zero

    normalized = math.floor(raw_score / level.base_score * 10 + 0.5)
    # Rounds half up

    normalized_score = max(0, min(10, normalized))
    return ScoreResult(raw_score=raw_score, normalized_score=normalized_score, scale=level.score_scale)


# ── Session Controller ────────────────────────────────────────

SaveAttempt = Callable[[str, dict], None]
LoadPriorAttempt = Callable[[str], Optional[dict]]


class SessionController:
    """
    Drives one level: owns the GameSession and turns clock ticks and
    classified clicks into state transitions.

    Persistence is best effort. A failing save_attempt is logged and never
    changes the session outcome or its score.
    """

    def __init__(
        self,
        level: LevelDefinition,
        save_attempt: Optional[SaveAttempt] = None,
        load_prior_attempt: Optional[LoadPriorAttempt] = None,
        time_source: Optional[Callable[[], float]] = None,
    ):
        self.level = level.validate()
        # Refuses to run an unplayable level

        self._save_attempt = save_attempt
        # Collaborator that proposes a finished attempt to the leaderboard

        self._lock = threading.RLock()
        # Serializes events for this session; click_popup re-enters through handle_input

        self.clock = SessionClock(level.time_limit_seconds, self._expire, time_source)
        # Expiry calls back into the controller to end the session

        self.session: Optional[GameSession] = None
        self.popups: Optional[PopupManager] = None
        self.sequencer: Optional[StageSequencer] = None
        self.prior_attempt: Optional[dict] = None

        if load_prior_attempt is not None:
            try:
                self.prior_attempt = load_prior_attempt(level.level_id)
            except Exception:
                logger.exception("Could not load prior attempt for %s", level.level_id)

    # ── Lifecycle ─────────────────────────────────────────────

    def start(self) -> GameSession:
        """Begin a fresh play-through. A running one is abandoned first."""
        with self._lock:
            if self.session is not None and self.session.is_running:
                self.abandon()
                # A restart never saves the run it replaces

            session = GameSession(level_id=self.level.level_id, mode=self.level.mode)
            if self.level.mode is LevelMode.FLAT:
                self.popups = PopupManager(self.level.decoy_responses, session.active_popups)
                self.sequencer = None
                # FLAT levels spawn pop-ups and have no stages
            else:
                self.sequencer = StageSequencer(self.level)
                session.current_stage = self.sequencer.current
                self.popups = None
                # SEQUENTIAL levels walk the stage chain and never spawn pop-ups

            self.session = session
            self.clock.start()
            logger.info("Started session for level %s", self.level.level_id)
            return session

    def abandon(self) -> None:
        """The player left or restarted. Stops the clock and drops all pop-ups; nothing is saved."""
        with self._lock:
            session = self.session
            if session is None or not session.is_running:
                return
            self._end(SessionStatus.FAILED, "abandoned")
            logger.info("Abandoned session for level %s", self.level.level_id)

    # ── Events ────────────────────────────────────────────────

    def tick(self) -> bool:
        """Deliver one second by hand. Returns True if it expired the session."""
        with self._lock:
            if self.session is None:
                return False
            return self.clock.tick(self.session)

    def sync_clock(self) -> int:
        """Deliver every second the time source says is due. Returns how many."""
        with self._lock:
            if self.session is None:
                return 0
            return self.clock.catch_up(self.session)

    def handle_input(self, action_id: Optional[str], is_real_hint: Optional[bool] = None) -> Optional[Classification]:
        """
        Process one click from the presentation layer.

        Returns the classification, or None when the session is not running.
        Ticks that are due are delivered first, so a time-out wins a tie
        with a click arriving in the same second.
        """
        with self._lock:
            self.sync_clock()
            session = self.session
            if session is None or not session.is_running:
                return None
                # Input after the end is ignored

            session.interactions += 1
            result = classify(self.level, session, action_id, is_real_hint)

            if result is Classification.DISMISS:
                return result
                # Safe controls never count as an attempt

            session.attempts += 1
            if result is Classification.ADVANCE:
                self._advance()
            elif result is Classification.PENALIZE_FAIL:
                self._penalize(action_id, fatal=True)
            else:
                self._penalize(action_id, fatal=False)
            return result

    def click_popup(self, popup_id: str, control: str) -> Optional[Classification]:
        """
        Handle one of the two controls on a decoy pop-up.

        "close" retires it without penalty. "act" retires it and replays the
        decoy click that spawned it, which counts as a fresh wrong click.
        """
        if control not in ("close", "act"):
            raise ValueError(f"Unknown pop-up control: {control!r}")

        with self._lock:
            self.sync_clock()
            session = self.session
            if session is None or not session.is_running or self.popups is None:
                return None

            popup = self.popups.dismiss(popup_id)
            if popup is None:
                return None
                # Already closed, or never shown

            if control == "close":
                session.interactions += 1
                return Classification.DISMISS
            return self.handle_input(popup.source_label)
            # "act" is the decoy click all over again

    # ── Read side ─────────────────────────────────────────────

    def result(self) -> Optional[ScoreResult]:
        if self.session is None:
            return None
        return compute_score(self.level, self.session)

    def snapshot(self) -> dict:
        """Read-only view of the session for the render surface."""
        with self._lock:
            if self.session is None:
                return {"level_id": self.level.level_id, "status": None}
            data = self.session.to_dict()
            data["time_limit_seconds"] = self.level.time_limit_seconds
            data["time_remaining"] = max(0, self.level.time_limit_seconds - self.session.elapsed_seconds)
            # Countdown value the timer display shows

            if not self.session.is_running:
                data["result"] = self.result().to_dict()
                # Final score only once the session has ended
            return data

    # ── Transitions ───────────────────────────────────────────

    def _advance(self) -> None:
        if self.sequencer is None:
            self._end(SessionStatus.SUCCEEDED)
            # FLAT: the one real element ends the level
            return

        next_stage = self.sequencer.advance()
        self.session.current_stage = self.sequencer.current
        if next_stage == TERMINAL:
            self._end(SessionStatus.SUCCEEDED)

    def _penalize(self, action_id: str, fatal: bool) -> None:
        session = self.session
        session.wrong_click_count += 1
        # Every wrong click counts, fatal or not

        group = self._group_for(action_id)
        repeat = group is not None and group in session.distinct_decoy_groups_touched
        if group is not None:
            session.distinct_decoy_groups_touched.add(group)

        if fatal:
            self._end(SessionStatus.FAILED, "wrong_click")
            return
        if self.level.mode is not LevelMode.FLAT:
            return
            # Non-fatal sequential stages just count the click

        if self.level.fail_on_repeat_group and repeat:
            self._end(SessionStatus.FAILED, "repeat_group")
            return
        if self.level.max_wrong_clicks is not None and session.wrong_click_count >= self.level.max_wrong_clicks:
            self._end(SessionStatus.FAILED, "max_wrong_clicks")
            return

        self.popups.spawn(group, action_id)
        # Silently skipped when the screen already holds POPUP_CAP pop-ups

    def _group_for(self, action_id: str) -> Optional[str]:
        if self.level.mode is LevelMode.FLAT:
            element = self.level.element(action_id)
            return element.group_key if element else None
        stage = self.level.stage(self.session.current_stage)
        return stage.group_key if stage else None

    def _expire(self) -> None:
        self._end(SessionStatus.FAILED, "timeout")

    def _end(self, status: SessionStatus, reason: Optional[str] = None) -> None:
        session = self.session
        if session is None or not session.is_running:
            return
            # Exactly one terminal transition per session

        session.status = status
        session.fail_reason = reason
        session.ended_at = time.time()
        self.clock.stop()
        if self.popups is not None:
            self.popups.clear_all()
        if self.sequencer is not None and status is SessionStatus.FAILED:
            self.sequencer.fail()

        result = compute_score(self.level, session)
        logger.info(
            "Level %s ended %s (reason=%s, elapsed=%ss, wrong=%s, score=%s)",
            self.level.level_id, status.value, reason,
            session.elapsed_seconds, session.wrong_click_count, result.leaderboard_score,
        )

        if reason != "abandoned" and session.interactions > 0:
            self._persist(result)

    def _persist(self, result: ScoreResult) -> None:
        if self._save_attempt is None:
            return
        attempt = {
            "elapsed_seconds": self.session.elapsed_seconds,
            "wrong_click_count": self.session.wrong_click_count,
            "score": result.leaderboard_score,
        }
        try:
            self._save_attempt(self.level.level_id, attempt)
        except Exception:
            logger.exception("Failed to save attempt for level %s", self.level.level_id)


# ── CLI Test ──────────────────────────────────────────────────
if __name__ == '__main__':
    logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(levelname)s - %(message)s')

    print("=== Staged Decoy Challenge Engine Test ===\n")

    print("--- Flat level: social-feed ---")
    controller = SessionController(get_level("social-feed"))
    controller.start()
    for _ in range(10):
        controller.tick()
    print(f"  Click 'RESTORE ACCOUNT' -> {controller.handle_input('RESTORE ACCOUNT').value}")
    for popup in controller.session.active_popups:
        print(f"     Popup {popup.popup_id} at {popup.position}: {popup.content.title}")
    print(f"  Click 'Continue to Feed' -> {controller.handle_input('Continue to Feed').value}")
    print(f"  Result: {json.dumps(controller.result().to_dict())}")

    print("\n--- Sequential level: security-gauntlet ---")
    controller = SessionController(get_level("security-gauntlet"))
    controller.start()
    for action in ("close-offer", "skip-verification", "remind-me-later", "remind-later", "view-statement"):
        controller.tick()
        outcome = controller.handle_input(action)
        print(f"  {action:<20} -> {outcome.value:<18} stage={controller.session.current_stage}")

    print(f"\nFinal Snapshot: {json.dumps(controller.snapshot(), indent=2)}")
