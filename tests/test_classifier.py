import dataclasses

import pytest

from decoy_engine import Classification, GameSession, classify
from levels import LevelMode, StageSpec


@pytest.fixture
def flat_session(flat_level):
    return GameSession(level_id=flat_level.level_id, mode=LevelMode.FLAT)


def stage_session(level, stage_id):
    return GameSession(level_id=level.level_id, mode=LevelMode.SEQUENTIAL, current_stage=stage_id)


def test_flat_real_element_advances(flat_level, flat_session):
    assert classify(flat_level, flat_session, "Continue") is Classification.ADVANCE


def test_flat_real_hint_advances(flat_level, flat_session):
    assert classify(flat_level, flat_session, "anything", is_real_hint=True) is Classification.ADVANCE


def test_flat_decoy_penalizes(flat_level, flat_session):
    assert classify(flat_level, flat_session, "Verify Profile") is Classification.PENALIZE_CONTINUE


@pytest.mark.parametrize("action_id", [None, ""])
def test_empty_action_is_dismiss_in_both_modes(flat_level, flat_session, sequential_level, action_id):
    assert classify(flat_level, flat_session, action_id) is Classification.DISMISS
    assert classify(flat_level, flat_session, action_id, is_real_hint=True) is Classification.DISMISS
    session = stage_session(sequential_level, "popup1")
    assert classify(sequential_level, session, action_id) is Classification.DISMISS


def test_flat_unknown_action_is_dismiss(flat_level, flat_session):
    assert classify(flat_level, flat_session, "Not On The Page") is Classification.DISMISS


def test_sequential_correct_action_advances(sequential_level):
    session = stage_session(sequential_level, "popup2")
    assert classify(sequential_level, session, "later") is Classification.ADVANCE


def test_sequential_correct_action_of_other_stage_is_not_advance(sequential_level):
    session = stage_session(sequential_level, "popup1")
    assert classify(sequential_level, session, "later") is Classification.DISMISS


def test_sequential_decoy_is_fatal(sequential_level):
    for stage in sequential_level.stages:
        session = stage_session(sequential_level, stage.stage_id)
        for decoy in stage.decoy_action_ids:
            assert classify(sequential_level, session, decoy) is Classification.PENALIZE_FAIL


def test_sequential_silent_dismiss(sequential_level):
    session = stage_session(sequential_level, "main")
    assert classify(sequential_level, session, "remind-later") is Classification.DISMISS


def test_sequential_non_fatal_stage_policy(sequential_level):
    lenient = StageSpec("main", "ok", frozenset({"bait"}), decoys_fatal=False)
    level = dataclasses.replace(sequential_level, stages=(lenient,))
    session = stage_session(level, "main")
    assert classify(level, session, "bait") is Classification.PENALIZE_CONTINUE


def test_sequential_after_end_is_dismiss(sequential_level):
    session = stage_session(sequential_level, "end")
    assert classify(sequential_level, session, "view-statement") is Classification.DISMISS
