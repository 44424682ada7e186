import dataclasses

import pytest

from levels import (
    GENERIC_DECOY,
    LEVELS,
    DecoyContent,
    DecoyResponseCatalog,
    ElementSpec,
    LevelConfigError,
    LevelMode,
    StageSpec,
    get_level,
)


def test_builtin_levels_are_valid():
    assert set(LEVELS) == {"social-feed", "security-gauntlet", "cyber-defense"}
    for level in LEVELS.values():
        assert level.validate() is level


def test_get_level_unknown_raises_key_error():
    with pytest.raises(KeyError):
        get_level("no-such-level")


def test_flat_level_without_real_element_is_rejected(flat_level):
    decoys_only = tuple(e for e in flat_level.elements if not e.is_real)
    broken = dataclasses.replace(flat_level, elements=decoys_only)
    with pytest.raises(LevelConfigError):
        broken.validate()


def test_flat_level_with_two_real_elements_is_rejected(flat_level):
    broken = dataclasses.replace(
        flat_level, elements=flat_level.elements + (ElementSpec("Also Real", True),)
    )
    with pytest.raises(LevelConfigError):
        broken.validate()


def test_sequential_level_must_end_in_main(sequential_level):
    broken = dataclasses.replace(sequential_level, stages=sequential_level.stages[:-1])
    with pytest.raises(LevelConfigError):
        broken.validate()


def test_sequential_level_needs_stages(sequential_level):
    with pytest.raises(LevelConfigError):
        dataclasses.replace(sequential_level, stages=()).validate()


def test_correct_action_cannot_also_be_a_decoy(sequential_level):
    bad_stage = StageSpec("main", "go", frozenset({"go", "stop"}))
    broken = dataclasses.replace(sequential_level, stages=(bad_stage,))
    with pytest.raises(LevelConfigError):
        broken.validate()


def test_non_positive_time_limit_is_rejected(flat_level):
    with pytest.raises(LevelConfigError):
        dataclasses.replace(flat_level, time_limit_seconds=0).validate()


def test_resolve_prefers_exact_label_then_group_then_cycle():
    exact = DecoyContent("EXACT", "", "x")
    grouped = DecoyContent("GROUP", "", "g")
    first_group = DecoyContent("GROUP-FIRST", "", "g1")
    fallback = (DecoyContent("F0", "", "f"), DecoyContent("F1", "", "f"))
    catalog = DecoyResponseCatalog(
        specific={"Click Me": exact},
        grouped=(("verify", first_group), ("verify", grouped)),
        fallback=fallback,
    )

    assert catalog.resolve("Click Me", "verify", 0) is exact
    assert catalog.resolve("Other", "verify", 0) is first_group
    assert catalog.resolve("Other", "unknown", 0) is fallback[0]
    assert catalog.resolve("Other", None, 1) is fallback[1]
    assert catalog.resolve("Other", None, 2) is fallback[0]


def test_resolve_without_fallback_uses_generic():
    assert DecoyResponseCatalog().resolve("x", None, 5) is GENERIC_DECOY


def test_summary_lists_elements_or_stages():
    flat = get_level("social-feed").to_summary()
    assert flat["mode"] == "flat"
    assert {"label": "Continue to Feed", "description": "Access your social media feed"} in flat["elements"]

    sequential = get_level("cyber-defense").to_summary()
    assert sequential["mode"] == "sequential"
    assert sequential["stages"][-1] == "main"
    assert sequential["score_scale"] == "ten_point"


def test_stage_order_ends_in_end(sequential_level):
    assert sequential_level.stage_order == ["popup1", "popup2", "main", "end"]
    assert sequential_level.mode is LevelMode.SEQUENTIAL


def test_levels_are_hashable(flat_level):
    seen = {get_level("social-feed"): "builtin", flat_level: "demo"}
    assert seen[get_level("social-feed")] == "builtin"
    assert hash(flat_level) == hash(dataclasses.replace(flat_level))
