"""
Unit tests for the vibe state model and delta application.

Tests cover:
- Defaults and wire-format serialisation
- Tolerant decoding of stored state
- Delta clamping to 20% of range width and to absolute ranges
- Enumerated fields, instruments and seed handling
"""

import math

import pytest

from vibe_server.core.state import (
    DEFAULT_DESCRIPTION,
    FALLBACK_DESCRIPTION,
    PARAM_RANGES,
    VibeState,
    apply_deltas,
    coerce_number,
    default_state,
)

# ============================================================================
# DEFAULTS AND SERIALISATION
# ============================================================================


@pytest.mark.unit
def test_default_state_matches_documented_defaults():
    data = default_state().to_dict()
    assert data == {
        "tempo": 72,
        "key": "C",
        "mode": "minor",
        "reverbMix": 0.4,
        "delayMix": 0.2,
        "filterCutoff": 3000,
        "density": 0.4,
        "brightness": 0.5,
        "instruments": ["pad", "pluck", "bass"],
        "seed": 42,
        "description": DEFAULT_DESCRIPTION,
    }


@pytest.mark.unit
def test_from_dict_round_trips_wire_names():
    original = VibeState(tempo=90, key="G", mode="dorian", instruments=("bells",), seed=7)
    assert VibeState.from_dict(original.to_dict()) == original


@pytest.mark.unit
def test_from_dict_repairs_each_field_independently():
    state = VibeState.from_dict(
        {
            "tempo": 500,
            "key": "H",
            "mode": "Major",
            "reverbMix": "0.9",
            "delayMix": None,
            "filterCutoff": -10,
            "instruments": ["kazoo", "bells"],
            "seed": 0,
            "description": "",
        }
    )
    assert state.tempo == 120
    assert state.key == "C"
    assert state.mode == "major"
    assert state.reverb_mix == pytest.approx(0.9)
    assert state.delay_mix == 0.2
    assert state.filter_cutoff == 200
    assert state.instruments == ("bells",)
    assert state.seed == 42
    assert state.description == DEFAULT_DESCRIPTION


@pytest.mark.unit
def test_from_dict_non_mapping_gives_defaults():
    assert VibeState.from_dict(None) == default_state()
    assert VibeState.from_dict(["not", "a", "dict"]) == default_state()  # type: ignore[arg-type]


@pytest.mark.unit
@pytest.mark.parametrize(
    "value, expected",
    [(3, 3.0), ("2.5", 2.5), (True, None), ("abc", None), (math.inf, None), (None, None)],
)
def test_coerce_number(value, expected):
    assert coerce_number(value) == expected


# ============================================================================
# DELTA APPLICATION
# ============================================================================


@pytest.mark.unit
def test_thunderstorm_deltas_are_clamped_to_budget():
    """A -30 BPM request is capped at -16 and reverb at +0.2."""
    new = apply_deltas(
        default_state(), {"tempo": -30, "reverbMix": 0.5}, "A stormy, brooding mood."
    )
    assert new.tempo == 56
    assert new.reverb_mix == pytest.approx(0.6)
    assert new.description == "A stormy, brooding mood."
    assert new.key == "C"


@pytest.mark.unit
def test_delta_result_is_clamped_to_absolute_range():
    state = VibeState(reverb_mix=0.95, tempo=45)
    new = apply_deltas(state, {"reverbMix": 0.2, "tempo": -16}, "x")
    assert new.reverb_mix == 1
    assert new.tempo == 40


@pytest.mark.unit
@pytest.mark.parametrize("name", sorted(PARAM_RANGES))
def test_every_numeric_field_moves_at_most_twenty_percent(name):
    value_range = PARAM_RANGES[name]
    start = default_state()
    for wild in (1e9, -1e9):
        new = apply_deltas(start, {name: wild}, "x")
        change = abs(new.get(name) - start.get(name))
        assert change <= value_range.width * 0.2 + 1e-9
        assert value_range.minimum <= new.get(name) <= value_range.maximum


@pytest.mark.unit
def test_numeric_strings_are_accepted_and_junk_ignored():
    new = apply_deltas(default_state(), {"tempo": "8", "density": "lots", "brightness": True}, "x")
    assert new.tempo == 80
    assert new.density == 0.4
    assert new.brightness == 0.5


@pytest.mark.unit
def test_key_and_mode_only_applied_when_valid():
    new = apply_deltas(default_state(), {"key": "f", "mode": "locrian"}, "x")
    assert new.key == "F"
    assert new.mode == "minor"


@pytest.mark.unit
def test_instruments_replaced_only_when_something_valid_remains():
    kept = apply_deltas(default_state(), {"instruments": ["kazoo", 7]}, "x")
    assert kept.instruments == ("pad", "pluck", "bass")

    replaced = apply_deltas(default_state(), {"instruments": ["bells", "noise", "bells"]}, "x")
    assert replaced.instruments == ("bells", "noise")


@pytest.mark.unit
def test_seed_is_set_directly_when_in_range():
    assert apply_deltas(default_state(), {"seed": 123456.4}, "x").seed == 123456
    assert apply_deltas(default_state(), {"seed": 0}, "x").seed == 42
    assert apply_deltas(default_state(), {"seed": 5_000_000}, "x").seed == 42


@pytest.mark.unit
def test_description_always_overwritten_and_capped():
    assert apply_deltas(default_state(), {}, "").description == FALLBACK_DESCRIPTION
    long = apply_deltas(default_state(), {}, "y" * 500, description_max_chars=200)
    assert long.description == "y" * 200


@pytest.mark.unit
def test_apply_deltas_does_not_mutate_input():
    state = default_state()
    apply_deltas(state, {"tempo": 10}, "x")
    assert state == default_state()


@pytest.mark.unit
@pytest.mark.parametrize("raw", [0.6, "0.6", 999999.4, "999999.4", -3])
def test_seed_out_of_range_before_rounding_is_ignored(raw):
    assert apply_deltas(default_state(), {"seed": raw}, "x").seed == 42


@pytest.mark.unit
def test_seed_in_range_is_rounded():
    assert apply_deltas(default_state(), {"seed": "1.4"}, "x").seed == 1
    assert apply_deltas(default_state(), {"seed": 999998.6}, "x").seed == 999999
