"""The shared vibe state and the rules for changing it.

``VibeState`` is the single parameter set every listener's synthesiser and
visualiser render from. It is only ever changed through :func:`apply_deltas`,
which enforces two guarantees regardless of what the interpreter proposes:

- Every continuous parameter moves by at most 20% of its range width per
  applied prompt, and always lands inside its absolute range.
- Enumerated parameters (key, mode, instruments) only ever take values from
  their fixed vocabularies, and the instrument set is never empty.

``seed`` is not a delta parameter. It selects a new deterministic note
sequence and is replaced outright when the proposal is a valid integer.

Wire format
-----------
``to_dict``/``from_dict`` use the camelCase names clients expect
(``reverbMix``, ``filterCutoff`` ...). ``from_dict`` is tolerant: it repairs
out-of-range or malformed stored values field by field instead of failing,
so a damaged row can never take a room down.
"""

from __future__ import annotations

import math
from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from typing import Any

# Fraction of a parameter's range width that one prompt may move it.
MAX_DELTA_FRACTION = 0.2


@dataclass(frozen=True)
class NumericRange:
    """Closed numeric interval for one continuous parameter."""

    minimum: float
    maximum: float

    @property
    def width(self) -> float:
        return self.maximum - self.minimum

    @property
    def max_delta(self) -> float:
        """Largest change one applied prompt may make."""
        return self.width * MAX_DELTA_FRACTION

    def clamp(self, value: float) -> float:
        return max(self.minimum, min(self.maximum, value))

    def clamp_delta(self, delta: float) -> float:
        return max(-self.max_delta, min(self.max_delta, delta))


# Continuous parameters, keyed by wire name.
PARAM_RANGES: dict[str, NumericRange] = {
    "tempo": NumericRange(40, 120),
    "reverbMix": NumericRange(0, 1),
    "delayMix": NumericRange(0, 1),
    "filterCutoff": NumericRange(200, 8000),
    "density": NumericRange(0, 1),
    "brightness": NumericRange(0, 1),
}

SEED_RANGE = NumericRange(1, 999999)

VALID_KEYS: tuple[str, ...] = ("C", "D", "E", "F", "G", "A", "B")
VALID_MODES: tuple[str, ...] = ("major", "minor", "dorian", "mixolydian")
VALID_INSTRUMENTS: tuple[str, ...] = ("pad", "pluck", "bass", "bells", "noise")

DEFAULT_DESCRIPTION = "A calm, contemplative ambient space."
FALLBACK_DESCRIPTION = "The vibe continues to evolve."
DEFAULT_DESCRIPTION_MAX_CHARS = 200

# wire name -> dataclass attribute
_WIRE_TO_ATTR = {
    "tempo": "tempo",
    "key": "key",
    "mode": "mode",
    "reverbMix": "reverb_mix",
    "delayMix": "delay_mix",
    "filterCutoff": "filter_cutoff",
    "density": "density",
    "brightness": "brightness",
    "instruments": "instruments",
    "seed": "seed",
    "description": "description",
}


@dataclass(frozen=True)
class VibeState:
    """Immutable snapshot of one room's parameters.

    Instances are never mutated; :func:`apply_deltas` returns a new one.
    Construct from untrusted data with :meth:`from_dict`, which normalises.
    """

    tempo: float = 72
    key: str = "C"
    mode: str = "minor"
    reverb_mix: float = 0.4
    delay_mix: float = 0.2
    filter_cutoff: float = 3000
    density: float = 0.4
    brightness: float = 0.5
    instruments: tuple[str, ...] = field(default_factory=lambda: ("pad", "pluck", "bass"))
    seed: int = 42
    description: str = DEFAULT_DESCRIPTION

    def get(self, wire_name: str) -> Any:
        """Read a parameter by its wire name."""
        return getattr(self, _WIRE_TO_ATTR[wire_name])

    def to_dict(self) -> dict[str, Any]:
        """Serialise with wire (camelCase) names."""
        data = {wire: getattr(self, attr) for wire, attr in _WIRE_TO_ATTR.items()}
        data["instruments"] = list(self.instruments)
        return data

    def musical_summary(self) -> dict[str, Any]:
        """The parameters shown to the interpreter (no seed, no description)."""
        data = self.to_dict()
        data.pop("seed")
        data.pop("description")
        return data

    @classmethod
    def from_dict(
        cls,
        data: Mapping[str, Any] | None,
        *,
        description_max_chars: int = DEFAULT_DESCRIPTION_MAX_CHARS,
    ) -> VibeState:
        """Build a state from stored/wire data, repairing every field.

        Numeric fields are clamped into range; anything unparseable falls
        back to the default for that field.
        """
        defaults = cls()
        if not isinstance(data, Mapping):
            return defaults

        values: dict[str, Any] = {}
        for wire, value_range in PARAM_RANGES.items():
            number = coerce_number(data.get(wire))
            attr = _WIRE_TO_ATTR[wire]
            values[attr] = (
                value_range.clamp(number) if number is not None else getattr(defaults, attr)
            )

        values["key"] = normalise_key(data.get("key")) or defaults.key
        values["mode"] = normalise_mode(data.get("mode")) or defaults.mode
        values["instruments"] = filter_instruments(data.get("instruments")) or defaults.instruments
        values["seed"] = coerce_seed(data.get("seed")) or defaults.seed

        description = data.get("description")
        if isinstance(description, str) and description.strip():
            values["description"] = description.strip()[:description_max_chars]
        else:
            values["description"] = defaults.description

        return cls(**values)


def default_state() -> VibeState:
    """The hard-coded state a new room starts from."""
    return VibeState()


# =============================================================================
# VALUE COERCION
# =============================================================================


def coerce_number(value: Any) -> float | None:
    """Parse a finite number from a JSON value, or ``None``.

    Accepts ints, floats and numeric strings. Booleans are rejected even
    though ``bool`` subclasses ``int``.
    """
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, str):
        try:
            number = float(value.strip())
        except ValueError:
            return None
    else:
        return None
    return number if math.isfinite(number) else None


def coerce_seed(value: Any) -> int | None:
    """Parse a seed; the raw value is range-checked, then rounded."""
    number = coerce_number(value)
    if number is None or not SEED_RANGE.minimum <= number <= SEED_RANGE.maximum:
        return None
    return int(round(number))


def normalise_key(value: Any) -> str | None:
    if isinstance(value, str) and value.strip().upper() in VALID_KEYS:
        return value.strip().upper()
    return None


def normalise_mode(value: Any) -> str | None:
    if isinstance(value, str) and value.strip().lower() in VALID_MODES:
        return value.strip().lower()
    return None


def filter_instruments(value: Any) -> tuple[str, ...]:
    """Keep only known instrument ids, de-duplicated, in proposal order."""
    if not isinstance(value, (list, tuple)):
        return ()
    kept: list[str] = []
    for item in value:
        if not isinstance(item, str):
            continue
        name = item.strip().lower()
        if name in VALID_INSTRUMENTS and name not in kept:
            kept.append(name)
    return tuple(kept)


# =============================================================================
# DELTA APPLICATION
# =============================================================================


def apply_deltas(
    current: VibeState,
    deltas: Mapping[str, Any],
    description: str,
    *,
    description_max_chars: int = DEFAULT_DESCRIPTION_MAX_CHARS,
) -> VibeState:
    """Apply an interpreter proposal to ``current`` and return the new state.

    Args:
        current: State the proposal is applied against.
        deltas: Partial mapping of wire name -> proposal. Numeric entries are
            relative changes; ``key``/``mode``/``instruments``/``seed`` are
            absolute values. Unknown names are ignored.
        description: One-sentence description of the new vibe. Always
            replaces the old one.
        description_max_chars: Cap applied to ``description``.

    Returns:
        A new :class:`VibeState`. ``current`` is untouched.
    """
    changes: dict[str, Any] = {}

    for wire, value_range in PARAM_RANGES.items():
        if wire not in deltas:
            continue
        delta = coerce_number(deltas[wire])
        if delta is None:
            continue
        attr = _WIRE_TO_ATTR[wire]
        changes[attr] = value_range.clamp(getattr(current, attr) + value_range.clamp_delta(delta))

    key = normalise_key(deltas.get("key"))
    if key:
        changes["key"] = key

    mode = normalise_mode(deltas.get("mode"))
    if mode:
        changes["mode"] = mode

    instruments = filter_instruments(deltas.get("instruments"))
    if instruments:
        changes["instruments"] = instruments

    if "seed" in deltas:
        seed = coerce_seed(deltas["seed"])
        if seed is not None:
            changes["seed"] = seed

    text = description.strip() if isinstance(description, str) else ""
    changes["description"] = (text or FALLBACK_DESCRIPTION)[:description_max_chars]

    return replace(current, **changes)
