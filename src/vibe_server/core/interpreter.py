"""Interpretation stage: free text to bounded parameter changes.

The model is shown the current musical parameters plus every range and
per-prompt delta budget, and asked for a JSON object::

    {"deltas": {...only changed parameters...}, "description": "..."}

Its reply is untrusted. :func:`extract_json_block` finds the first
well-formed JSON object anywhere in the text (code fences and chatter are
tolerated) and :func:`parse_interpretation` reduces it to an
:class:`Interpretation`, falling back to an empty delta and a generic
description instead of raising. Clamping happens later, in
:func:`vibe_server.core.state.apply_deltas`.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any

from vibe_server.core.oracle import ChatOracle
from vibe_server.core.state import (
    FALLBACK_DESCRIPTION,
    PARAM_RANGES,
    SEED_RANGE,
    VALID_INSTRUMENTS,
    VALID_KEYS,
    VALID_MODES,
    VibeState,
)

logger = logging.getLogger(__name__)

_EXAMPLE_REPLY = (
    '{"deltas":{"tempo":8,"reverbMix":0.15,"mode":"minor","brightness":-0.1},'
    '"description":"A darker, spacious atmosphere with a contemplative pulse."}'
)


@dataclass(frozen=True)
class Interpretation:
    deltas: dict[str, Any] = field(default_factory=dict)
    description: str = FALLBACK_DESCRIPTION


def _fmt(value: float) -> str:
    return f"{value:g}"


def build_system_prompt(state: VibeState) -> str:
    """Instruction embedding ``state`` and the documented ranges and budgets."""
    r = PARAM_RANGES
    lines = [
        "You are a musical atmosphere interpreter. You translate text descriptions into "
        "musical parameter changes for a generative ambient music engine.",
        "",
        f"Current state: {json.dumps(state.musical_summary())}",
        "",
        "Parameter ranges:",
        f"- tempo: {_fmt(r['tempo'].minimum)}-{_fmt(r['tempo'].maximum)} BPM "
        f"(deltas: -{_fmt(r['tempo'].max_delta)} to +{_fmt(r['tempo'].max_delta)})",
        f"- key: {', '.join(VALID_KEYS)} (set directly, not delta)",
        f"- mode: {', '.join(VALID_MODES)} (set directly, not delta)",
    ]
    for name in ("reverbMix", "delayMix"):
        lines.append(
            f"- {name}: {_fmt(r[name].minimum)}-{_fmt(r[name].maximum)} "
            f"(deltas: -{_fmt(r[name].max_delta)} to +{_fmt(r[name].max_delta)})"
        )
    lines.append(
        f"- filterCutoff: {_fmt(r['filterCutoff'].minimum)}-{_fmt(r['filterCutoff'].maximum)} Hz "
        f"(deltas: -{_fmt(r['filterCutoff'].max_delta)} to +{_fmt(r['filterCutoff'].max_delta)})"
    )
    for name in ("density", "brightness"):
        lines.append(
            f"- {name}: {_fmt(r[name].minimum)}-{_fmt(r[name].maximum)} "
            f"(deltas: -{_fmt(r[name].max_delta)} to +{_fmt(r[name].max_delta)})"
        )
    lines += [
        f"- instruments: array of active types from [{', '.join(VALID_INSTRUMENTS)}] "
        "(set directly)",
        f"- seed: {_fmt(SEED_RANGE.minimum)}-{_fmt(SEED_RANGE.maximum)} (set directly, not delta; "
        "change to a new random integer if the mood shifts significantly, otherwise keep current)",
        "",
        "Respond with ONLY valid JSON. Two fields:",
        '1. "deltas": object with only changed parameters. Numeric params use delta values. '
        '"key", "mode", "instruments" are set directly.',
        '2. "description": one sentence describing the new vibe.',
        "",
        f"Example: {_EXAMPLE_REPLY}",
    ]
    return "\n".join(lines)


def extract_json_block(text: str) -> dict[str, Any] | None:
    """Return the first JSON object embedded in ``text``, or None."""
    decoder = json.JSONDecoder()
    start = text.find("{")
    while start != -1:
        try:
            value, _ = decoder.raw_decode(text, start)
        except ValueError:
            pass
        else:
            if isinstance(value, dict):
                return value
        start = text.find("{", start + 1)
    return None


def parse_interpretation(raw: str | None) -> Interpretation:
    """Reduce a raw model reply to an :class:`Interpretation`; never raises."""
    if not raw:
        return Interpretation()

    block = extract_json_block(raw)
    if block is None:
        logger.warning("Interpreter returned no JSON object: %r", raw[:200])
        return Interpretation()

    deltas = block.get("deltas")
    description = block.get("description")
    return Interpretation(
        deltas=deltas if isinstance(deltas, dict) else {},
        description=(
            description if isinstance(description, str) and description.strip()
            else FALLBACK_DESCRIPTION
        ),
    )


class ParameterInterpreter:
    def __init__(self, oracle: ChatOracle, *, max_tokens: int = 200) -> None:
        self.oracle = oracle
        self.max_tokens = max_tokens

    async def interpret(self, text: str, state: VibeState) -> Interpretation:
        """Ask the model how ``text`` should move ``state``.

        Oracle failures (``None`` or an exception) yield the fallback
        interpretation rather than an error.
        """
        try:
            raw = await self.oracle.complete(
                build_system_prompt(state), text, max_tokens=self.max_tokens
            )
        except Exception:
            logger.exception("Interpretation call failed; using fallback")
            return Interpretation()
        return parse_interpretation(raw)
