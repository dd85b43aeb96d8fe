"""Challenge-rating scale: label/numeric conversion and quantization.

Contract:
- to_numeric() and to_label() are exact inverses over the 34 canonical steps
- quantize() always returns one of the 34 canonical steps
- Nothing here raises on unknown input; documented fallbacks apply instead
"""

import math
from typing import Any, Optional

from ecr.core.constants import (
    CONFIDENCE_HIGH,
    CONFIDENCE_LOW,
    CONFIDENCE_LOW_THRESHOLD,
    CONFIDENCE_MEDIUM,
    CONFIDENCE_MEDIUM_THRESHOLD,
    CR_MAX,
    CR_MIN,
    CR_STEPS,
    CR_TO_NUMERIC,
    NUMERIC_TO_CR,
)


def round_half_up(value: float) -> int:
    """Round to the nearest integer, halves towards +infinity (2.5 -> 3, -2.5 -> -2)."""
    return int(math.floor(value + 0.5))


def to_numeric(label: Any) -> float:
    """Numeric value of a canonical CR label. Unknown labels map to 0."""
    return CR_TO_NUMERIC.get(str(label).strip(), 0) if label is not None else 0


def to_label(value: float) -> str:
    """Canonical label of a CR step. Unknown values map to the rounded decimal string."""
    label = NUMERIC_TO_CR.get(value)
    if label is not None:
        return label
    return str(round_half_up(value))


def quantize(value: float) -> float:
    """Snap a continuous CR to the nearest canonical step.

    The value is clamped to [0, 30] first. Ties resolve to the lower step.
    """
    value = max(CR_MIN, min(CR_MAX, value))
    closest = CR_STEPS[0]
    min_diff = abs(value - closest)
    for step in CR_STEPS:
        diff = abs(value - step)
        if diff < min_diff:
            min_diff = diff
            closest = step
    return closest


def step_index(value: float) -> int:
    """Index into CR_STEPS of the step nearest to value."""
    return CR_STEPS.index(quantize(value))


def shift_step(index: int, delta: int) -> int:
    """Move a step index by delta, clamped to the valid index range."""
    return max(0, min(len(CR_STEPS) - 1, index + delta))


def parse_cr(raw: Any) -> Optional[float]:
    """Parse a stat block's declared CR.

    Accepts numbers, fraction strings ("1/2"), decimal strings and objects
    carrying a "cr" key (e.g. {"cr": "10", "lair": "11"}). Returns None when
    absent or unparseable.
    """
    if raw is None or isinstance(raw, bool):
        return None
    if isinstance(raw, dict):
        return parse_cr(raw.get("cr"))
    if isinstance(raw, (int, float)):
        return None if math.isnan(raw) else float(raw)
    if isinstance(raw, str):
        text = raw.strip()
        if not text:
            return None
        if text in CR_TO_NUMERIC:
            return float(CR_TO_NUMERIC[text])
        try:
            if "/" in text:
                num, den = text.split("/", 1)
                return float(num) / float(den)
            return float(text)
        except (ValueError, ZeroDivisionError):
            return None
    return None


def bucket_confidence(difference: float) -> str:
    """Confidence from an absolute CR difference: >2 low, >1 medium, else high."""
    difference = abs(difference)
    if difference > CONFIDENCE_LOW_THRESHOLD:
        return CONFIDENCE_LOW
    if difference > CONFIDENCE_MEDIUM_THRESHOLD:
        return CONFIDENCE_MEDIUM
    return CONFIDENCE_HIGH
