"""
Conduct-score to converted-score mapping.

Every component is scored on its own native scale (the conduct score) and
rescaled onto its share of the final 100 marks:

    cla1       0-20  -> 0-10
    cla2       0-30  -> 0-15
    cla3       0-50  -> 0-25
    external   0-100 -> 0-50

Rounding is half away from zero, so 0.5 always moves up a grade boundary.
"""
from __future__ import annotations

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import NamedTuple, Union

from .errors import RangeError, ValidationError

Number = Union[int, float, Decimal]


class ScoreScale(NamedTuple):
    component: str
    label: str
    raw_max: int
    converted_max: int


SCALES = {
    "cla1": ScoreScale("cla1", "CLA-1", 20, 10),
    "cla2": ScoreScale("cla2", "CLA-2", 30, 15),
    "cla3": ScoreScale("cla3", "CLA-3", 50, 25),
    "external": ScoreScale("external", "External", 100, 50),
}

INTERNAL_COMPONENTS = ("cla1", "cla2", "cla3")
EXTERNAL_COMPONENT = "external"

# Sub-assessment label of the window that gates each component.
COMPONENT_SUB_ASSESSMENT = {name: scale.label for name, scale in SCALES.items()}


def _as_decimal(raw: Number, label: str) -> Decimal:
    if isinstance(raw, bool) or raw is None:
        raise ValidationError(f"{label} conduct score must be a number")
    try:
        value = raw if isinstance(raw, Decimal) else Decimal(str(raw))
    except (InvalidOperation, ValueError, TypeError):
        raise ValidationError(f"{label} conduct score must be a number") from None
    if not value.is_finite():
        raise ValidationError(f"{label} conduct score must be a finite number")
    return value


def round_half_away_from_zero(value: Decimal) -> int:
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def validate_raw(component: str, raw: Number) -> Decimal:
    scale = _scale(component)
    value = _as_decimal(raw, scale.label)
    if value < 0 or value > scale.raw_max:
        raise RangeError(f"{scale.label} conduct score must be between 0 and {scale.raw_max}")
    return value


def convert(component: str, raw: Number) -> int:
    scale = _scale(component)
    value = validate_raw(component, raw)
    converted = round_half_away_from_zero(value * scale.converted_max / scale.raw_max)
    return max(0, min(scale.converted_max, converted))


def convert_cla1(raw: Number) -> int:
    return convert("cla1", raw)


def convert_cla2(raw: Number) -> int:
    return convert("cla2", raw)


def convert_cla3(raw: Number) -> int:
    return convert("cla3", raw)


def convert_external(raw: Number) -> int:
    return convert("external", raw)


def _scale(component: str) -> ScoreScale:
    try:
        return SCALES[component]
    except KeyError:
        raise ValidationError(f"Unknown score component '{component}'") from None


def derive_totals(record) -> None:
    """Recompute every converted score and the three totals of an evaluation record in place."""
    for component in SCALES:
        raw = getattr(record, f"{component}_raw")
        setattr(record, f"{component}_converted", 0 if raw is None else convert(component, raw))
    record.total_internal = sum(getattr(record, f"{c}_converted") for c in INTERNAL_COMPONENTS)
    record.total_external = getattr(record, f"{EXTERNAL_COMPONENT}_converted")
    record.total = record.total_internal + record.total_external
