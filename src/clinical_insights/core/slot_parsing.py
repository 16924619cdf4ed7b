"""
Slot value parsing and validation.

Time windows ("12 weeks", "within 3 months", "1 quarter") parse to a day
count through TIME_UNIT_DAYS. Tolerance-style slots ("+/- 7 days",
"tolerance of 3 days") use their own regex family so the main time point in a
question is not mistaken for the tolerance. Percentages ("50%", "30 percent")
parse to a fraction; out-of-range values are rejected, never clamped.
"""

import re
from dataclasses import dataclass
from typing import Any

from clinical_insights.core.resolution_config import TIME_UNIT_DAYS
from clinical_insights.core.resolution_models import PlaceholderSlot

_UNIT_ALIASES = {
    "day": "day",
    "days": "day",
    "wk": "week",
    "wks": "week",
    "week": "week",
    "weeks": "week",
    "mo": "month",
    "mos": "month",
    "month": "month",
    "months": "month",
    "quarter": "quarter",
    "quarters": "quarter",
    "yr": "year",
    "yrs": "year",
    "year": "year",
    "years": "year",
}
_UNIT = r"(days?|weeks?|wks?|months?|mos?|quarters?|years?|yrs?)"
_NUMBER = r"(\d+(?:\.\d+)?)"

# (pattern, confidence) - first hit wins
TIME_WINDOW_PATTERNS = [
    (
        re.compile(
            rf"\b(?:within|in|after|at|by|over|past|last|next|first)\s+"
            rf"(?:the\s+)?(?:first\s+)?{_NUMBER}\s*-?\s*{_UNIT}\b",
            re.I,
        ),
        0.95,
    ),
    (re.compile(rf"\b{_NUMBER}\s*-?\s*{_UNIT}\b", re.I), 0.9),
]
TOLERANCE_PATTERNS = [
    (re.compile(rf"(?:±|\+/-|\+-|plus or minus)\s*{_NUMBER}\s*-?\s*{_UNIT}\b", re.I), 0.95),
    (re.compile(rf"\b(?:tolerance|window|margin)\s+(?:of\s+)?{_NUMBER}\s*-?\s*{_UNIT}\b", re.I), 0.9),
    (re.compile(rf"\b{_NUMBER}\s*-?\s*{_UNIT}\s+(?:tolerance|window|margin)\b", re.I), 0.9),
]

_PERCENT_SIGN = re.compile(r"(-?\d+(?:\.\d+)?)\s*%")
_PERCENT_WORD = re.compile(r"(-?\d+(?:\.\d+)?)\s*(?:percent|per cent|pct)\b", re.I)
_PERCENT_KEYWORDS = (
    r"(?:reduction|reduced|improvement|improved|decrease|decreased|increase|increased"
    r"|change|drop|threshold|rate|fraction|proportion)"
)
_PERCENT_DECIMAL = [
    re.compile(rf"\b{_PERCENT_KEYWORDS}\s+(?:of\s+|by\s+|at\s+least\s+|above\s+|below\s+)?(-?\d*\.\d+)\b", re.I),
    re.compile(rf"(?<![\d.])(-?\d*\.\d+)\s+(?:or\s+more\s+)?{_PERCENT_KEYWORDS}\b", re.I),
]

_VALIDATOR_RULE = re.compile(r"^(min|max):(-?\d+(?:\.\d+)?)$")
_TRUE_VALUES = {"true", "yes", "y", "1"}
_FALSE_VALUES = {"false", "no", "n", "0"}


@dataclass(frozen=True)
class ParsedValue:
    """Specialized parse of a question; error set when the cue was found but is out of range."""

    value: Any
    confidence: float
    original_text: str
    display_label: str
    error: str | None = None


def is_tolerance_slot(slot: PlaceholderSlot) -> bool:
    name = slot.name.lower()
    semantic = (slot.semantic or "").lower()
    if semantic == "time_tolerance" or "tolerance" in name:
        return True
    # "timeWindow" style names are the main window, not a tolerance
    return "window" in name and semantic not in ("time_window", "time_window_days", "time_point")


def is_time_slot(slot: PlaceholderSlot) -> bool:
    semantic = (slot.semantic or "").lower()
    return semantic in ("time_window", "time_window_days", "time_point", "time_tolerance")


def is_percentage_slot(slot: PlaceholderSlot) -> bool:
    semantic = (slot.semantic or "").lower()
    return semantic in ("percentage", "percent_threshold")


def unit_to_days(unit: str) -> int | None:
    canonical = _UNIT_ALIASES.get(unit.lower())
    return TIME_UNIT_DAYS.get(canonical) if canonical else None


def _format_number(value: float) -> str:
    return str(int(value)) if float(value).is_integer() else f"{value:g}"


def parse_time_window(text: str, tolerance: bool = False) -> ParsedValue | None:
    """
    Parse the first time expression in text into a day count.

    Args:
        text: Question text
        tolerance: Use the tolerance regex family ("+/- 7 days")

    Returns:
        ParsedValue with an int day count, or None when no cue is present
    """
    patterns = TOLERANCE_PATTERNS if tolerance else TIME_WINDOW_PATTERNS
    for pattern, confidence in patterns:
        match = pattern.search(text or "")
        if not match:
            continue
        amount = float(match.group(1))
        multiplier = unit_to_days(match.group(2))
        if multiplier is None:
            continue
        days = int(round(amount * multiplier))
        canonical = _UNIT_ALIASES[match.group(2).lower()]
        label = f"{_format_number(amount)} {canonical}{'' if amount == 1 else 's'} ({days} days)"
        return ParsedValue(value=days, confidence=confidence, original_text=match.group(0).strip(), display_label=label)
    return None


def parse_percentage(text: str) -> ParsedValue | None:
    """
    Parse a percentage cue into a fraction.

    "P%" and "P percent" give P/100 and are rejected outside 0-100. A bare
    decimal counts only next to a percentage-suggestive word ("reduction of
    0.3") and is rejected outside 0-1.
    """
    text = text or ""
    for pattern, confidence in ((_PERCENT_SIGN, 0.95), (_PERCENT_WORD, 0.9)):
        match = pattern.search(text)
        if match:
            percent = float(match.group(1))
            original = match.group(0).strip()
            if percent < 0 or percent > 100:
                return ParsedValue(
                    value=None,
                    confidence=confidence,
                    original_text=original,
                    display_label=original,
                    error=f"{_format_number(percent)}% is outside 0-100%",
                )
            return ParsedValue(
                value=round(percent / 100, 6),
                confidence=confidence,
                original_text=original,
                display_label=f"{_format_number(percent)}%",
            )

    for pattern in _PERCENT_DECIMAL:
        match = pattern.search(text)
        if not match:
            continue
        raw = match.group(1)
        fraction = float(raw)
        original = match.group(0).strip()
        if fraction < 0 or fraction > 1:
            return ParsedValue(
                value=None,
                confidence=0.8,
                original_text=original,
                display_label=raw,
                error=f"{raw} is outside 0-1",
            )
        return ParsedValue(
            value=fraction,
            confidence=0.8,
            original_text=original,
            display_label=f"{_format_number(fraction * 100)}%",
        )
    return None


def coerce_slot_value(value: Any, slot_type: str | None) -> Any:
    """
    Coerce a raw value to the slot's declared type.

    Raises:
        ValueError: value cannot be represented as that type
    """
    slot_type = (slot_type or "string").lower()
    if value is None:
        raise ValueError("value is missing")

    if slot_type == "int":
        number = _to_float(value)
        if not number.is_integer():
            raise ValueError(f"'{value}' is not a whole number")
        return int(number)
    if slot_type in ("float", "decimal"):
        return _to_float(value)
    if slot_type == "number":
        number = _to_float(value)
        return int(number) if number.is_integer() else number
    if slot_type == "boolean":
        if isinstance(value, bool):
            return value
        text = str(value).strip().lower()
        if text in _TRUE_VALUES:
            return True
        if text in _FALSE_VALUES:
            return False
        raise ValueError(f"'{value}' is not a yes/no value")

    if isinstance(value, str):
        return value.strip()
    return value


def _to_float(value: Any) -> float:
    if isinstance(value, bool):
        raise ValueError(f"'{value}' is not a number")
    try:
        return float(str(value).strip().rstrip("%")) if isinstance(value, str) else float(value)
    except (TypeError, ValueError):
        raise ValueError(f"'{value}' is not a number") from None


def check_validators(value: Any, validators: tuple[str, ...] | list[str]) -> str | None:
    """
    Apply non-empty / min:<n> / max:<n> rules.

    Returns:
        Failure message ("must be at most 730"), or None when every rule passes
    """
    for rule in validators:
        rule = rule.strip()
        if rule == "non-empty":
            if value is None or (isinstance(value, str) and not value.strip()):
                return "must not be empty"
            continue

        match = _VALIDATOR_RULE.match(rule)
        if not match:
            continue
        kind, bound_text = match.groups()
        bound = float(bound_text)
        try:
            number = _to_float(value)
        except ValueError:
            return f"must be a number ({kind} {_format_number(bound)})"
        if kind == "min" and number < bound:
            return f"must be at least {_format_number(bound)}"
        if kind == "max" and number > bound:
            return f"must be at most {_format_number(bound)}"
    return None


def validate_slot_value(slot: PlaceholderSlot, value: Any) -> tuple[Any, str | None]:
    """
    Coerce then check one candidate value.

    Returns:
        (coerced value, None) on success, (None, failure message) otherwise
    """
    try:
        coerced = coerce_slot_value(value, slot.type)
    except ValueError as e:
        return None, str(e)

    error = check_validators(coerced, slot.validators)
    if error:
        return None, error
    return coerced, None
