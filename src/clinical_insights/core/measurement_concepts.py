"""
Canonical measurement/time concept vocabulary.

Shared by concept expansion and semantic search so that phrasings such as
"rate of healing" and "healing rate" resolve to the same canonical key.
"""

import re

MEASUREMENT_CONCEPT_SYNONYMS: dict[str, tuple[str, ...]] = {
    "percent_area_reduction": (
        "percent area reduction",
        "percentage area reduction",
        "area reduction",
        "area change",
        "reduction in area",
        "wound size reduction",
        "reduction in wound size",
    ),
    "healing_rate": (
        "healing rate",
        "rate of healing",
        "wound healing rate",
        "speed of healing",
    ),
    "time_to_closure": (
        "time to closure",
        "time to heal",
        "time until healed",
        "time from baseline to closure",
        "days to closure",
        "weeks to closure",
    ),
    "measurement_date": (
        "measurement date",
        "date of measurement",
        "assessment date",
        "baseline date",
        "timepoint",
        "time point",
        "at 12 weeks",
        "at 52 weeks",
        "days from baseline",
    ),
}

_NON_WORD = re.compile(r"[^a-z0-9\s%]")
_WHITESPACE = re.compile(r"\s+")


def normalize_phrase(phrase: str) -> str:
    """Lower-case, strip punctuation, collapse whitespace."""
    return _WHITESPACE.sub(" ", _NON_WORD.sub(" ", phrase.lower())).strip()


# Normalized once at import; the synonym table is static
_NORMALIZED_SYNONYMS: list[tuple[str, str]] = [
    (key, normalize_phrase(synonym))
    for key, synonyms in MEASUREMENT_CONCEPT_SYNONYMS.items()
    for synonym in synonyms
]


def to_measurement_concept_key(phrase: str | None) -> str | None:
    """
    Map a phrase to its canonical measurement concept key.

    A phrase matches when its normalized form equals or contains a normalized
    synonym. Keys are tried in declaration order.

    Examples:
        >>> to_measurement_concept_key("Rate of Healing")
        'healing_rate'
        >>> to_measurement_concept_key("mean wound area reduction at 12 weeks")
        'percent_area_reduction'
        >>> to_measurement_concept_key("patient count") is None
        True
    """
    if not phrase or not phrase.strip():
        return None

    normalized = normalize_phrase(phrase)
    for key, synonym in _NORMALIZED_SYNONYMS:
        if synonym and (normalized == synonym or synonym in normalized):
            return key
    return None
