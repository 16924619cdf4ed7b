"""
Template validation.

Errors reject the template (and with it the whole catalog load): missing
name, missing/invalid version, missing SQL pattern, write/DDL/procedure
keywords, malformed slot specs. Warnings are reported but never reject:
placeholder declaration mismatches, non-SELECT patterns, missing schema
prefix, missing slot spec.
"""

import re
from collections.abc import Sequence
from dataclasses import dataclass, field

import structlog

from clinical_insights.core.resolution_models import CatalogValidationError
from clinical_insights.core.template_schemas import SlotRecord, TemplateRecord

logger = structlog.get_logger()

PLACEHOLDER_PATTERN = re.compile(r"\{([a-zA-Z0-9_\[\]?]+)\}")

DANGEROUS_KEYWORDS = (
    "DROP",
    "DELETE",
    "UPDATE",
    "INSERT",
    "TRUNCATE",
    "ALTER",
    "CREATE",
    "EXEC",
    "EXECUTE",
    "SP_",
    "XP_",
)
_DANGEROUS_PATTERNS = {
    keyword: re.compile(rf"\b{keyword}\w*" if keyword.endswith("_") else rf"\b{keyword}\b", re.IGNORECASE)
    for keyword in DANGEROUS_KEYWORDS
}

ALLOWED_SLOT_TYPES = frozenset({"guid", "int", "string", "date", "boolean", "float", "decimal", "number"})
_VALIDATOR_RULE = re.compile(r"^(non-empty|(min|max):-?\d+(\.\d+)?)$")
_FROM_OR_JOIN = re.compile(r"\b(FROM|JOIN)\b", re.IGNORECASE)
_SCHEMA_PREFIX = re.compile(r"\brpt\.", re.IGNORECASE)


@dataclass
class TemplateValidationResult:
    """Result of validating one template."""

    valid: bool
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)


def normalize_placeholder_name(name: str) -> str:
    return re.sub(r"[\[\]?]", "", name.strip())


def parse_version(value: object) -> int | None:
    """Positive integer version, or None if missing/invalid."""
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(str(value).strip())
    except ValueError:
        return None
    if number < 1 or number != int(number):
        return None
    return int(number)


def _label(record: TemplateRecord) -> str:
    return f"Template '{record.name}'" if record.name else f"Template #{record.id or '?'}"


def find_dangerous_keywords(sql: str) -> list[str]:
    return [keyword for keyword, pattern in _DANGEROUS_PATTERNS.items() if pattern.search(sql)]


def validate_template(record: TemplateRecord) -> TemplateValidationResult:
    """
    Validate one normalized template row.

    Args:
        record: Normalized template row

    Returns:
        TemplateValidationResult with error and warning messages
    """
    errors: list[str] = []
    warnings: list[str] = []
    label = _label(record)

    if not record.name:
        errors.append(f"{label}: name is required.")
    if record.version is None:
        errors.append(f"{label}: version is required.")
    elif parse_version(record.version) is None:
        errors.append(f"{label}: version '{record.version}' must be a positive integer.")
    if not record.sql_pattern:
        errors.append(f"{label}: sqlPattern is required.")
    else:
        _check_safety(record.sql_pattern, label, errors, warnings)
        _check_placeholders(record, label, warnings)
        if _FROM_OR_JOIN.search(record.sql_pattern) and not _SCHEMA_PREFIX.search(record.sql_pattern):
            warnings.append(f"{label}: tables referenced in sqlPattern are missing the 'rpt.' schema prefix.")

    _check_slots(record.placeholders_spec, label, errors, warnings)

    return TemplateValidationResult(valid=not errors, errors=errors, warnings=warnings)


def _check_safety(sql: str, label: str, errors: list[str], warnings: list[str]) -> None:
    for keyword in find_dangerous_keywords(sql):
        errors.append(f"{label}: sqlPattern contains potentially dangerous keyword '{keyword}'.")

    upper = sql.lstrip().upper()
    if not (upper.startswith("SELECT") or upper.startswith("WITH")):
        warnings.append(f"{label}: sqlPattern does not start with SELECT or WITH; it will be treated as a fragment.")


def _check_placeholders(record: TemplateRecord, label: str, warnings: list[str]) -> None:
    declared: dict[str, str] = {}
    for name in record.placeholders:
        declared.setdefault(normalize_placeholder_name(name), name)
    for slot in record.placeholders_spec or []:
        if slot.name:
            declared.setdefault(normalize_placeholder_name(slot.name), slot.name)

    referenced = {normalize_placeholder_name(m) for m in PLACEHOLDER_PATTERN.findall(record.sql_pattern or "")}

    for name in sorted(referenced - declared.keys()):
        warnings.append(f"{label}: placeholder '{{{name}}}' is used in sqlPattern but not declared.")
    for key, original in declared.items():
        if key not in referenced:
            warnings.append(f"{label}: placeholder '{{{original}}}' is declared but not used in sqlPattern.")


def _check_slots(
    slots: Sequence[SlotRecord] | None,
    label: str,
    errors: list[str],
    warnings: list[str],
) -> None:
    if slots is None:
        warnings.append(f"{label}: placeholdersSpec missing; slots will be resolved by name heuristics only.")
        return

    seen: set[str] = set()
    for index, slot in enumerate(slots, start=1):
        prefix = f"{label} slot #{index}"
        if not slot.name:
            errors.append(f"{prefix}: name is required for each placeholder slot.")
            continue
        if slot.name in seen:
            errors.append(f"{prefix}: duplicate slot name '{slot.name}'.")
        seen.add(slot.name)

        if slot.type and slot.type.lower() not in ALLOWED_SLOT_TYPES:
            warnings.append(f"{prefix}: type '{slot.type}' is not one of {', '.join(sorted(ALLOWED_SLOT_TYPES))}.")
        for rule in slot.validators:
            if not _VALIDATOR_RULE.match(rule):
                warnings.append(f"{prefix}: validator '{rule}' is not recognized and will be ignored.")
        for pattern in slot.patterns:
            try:
                re.compile(pattern)
            except re.error as e:
                errors.append(f"{prefix}: pattern '{pattern}' is not a valid regex ({e}).")


def validate_catalog(records: Sequence[TemplateRecord], source: str) -> list[str]:
    """
    Validate every template of a catalog load.

    Returns:
        Aggregated warnings

    Raises:
        CatalogValidationError: if any template has errors (whole load rejected)
    """
    errors: list[str] = []
    warnings: list[str] = []
    for record in records:
        result = validate_template(record)
        errors.extend(result.errors)
        warnings.extend(result.warnings)

    if warnings:
        logger.warning("template_catalog_warnings", source=source, count=len(warnings), warnings=warnings[:10])
    if errors:
        logger.error("template_catalog_rejected", source=source, errors=errors)
        raise CatalogValidationError(errors, warnings)

    return warnings
