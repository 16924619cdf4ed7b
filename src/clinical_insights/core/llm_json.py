"""
LLM JSON parsing and validation.

Single choke point for turning model replies into Python objects. Parsing
never raises: malformed replies are logged and returned as None so callers
can decide whether that is fatal.
"""

import json
import re
from dataclasses import dataclass
from typing import Any

import structlog

logger = structlog.get_logger()

_CODE_FENCE = re.compile(r"^```(?:json)?\s*(.*?)\s*```$", re.DOTALL | re.IGNORECASE)


@dataclass
class ValidationResult:
    """Result of schema validation."""

    valid: bool
    errors: list[str]


def strip_code_fence(raw: str) -> str:
    """Remove a surrounding ```json fence if the model added one."""
    match = _CODE_FENCE.match(raw.strip())
    return match.group(1) if match else raw.strip()


def parse_json_response(raw: str | None) -> dict[str, Any] | list[Any] | None:
    """
    Parse raw LLM response into a dict or list.

    Args:
        raw: Raw model text (may be None, empty, fenced or malformed)

    Returns:
        Parsed dict/list, None otherwise

    Examples:
        >>> parse_json_response('{"type": "outcome_analysis"}')
        {'type': 'outcome_analysis'}
        >>> parse_json_response('not json') is None
        True
    """
    if raw is None or not raw.strip():
        logger.debug("llm_json_parse_empty")
        return None

    text = strip_code_fence(raw)
    try:
        parsed = json.loads(text)
    except json.JSONDecodeError as e:
        logger.warning(
            "llm_json_parse_failed",
            error=str(e),
            raw_length=len(raw),
            raw_preview=raw[:100],
        )
        return None

    if not isinstance(parsed, (dict, list)):
        logger.warning("llm_json_parse_unexpected_type", type=type(parsed).__name__)
        return None

    logger.debug("llm_json_parse_success", length=len(text))
    return parsed


# Required fields and expected types per reply kind
_SCHEMAS: dict[str, dict[str, Any]] = {
    "intent": {
        "required_fields": ["type"],
        "field_types": {
            "type": str,
            "scope": str,
            "metrics": list,
            "filters": list,
            "confidence": (int, float),
            "reasoning": str,
        },
    },
    "generation": {
        "required_fields": ["responseType"],
        "field_types": {
            "responseType": str,
            "generatedSql": (str, type(None)),
            "clarifications": list,
            "assumptions": list,
            "confidence": (int, float, type(None)),
        },
    },
}


def validate_shape(payload: dict[str, Any] | list[Any] | None, schema_name: str) -> ValidationResult:
    """
    Validate a parsed payload against a known reply schema.

    Examples:
        >>> validate_shape({"type": "outcome_analysis"}, "intent").valid
        True
        >>> validate_shape({"metrics": []}, "intent").valid
        False
    """
    if payload is None:
        return ValidationResult(valid=False, errors=["Payload is None"])

    if schema_name not in _SCHEMAS:
        return ValidationResult(
            valid=False,
            errors=[f"Unknown schema: {schema_name}. Available schemas: {list(_SCHEMAS.keys())}"],
        )

    if not isinstance(payload, dict):
        return ValidationResult(
            valid=False,
            errors=[f"Expected dict for schema '{schema_name}', got {type(payload).__name__}"],
        )

    schema = _SCHEMAS[schema_name]
    errors: list[str] = []
    for field in schema["required_fields"]:
        if field not in payload:
            errors.append(f"Missing required field: {field}")
    for field, expected_type in schema["field_types"].items():
        if field in payload and not isinstance(payload[field], expected_type):
            errors.append(
                f"Field '{field}' has wrong type: expected {expected_type}, got {type(payload[field]).__name__}"
            )

    if errors:
        logger.warning("llm_json_validation_failed", schema=schema_name, errors=errors, payload_keys=list(payload))
        return ValidationResult(valid=False, errors=errors)

    logger.debug("llm_json_validation_success", schema=schema_name)
    return ValidationResult(valid=True, errors=[])
