"""Pydantic models for raw template rows.

Rows arrive from the live store (snake_case or camelCase columns) or from the
static YAML bundle. These models normalize list fields (trim, drop blanks,
de-duplicate) but deliberately keep every required field optional so the
validator can report what is missing instead of failing on parse.
"""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


def _clean_strings(value: Any) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str):
        value = [value]
    cleaned: list[str] = []
    for item in value:
        if item is None:
            continue
        text = str(item).strip()
        if text and text not in cleaned:
            cleaned.append(text)
    return cleaned


class SlotRecord(BaseModel):
    """One entry of placeholdersSpec.slots."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    name: str | None = None
    type: str | None = None
    semantic: str | None = None
    required: bool = True
    default: Any = None
    validators: list[str] = Field(default_factory=list)
    examples: list[str] = Field(default_factory=list)
    description: str | None = None
    patterns: list[str] = Field(default_factory=list)

    @field_validator("required", mode="before")
    @classmethod
    def _required_default(cls, value: Any) -> bool:
        return True if value is None else value

    @field_validator("validators", "examples", "patterns", mode="before")
    @classmethod
    def _normalize_lists(cls, value: Any) -> list[str]:
        return _clean_strings(value)

    @field_validator("name", "semantic", "type", mode="before")
    @classmethod
    def _strip(cls, value: Any) -> str | None:
        if value is None:
            return None
        text = str(value).strip()
        return text or None


class TemplateRecord(BaseModel):
    """Normalized but not yet validated template row."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True, alias_generator=to_camel)

    id: str | None = None
    name: str | None = None
    description: str | None = None
    version: Any = None
    sql_pattern: str | None = None
    placeholders: list[str] = Field(default_factory=list)
    placeholders_spec: list[SlotRecord] | None = None
    keywords: list[str] = Field(default_factory=list)
    tags: list[str] = Field(default_factory=list)
    question_examples: list[str] = Field(default_factory=list)
    intent: str | None = None
    status: str = "Approved"
    success_count: int = 0
    usage_count: int = 0

    @field_validator("placeholders", "tags", "question_examples", mode="before")
    @classmethod
    def _normalize_lists(cls, value: Any) -> list[str]:
        return _clean_strings(value)

    @field_validator("keywords", mode="before")
    @classmethod
    def _normalize_keywords(cls, value: Any) -> list[str]:
        return _clean_strings([k.lower() if isinstance(k, str) else k for k in (value or [])])

    @field_validator("id", mode="before")
    @classmethod
    def _id_to_str(cls, value: Any) -> str | None:
        return None if value is None else str(value)

    @field_validator("name", "sql_pattern", "intent", "description", mode="before")
    @classmethod
    def _strip(cls, value: Any) -> str | None:
        if value is None:
            return None
        text = str(value).strip()
        return text or None

    @field_validator("status", mode="before")
    @classmethod
    def _default_status(cls, value: Any) -> str:
        text = str(value).strip() if value is not None else ""
        return text or "Approved"

    @field_validator("success_count", "usage_count", mode="before")
    @classmethod
    def _non_negative(cls, value: Any) -> int:
        try:
            return max(int(value or 0), 0)
        except (TypeError, ValueError):
            return 0

    @field_validator("placeholders_spec", mode="before")
    @classmethod
    def _spec_to_slots(cls, value: Any) -> list[dict[str, Any]] | None:
        """
        Accept {"slots": [...]} or a mapping of placeholder name to slot spec.
        """
        if value is None:
            return None
        if isinstance(value, dict):
            if "slots" in value:
                return value["slots"] or []
            return [
                {"name": name, **(spec or {})}
                for name, spec in value.items()
                if spec is None or isinstance(spec, dict)
            ]
        return value

    @property
    def success_rate(self) -> float | None:
        if self.usage_count > 0:
            return self.success_count / self.usage_count
        return None
