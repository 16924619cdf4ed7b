"""Pydantic models for the generative step's reply.

The generative model answers in JSON with camelCase keys; these models
validate that payload and are the only shape the orchestrator consumes.
"""

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

from clinical_insights.core.resolution_models import ClarificationOption, ClarificationRequest


class _GenerationModel(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True, alias_generator=to_camel)


class GeneratedOption(_GenerationModel):
    """One preset answer proposed by the model."""

    id: str = Field(..., description="Option identifier")
    label: str = Field(..., description="Text shown to the user")
    description: str | None = None
    sql_constraint: str | None = Field(None, description="SQL fragment applied when chosen")
    is_default: bool = False


class GeneratedClarification(_GenerationModel):
    """Ambiguous term the model wants the user to pin down."""

    id: str
    ambiguous_term: str
    question: str
    options: list[GeneratedOption] = Field(default_factory=list)
    allow_custom: bool = True

    def to_request(self) -> ClarificationRequest:
        rich_options = [
            ClarificationOption(
                label=option.label,
                value=option.id,
                description=option.description,
                sql_constraint=option.sql_constraint,
            )
            for option in self.options
        ]
        return ClarificationRequest(
            id=self.id,
            placeholder=self.ambiguous_term,
            ambiguous_term=self.ambiguous_term,
            prompt=self.question,
            options=[option.label for option in self.options] or None,
            rich_options=rich_options or None,
            freeform_allowed=None,
            reason="ambiguous_term",
            data_type="enum" if self.options else "text",
        )


class PartialContext(_GenerationModel):
    intent: str | None = None
    forms_identified: list[str] = Field(default_factory=list)
    terms_understood: list[str] = Field(default_factory=list)


class GenerationResponse(_GenerationModel):
    """Reply of the generative step: ready SQL, or a request for clarification."""

    response_type: Literal["sql", "clarification"]
    generated_sql: str | None = None
    explanation: str | None = None
    confidence: float | None = Field(None, ge=0.0, le=1.0)
    assumptions: list[dict[str, Any]] = Field(default_factory=list)
    clarifications: list[GeneratedClarification] = Field(default_factory=list)
    reasoning: str | None = None
    partial_context: PartialContext | None = None

    @model_validator(mode="after")
    def _check_payload_matches_type(self) -> "GenerationResponse":
        if self.response_type == "sql" and not (self.generated_sql or "").strip():
            raise ValueError("generatedSql is required when responseType is 'sql'")
        if self.response_type == "clarification" and not self.clarifications:
            raise ValueError("at least one clarification is required when responseType is 'clarification'")
        return self
