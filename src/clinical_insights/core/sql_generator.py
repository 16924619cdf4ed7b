"""
LLM SQL generation over a context bundle.

The generative step answers in one of two modes: ready SQL, or a list of
ambiguous terms it wants the user to pin down. Replies are parsed with
llm_json and validated into GenerationResponse; anything else is a
GenerationError the orchestrator reports as a terminal failure.
"""

from collections.abc import Mapping

import structlog
from pydantic import ValidationError

from clinical_insights.core.generation_schemas import GenerationResponse
from clinical_insights.core.llm_client import OllamaClient
from clinical_insights.core.llm_json import parse_json_response, validate_shape
from clinical_insights.core.logging_config import question_hash
from clinical_insights.core.resolution_models import ContextBundle, FormInContext, GenerationError, IntentFilter

logger = structlog.get_logger()

SYSTEM_PROMPT = """You write read-only SQL for a clinical wound-care reporting schema.

Decide whether the question is clear enough to answer. If it is, return SQL.
If a term is ambiguous (e.g. "recent", "large", "improved"), ask for clarification
instead of guessing.

Return JSON in exactly one of these forms:

{
  "responseType": "sql",
  "generatedSql": "SELECT ... FROM rpt.<table> ...",
  "explanation": "one sentence",
  "confidence": 0.0-1.0,
  "assumptions": [{"term": "...", "assumedValue": "...", "reasoning": "..."}]
}

{
  "responseType": "clarification",
  "reasoning": "why the question is ambiguous",
  "clarifications": [
    {
      "id": "short_snake_case_id",
      "ambiguousTerm": "term from the question",
      "question": "question to show the user",
      "options": [{"id": "option_id", "label": "...", "sqlConstraint": "..."}],
      "allowCustom": true
    }
  ],
  "partialContext": {"intent": "...", "formsIdentified": [], "termsUnderstood": []}
}

Important:
- Only SELECT or WITH statements; never modify data
- Use the rpt.* reporting schema for all tables
- Do not ask again about anything listed under "User Clarifications"
- Return ONLY the JSON object"""


def format_filters_section(filters: list[IntentFilter]) -> list[str]:
    if not filters:
        return []

    resolved = [f for f in filters if f.field and f.value is not None]
    unresolved = [f for f in filters if not (f.field and f.value is not None)]
    lines = ["# Filters", ""]
    if resolved:
        lines.append("## Already Resolved (apply in the WHERE clause)")
        for f in resolved:
            lines.append(f'- {f.field} {f.operator} {f.value!r} (from "{f.user_phrase}")')
        lines.append("")
    if unresolved:
        lines.append("## Filters Without a Schema Mapping")
        for f in unresolved:
            lines.append(f'- "{f.user_phrase}" ({f.validation_warning or "unmapped"})')
        lines.append("")
    return lines


def format_forms_section(forms: list[FormInContext]) -> list[str]:
    if not forms:
        return []

    lines = ["# Available Forms", ""]
    for form in forms:
        lines.append(f"## {form.form_name}")
        if form.reason:
            lines.append(f"Reason: {form.reason}")
        for item in form.fields:
            lines.append(f"- {item.field_name} ({item.data_type or 'unknown'}, confidence {item.confidence:.2f})")
        lines.append("")
    return lines


def build_user_prompt(context: ContextBundle, clarification_answers: Mapping[str, str] | None = None) -> str:
    """
    Render the context bundle (and any user answers) as the generation prompt.

    Examples:
        >>> from clinical_insights.core.resolution_models import QueryIntent
        >>> "User Question" in build_user_prompt(ContextBundle(question="q", intent=QueryIntent()))
        True
    """
    intent = context.intent
    lines = [
        "# Question Context",
        "",
        f'**User Question:** "{context.question}"',
        "",
        "**Intent Analysis:**",
        f"- Type: {intent.type or 'unknown'}",
        f"- Scope: {intent.scope}",
        f"- Metrics: {', '.join(intent.metrics) or 'None'}",
        f"- Confidence: {intent.confidence:.2f}",
        "",
    ]
    lines.extend(format_filters_section(intent.filters))
    lines.extend(format_forms_section(context.forms))

    non_form = [r for r in context.fields if r.source == "non_form"]
    if non_form:
        lines.extend(["# Reporting Columns", ""])
        for result in non_form:
            lines.append(f"- {result.table_or_form_name}.{result.field_name} ({result.data_type})")
        lines.append("")

    if clarification_answers:
        lines.extend(["# User Clarifications", "", "The user has provided the following clarifications:", ""])
        for clarification_id, answer in clarification_answers.items():
            lines.append(f"- {clarification_id}: `{answer}`")
        lines.extend(
            [
                "",
                "You MUST incorporate these clarifications as constraints in your SQL query.",
                'Generate a SQL response (responseType: "sql"), NOT another clarification request.',
                "",
            ]
        )

    lines.extend(
        [
            "# Instructions",
            "",
            "Analyze the question and context above.",
            "Decide if you need clarification or can generate SQL directly.",
            "Return ONLY a valid JSON object matching the format defined in the system prompt.",
        ]
    )
    return "\n".join(lines).strip()


class OllamaSQLGenerator:
    """Generative step backed by the local Ollama service."""

    def __init__(self, client: OllamaClient | None = None):
        self.client = client or OllamaClient()

    def generate(
        self,
        context: ContextBundle,
        customer_id: str,
        model_id: str | None = None,
        clarification_answers: dict[str, str] | None = None,
    ) -> GenerationResponse:
        """
        Generate SQL (or a clarification request) for a context bundle.

        Raises:
            GenerationError: model unavailable, or reply missing/malformed
        """
        prompt = build_user_prompt(context, clarification_answers)
        raw = self.client.generate(prompt, system_prompt=SYSTEM_PROMPT, json_mode=True, model=model_id)
        if raw is None:
            raise GenerationError("SQL generation model is unavailable")

        payload = parse_json_response(raw)
        validation = validate_shape(payload, "generation")
        if not validation.valid:
            raise GenerationError("SQL generation reply is malformed: " + "; ".join(validation.errors))

        try:
            response = GenerationResponse.model_validate(payload)
        except ValidationError as e:
            raise GenerationError(f"SQL generation reply failed validation: {e.error_count()} error(s)") from e

        logger.info(
            "sql_generation_complete",
            customer_id=customer_id,
            question_hash=question_hash(context.question),
            response_type=response.response_type,
            clarifications=len(response.clarifications),
            answers=len(clarification_answers or {}),
        )
        return response
