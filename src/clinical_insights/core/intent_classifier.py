"""
LLM intent classification.

Asks the local model for the question's intent type, metrics and filter
phrases. Filters come back unmapped (no schema field or value); terminology
mapping fills them in where it can, and whatever stays unmapped is caught by
the unresolved-filter gate before direct generation.
"""

from typing import Any

import structlog

from clinical_insights.core.concept_expander import INTENT_KEYWORDS
from clinical_insights.core.llm_client import OllamaClient
from clinical_insights.core.llm_json import parse_json_response, validate_shape
from clinical_insights.core.logging_config import question_hash
from clinical_insights.core.resolution_models import IntentFilter, QueryIntent

logger = structlog.get_logger()

SYSTEM_PROMPT = """You classify analytical questions about clinical wound-care data.

Return JSON:
{
  "type": one of %s,
  "scope": "patient" | "wound" | "aggregate",
  "metrics": ["phrases naming what is measured, e.g. healing rate, area reduction"],
  "filters": [{"userPhrase": "phrase as the user wrote it", "operator": "equals"}],
  "confidence": 0.0-1.0,
  "reasoning": "one sentence"
}

Important:
- Copy filter phrases verbatim from the question
- Return an empty list when there are no metrics or filters"""


def intent_from_payload(payload: dict[str, Any]) -> QueryIntent:
    """Build a QueryIntent from a validated model reply."""
    filters: list[IntentFilter] = []
    for item in payload.get("filters") or []:
        if isinstance(item, str):
            item = {"userPhrase": item}
        if not isinstance(item, dict):
            continue
        phrase = str(item.get("userPhrase") or item.get("user_phrase") or "").strip()
        if not phrase:
            continue
        filters.append(
            IntentFilter(
                user_phrase=phrase,
                operator=str(item.get("operator") or "equals"),
                field=item.get("field"),
                value=item.get("value"),
                mapping_confidence=item.get("mappingConfidence"),
            )
        )

    confidence = payload.get("confidence")
    return QueryIntent(
        type=payload.get("type"),
        scope=payload.get("scope") or "aggregate",
        metrics=[str(m).strip() for m in payload.get("metrics") or [] if str(m).strip()],
        filters=filters,
        confidence=float(confidence) if isinstance(confidence, (int, float)) else 0.0,
        reasoning=payload.get("reasoning") or "",
    )


class OllamaIntentClassifier:
    """Intent classification over the local Ollama service."""

    def __init__(self, client: OllamaClient | None = None):
        self.client = client or OllamaClient()

    def classify(self, question: str, customer_id: str, model_id: str | None = None) -> QueryIntent:
        """
        Classify a question.

        Returns:
            QueryIntent; an unavailable model or malformed reply yields an empty
            intent with confidence 0.0
        """
        raw = self.client.generate(
            f"Question: {question}",
            system_prompt=SYSTEM_PROMPT % sorted(INTENT_KEYWORDS),
            json_mode=True,
            model=model_id,
        )
        payload = parse_json_response(raw)
        if not isinstance(payload, dict) or not validate_shape(payload, "intent").valid:
            logger.warning(
                "intent_classification_degraded",
                customer_id=customer_id,
                question_hash=question_hash(question),
            )
            return QueryIntent(reasoning="Intent classification unavailable")

        intent = intent_from_payload(payload)
        logger.info(
            "intent_classified",
            customer_id=customer_id,
            intent_type=intent.type,
            metrics=len(intent.metrics),
            filters=len(intent.filters),
            confidence=intent.confidence,
        )
        return intent
