"""
Context discovery: intent -> concepts -> semantic search -> ContextBundle.

Feeds the direct-generation path. Classification and concept expansion are
local to the request; the semantic search goes through the shared searcher
and its cache.
"""

from collections import defaultdict

import structlog

from clinical_insights.core.collaborators import IntentClassifier
from clinical_insights.core.concept_expander import ConceptExpander
from clinical_insights.core.resolution_models import (
    ContextBundle,
    FieldInContext,
    FormInContext,
    SemanticSearchResult,
)
from clinical_insights.core.semantic_searcher import SemanticSearcher

logger = structlog.get_logger()


def group_form_results(results: list[SemanticSearchResult]) -> list[FormInContext]:
    """Form hits grouped by form name, forms in order of their best hit."""
    grouped: dict[str, list[SemanticSearchResult]] = defaultdict(list)
    for result in results:
        if result.source == "form" and result.table_or_form_name:
            grouped[result.table_or_form_name].append(result)

    forms = []
    for form_name, hits in grouped.items():
        concepts = sorted({hit.semantic_concept for hit in hits if hit.semantic_concept})
        forms.append(
            FormInContext(
                form_name=form_name,
                reason=f"Matched concepts: {', '.join(concepts)}" if concepts else "",
                fields=[
                    FieldInContext(
                        field_name=hit.field_name,
                        data_type=hit.data_type,
                        semantic_concept=hit.semantic_concept,
                        field_id=hit.id,
                        confidence=hit.confidence,
                    )
                    for hit in hits
                ],
            )
        )
    forms.sort(key=lambda form: max(f.confidence for f in form.fields), reverse=True)
    return forms


def overall_confidence(intent_confidence: float, results: list[SemanticSearchResult]) -> float:
    """Mean of intent confidence and the average search confidence (intent alone when nothing matched)."""
    if not results:
        return round(intent_confidence * 0.5, 4)
    search_confidence = sum(r.confidence for r in results) / len(results)
    return round((intent_confidence + search_confidence) / 2, 4)


class ContextDiscovery:
    def __init__(
        self,
        intent_classifier: IntentClassifier,
        searcher: SemanticSearcher,
        expander: ConceptExpander | None = None,
        include_non_form: bool = True,
    ):
        self.intent_classifier = intent_classifier
        self.searcher = searcher
        self.expander = expander or ConceptExpander()
        self.include_non_form = include_non_form

    def discover(self, question: str, customer_id: str, model_id: str | None = None) -> ContextBundle:
        """
        Build the context bundle for a question.

        Search failures propagate; the orchestrator turns them into an error result.
        """
        intent = self.intent_classifier.classify(question, customer_id, model_id)
        expanded = self.expander.expand(intent.type, intent.metrics, intent.filters)

        results: list[SemanticSearchResult] = []
        if expanded.concepts:
            results = self.searcher.search(customer_id, expanded.texts, include_non_form=self.include_non_form)
        else:
            logger.info("context_discovery_no_concepts", customer_id=customer_id, intent_type=intent.type)

        bundle = ContextBundle(
            question=question,
            intent=intent,
            concepts=list(expanded.concepts),
            forms=group_form_results(results),
            fields=results,
            overall_confidence=overall_confidence(intent.confidence, results),
        )
        logger.info(
            "context_discovery_complete",
            customer_id=customer_id,
            concepts=len(bundle.concepts),
            forms=len(bundle.forms),
            fields=len(bundle.fields),
            overall_confidence=bundle.overall_confidence,
        )
        return bundle
