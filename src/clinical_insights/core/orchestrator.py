"""
Query Orchestrator.

Routes a question through the resolution modes in priority order:

1. template: a pre-approved template matches and every slot resolves
2. direct: context discovery plus the generative step
3. clarification: a template slot, an unresolved filter or the generative
   step needs input from the user

Terminal failures (context discovery, search, generation, execution) come
back as mode="error" results with no SQL; they are never raised to the caller.
"""

import time
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from typing import Any, TypeVar

import structlog

from clinical_insights.core.clarification_builder import minimal_clarification
from clinical_insights.core.collaborators import ContextDiscoverer, QueryExecutor, SQLGenerator
from clinical_insights.core.complexity import ComplexityAnalysis, analyze_complexity
from clinical_insights.core.filter_gate import (
    apply_filter_answers,
    build_filter_metrics,
    build_unresolved_filter_clarification,
)
from clinical_insights.core.logging_config import question_hash
from clinical_insights.core.placeholder_resolver import PlaceholderResolver
from clinical_insights.core.resolution_config import (
    CONTEXT_DISCOVERY_TIMEOUT_SECONDS,
    EXECUTION_TIMEOUT_SECONDS,
    GENERATION_TIMEOUT_SECONDS,
)
from clinical_insights.core.resolution_models import (
    ClarificationRequest,
    ContextBundle,
    OrchestrationResult,
    QueryTemplate,
    ResolutionError,
    ThinkingStep,
)
from clinical_insights.core.template_matcher import TemplateMatcher

logger = structlog.get_logger()

T = TypeVar("T")

# Templates are pre-approved, simple queries
TEMPLATE_COMPLEXITY_SCORE = 2


def _start_step(thinking: list[ThinkingStep], step_id: str, message: str) -> tuple[ThinkingStep, float]:
    step = ThinkingStep(id=step_id, status="running", message=message)
    thinking.append(step)
    return step, time.perf_counter()


def _finish_step(
    step: ThinkingStep,
    started: float,
    message: str | None = None,
    details: dict[str, Any] | None = None,
    status: str = "complete",
) -> None:
    step.status = status
    step.duration_ms = round((time.perf_counter() - started) * 1000, 2)
    if message is not None:
        step.message = message
    if details is not None:
        step.details = details


class QueryOrchestrator:
    """
    Three-mode query orchestrator.

    Args:
        matcher: Template matcher over the catalog
        resolver: Placeholder resolution cascade
        discoverer: Builds the context bundle for direct generation
        generator: Generative step (SQL or clarification)
        executor: Runs SQL against the customer's data
    """

    def __init__(
        self,
        matcher: TemplateMatcher,
        resolver: PlaceholderResolver,
        discoverer: ContextDiscoverer,
        generator: SQLGenerator,
        executor: QueryExecutor,
        discovery_timeout: float = CONTEXT_DISCOVERY_TIMEOUT_SECONDS,
        generation_timeout: float = GENERATION_TIMEOUT_SECONDS,
        execution_timeout: float = EXECUTION_TIMEOUT_SECONDS,
        max_workers: int = 4,
    ):
        self.matcher = matcher
        self.resolver = resolver
        self.discoverer = discoverer
        self.generator = generator
        self.executor = executor
        self.discovery_timeout = discovery_timeout
        self.generation_timeout = generation_timeout
        self.execution_timeout = execution_timeout
        self._pool = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="orchestrator")

    def ask(
        self,
        question: str,
        customer_id: str,
        model_id: str | None = None,
        slot_overrides: dict[str, Any] | None = None,
    ) -> OrchestrationResult:
        """
        Answer a question.

        Args:
            question: User question
            customer_id: Customer scope
            model_id: Generation model override
            slot_overrides: Confirmed or clarified template slot values from a previous pass
        """
        thinking: list[ThinkingStep] = []
        logger.info("orchestration_started", customer_id=customer_id, question_hash=question_hash(question))

        step, started = _start_step(thinking, "template_match", "Checking for matching template...")
        try:
            match = self.matcher.match_template(question)
        except ResolutionError as e:
            logger.warning("template_match_failed", customer_id=customer_id, error=str(e))
            _finish_step(
                step, started, message="Template catalog unavailable, using semantic discovery", status="error"
            )
        else:
            if match.matched and match.template is not None:
                _finish_step(
                    step,
                    started,
                    details={
                        "templateName": match.template.name,
                        "confidence": match.confidence,
                        "matchedKeywords": match.matched_keywords,
                    },
                )
                result = self._execute_template(question, customer_id, match.template, thinking, slot_overrides)
                if result is not None:
                    return result
            else:
                _finish_step(
                    step,
                    started,
                    message="No template match found, using semantic discovery",
                    details={"confidence": match.confidence},
                )

        complexity = self._check_complexity(question, thinking)
        return self._execute_direct(question, customer_id, thinking, complexity, model_id)

    def ask_with_clarifications(
        self,
        question: str,
        customer_id: str,
        clarifications: dict[str, str],
        model_id: str | None = None,
    ) -> OrchestrationResult:
        """Re-run direct generation with the user's clarification answers merged in."""
        thinking: list[ThinkingStep] = []
        step, started = _start_step(thinking, "apply_clarifications", "Applying your selections...")
        _finish_step(step, started, details={"clarificationsApplied": len(clarifications or {})})

        complexity = analyze_complexity(question)
        return self._execute_direct(question, customer_id, thinking, complexity, model_id, clarifications)

    def close(self) -> None:
        self._pool.shutdown(wait=False, cancel_futures=True)

    # ------------------------------------------------------------------
    # Template mode
    # ------------------------------------------------------------------

    def _execute_template(
        self,
        question: str,
        customer_id: str,
        template: QueryTemplate,
        thinking: list[ThinkingStep],
        slot_overrides: dict[str, Any] | None,
    ) -> OrchestrationResult | None:
        """Run a matched template; None when its slots do not all resolve."""
        step, started = _start_step(thinking, "template_execute", f"Executing template: {template.name}")
        resolution = self.resolver.resolve(question, template, customer_id=customer_id, overrides=slot_overrides)

        if resolution.clarifications:
            _finish_step(
                step,
                started,
                message="Template placeholders unresolved, using semantic discovery",
                details={"missingPlaceholders": resolution.missing_placeholders, "confidence": resolution.confidence},
            )
            logger.info(
                "template_resolution_incomplete",
                template=template.name,
                missing=resolution.missing_placeholders,
            )
            return None

        if resolution.confirmations:
            _finish_step(
                step,
                started,
                message="Please confirm the detected values",
                details={"confirmations": len(resolution.confirmations)},
            )
            return OrchestrationResult(
                mode="clarification",
                question=question,
                thinking=thinking,
                confirmations=resolution.confirmations,
                template_name=template.name,
                placeholder_resolution=resolution,
            )

        try:
            results = self._call_with_timeout(
                lambda: self.executor.execute(resolution.filled_sql, customer_id),
                self.execution_timeout,
            )
        except Exception as e:
            _finish_step(step, started, message=f"Template execution failed: {e}", status="error")
            return self._error_result(question, thinking, customer_id, "template_execute", e)

        _finish_step(
            step,
            started,
            details={"placeholders": resolution.values, "confidence": resolution.confidence},
        )
        logger.info("template_executed", template=template.name, rows=len(results.rows))
        return OrchestrationResult(
            mode="template",
            question=question,
            thinking=thinking,
            sql=resolution.filled_sql,
            results=results,
            template_name=template.name,
            placeholder_resolution=resolution,
            complexity_score=TEMPLATE_COMPLEXITY_SCORE,
            execution_strategy="auto",
            requires_preview=False,
            filter_metrics=build_filter_metrics([]),
        )

    # ------------------------------------------------------------------
    # Direct mode
    # ------------------------------------------------------------------

    def _check_complexity(self, question: str, thinking: list[ThinkingStep]) -> ComplexityAnalysis:
        step, started = _start_step(thinking, "complexity_check", "Analyzing question complexity...")
        complexity = analyze_complexity(question)
        _finish_step(
            step,
            started,
            message=f"{complexity.complexity.capitalize()} query ({complexity.score}/10), using direct semantic mode",
            details={
                "complexity": complexity.complexity,
                "score": complexity.score,
                "strategy": complexity.strategy,
                "reasons": complexity.reasons,
            },
        )
        return complexity

    def _execute_direct(
        self,
        question: str,
        customer_id: str,
        thinking: list[ThinkingStep],
        complexity: ComplexityAnalysis,
        model_id: str | None = None,
        clarifications: dict[str, str] | None = None,
    ) -> OrchestrationResult:
        step, started = _start_step(thinking, "context_discovery", "Discovering semantic context...")
        try:
            context = self._call_with_timeout(
                lambda: self.discoverer.discover(question, customer_id, model_id),
                self.discovery_timeout,
            )
        except Exception as e:
            _finish_step(step, started, message=f"Context discovery failed: {e}", status="error")
            return self._error_result(question, thinking, customer_id, "context_discovery", e)

        if context.intent.type is None and not context.intent.confidence:
            message = context.intent.reasoning or "Intent classification failed"
            _finish_step(step, started, message=message, status="error")
            error = ResolutionError(f"Unable to understand the question: {message}")
            return self._error_result(question, thinking, customer_id, "context_discovery", error)

        _finish_step(
            step,
            started,
            details={
                "formsFound": len(context.forms),
                "fieldsFound": len(context.fields),
                "joinPaths": len(context.join_paths),
            },
        )

        step, started = _start_step(thinking, "sql_generation", "Generating SQL query...")
        disposition = apply_filter_answers(context.intent.filters, clarifications)
        context.intent.filters = disposition.active_filters
        filter_metrics = build_filter_metrics(disposition.active_filters, unresolved_warnings=len(disposition.pending))

        if disposition.pending:
            _finish_step(
                step,
                started,
                message="Clarification needed",
                details={"unresolvedFilters": len(disposition.pending)},
            )
            logger.info(
                "unresolved_filters_blocking_generation",
                customer_id=customer_id,
                unresolved=len(disposition.pending),
                removed=disposition.removed,
            )
            return OrchestrationResult(
                mode="clarification",
                question=question,
                thinking=thinking,
                clarifications=[
                    self._safe_clarification(build_unresolved_filter_clarification, entry, entry.filter.user_phrase)
                    for entry in disposition.pending
                ],
                clarification_reasoning="Some filters could not be matched to your data",
                filter_metrics=filter_metrics,
                **self._complexity_fields(complexity),
            )

        forwarded = disposition.forwarded_answers or None
        try:
            response = self._call_with_timeout(
                lambda: self.generator.generate(context, customer_id, model_id, forwarded),
                self.generation_timeout,
            )
        except Exception as e:
            _finish_step(step, started, message=f"SQL generation failed: {e}", status="error")
            return self._error_result(question, thinking, customer_id, "sql_generation", e)

        if response.response_type == "clarification":
            _finish_step(
                step,
                started,
                message="Clarification needed",
                details={"clarificationsRequested": len(response.clarifications)},
            )
            return OrchestrationResult(
                mode="clarification",
                question=question,
                thinking=thinking,
                clarifications=[
                    self._safe_clarification(lambda c: c.to_request(), item, item.ambiguous_term)
                    for item in response.clarifications
                ],
                clarification_reasoning=response.reasoning,
                partial_context=(
                    response.partial_context.model_dump(by_alias=True) if response.partial_context else None
                ),
                filter_metrics=filter_metrics,
                **self._complexity_fields(complexity),
            )

        _finish_step(
            step,
            started,
            details={"confidence": response.confidence, "assumptions": len(response.assumptions)},
        )

        sql = response.generated_sql
        step, started = _start_step(thinking, "execute_query", "Executing query...")
        try:
            results = self._call_with_timeout(lambda: self.executor.execute(sql, customer_id), self.execution_timeout)
        except Exception as e:
            _finish_step(step, started, message=f"Query execution failed: {e}", status="error")
            return self._error_result(question, thinking, customer_id, "execute_query", e)
        _finish_step(step, started, details={"rowCount": len(results.rows)})

        logger.info(
            "direct_query_complete",
            customer_id=customer_id,
            rows=len(results.rows),
            complexity=complexity.complexity,
        )
        return OrchestrationResult(
            mode="direct",
            question=question,
            thinking=thinking,
            sql=sql,
            results=results,
            context=self._context_summary(context, forwarded),
            assumptions=response.assumptions,
            filter_metrics=filter_metrics,
            **self._complexity_fields(complexity),
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _call_with_timeout(self, fn: Callable[[], T], timeout: float) -> T:
        future = self._pool.submit(fn)
        try:
            return future.result(timeout=timeout)
        except TimeoutError:
            future.cancel()
            raise TimeoutError(f"did not complete within {timeout}s") from None

    def _safe_clarification(
        self, build: Callable[[Any], ClarificationRequest], item: Any, term: str | None
    ) -> ClarificationRequest:
        try:
            return build(item)
        except Exception as e:
            logger.warning("clarification_build_failed", term=term, error=str(e))
            return minimal_clarification(term or "your question")

    def _error_result(
        self,
        question: str,
        thinking: list[ThinkingStep],
        customer_id: str,
        stage: str,
        error: Exception,
    ) -> OrchestrationResult:
        logger.error(
            "orchestration_failed",
            customer_id=customer_id,
            stage=stage,
            error=str(error),
            exc_info=error,
        )
        return OrchestrationResult(mode="error", question=question, thinking=thinking, error=f"{stage}: {error}")

    @staticmethod
    def _complexity_fields(complexity: ComplexityAnalysis) -> dict[str, Any]:
        return {
            "complexity_score": complexity.score,
            "execution_strategy": complexity.strategy,
            "requires_preview": complexity.requires_preview,
        }

    @staticmethod
    def _context_summary(context: ContextBundle, answers: dict[str, str] | None) -> dict[str, Any]:
        return {
            "intent": context.intent.type,
            "forms": [form.form_name for form in context.forms],
            "fields": [result.field_name for result in context.fields],
            "joinPaths": context.join_paths,
            "clarificationsProvided": answers,
        }
