"""
Pipeline composition.

Wires the resolution components and their default collaborators (Ollama for
generation and embeddings, SQLAlchemy for the template and semantic index
store) from the resolution config.
"""

from dataclasses import dataclass
from typing import Any

import structlog
from sqlalchemy import Engine

from clinical_insights.core.clarification_builder import ClarificationBuilder
from clinical_insights.core.concept_expander import ConceptExpander
from clinical_insights.core.config_loader import load_logging_config, load_resolution_config
from clinical_insights.core.context_discovery import ContextDiscovery
from clinical_insights.core.intent_classifier import OllamaIntentClassifier
from clinical_insights.core.llm_client import OllamaClient
from clinical_insights.core.logging_config import configure_logging
from clinical_insights.core.orchestrator import QueryOrchestrator
from clinical_insights.core.placeholder_resolver import PlaceholderResolver
from clinical_insights.core.search_cache import SemanticSearchCache
from clinical_insights.core.semantic_searcher import SemanticSearcher
from clinical_insights.core.sql_generator import OllamaSQLGenerator
from clinical_insights.core.template_catalog import TemplateCatalog, resolve_template_source
from clinical_insights.core.template_matcher import TemplateMatcher
from clinical_insights.storage import (
    SqlQueryExecutor,
    SqlSemanticIndexStore,
    SqlTemplateSource,
    create_engine_from_url,
    create_session_factory,
)

logger = structlog.get_logger()


@dataclass
class Pipeline:
    """Process-wide resolution components. Build once, close on shutdown."""

    config: dict[str, Any]
    catalog: TemplateCatalog
    matcher: TemplateMatcher
    searcher: SemanticSearcher
    resolver: PlaceholderResolver
    orchestrator: QueryOrchestrator

    def close(self) -> None:
        self.orchestrator.close()
        self.resolver.close()
        self.searcher.close()


def build_pipeline(
    config: dict[str, Any] | None = None,
    engine: Engine | None = None,
    start_sweeper: bool = True,
) -> Pipeline:
    """
    Build the pipeline.

    Args:
        config: Output of load_resolution_config(); loaded when None
        engine: Store engine; created from config["database_url"] when None
        start_sweeper: Start the semantic cache's background sweep
    """
    configure_logging(logging_config=load_logging_config())
    config = config or load_resolution_config()
    engine = engine or create_engine_from_url(config["database_url"])
    session_factory = create_session_factory(engine)
    index_store = SqlSemanticIndexStore(session_factory)

    client = OllamaClient(
        model=config["ollama_default_model"],
        base_url=config["ollama_base_url"],
        timeout=config["ollama_timeout_seconds"],
        embed_model=config["ollama_embed_model"],
    )

    cache = SemanticSearchCache(
        embedding_ttl_seconds=config["embedding_ttl_seconds"],
        results_ttl_seconds=config["results_ttl_seconds"],
    )
    if start_sweeper:
        cache.start_sweeper(config["cache_sweep_interval_seconds"])

    searcher = SemanticSearcher(
        index_store,
        embedder=client,
        cache=cache,
        min_confidence=config["search_min_confidence"],
        default_limit=config["search_default_limit"],
        timeout_seconds=config["search_timeout_seconds"],
        embedding_dimensions=config["embedding_dimensions"],
    )

    # Source left unset: AI_TEMPLATES_ENABLED is re-read on every catalog load
    catalog = TemplateCatalog(
        catalog_source=SqlTemplateSource(session_factory),
        live_by_default=config["ai_templates_enabled"],
    )
    matcher = TemplateMatcher(catalog, threshold=config["template_match_threshold"])
    resolver = PlaceholderResolver(
        index_store=index_store,
        clarification_builder=ClarificationBuilder(index_store),
        require_confirmation=config["enable_resolution_confirmations"],
        confirmation_threshold=config["confirmation_threshold"],
        lookup_timeout=config["search_timeout_seconds"],
    )
    discovery = ContextDiscovery(
        OllamaIntentClassifier(client),
        searcher,
        ConceptExpander(
            max_concepts=config["max_total_concepts"],
            max_phrase_freq=config["max_phrase_frequency"],
        ),
    )
    orchestrator = QueryOrchestrator(
        matcher,
        resolver,
        discovery,
        OllamaSQLGenerator(client),
        SqlQueryExecutor(engine),
        discovery_timeout=config["context_discovery_timeout_seconds"],
        generation_timeout=config["generation_timeout_seconds"],
        execution_timeout=config["execution_timeout_seconds"],
    )

    logger.info(
        "pipeline_built",
        template_source=resolve_template_source(default=catalog.live_by_default).value,
        confirmations=resolver.require_confirmation,
        ollama_model=client.model,
    )
    return Pipeline(
        config=config,
        catalog=catalog,
        matcher=matcher,
        searcher=searcher,
        resolver=resolver,
        orchestrator=orchestrator,
    )
