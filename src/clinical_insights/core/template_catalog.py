"""
Template Catalog - loads, validates and caches query templates.

Templates come from the live template store or from the static bundle shipped
with the package. The source is resolved from the AI_TEMPLATES_ENABLED toggle
at call time and passed explicitly into load(), so flipping the toggle takes
effect on the next load without a restart. Snapshots are cached per source.

Failure semantics:
- Live store empty or unavailable: fall back to the static bundle (warn once).
- Validation errors: the whole load is rejected (CatalogValidationError).
"""

import os
import threading
from dataclasses import dataclass, field
from enum import Enum
from functools import cached_property
from pathlib import Path
from typing import Any

import structlog
import yaml
from pydantic import ValidationError

from clinical_insights.core.collaborators import CatalogSource
from clinical_insights.core.resolution_models import (
    CatalogSourceError,
    CatalogValidationError,
    PlaceholderSlot,
    QueryTemplate,
)
from clinical_insights.core.template_schemas import TemplateRecord
from clinical_insights.core.template_validator import (
    PLACEHOLDER_PATTERN,
    normalize_placeholder_name,
    parse_version,
    validate_catalog,
)

logger = structlog.get_logger()

STATIC_TEMPLATES_PATH = Path(__file__).parent / "data" / "query_templates.yaml"


class TemplateSource(str, Enum):
    DB = "db"
    STATIC = "static"


def resolve_template_source(enabled: bool | None = None, default: bool = False) -> TemplateSource:
    """
    Resolve the catalog source from the feature toggle.

    Args:
        enabled: Explicit toggle; None reads AI_TEMPLATES_ENABLED now
        default: Toggle used when AI_TEMPLATES_ENABLED is unset
    """
    if enabled is None:
        raw = os.getenv("AI_TEMPLATES_ENABLED")
        enabled = default if raw is None else raw.strip().lower() == "true"
    return TemplateSource.DB if enabled else TemplateSource.STATIC


def to_query_template(record: TemplateRecord) -> QueryTemplate:
    """Convert a validated record into the immutable domain template."""
    slots = tuple(
        PlaceholderSlot(
            name=slot.name,
            type=(slot.type or "string").lower(),
            semantic=slot.semantic,
            required=slot.required,
            default=slot.default,
            validators=tuple(slot.validators),
            examples=tuple(slot.examples),
            description=slot.description,
            patterns=tuple(slot.patterns),
        )
        for slot in (record.placeholders_spec or [])
        if slot.name
    )

    # Slot names win; otherwise the declared list, otherwise what the pattern uses
    if slots:
        placeholders = tuple(slot.name for slot in slots)
    elif record.placeholders:
        placeholders = tuple(dict.fromkeys(normalize_placeholder_name(p) for p in record.placeholders))
    else:
        placeholders = tuple(
            dict.fromkeys(normalize_placeholder_name(p) for p in PLACEHOLDER_PATTERN.findall(record.sql_pattern or ""))
        )

    return QueryTemplate(
        id=record.id,
        name=record.name or "",
        description=record.description,
        sql_pattern=record.sql_pattern or "",
        version=parse_version(record.version) or 1,
        placeholders=placeholders,
        slots=slots,
        keywords=tuple(record.keywords),
        tags=tuple(record.tags),
        question_examples=tuple(record.question_examples),
        intent=record.intent,
        status=record.status,
        success_count=record.success_count,
        usage_count=record.usage_count,
        success_rate=_clamp01(record.success_rate),
    )


def _clamp01(value: float | None) -> float | None:
    if value is None:
        return None
    return min(max(value, 0.0), 1.0)


def parse_template_rows(rows: list[dict[str, Any]], source: str) -> list[TemplateRecord]:
    """Normalize raw rows. Rows that cannot be parsed at all are validation errors."""
    records: list[TemplateRecord] = []
    errors: list[str] = []
    for index, row in enumerate(rows, start=1):
        try:
            records.append(TemplateRecord.model_validate(row))
        except ValidationError as e:
            label = row.get("name") if isinstance(row, dict) else None
            errors.append(f"Template '{label or f'#{index}'}': malformed row ({e.error_count()} field errors).")

    if errors:
        logger.error("template_rows_malformed", source=source, errors=errors)
        raise CatalogValidationError(errors)
    return records


def load_static_template_rows(path: Path = STATIC_TEMPLATES_PATH) -> list[dict[str, Any]]:
    """Read the static bundle. A missing or unreadable bundle is a source error."""
    try:
        with open(path) as f:
            data = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        raise CatalogSourceError(f"Static template bundle unreadable at {path}: {e}") from e

    rows = data.get("templates", []) if isinstance(data, dict) else data
    if not isinstance(rows, list):
        raise CatalogSourceError(f"Static template bundle at {path} must contain a list of templates")
    return rows


@dataclass
class CatalogSnapshot:
    """One validated catalog load, with lookups built on first use."""

    source: TemplateSource
    templates: list[QueryTemplate]
    warnings: list[str] = field(default_factory=list)

    @cached_property
    def by_id(self) -> dict[str, QueryTemplate]:
        return {t.id: t for t in self.templates if t.id}

    @cached_property
    def by_intent(self) -> dict[str, list[QueryTemplate]]:
        index: dict[str, list[QueryTemplate]] = {}
        for template in self.templates:
            if template.intent:
                index.setdefault(template.intent, []).append(template)
        return index


class TemplateCatalog:
    """
    Cached template catalog.

    Args:
        catalog_source: Live template store (None means static only)
        static_path: Static bundle location
        live_by_default: Toggle value when AI_TEMPLATES_ENABLED is unset
    """

    def __init__(
        self,
        catalog_source: CatalogSource | None = None,
        static_path: Path = STATIC_TEMPLATES_PATH,
        live_by_default: bool = False,
    ):
        self.catalog_source = catalog_source
        self.static_path = static_path
        self.live_by_default = live_by_default
        self._snapshots: dict[TemplateSource, CatalogSnapshot] = {}
        self._fallback_warned = False
        self._lock = threading.Lock()

    def load(self, source: TemplateSource | None = None) -> CatalogSnapshot:
        """
        Return the cached snapshot for source, loading it on first use.

        Raises:
            CatalogValidationError: templates failed validation
            CatalogSourceError: the static bundle itself could not be read
        """
        source = source or resolve_template_source(default=self.live_by_default)
        with self._lock:
            snapshot = self._snapshots.get(source)
            if snapshot is None:
                snapshot = self._load_uncached(source)
                self._snapshots[source] = snapshot
            return snapshot

    def reload(self, source: TemplateSource | None = None) -> CatalogSnapshot:
        """Drop the cached snapshot for source and load it again."""
        source = source or resolve_template_source(default=self.live_by_default)
        with self._lock:
            self._snapshots.pop(source, None)
        return self.load(source)

    def reset(self) -> None:
        """Forget every snapshot and re-arm the one-time fallback warning."""
        with self._lock:
            self._snapshots.clear()
            self._fallback_warned = False

    def get_templates(self, source: TemplateSource | None = None) -> list[QueryTemplate]:
        return list(self.load(source).templates)

    def get_template(self, template_id: str, source: TemplateSource | None = None) -> QueryTemplate | None:
        return self.load(source).by_id.get(template_id)

    def get_templates_for_intent(self, intent: str, source: TemplateSource | None = None) -> list[QueryTemplate]:
        return list(self.load(source).by_intent.get(intent, []))

    def _load_uncached(self, source: TemplateSource) -> CatalogSnapshot:
        if source is TemplateSource.DB:
            rows = self._fetch_live_rows()
            if rows:
                return self._build_snapshot(rows, TemplateSource.DB)

        # Cached under the requested source; snapshot.source records what was actually served
        return self._build_snapshot(load_static_template_rows(self.static_path), TemplateSource.STATIC)

    def _fetch_live_rows(self) -> list[dict[str, Any]]:
        """Rows from the live store, or [] (after a one-time warning) when unusable."""
        if self.catalog_source is None:
            self._warn_fallback("no live template store configured")
            return []

        try:
            rows = self.catalog_source.load_approved_templates()
        except Exception as e:
            self._warn_fallback(f"live template store failed: {e}")
            return []

        if not rows:
            self._warn_fallback("live template store returned no templates")
            return []
        return rows

    def _warn_fallback(self, reason: str) -> None:
        if self._fallback_warned:
            return
        self._fallback_warned = True
        logger.warning("template_catalog_static_fallback", reason=reason, static_path=str(self.static_path))

    def _build_snapshot(self, rows: list[dict[str, Any]], source: TemplateSource) -> CatalogSnapshot:
        records = parse_template_rows(rows, source.value)
        warnings = validate_catalog(records, source.value)
        templates = [to_query_template(record) for record in records]

        logger.info(
            "template_catalog_loaded",
            source=source.value,
            templates=len(templates),
            warnings=len(warnings),
        )
        return CatalogSnapshot(source=source, templates=templates, warnings=warnings)
