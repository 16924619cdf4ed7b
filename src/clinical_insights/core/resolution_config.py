"""Resolution Pipeline Configuration Constants.

Single source of truth for thresholds, limits and cache lifetimes.
These are domain config, not code - adjust without code changes.
"""

import os

# Concept expansion limits
MAX_METRIC_CONCEPTS = 10
MAX_FILTER_CONCEPTS = 10
MAX_INTENT_KEYWORDS = 5
MAX_TOTAL_CONCEPTS = 25  # Overrides are clamped to this ceiling
MAX_PHRASE_FREQUENCY = 5
CONCEPT_SIMILARITY_THRESHOLD = 0.9  # Normalized Levenshtein similarity

# Semantic search
SEARCH_MIN_CONFIDENCE = 0.7
SEARCH_DEFAULT_LIMIT = 20
SEARCH_MAX_LIMIT = 50
EMBEDDING_TTL_SECONDS = 5 * 60
RESULTS_TTL_SECONDS = 5 * 60
CACHE_SWEEP_INTERVAL_SECONDS = 10 * 60
EMBEDDING_DIMENSIONS = 3072  # Zero-vector fallback size
SEARCH_TIMEOUT_SECONDS = 10.0

# Template matching
TEMPLATE_MATCH_THRESHOLD = 0.7  # Minimum confidence to accept a template
TEMPLATE_SCORE_SATURATION = 6.0  # Weighted score mapped to confidence 1.0 (two keyword hits)
TEMPLATE_APPROVED_STATUS = "Approved"

# Placeholder resolution
CONFIRMATION_THRESHOLD = 0.85  # Specialized hits at/above this ask for confirmation when enabled
TIME_UNIT_DAYS = {
    "day": 1,
    "week": 7,
    "month": 30,
    "quarter": 90,
    "year": 365,
}
TIME_WINDOW_PRESET_WEEKS = (4, 8, 12)
PERCENTAGE_PRESETS = (25, 50, 75)
FREEFORM_MIN_CHARS = 1
FREEFORM_MAX_CHARS = 500

# Complexity thresholds (score 0-10)
COMPLEXITY_SIMPLE_MAX = 4
COMPLEXITY_MEDIUM_MAX = 7

# Generation
GENERATION_TIMEOUT_SECONDS = 30.0
EXECUTION_TIMEOUT_SECONDS = 60.0
CONTEXT_DISCOVERY_TIMEOUT_SECONDS = 20.0

# Feature flags (env vars with defaults)
AI_TEMPLATES_ENABLED = os.getenv("AI_TEMPLATES_ENABLED", "false").lower() == "true"
ENABLE_RESOLUTION_CONFIRMATIONS = os.getenv("ENABLE_RESOLUTION_CONFIRMATIONS", "false").lower() == "true"

# Local Ollama service (generation + embeddings)
OLLAMA_BASE_URL = os.getenv("OLLAMA_BASE_URL", "http://localhost:11434")
OLLAMA_DEFAULT_MODEL = os.getenv("OLLAMA_DEFAULT_MODEL", "llama3.1:8b")
OLLAMA_EMBED_MODEL = os.getenv("OLLAMA_EMBED_MODEL", "nomic-embed-text")
OLLAMA_TIMEOUT_SECONDS = float(os.getenv("OLLAMA_TIMEOUT_SECONDS", "30.0"))

# Relational store
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./data/clinical_insights.db")
