"""Centralized configuration loader for the resolution pipeline.

Loads YAML configuration with:
- Environment variable overrides (env var → YAML → defaults)
- Type coercion (string to float, bool, int)
- Defaults declared as dataclasses
- Graceful degradation (missing files use defaults)
"""

import logging
import os
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any

import yaml  # type: ignore

logger = logging.getLogger(__name__)


def get_project_root() -> Path:
    """
    Get project root directory.

    Layout: config_loader.py → core/ → clinical_insights/ → src/ → project_root

    Returns:
        Path to project root directory

    Raises:
        ValueError: If config/ directory is not found at the detected project root
    """
    project_root = Path(__file__).parent.parent.parent.parent

    config_dir = project_root / "config"
    if not config_dir.is_dir():
        raise ValueError(
            f"Project root detection failed: config/ directory not found at {config_dir}. "
            f"Detected project root: {project_root}."
        )

    return project_root


def _coerce_type(value: Any, target_type: type) -> Any:
    """
    Coerce value to target type.

    Handles "30.0" → 30.0, "true"/"false" → bool, "123" / "30.0" → int.

    Raises:
        ValueError: If coercion fails
    """
    if value is None or isinstance(value, target_type):
        return value

    if target_type is bool:
        if isinstance(value, str):
            return value.strip().lower() in ("true", "1", "yes", "on")
        return bool(value)

    if target_type is float:
        return float(value)

    if target_type is int:
        if isinstance(value, str):
            return int(float(value))
        return int(value)

    if target_type is str:
        return str(value)

    return value


def _is_critical_config(key: str) -> bool:
    """
    Critical keys raise on bad types instead of falling back to defaults.

    Thresholds, timeouts and confidence cutoffs gate what reaches the
    generative step, so a silent default would change behavior.
    """
    return any(pattern in key.lower() for pattern in ("threshold", "confidence", "timeout"))


def _merge_yaml(defaults: dict[str, Any], config_path: Path) -> dict[str, Any]:
    """Merge YAML values over defaults, coercing each to its default's type."""
    config = defaults.copy()
    if not config_path.exists():
        logger.debug(f"Config file not found at {config_path}, using defaults")
        return config

    try:
        with open(config_path) as f:
            yaml_data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ValueError(f"Invalid YAML in {config_path}: {e}") from e
    except OSError as e:
        logger.warning(f"Failed to read config from {config_path}: {e}, using defaults")
        return config

    for key, value in yaml_data.items():
        if key not in defaults:
            logger.debug(f"Ignoring unknown config key {key} in {config_path}")
            continue
        target_type = type(defaults[key])
        try:
            config[key] = _coerce_type(value, target_type)
        except (ValueError, TypeError) as e:
            if _is_critical_config(key):
                raise ValueError(
                    f"Type coercion failed for critical config {key}={value}: "
                    f"expected {target_type.__name__}, got {type(value).__name__}. Error: {e}"
                ) from e
            logger.warning(f"Failed to coerce YAML value {key}={value} to {target_type.__name__}: {e}, using default")

    return config


def _apply_env_overrides(config: dict[str, Any], env_mapping: dict[str, str] | None = None) -> dict[str, Any]:
    """
    Apply environment variable overrides to config.

    Explicit mappings (env var name → config key) win; any remaining key is
    overridden by an env var with the same name upper-cased.
    """
    result = config.copy()
    mapped_keys = set()

    for env_key, config_key in (env_mapping or {}).items():
        env_value = os.getenv(env_key)
        if env_value is None or config_key not in result:
            continue
        mapped_keys.add(config_key)
        target_type = type(result[config_key])
        try:
            result[config_key] = _coerce_type(env_value, target_type)
        except (ValueError, TypeError) as e:
            logger.warning(f"Failed to coerce env var {env_key}={env_value} to {target_type.__name__}: {e}")

    for config_key in result:
        if config_key in mapped_keys:
            continue
        env_value = os.getenv(config_key.upper())
        if env_value is None:
            continue
        target_type = type(result[config_key])
        try:
            result[config_key] = _coerce_type(env_value, target_type)
        except (ValueError, TypeError) as e:
            logger.warning(f"Failed to coerce env var {config_key.upper()}={env_value} to {target_type.__name__}: {e}")

    return result


@dataclass
class ResolutionConfigDefaults:
    """Default values for resolution pipeline configuration."""

    template_match_threshold: float = 0.7
    confirmation_threshold: float = 0.85
    enable_resolution_confirmations: bool = False
    ai_templates_enabled: bool = False
    search_min_confidence: float = 0.7
    search_default_limit: int = 20
    search_timeout_seconds: float = 10.0
    embedding_ttl_seconds: float = 300.0
    results_ttl_seconds: float = 300.0
    cache_sweep_interval_seconds: float = 600.0
    embedding_dimensions: int = 3072
    max_total_concepts: int = 25
    max_phrase_frequency: int = 5
    context_discovery_timeout_seconds: float = 20.0
    generation_timeout_seconds: float = 30.0
    execution_timeout_seconds: float = 60.0
    ollama_base_url: str = "http://localhost:11434"
    ollama_default_model: str = "llama3.1:8b"
    ollama_embed_model: str = "nomic-embed-text"
    ollama_timeout_seconds: float = 30.0
    database_url: str = "sqlite:///./data/clinical_insights.db"

    def to_dict(self) -> dict[str, Any]:
        """Convert dataclass to dictionary."""
        return asdict(self)


def load_resolution_config(config_path: Path | None = None) -> dict[str, Any]:
    """
    Load resolution config from YAML with env var overrides.

    Precedence: Environment variable → YAML value → Default value

    Args:
        config_path: Optional path to config file. If None, uses config/resolution.yaml.

    Returns:
        dict with the keys of ResolutionConfigDefaults

    Raises:
        ValueError: If YAML is invalid or a critical value has the wrong type
    """
    defaults = ResolutionConfigDefaults().to_dict()

    if config_path is None:
        config_path = get_project_root() / "config" / "resolution.yaml"

    config = _merge_yaml(defaults, config_path)

    env_mapping = {
        "AI_TEMPLATES_ENABLED": "ai_templates_enabled",
        "ENABLE_RESOLUTION_CONFIRMATIONS": "enable_resolution_confirmations",
        "OLLAMA_BASE_URL": "ollama_base_url",
        "OLLAMA_DEFAULT_MODEL": "ollama_default_model",
        "OLLAMA_EMBED_MODEL": "ollama_embed_model",
        "OLLAMA_TIMEOUT_SECONDS": "ollama_timeout_seconds",
        "DATABASE_URL": "database_url",
    }

    return _apply_env_overrides(config, env_mapping)


@dataclass
class LoggingConfigDefaults:
    """Default values for logging configuration."""

    root_level: str = "INFO"
    json_logs: bool = False
    module_levels: dict[str, str] = field(
        default_factory=lambda: {
            "clinical_insights.core": "INFO",
            "clinical_insights.storage": "INFO",
        }
    )
    reduce_noise: dict[str, str] = field(
        default_factory=lambda: {
            "urllib3": "WARNING",
            "sqlalchemy.engine": "WARNING",
        }
    )

    def to_dict(self) -> dict[str, Any]:
        """Convert dataclass to dictionary."""
        return asdict(self)


def load_logging_config(config_path: Path | None = None) -> dict[str, Any]:
    """
    Load logging config from the `logging:` section of the resolution YAML.

    Returns:
        dict with keys root_level, json_logs, module_levels, reduce_noise

    Raises:
        ValueError: If YAML is invalid
    """
    config = LoggingConfigDefaults().to_dict()

    if config_path is None:
        config_path = get_project_root() / "config" / "resolution.yaml"

    if config_path.exists():
        try:
            with open(config_path) as f:
                section = (yaml.safe_load(f) or {}).get("logging") or {}
        except yaml.YAMLError as e:
            raise ValueError(f"Invalid YAML in {config_path}: {e}") from e
        except OSError as e:
            logger.warning(f"Failed to read config from {config_path}: {e}, using defaults")
            section = {}

        for key, value in section.items():
            if key not in config:
                continue
            if key in ("module_levels", "reduce_noise"):
                if isinstance(value, dict):
                    config[key].update(value)
            elif key == "json_logs":
                config[key] = _coerce_type(value, bool)
            else:
                config[key] = str(value).upper()

    env_level = os.getenv("LOG_LEVEL")
    if env_level:
        config["root_level"] = env_level.upper()

    return config
