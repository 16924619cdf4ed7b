"""
Centralized logging configuration.

Configure once at the process entry point, not per component.
"""

import hashlib
import logging
import sys
from typing import Any

import structlog

_STRUCTLOG_CONFIGURED = False


def configure_logging(level: int = logging.INFO, logging_config: dict[str, Any] | None = None) -> None:
    """
    Configure stdlib logging and route structlog events through it.

    Idempotent: the root handler is only installed when the root logger has
    none, and structlog is only configured on the first call.

    Args:
        level: Root level used when logging_config does not set one
        logging_config: Output of config_loader.load_logging_config()
    """
    global _STRUCTLOG_CONFIGURED

    config = logging_config or {}
    root_level = logging.getLevelName(config.get("root_level", logging.getLevelName(level)))
    if not isinstance(root_level, int):
        root_level = level

    root_logger = logging.getLogger()
    if not root_logger.handlers:
        logging.basicConfig(
            level=root_level,
            format="%(message)s",
            handlers=[logging.StreamHandler(sys.stdout)],
        )

    for name, name_level in config.get("module_levels", {"clinical_insights": "INFO"}).items():
        logging.getLogger(name).setLevel(name_level)

    for name, name_level in config.get("reduce_noise", {"urllib3": "WARNING"}).items():
        logging.getLogger(name).setLevel(name_level)

    if _STRUCTLOG_CONFIGURED:
        return

    renderer = (
        structlog.processors.JSONRenderer()
        if config.get("json_logs")
        else structlog.dev.ConsoleRenderer(colors=False)
    )
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.format_exc_info,
            renderer,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )
    _STRUCTLOG_CONFIGURED = True


def question_hash(question: str | None) -> str:
    """Short stable fingerprint for logging questions without their text."""
    return hashlib.sha256((question or "").encode("utf-8")).hexdigest()[:12]
