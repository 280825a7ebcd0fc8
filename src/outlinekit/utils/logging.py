"""Structured logging setup for outlinekit."""

import structlog
from pathlib import Path
from typing import Any, Optional
import os


VALID_LEVELS = ["DEBUG", "INFO", "WARNING", "ERROR"]


def configure_logging(log_file: Optional[Path] = None) -> None:
    """
    Configure structlog for JSON logging to ~/.cache/outlinekit/logs/outlinekit.log.

    Log level can be controlled via OUTLINEKIT_LOG_LEVEL environment variable:
    - Set to "DEBUG" to see every gateway request and index rebuild
    - Defaults to "INFO" if not set

    Log levels:
    - DEBUG: Gateway requests, index rebuilds, draft commits
    - INFO: Structural edits (split, merge, indent, ...), page loads
    - WARNING: Rollbacks, reloads, suppressed commits
    - ERROR: Gateway failures, invariant violations

    Args:
        log_file: Override the log file location (mainly for tests)

    Example:
        # Enable debug logging
        export OUTLINEKIT_LOG_LEVEL=DEBUG
        outlinekit show my-page

        # View logs with jq for readability:
        tail -f ~/.cache/outlinekit/logs/outlinekit.log | jq .
    """
    if log_file is None:
        log_dir = Path.home() / ".cache" / "outlinekit" / "logs"
        log_dir.mkdir(parents=True, exist_ok=True)
        log_file = log_dir / "outlinekit.log"
    else:
        log_file.parent.mkdir(parents=True, exist_ok=True)

    log_level = os.environ.get("OUTLINEKIT_LOG_LEVEL", "INFO").upper()
    if log_level not in VALID_LEVELS:
        log_level = "INFO"

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=structlog.WriteLoggerFactory(file=open(log_file, "a")),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str) -> Any:
    """
    Get a structured logger instance.

    Args:
        name: Logger name (typically __name__ of calling module)

    Returns:
        Structured logger instance

    Example:
        >>> logger = get_logger(__name__)
        >>> logger.info("block_indented", block_id="abc", new_parent_id="def")
    """
    return structlog.get_logger(name)
