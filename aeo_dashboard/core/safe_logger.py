# aeo_dashboard/core/safe_logger.py
"""
Logging setup for the AEO Dashboard data core.

Background work (webhook fan-out, stale cache refreshes) logs from many
concurrent tasks at once, so multi-line dumps are avoided: notable events are
one line each, and aggregate results go through log_summary().

USAGE:
    from aeo_dashboard.core.safe_logger import init_safe_logging, log_summary

    init_safe_logging(level=logging.INFO)
    log_summary("Webhook dispatch", {"event": "check", "attempted": 2, "failed": 0})
"""

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Union

_initialized = False

DEFAULT_FORMAT = '%(asctime)s - %(levelname)s - %(name)s - %(message)s'


# =============================================================================
# LOGGER INITIALIZATION
# =============================================================================

def init_safe_logging(
    level: Union[int, str] = logging.INFO,
    format_string: Optional[str] = None,
    use_structured: bool = False
) -> logging.Logger:
    """
    Configure the root logger once.

    Args:
        level: Logging level or level name
        format_string: Custom format string for plain output
        use_structured: If True, emit one JSON object per record

    Returns:
        Root logger instance
    """
    global _initialized

    root_logger = logging.getLogger()
    if _initialized:
        return root_logger

    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO

    root_logger.setLevel(level)
    root_logger.handlers.clear()

    handler = logging.StreamHandler(stream=sys.stdout)
    handler.setLevel(level)
    if use_structured:
        handler.setFormatter(StructuredFormatter())
    else:
        handler.setFormatter(logging.Formatter(format_string or DEFAULT_FORMAT))
    root_logger.addHandler(handler)

    _initialized = True
    root_logger.info("🔒 Logging initialized")
    return root_logger


# =============================================================================
# STRUCTURED FORMATTER
# =============================================================================

class StructuredFormatter(logging.Formatter):
    """JSON formatter so each record stays a single log line."""

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage()
        }

        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        if hasattr(record, 'extra_data'):
            log_entry["data"] = record.extra_data

        return json.dumps(log_entry, ensure_ascii=False, default=str)


# =============================================================================
# SUMMARY LOGGING
# =============================================================================

def log_summary(
    title: str,
    stats: Dict[str, Any],
    logger_name: Optional[str] = None,
    level: str = "info"
) -> None:
    """
    Log a dictionary of statistics as a single line.

    Args:
        title: Summary title
        stats: Statistics to log
        logger_name: Optional logger name (defaults to root)
        level: Log level name
    """
    logger = logging.getLogger(logger_name) if logger_name else logging.getLogger()
    log_func = getattr(logger, level.lower(), logger.info)

    stats_str = " | ".join(f"{k}: {v}" for k, v in stats.items())
    log_func(f"📊 {title} | {stats_str}", extra={"extra_data": stats})


__all__ = [
    'init_safe_logging',
    'log_summary',
    'StructuredFormatter',
]
