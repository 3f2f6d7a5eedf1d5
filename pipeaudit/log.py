"""
Structured logging configuration.

Call ``configure_logging()`` once at process start. Every record then carries
the correlation id bound in ``pipeaudit.correlation`` for the current thread or
task, so audit activity for one pipeline run can be grepped out of the logs.

Level and format come from ``AuditSettings`` (``PIPEAUDIT_LOG_LEVEL``,
``PIPEAUDIT_LOG_FORMAT``) unless passed explicitly.
"""

import logging
import sys
from typing import Any, Dict, List, Optional

import structlog
from structlog.types import Processor

from .correlation import current_correlation_id
from .settings import get_settings

_configured = False


def add_correlation_id(logger: Any, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    """Structlog processor attaching the bound correlation id, if any."""
    correlation_id = current_correlation_id()
    if correlation_id is not None and "correlation_id" not in event_dict:
        event_dict["correlation_id"] = str(correlation_id)
    return event_dict


def configure_logging(
    level: Optional[str] = None,
    fmt: Optional[str] = None,
    force: bool = False,
) -> None:
    """Configure structlog and the stdlib root logger. No-op after the first call unless ``force``."""
    global _configured
    if _configured and not force:
        return

    settings = get_settings()
    log_level = (level or settings.log_level).upper()
    log_format = (fmt or settings.log_format).lower()

    processors: List[Processor] = [
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        add_correlation_id,
        structlog.processors.format_exc_info,
        structlog.processors.StackInfoRenderer(),
    ]
    if log_format == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=False))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stderr,
        level=getattr(logging, log_level),
        force=True,
    )
    _configured = True


def get_logger(name: Optional[str] = None) -> Any:
    return structlog.get_logger(name)
