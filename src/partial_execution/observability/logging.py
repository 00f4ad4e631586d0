"""Structured JSON logging with workflow graph context."""
import logging
import sys
from typing import Any

from pythonjsonlogger.json import JsonFormatter

from partial_execution.config import get_settings


CONTEXT_FIELDS = ("workflow_id", "node_name")


class GraphContextFilter(logging.Filter):
    """Add graph context to log records."""

    def filter(self, record: logging.LogRecord) -> bool:
        """Add default graph context fields if not present."""
        for name in CONTEXT_FIELDS:
            if not hasattr(record, name):
                setattr(record, name, None)
        return True


class CustomJsonFormatter(JsonFormatter):
    """Custom JSON formatter with standardized field names."""

    def add_fields(
        self,
        log_record: dict[str, Any],
        record: logging.LogRecord,
        message_dict: dict[str, Any],
    ) -> None:
        """Add custom fields to the log record."""
        super().add_fields(log_record, record, message_dict)

        if not log_record.get("timestamp"):
            log_record["timestamp"] = self.formatTime(record, self.datefmt)

        log_record["level"] = record.levelname
        log_record["logger"] = record.name

        # Context fields are only emitted when set
        for name in CONTEXT_FIELDS:
            value = getattr(record, name, None)
            if value:
                log_record[name] = value
            else:
                log_record.pop(name, None)


def setup_logging() -> None:
    """Configure logging for the application from settings."""
    settings = get_settings()

    handler = logging.StreamHandler(sys.stdout)

    if settings.json_logs:
        formatter: logging.Formatter = CustomJsonFormatter(
            "%(timestamp)s %(level)s %(name)s %(message)s",
            datefmt="%Y-%m-%dT%H:%M:%S",
        )
    else:
        formatter = logging.Formatter(
            "%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        )
    handler.setFormatter(formatter)
    handler.addFilter(GraphContextFilter())

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(settings.log_level)


class GraphContextAdapter(logging.LoggerAdapter):
    """LoggerAdapter that merges bound context with per-call extra."""

    def process(self, msg: Any, kwargs: Any) -> tuple[Any, Any]:
        # Per-call fields win over the bound ones
        kwargs["extra"] = {**self.extra, **(kwargs.get("extra") or {})}
        return msg, kwargs


def get_logger(name: str, **context: Any) -> GraphContextAdapter:
    """
    Get a logger with graph context support.

    Args:
        name: Logger name (typically __name__)
        **context: Context fields bound to every record (see with_graph_context)

    Returns:
        LoggerAdapter that also accepts graph context in the extra dict
    """
    logger = logging.getLogger(name)
    return GraphContextAdapter(logger, with_graph_context(**context))


def with_graph_context(
    workflow_id: str | None = None,
    node_name: str | None = None,
    **kwargs: Any,
) -> dict[str, Any]:
    """
    Build extra dict with graph context for logging.

    Args:
        workflow_id: Workflow ID
        node_name: Node name
        **kwargs: Additional context fields

    Returns:
        Dict to pass as extra parameter to logger methods
    """
    extra = kwargs.copy()
    if workflow_id:
        extra["workflow_id"] = workflow_id
    if node_name:
        extra["node_name"] = node_name
    return extra
