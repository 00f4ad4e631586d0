"""Observability package."""
from partial_execution.observability.logging import (
    get_logger,
    setup_logging,
    with_graph_context,
)

__all__ = ["get_logger", "setup_logging", "with_graph_context"]
