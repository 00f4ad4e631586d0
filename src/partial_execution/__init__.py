"""
Partial Execution - workflow graph substrate for partial runs.

This package provides:
- WorkflowDefinition: JSON structure describing an n8n-style workflow
- DirectedGraph: Workflow nodes and connections with reachability queries
- Round-trip conversion between the two

Everything is synchronous and in-memory.
"""

from .models import (
    WorkflowConnection,
    WorkflowDefinition,
    WorkflowNode,
    WorkflowSettings,
    parse_workflow,
)
from .graph import (
    DirectedGraph,
    DuplicateNodeError,
    GraphConnection,
    GraphError,
    MalformedGraphError,
    UnknownNodeError,
)

__version__ = "1.0.0"

__all__ = [
    # Models
    "WorkflowDefinition",
    "WorkflowNode",
    "WorkflowConnection",
    "WorkflowSettings",
    "parse_workflow",
    # Graph
    "DirectedGraph",
    "GraphConnection",
    # Errors
    "GraphError",
    "DuplicateNodeError",
    "UnknownNodeError",
    "MalformedGraphError",
]
