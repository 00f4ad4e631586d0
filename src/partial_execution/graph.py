"""
Directed Graph - the workflow substrate for partial execution.

Holds workflow nodes and the directed connections between them, answers
reachability questions (children and parents of a node, cycle-safe) and
converts losslessly to and from a WorkflowDefinition.

Nodes are stored by reference and keyed by name. The graph only grows:
nodes and connections can be added, never removed.
"""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Set, Union

from pydantic import ValidationError

from .config import get_settings
from .models import WorkflowConnection, WorkflowDefinition, WorkflowNode, STRUCTURE_KEYS
from .observability import with_graph_context


logger = logging.getLogger(__name__)


class GraphError(Exception):
    """Base error for structural problems with a graph."""

    def __init__(self, message: str, node_name: Optional[str] = None):
        super().__init__(message)
        self.node_name = node_name


class DuplicateNodeError(GraphError):
    """A node with the same name is already in the graph."""

    def __init__(self, node_name: str):
        super().__init__(f"Node '{node_name}' already exists in the graph", node_name)


class UnknownNodeError(GraphError):
    """A node is referenced that is not a member of the graph."""

    def __init__(self, node_name: str, message: Optional[str] = None):
        super().__init__(message or f"Node '{node_name}' is not part of the graph", node_name)


class MalformedGraphError(UnknownNodeError):
    """A workflow connection table references a node that is not defined."""

    def __init__(self, node_name: str, source_name: Optional[str] = None):
        if source_name is not None and source_name != node_name:
            message = (
                f"Connection from '{source_name}' references undefined node '{node_name}'"
            )
        else:
            message = f"Connection table references undefined node '{node_name}'"
        super().__init__(node_name, message)
        self.source_name = source_name


def _default_connection_type() -> str:
    return get_settings().default_connection_type


@dataclass(frozen=True)
class GraphConnection:
    """
    A directed edge between two graph nodes.

    ``output_index`` is the output slot on ``from_node``, ``input_index``
    the input slot on ``to_node``.
    """
    from_node: WorkflowNode
    to_node: WorkflowNode
    output_index: int = 0
    input_index: int = 0
    type: str = field(default_factory=_default_connection_type)

    @property
    def key(self) -> tuple:
        """Identity of the connection by endpoint names and slots."""
        return (
            self.from_node.name,
            self.type,
            self.output_index,
            self.input_index,
            self.to_node.name,
        )

    @classmethod
    def coerce(cls, value: Union["GraphConnection", Mapping[str, Any]]) -> "GraphConnection":
        """
        Build a connection from a connection or a mapping.

        Mappings use the keys ``from`` and ``to`` plus the optional
        ``output_index``, ``input_index`` and ``type``.
        """
        if isinstance(value, GraphConnection):
            return value

        kwargs: Dict[str, Any] = {
            "from_node": value["from"],
            "to_node": value["to"],
            "output_index": value.get("output_index", 0),
            "input_index": value.get("input_index", 0),
        }
        if value.get("type") is not None:
            kwargs["type"] = value["type"]
        return cls(**kwargs)

    def __repr__(self) -> str:
        return (
            f"GraphConnection({self.from_node.name!r}[{self.type}:{self.output_index}]"
            f" -> {self.to_node.name!r}[{self.input_index}])"
        )


ConnectionInput = Union[GraphConnection, Mapping[str, Any]]


class DirectedGraph:
    """
    Directed graph of workflow nodes.

    Contains:
    - Nodes, keyed by name, in insertion order
    - Connections, in insertion order, parallel edges and self-loops kept
    - Per-node adjacency for outgoing and incoming connections

    Built either incrementally::

        graph = DirectedGraph().add_nodes(a, b).add_connections({"from": a, "to": b})

    or from a workflow with ``DirectedGraph.from_workflow(workflow)``.

    Not thread-safe. Build it from one owner, then treat it as read-only
    or ``copy()`` it before mutating elsewhere.
    """

    def __init__(self) -> None:
        self._nodes: Dict[str, WorkflowNode] = {}
        self._connections: List[GraphConnection] = []
        self._outgoing: Dict[str, List[GraphConnection]] = {}
        self._incoming: Dict[str, List[GraphConnection]] = {}

    # ------------------------------------------------------------------
    # Mutation
    # ------------------------------------------------------------------

    def add_node(self, node: WorkflowNode) -> "DirectedGraph":
        """Add a single node."""
        return self.add_nodes(node)

    def add_nodes(self, *nodes: WorkflowNode) -> "DirectedGraph":
        """
        Add nodes to the graph.

        The whole call is rejected if any name is already taken, either
        by a graph member or by an earlier node in the same call.

        Raises:
            DuplicateNodeError: A node name is not unique
        """
        seen: Set[str] = set()
        for node in nodes:
            if node.name in self._nodes or node.name in seen:
                logger.warning(
                    "Rejected duplicate node",
                    extra=with_graph_context(node_name=node.name),
                )
                raise DuplicateNodeError(node.name)
            seen.add(node.name)

        for node in nodes:
            self._nodes[node.name] = node
            self._outgoing[node.name] = []
            self._incoming[node.name] = []

        logger.debug("Added %d node(s), graph has %d", len(nodes), len(self._nodes))
        return self

    def add_connection(
        self,
        from_node: WorkflowNode,
        to_node: WorkflowNode,
        output_index: int = 0,
        input_index: int = 0,
        type: Optional[str] = None,
    ) -> "DirectedGraph":
        """Add a single connection."""
        connection = GraphConnection(
            from_node=from_node,
            to_node=to_node,
            output_index=output_index,
            input_index=input_index,
            type=type if type is not None else _default_connection_type(),
        )
        return self.add_connections(connection)

    def add_connections(self, *connections: ConnectionInput) -> "DirectedGraph":
        """
        Add connections to the graph.

        Both endpoints of every connection must be graph members. The
        whole call is rejected if any of them is not.

        Raises:
            UnknownNodeError: An endpoint is not a member of the graph
        """
        resolved = [GraphConnection.coerce(c) for c in connections]

        for connection in resolved:
            for endpoint in (connection.from_node, connection.to_node):
                if not self._is_member(endpoint):
                    logger.warning(
                        "Rejected connection %r",
                        connection,
                        extra=with_graph_context(node_name=endpoint.name),
                    )
                    raise UnknownNodeError(endpoint.name)
            if connection.output_index < 0 or connection.input_index < 0:
                raise ValueError(f"Connection indexes must not be negative: {connection!r}")

        for connection in resolved:
            self._connections.append(connection)
            self._outgoing[connection.from_node.name].append(connection)
            self._incoming[connection.to_node.name].append(connection)

        logger.debug(
            "Added %d connection(s), graph has %d",
            len(resolved),
            len(self._connections),
        )
        return self

    # ------------------------------------------------------------------
    # Query
    # ------------------------------------------------------------------

    def get_nodes(self) -> Dict[str, WorkflowNode]:
        """Get all nodes keyed by name, in insertion order."""
        return dict(self._nodes)

    def get_connections(self, to: Optional[WorkflowNode] = None) -> List[GraphConnection]:
        """
        Get connections in insertion order.

        Args:
            to: Only return connections ending at this node
        """
        if to is None:
            return list(self._connections)
        self._require_member(to)
        return list(self._incoming[to.name])

    def has_node(self, name: str) -> bool:
        """Check if a node with this name exists."""
        return name in self._nodes

    def get_node(self, name: str) -> Optional[WorkflowNode]:
        """Get node by name."""
        return self._nodes.get(name)

    def get_nodes_by_names(self, names: Iterable[str]) -> List[WorkflowNode]:
        """
        Get nodes for the given names, in the order given.

        Raises:
            UnknownNodeError: A name is not in the graph
        """
        nodes = []
        for name in names:
            node = self._nodes.get(name)
            if node is None:
                raise UnknownNodeError(name)
            nodes.append(node)
        return nodes

    def get_direct_child_connections(self, node: WorkflowNode) -> List[GraphConnection]:
        """Get connections leaving this node."""
        self._require_member(node)
        return list(self._outgoing[node.name])

    def get_direct_parent_connections(self, node: WorkflowNode) -> List[GraphConnection]:
        """Get connections entering this node."""
        self._require_member(node)
        return list(self._incoming[node.name])

    def get_connection(
        self,
        from_node: WorkflowNode,
        output_index: int,
        type: str,
        input_index: int,
        to_node: WorkflowNode,
    ) -> Optional[GraphConnection]:
        """Get the first connection matching endpoints and slots exactly."""
        self._require_member(from_node)
        key = (from_node.name, type, output_index, input_index, to_node.name)
        for connection in self._outgoing[from_node.name]:
            if connection.key == key:
                return connection
        return None

    def get_children(self, node: WorkflowNode) -> Set[WorkflowNode]:
        """
        Get every node reachable from ``node`` by following connections.

        ``node`` itself is only part of the result when a cycle leads back
        to it. Terminates on cyclic graphs.
        """
        return self._reachable(node, lambda c: c.to_node, self._outgoing)

    def get_parents(self, node: WorkflowNode) -> Set[WorkflowNode]:
        """
        Get every node from which ``node`` is reachable.

        Mirror of ``get_children``: ``node`` itself is only part of the
        result when it lies on a cycle.
        """
        return self._reachable(node, lambda c: c.from_node, self._incoming)

    def get_parent_connections(self, node: WorkflowNode) -> Set[GraphConnection]:
        """Get every connection on any path leading into ``node``."""
        self._require_member(node)

        connections: Set[GraphConnection] = set()
        visited: Set[str] = set()
        stack = [node.name]
        while stack:
            name = stack.pop()
            if name in visited:
                continue
            visited.add(name)
            for connection in self._incoming[name]:
                connections.add(connection)
                stack.append(connection.from_node.name)
        return connections

    def _reachable(
        self,
        node: WorkflowNode,
        step: Callable[[GraphConnection], WorkflowNode],
        adjacency: Dict[str, List[GraphConnection]],
    ) -> Set[WorkflowNode]:
        """Iterative walk from ``node``, the start node only counted if revisited."""
        self._require_member(node)

        reached: Dict[str, WorkflowNode] = {}
        stack = [step(c) for c in adjacency[node.name]]
        while stack:
            current = stack.pop()
            if current.name in reached:
                continue
            reached[current.name] = current
            stack.extend(step(c) for c in adjacency[current.name])
        return set(reached.values())

    def _is_member(self, node: WorkflowNode) -> bool:
        return self._nodes.get(node.name) is node

    def _require_member(self, node: WorkflowNode) -> None:
        if not self._is_member(node):
            raise UnknownNodeError(node.name)

    # ------------------------------------------------------------------
    # Conversion
    # ------------------------------------------------------------------

    @classmethod
    def from_workflow(
        cls, workflow: Union[WorkflowDefinition, Mapping[str, Any]]
    ) -> "DirectedGraph":
        """
        Build a graph from a workflow.

        The workflow's nodes become the graph's nodes (not copied). Its
        parameters are not kept; use ``workflow.workflow_parameters()``
        to export again with the same context.

        Raises:
            ValidationError: The workflow does not have the workflow shape
            DuplicateNodeError: Two nodes share a name
            MalformedGraphError: The connection table names an undefined node
        """
        if not isinstance(workflow, WorkflowDefinition):
            workflow = WorkflowDefinition.model_validate(workflow)

        graph = cls().add_nodes(*workflow.nodes)

        connections: List[GraphConnection] = []
        for source_name, outputs in workflow.connections.items():
            from_node = graph.get_node(source_name)
            if from_node is None:
                raise MalformedGraphError(source_name)
            for output_type, branches in outputs.items():
                for output_index, branch in enumerate(branches):
                    for destination in branch:
                        to_node = graph.get_node(destination.node)
                        if to_node is None:
                            raise MalformedGraphError(destination.node, source_name)
                        connections.append(
                            GraphConnection(
                                from_node=from_node,
                                to_node=to_node,
                                output_index=output_index,
                                input_index=destination.index,
                                type=output_type,
                            )
                        )
        graph.add_connections(*connections)

        logger.debug(
            "Built graph from workflow: %d node(s), %d connection(s)",
            len(graph._nodes),
            len(graph._connections),
            extra=with_graph_context(workflow_id=workflow.id),
        )
        return graph

    def to_workflow(
        self,
        parameters: Union[WorkflowDefinition, Mapping[str, Any], None] = None,
    ) -> WorkflowDefinition:
        """
        Export the graph as a workflow.

        Nodes are exported as copies in insertion order. Connections are
        grouped by source node, then connection type, then output index.

        Args:
            parameters: Workflow context (id, name, settings, ...). Any
                ``nodes`` or ``connections`` it carries are ignored.

        Raises:
            ValidationError: The parameters are not valid workflow fields
        """
        if isinstance(parameters, WorkflowDefinition):
            context = parameters.workflow_parameters()
        else:
            context = {
                key: value
                for key, value in (parameters or {}).items()
                if key not in STRUCTURE_KEYS
            }

        table: Dict[str, Dict[str, List[List[WorkflowConnection]]]] = {}
        for connection in self._connections:
            outputs = table.setdefault(connection.from_node.name, {})
            branches = outputs.setdefault(connection.type, [])
            while len(branches) <= connection.output_index:
                branches.append([])
            branches[connection.output_index].append(
                WorkflowConnection(
                    node=connection.to_node.name,
                    type=connection.type,
                    index=connection.input_index,
                )
            )

        try:
            workflow = WorkflowDefinition.model_validate(
                {
                    **context,
                    "nodes": [node.model_copy(deep=True) for node in self._nodes.values()],
                    "connections": table,
                }
            )
        except ValidationError:
            logger.warning("Workflow parameters failed validation on export")
            raise

        logger.debug(
            "Exported graph to workflow: %d node(s), %d connection(s)",
            len(self._nodes),
            len(self._connections),
            extra=with_graph_context(workflow_id=workflow.id),
        )
        return workflow

    # ------------------------------------------------------------------
    # Value semantics
    # ------------------------------------------------------------------

    def copy(self) -> "DirectedGraph":
        """
        Copy the graph structure.

        The copy shares node instances but has its own node and
        connection collections, so either graph can grow independently.
        """
        clone = type(self)()
        clone.add_nodes(*self._nodes.values())
        clone.add_connections(*self._connections)
        return clone

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, DirectedGraph):
            return NotImplemented
        if self._nodes.keys() != other._nodes.keys():
            return False
        for name, node in self._nodes.items():
            if node.to_dict() != other._nodes[name].to_dict():
                return False
        return Counter(c.key for c in self._connections) == Counter(
            c.key for c in other._connections
        )

    def __len__(self) -> int:
        return len(self._nodes)

    def __contains__(self, node: object) -> bool:
        return isinstance(node, WorkflowNode) and self._is_member(node)

    def __repr__(self) -> str:
        return (
            f"DirectedGraph(nodes={len(self._nodes)}, "
            f"connections={len(self._connections)})"
        )


__all__ = [
    "DirectedGraph",
    "GraphConnection",
    "GraphError",
    "DuplicateNodeError",
    "UnknownNodeError",
    "MalformedGraphError",
]
