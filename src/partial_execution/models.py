"""
Workflow Models - the canonical serialized form of a workflow.

These models match the n8n workflow JSON format: a flat list of node
definitions plus a connection table keyed by source node name.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .config import get_settings


# Keys of a workflow that describe structure rather than execution context
STRUCTURE_KEYS = ("nodes", "connections")


class WorkflowConnection(BaseModel):
    """
    Destination of a connection.

    Example: {"node": "HTTP Request", "type": "main", "index": 0}
    """
    model_config = ConfigDict(extra="allow")

    node: str = Field(..., description="Destination node name")
    type: str = Field(
        default_factory=lambda: get_settings().default_connection_type,
        description="Connection type",
    )
    index: int = Field(0, ge=0, description="Destination input index")


class WorkflowNode(BaseModel):
    """
    A node in a workflow.

    Matches n8n workflow JSON node format, extended with the execution
    metadata the partial execution planner reads (pinned and run data).

    Equality is by value. The hash is the node name, which is unique
    within a graph, so graph nodes can be collected in sets.
    """
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    # Required
    name: str = Field(..., min_length=1, description="Node name (unique within workflow)")

    # Optional
    type: str = Field("n8n-nodes-base.noOp", description="Node type (e.g., 'n8n-nodes-base.set')")
    type_version: Union[int, float] = Field(1, alias="typeVersion", description="Node type version")
    position: List[Union[int, float]] = Field(
        default_factory=lambda: [0, 0],
        min_length=2,
        max_length=2,
        description="Canvas position as [x, y]",
    )
    parameters: Dict[str, Any] = Field(default_factory=dict)
    credentials: Dict[str, Any] = Field(default_factory=dict)
    disabled: bool = Field(False, description="If true, node is skipped")
    continue_on_fail: bool = Field(False, alias="continueOnFail")
    notes: Optional[str] = Field(None, description="Node notes")

    # Execution metadata
    pinned_data: Optional[Any] = Field(
        None, alias="pinnedData", description="Manually fixed output items"
    )
    run_data: Optional[Any] = Field(
        None, alias="runData", description="Output of a previous run"
    )

    @field_validator("position", mode="before")
    @classmethod
    def _position_from_mapping(cls, value: Any) -> Any:
        # Older exports store the position as {"x": ..., "y": ...}
        if isinstance(value, dict):
            return [value.get("x", 0), value.get("y", 0)]
        return value

    def __hash__(self) -> int:
        return hash(self.name)

    @property
    def has_pinned_data(self) -> bool:
        return self.pinned_data is not None

    @property
    def has_run_data(self) -> bool:
        return self.run_data is not None

    def to_dict(self) -> Dict[str, Any]:
        """Serialize using the workflow JSON key names."""
        return self.model_dump(by_alias=True, exclude_none=True)


class WorkflowSettings(BaseModel):
    """Workflow-level settings."""
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    save_data_error_execution: str = Field("all", alias="saveDataErrorExecution")
    save_data_success_execution: str = Field("all", alias="saveDataSuccessExecution")
    save_manual_executions: bool = Field(True, alias="saveManualExecutions")
    timezone: str = Field("UTC")
    execution_timeout: int = Field(-1, alias="executionTimeout", description="-1 = no timeout")


ConnectionTable = Dict[str, Dict[str, List[List[WorkflowConnection]]]]


class WorkflowDefinition(BaseModel):
    """
    Complete workflow definition.

    Everything except ``nodes`` and ``connections`` is execution context
    (the workflow parameters) that graph code carries through untouched.
    """
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    # Metadata
    id: Optional[str] = Field(None, description="Workflow ID")
    name: str = Field("Unnamed Workflow", description="Workflow name")
    active: bool = Field(False, description="Is workflow active?")

    # Structure
    nodes: List[WorkflowNode] = Field(default_factory=list)
    connections: ConnectionTable = Field(
        default_factory=dict,
        description="Node connections: {source: {type: [[{node, type, index}]]}}"
    )

    # Settings
    settings: WorkflowSettings = Field(default_factory=WorkflowSettings)

    # Optional
    pin_data: Optional[Dict[str, Any]] = Field(None, alias="pinData")
    static_data: Optional[Dict[str, Any]] = Field(None, alias="staticData")
    created_at: Optional[str] = Field(None, alias="createdAt")
    updated_at: Optional[str] = Field(None, alias="updatedAt")
    tags: List[str] = Field(default_factory=list)

    @field_validator("connections", mode="before")
    @classmethod
    def _fill_empty_outputs(cls, value: Any) -> Any:
        # Serialized tables use null for output indexes without connections
        if not isinstance(value, dict):
            return value
        return {
            source: {
                output_type: [branch if branch is not None else [] for branch in branches]
                if isinstance(branches, list) else branches
                for output_type, branches in outputs.items()
            }
            if isinstance(outputs, dict) else outputs
            for source, outputs in value.items()
        }

    def get_node(self, name: str) -> Optional[WorkflowNode]:
        """Get node by name."""
        for node in self.nodes:
            if node.name == name:
                return node
        return None

    def workflow_parameters(self) -> Dict[str, Any]:
        """
        Get the execution context of this workflow.

        Returns every key except the structural ones, using the workflow
        JSON key names, in a form accepted by ``DirectedGraph.to_workflow``.
        """
        return self.model_dump(by_alias=True, exclude=set(STRUCTURE_KEYS))

    def to_dict(self) -> Dict[str, Any]:
        """Serialize using the workflow JSON key names."""
        data = self.model_dump(by_alias=True, exclude={"nodes"})
        data["nodes"] = [node.to_dict() for node in self.nodes]
        return data


def parse_workflow(data: Dict[str, Any]) -> WorkflowDefinition:
    """Parse workflow JSON into WorkflowDefinition."""
    return WorkflowDefinition.model_validate(data)


__all__ = [
    "ConnectionTable",
    "WorkflowDefinition",
    "WorkflowNode",
    "WorkflowConnection",
    "WorkflowSettings",
    "parse_workflow",
]
