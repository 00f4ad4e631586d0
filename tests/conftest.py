"""Pytest configuration and fixtures."""
import os

import pytest

# Set test environment variables
os.environ["PARTIAL_EXEC_ENV"] = "test"


@pytest.fixture(autouse=True)
def fresh_settings():
    """Drop the cached settings around every test."""
    from partial_execution.config import reset_settings

    reset_settings()
    yield
    reset_settings()


@pytest.fixture
def create_node_data():
    """Factory for workflow nodes with sensible defaults."""
    from partial_execution import WorkflowNode

    def _create(name: str, **overrides) -> WorkflowNode:
        data = {
            "name": name,
            "type": "n8n-nodes-base.set",
            "typeVersion": 1,
            "position": [0, 0],
            "parameters": {},
        }
        data.update(overrides)
        return WorkflowNode(**data)

    return _create


@pytest.fixture
def default_workflow_parameters():
    """Workflow context used when exporting graphs."""
    return {
        "id": "test-workflow-1",
        "name": "Test Workflow",
        "active": False,
        "settings": {"executionTimeout": -1},
    }
