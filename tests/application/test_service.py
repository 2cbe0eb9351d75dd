"""
Tests for application services.

This module tests workflow loading and the WorkflowClient wiring.
"""

from unittest.mock import AsyncMock, Mock

import pytest

from stepflow.application.adapter import CacheStore, ReferenceResolver, WorkflowEventEmitter
from stepflow.application.port import ToolRegistry, WorkflowEngine, WorkflowStorage
from stepflow.application.service import (
    WorkflowClient,
    collect_workflow_errors,
    decode_workflow,
    load_workflow,
    read_workflow,
)
from stepflow.domain.entity import Workflow, WorkflowStep
from stepflow.domain.exception import WorkflowNotFoundError, WorkflowValidationError
from stepflow.domain.value_object import ExecutionOptions

WORKFLOW_DICT = {
    "id": "wf",
    "name": "Greeting",
    "steps": [
        {"id": "hello", "toolId": "echo", "inputs": {"text": "hi"}},
        {"id": "again", "toolId": "echo", "inputs": {"$ref": "hello"}, "onError": "continue"},
    ],
}


class TestLoadWorkflow:
    """Test cases for load_workflow."""

    def test_load_from_dict(self):
        """Test decoding a camelCase dictionary."""
        workflow = load_workflow(WORKFLOW_DICT)

        assert isinstance(workflow, Workflow)
        assert [step.id for step in workflow.steps] == ["hello", "again"]
        assert workflow.steps[1].on_error == "continue"

    def test_load_existing_workflow(self):
        """Test that Workflow instances are validated and returned."""
        workflow = Workflow(id="wf", name="Empty")

        assert load_workflow(workflow) is workflow

    def test_wrong_types_become_validation_errors(self):
        """Test that decoding errors are reported as WorkflowValidationError."""
        with pytest.raises(WorkflowValidationError) as excinfo:
            load_workflow({"id": "wf", "name": "Bad", "steps": [{"id": "a", "toolId": 5}]})

        assert excinfo.value.workflow_id == "wf"
        assert excinfo.value.errors

    def test_unknown_fields_rejected(self):
        """Test strict field checking."""
        with pytest.raises(WorkflowValidationError):
            load_workflow({"id": "wf", "name": "Bad", "unexpected": True})

    def test_reference_errors(self):
        """Test that forward references fail loading."""
        data = {
            "id": "wf",
            "name": "Forward",
            "steps": [{"id": "a", "toolId": "echo", "inputs": {"$ref": "b"}}, {"id": "b", "toolId": "echo"}],
        }

        with pytest.raises(WorkflowValidationError, match="runs after"):
            load_workflow(data)
        assert load_workflow(data, check_references=False).step_count == 2

    def test_collect_workflow_errors(self):
        """Test non-raising validation."""
        assert collect_workflow_errors(WORKFLOW_DICT) == []
        assert collect_workflow_errors({"id": "wf", "name": "", "steps": []}) == ["Workflow name must not be empty"]


class TestDecodeWorkflow:
    """Test cases for decode_workflow and read_workflow."""

    def test_decode_json(self):
        """Test JSON text."""
        workflow = decode_workflow('{"id": "wf", "name": "J", "steps": [{"id": "a", "toolId": "echo"}]}')

        assert workflow.steps[0].tool_id == "echo"

    def test_decode_yaml(self):
        """Test YAML text."""
        text = """
id: wf
name: Y
steps:
  - id: a
    toolId: echo
    inputs:
      text: hi
  - id: b
    toolId: echo
    inputs:
      $ref: a.text
"""
        workflow = decode_workflow(text, format="yaml")

        assert workflow.steps[1].inputs == {"$ref": "a.text"}

    def test_invalid_json(self):
        """Test malformed text."""
        with pytest.raises(WorkflowValidationError, match="Could not decode"):
            decode_workflow("{not json")

    def test_unsupported_format(self):
        """Test format selection."""
        with pytest.raises(ValueError, match="Unsupported workflow format"):
            decode_workflow("{}", format="toml")

    def test_read_workflow_file(self, tmp_path):
        """Test reading a definition from disk."""
        path = tmp_path / "flow.yaml"
        path.write_text("id: wf\nname: File\nsteps: []\n")

        assert read_workflow(path).name == "File"


class TestWorkflowClient:
    """Test cases for WorkflowClient."""

    def setup_method(self):
        """Setup test fixtures."""
        self.engine = Mock(spec=WorkflowEngine)
        self.engine.run = AsyncMock(return_value="result")
        self.storage = Mock(spec=WorkflowStorage)
        self.client = WorkflowClient(
            registry=Mock(spec=ToolRegistry),
            cache=CacheStore(),
            resolver=ReferenceResolver(),
            events=WorkflowEventEmitter(),
            engine=self.engine,
            storage=self.storage,
        )

    def test_default_execution_options(self):
        """Test that options default when omitted."""
        assert self.client.execution_options == ExecutionOptions()

    @pytest.mark.asyncio
    async def test_run_loads_then_delegates(self):
        """Test that run decodes the definition before handing it to the engine."""
        result = await self.client.run(WORKFLOW_DICT)

        assert result == "result"
        workflow = self.engine.run.await_args.args[0]
        assert isinstance(workflow, Workflow)
        assert workflow.id == "wf"

    @pytest.mark.asyncio
    async def test_run_invalid_never_reaches_engine(self):
        """Test that invalid workflows are rejected before execution."""
        with pytest.raises(WorkflowValidationError):
            await self.client.run({"id": "wf", "name": "x", "steps": [{"id": "a", "toolId": "t", "retryCount": 99}]})

        self.engine.run.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_run_stored(self):
        """Test running a stored workflow."""
        stored = Workflow(id="wf", name="Stored", steps=(WorkflowStep(id="a", tool_id="echo"),))
        self.storage.load.return_value = stored

        await self.client.run_stored("wf")

        self.storage.load.assert_called_once_with("wf")
        self.engine.run.assert_awaited_once_with(stored)

    @pytest.mark.asyncio
    async def test_run_stored_missing(self):
        """Test unknown stored workflow ids."""
        self.storage.load.return_value = None

        with pytest.raises(WorkflowNotFoundError):
            await self.client.run_stored("missing")
