"""
Tests for client facade.

This module tests the Client facade against an in-memory backend.
"""

from unittest.mock import Mock

import pytest

from stepflow.client import Client
from stepflow.domain.entity import Template, Workflow, WorkflowStep
from stepflow.domain.exception import WorkflowNotFoundError, WorkflowValidationError
from stepflow.domain.port import ToolBase
from stepflow.infrastructure.adapter.in_memory.client import create as create_in_memory_client


class EchoTool(ToolBase):
    tool_id = "echo"

    def execute(self, input):
        return input


class TemplateTool(ToolBase):
    tool_id = "find-template"

    def execute(self, input):
        return {"found": input["template"].name}


GREETING = {
    "id": "greeting",
    "name": "Greeting",
    "description": "Says hello",
    "steps": [{"id": "hello", "toolId": "echo", "inputs": {"text": "hi"}}],
}


class TestClient:
    """Test cases for Client facade."""

    def setup_method(self):
        """Setup test fixtures."""
        self.client = Client(create_in_memory_client())

    def test_tool_registration_chains(self):
        """Test that tool() returns the client."""
        result = self.client.tool(EchoTool).tool(EchoTool, "echo-copy")

        assert result is self.client
        assert self.client.list_tools() == ["echo", "echo-copy"]

    def test_register_factory(self):
        """Test registering a plain factory."""
        factory = Mock()

        self.client.register("custom", factory, display_name="Custom")

        assert self.client.list_tools() == ["custom"]
        factory.assert_not_called()

    @pytest.mark.asyncio
    async def test_run(self):
        """Test running a definition dictionary."""
        self.client.tool(EchoTool)

        result = await self.client.run(GREETING)

        assert result.success is True
        assert result.step_results["hello"].data == {"text": "hi"}

    @pytest.mark.asyncio
    async def test_run_with_template(self):
        """Test that registered templates are resolvable."""
        self.client.tool(TemplateTool).template(Template(id="t1", name="ok-button", category="buttons"))
        definition = {
            "id": "wf",
            "name": "Find",
            "steps": [{"id": "find", "toolId": "find-template", "inputs": {"template": {"$ref": "{{template:buttons/ok-button}}"}}}],
        }

        result = await self.client.run(definition)

        assert result.step_results["find"].data == {"found": "ok-button"}

    def test_events(self):
        """Test subscribe and unsubscribe."""
        callback = Mock()

        unsubscribe = self.client.on("step-completed", callback)

        assert unsubscribe() is True
        assert self.client.off("step-completed", callback) is False

    def test_unknown_event_rejected(self):
        """Test event name checking."""
        with pytest.raises(ValueError):
            self.client.on("step-exploded", Mock())

    def test_validate(self):
        """Test non-raising validation."""
        assert self.client.validate(GREETING) == []
        errors = self.client.validate(
            {"id": "wf", "name": "Bad", "steps": [{"id": "a", "toolId": "echo", "inputs": {"$ref": "b"}}, {"id": "b", "toolId": "echo"}]}
        )
        assert len(errors) == 1

    def test_cancel_not_running(self):
        """Test cancelling an idle workflow."""
        assert self.client.cancel("greeting") is False

    @pytest.mark.asyncio
    async def test_clear_cache(self):
        """Test scoped cache clearing."""
        cache = self.client.backend.cache
        await cache.set("a", 1, workflow_id="wf1")
        await cache.set("b", 2, workflow_id="wf2")

        assert await self.client.clear_cache("wf1") == 1
        assert await self.client.clear_cache() == 1

    def test_workflow_storage(self):
        """Test save, load, list, search and delete."""
        stored = self.client.save_workflow(GREETING, tags=["demo"])

        assert isinstance(stored, Workflow)
        assert self.client.load_workflow("greeting") == stored
        assert [s.id for s in self.client.list_workflows()] == ["greeting"]
        assert [s.id for s in self.client.search_workflows("hello")] == ["greeting"]
        assert self.client.delete_workflow("greeting") is True
        with pytest.raises(WorkflowNotFoundError):
            self.client.load_workflow("greeting")

    def test_save_invalid_workflow(self):
        """Test that invalid workflows are not stored."""
        invalid = Workflow(id="wf", name="Bad", steps=(WorkflowStep(id="a", tool_id="t", inputs={"$ref": "a"}),))

        with pytest.raises(WorkflowValidationError):
            self.client.save_workflow(invalid)
        assert self.client.list_workflows() == []

    @pytest.mark.asyncio
    async def test_run_stored(self):
        """Test running a workflow by id."""
        self.client.tool(EchoTool)
        self.client.save_workflow(GREETING)

        result = await self.client.run_stored("greeting")

        assert result.workflow_id == "greeting"

    def test_storage_unavailable(self):
        """Test backends without workflow storage."""
        backend = create_in_memory_client()
        backend.storage = None
        client = Client(backend)

        with pytest.raises(NotImplementedError):
            client.list_workflows()
