"""
Integration tests for the entire stepflow engine.

This module tests end-to-end behaviour through the public ``create`` entry
point across all layers.
"""

from unittest.mock import AsyncMock

import pytest

from stepflow import (
    BackendType,
    ExecutionOptions,
    Template,
    ToolBase,
    WorkflowResult,
    WorkflowValidationError,
    create,
    previous,
    ref,
    workflow,
)


class EchoTool(ToolBase):
    """Returns its input unchanged."""

    tool_id = "echo"

    def __init__(self):
        self.calls = []

    def execute(self, input):
        self.calls.append(input)
        return input


class AlwaysFailTool(ToolBase):
    tool_id = "always-fail"

    def __init__(self):
        self.attempts = 0

    def execute(self, input):
        self.attempts += 1
        raise RuntimeError(f"attempt {self.attempts} failed")


class ScreenshotTool(ToolBase):
    tool_id = "screenshot"

    def execute(self, input):
        return {"image": "shot.png"}


class OcrTool(ToolBase):
    tool_id = "ocr-tesseract"

    async def execute(self, input):
        return {"text": f"text of {input['image']}"}


class ClickTool(ToolBase):
    tool_id = "click"

    def execute(self, input):
        return {"clicked": input}


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


class TestEndToEnd:
    """End-to-end scenarios through the Client facade."""

    def setup_method(self):
        """Setup test fixtures."""
        self.echo = EchoTool()
        self.failing = AlwaysFailTool()
        self.clock = FakeClock()
        self.sleep = AsyncMock()
        self.client = create(
            BackendType.IN_MEMORY,
            tools={
                "echo": lambda: self.echo,
                "always-fail": lambda: self.failing,
                "screenshot": ScreenshotTool,
                "ocr-tesseract": OcrTool,
                "click": ClickTool,
            },
            options=ExecutionOptions(),
            sleep=self.sleep,
            clock=self.clock,
        )

    @pytest.mark.asyncio
    async def test_empty_workflow(self):
        """Test that a workflow without steps succeeds with no results."""
        result = await self.client.run({"id": "empty", "name": "Empty", "steps": []})

        assert isinstance(result, WorkflowResult)
        assert result.success is True
        assert result.step_results == {}

    @pytest.mark.asyncio
    async def test_echo_reference_chain(self):
        """Test that a dotted reference feeds one step's output into the next."""
        definition = {
            "id": "echo-chain",
            "name": "Echo chain",
            "steps": [
                {"id": "a", "toolId": "echo", "inputs": {"msg": "hi"}},
                {"id": "b", "toolId": "echo", "inputs": {"$ref": "a.msg"}},
            ],
        }

        result = await self.client.run(definition)

        assert result.success is True
        assert self.echo.calls[1] == "hi"
        assert result.step_results["b"].data == "hi"

    @pytest.mark.asyncio
    async def test_identical_inputs_hit_cache(self):
        """Test that a cached step runs its tool once across two runs."""
        definition = {
            "id": "cached",
            "name": "Cached",
            "steps": [{"id": "a", "toolId": "echo", "inputs": {"msg": "hi"}, "cache": {"enabled": True}}],
        }

        first = await self.client.run(definition)
        second = await self.client.run(definition)

        assert first.step_results["a"].from_cache is False
        assert second.step_results["a"].from_cache is True
        assert second.step_results["a"].data == {"msg": "hi"}
        assert len(self.echo.calls) == 1

    @pytest.mark.asyncio
    async def test_changed_input_misses_cache(self):
        """Test that a different resolved input is a different fingerprint."""

        def definition(msg):
            return {
                "id": "cached",
                "name": "Cached",
                "steps": [{"id": "a", "toolId": "echo", "inputs": {"msg": msg}, "cache": {"enabled": True}}],
            }

        await self.client.run(definition("hi"))
        result = await self.client.run(definition("hello"))

        assert result.step_results["a"].from_cache is False
        assert result.step_results["a"].data == {"msg": "hello"}
        assert len(self.echo.calls) == 2

    @pytest.mark.asyncio
    async def test_forward_reference_rejected_before_execution(self):
        """Test that references to later steps never reach a tool."""
        definition = {
            "id": "forward",
            "name": "Forward",
            "steps": [
                {"id": "a", "toolId": "echo", "inputs": {"$ref": "b"}},
                {"id": "b", "toolId": "echo", "inputs": 1},
            ],
        }

        with pytest.raises(WorkflowValidationError):
            await self.client.run(definition)

        assert self.echo.calls == []

    @pytest.mark.asyncio
    async def test_previous_and_previous_tool_type(self):
        """Test {{previous}} and {{previous:ocr}} resolution."""
        built = (
            workflow("screen", "Read and click")
            .step("shot", "screenshot", {})
            .step("text", "ocr-tesseract", {"image": previous("image")})
            .step("log", "echo", {"seen": previous("text")})
            .step("click", "click", previous("text", tool_type="ocr"))
            .build()
        )

        result = await self.client.run(built)

        assert result.success is True
        assert result.step_results["log"].data == {"seen": "text of shot.png"}
        assert result.step_results["click"].data == {"clicked": "text of shot.png"}

    @pytest.mark.asyncio
    async def test_previous_tool_type_without_match_rejected(self):
        """Test that {{previous:type}} with no candidate fails validation."""
        definition = {
            "id": "no-ocr",
            "name": "No OCR",
            "steps": [
                {"id": "shot", "toolId": "screenshot"},
                {"id": "click", "toolId": "click", "inputs": {"$ref": "{{previous:ocr}}"}},
            ],
        }

        with pytest.raises(WorkflowValidationError, match="ocr"):
            await self.client.run(definition)

    @pytest.mark.asyncio
    async def test_stop_yields_partial_results(self):
        """Test that stop on step k of n keeps exactly k results."""
        definition = {
            "id": "stop",
            "name": "Stop",
            "steps": [
                {"id": "one", "toolId": "echo", "inputs": 1},
                {"id": "two", "toolId": "always-fail"},
                {"id": "three", "toolId": "echo", "inputs": 3},
                {"id": "four", "toolId": "echo", "inputs": 4},
            ],
        }

        result = await self.client.run(definition)

        assert result.success is False
        assert list(result.step_results) == ["one", "two"]
        assert result.step_results["two"].success is False

    @pytest.mark.asyncio
    async def test_continue_failure_marks_workflow_failed(self):
        """Test that a failure under continue runs the rest but fails the workflow."""
        failures = []
        self.client.on("workflow-failed", lambda progress: failures.append(progress.message))
        definition = {
            "id": "continue",
            "name": "Continue",
            "steps": [
                {"id": "a", "toolId": "always-fail", "onError": "continue"},
                {"id": "b", "toolId": "echo", "inputs": {"msg": "still runs"}},
            ],
        }

        result = await self.client.run(definition)

        assert result.success is False
        assert result.step_results["b"].data == {"msg": "still runs"}
        assert result.failed_steps == ["a"]
        assert len(failures) == 1

    @pytest.mark.asyncio
    async def test_retry_count_two_makes_three_attempts(self):
        """Test retry attempts against an always-failing tool."""
        definition = {
            "id": "retry",
            "name": "Retry",
            "steps": [{"id": "flaky", "toolId": "always-fail", "onError": "retry", "retryCount": 2}],
        }

        result = await self.client.run(definition)

        assert self.failing.attempts == 3
        assert result.step_results["flaky"].success is False
        assert "attempt 3 failed" in result.step_results["flaky"].error.message

    @pytest.mark.asyncio
    async def test_cache_ttl_with_simulated_clock(self):
        """Test that a 100ms entry hits immediately and misses after 150ms."""
        built = workflow("ttl", "TTL").cached_step("a", "echo", {"msg": "hi"}, ttl_ms=100).build()

        await self.client.run(built)
        self.clock.now = 10
        hit = await self.client.run(built)
        self.clock.now = 150
        miss = await self.client.run(built)

        assert hit.step_results["a"].from_cache is True
        assert miss.step_results["a"].from_cache is False
        assert len(self.echo.calls) == 2

    @pytest.mark.asyncio
    async def test_template_reference(self):
        """Test that a template reference yields the stored template."""
        self.client.template(Template(id="tpl-ok", name="ok", category="buttons", data={"image": "ok.png"}))
        built = workflow("tpl", "Template").step("a", "echo", {"target": {"$ref": "{{template:buttons/ok}}"}}).build()

        result = await self.client.run(built)

        assert result.step_results["a"].data["target"].data == {"image": "ok.png"}

    @pytest.mark.asyncio
    async def test_progress_events(self):
        """Test the event sequence for a successful run."""
        received = []
        for event in ("workflow-started", "step-started", "step-completed", "workflow-completed"):
            self.client.on(event, lambda progress, name=event: received.append((name, progress.progress)))

        await self.client.run(workflow("events", "Events").step("a", "echo", 1).step("b", "echo", ref("a")).build())

        assert received == [
            ("workflow-started", 0),
            ("step-started", 0),
            ("step-completed", 50),
            ("step-started", 50),
            ("step-completed", 100),
            ("workflow-completed", 100),
        ]

    @pytest.mark.asyncio
    async def test_result_serialises(self):
        """Test JSON export of a result."""
        result = await self.client.run(workflow("json", "Json").step("a", "echo", {"msg": "hi"}).build())

        assert '"workflowId":"json"' in result.to_json()
