import asyncio
import logging
import uuid
from collections.abc import Awaitable, Callable
from typing import Any

from stepflow.application.adapter import (
    CacheStore,
    ExecutionContext,
    ReferenceResolver,
    StepExecutor,
    WorkflowEventEmitter,
    utcnow,
)
from stepflow.application.port import ToolRegistry, WorkflowEngine
from stepflow.domain.entity import CacheStats, StepResult, Workflow, WorkflowResult, WorkflowStep
from stepflow.domain.exception import WorkflowError
from stepflow.domain.service import validate_workflow
from stepflow.domain.value_object import ExecutionOptions, OnError, WorkflowEvent, WorkflowProgress

logger = logging.getLogger(__name__)


class UUIDGenerator:
    """Generates unique identifiers using UUID."""

    def generate(self) -> str:
        """
        Generate a unique identifier.

        :returns: A unique identifier string
        :rtype: str
        """
        return uuid.uuid4().hex


class InMemoryWorkflowEngine(WorkflowEngine):
    """Runs workflow steps one at a time on the current event loop."""

    def __init__(
        self,
        registry: ToolRegistry,
        cache: CacheStore | None = None,
        resolver: ReferenceResolver | None = None,
        events: WorkflowEventEmitter | None = None,
        execution_options: ExecutionOptions | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        """
        Initializes the engine with its collaborators.

        :param registry: Supplies initialized tool instances
        :type registry: ToolRegistry
        :param cache: Step result cache; a memory-only store is created when omitted
        :type cache: CacheStore | None
        :param resolver: Expands `$ref` and `$merge` inputs
        :type resolver: ReferenceResolver | None
        :param events: Receives progress events
        :type events: WorkflowEventEmitter | None
        :param execution_options: Retry backoff and validation settings
        :type execution_options: ExecutionOptions | None
        :param sleep: Coroutine used for step delays and retry backoff
        :type sleep: Callable[[float], Awaitable[Any]]
        """
        self.registry = registry
        self.cache = cache if cache is not None else CacheStore()
        self.resolver = resolver if resolver is not None else ReferenceResolver()
        self.events = events if events is not None else WorkflowEventEmitter()
        self.execution_options = execution_options if execution_options is not None else ExecutionOptions()
        self.executor = StepExecutor(
            registry=self.registry,
            resolver=self.resolver,
            cache=self.cache,
            events=self.events,
            execution_options=self.execution_options,
            sleep=sleep,
        )
        self.ids = UUIDGenerator()
        self._running: dict[str, asyncio.Event] = {}

    def is_running(self, workflow_id: str) -> bool:
        return workflow_id in self._running

    def cancel(self, workflow_id: str) -> bool:
        cancel_requested = self._running.get(workflow_id)
        if cancel_requested is None:
            return False
        cancel_requested.set()
        logger.info("Cancellation requested for workflow %s", workflow_id)
        return True

    async def run(self, workflow: Workflow) -> WorkflowResult:
        """
        Executes each step of the workflow in order and returns a WorkflowResult.

        :param workflow: The workflow to execute
        :type workflow: Workflow
        :returns: The result of executing the workflow
        :rtype: WorkflowResult
        :raises WorkflowValidationError: If the workflow is malformed; no step runs
        :raises WorkflowError: If the same workflow is already running
        """
        validate_workflow(workflow, self.execution_options.validate_references)
        if workflow.id in self._running:
            raise WorkflowError(f"Workflow '{workflow.id}' is already running", workflow.id)

        cancel_requested = asyncio.Event()
        self._running[workflow.id] = cancel_requested
        try:
            return await self._run(workflow, cancel_requested)
        finally:
            del self._running[workflow.id]

    async def _run(self, workflow: Workflow, cancel_requested: asyncio.Event) -> WorkflowResult:
        run_id = self.ids.generate()
        started_at = utcnow()
        stats = CacheStats()
        ctx = ExecutionContext(workflow)
        total = workflow.step_count
        error = None
        cancelled = False

        if workflow.clear_cache_on_run:
            await self.cache.clear(workflow.id)

        logger.info("Starting workflow %s (%d steps, run %s)", workflow.id, total, run_id)
        self._emit(WorkflowEvent.WORKFLOW_STARTED, workflow.id, progress=0, message=f"Starting {workflow.name}")

        for index, step in enumerate(workflow.steps):
            if cancel_requested.is_set():
                cancelled = True
                error = "Workflow cancelled"
                logger.info("Workflow %s cancelled before step %s", workflow.id, step.id)
                break

            self._emit(WorkflowEvent.STEP_STARTED, workflow.id, step.id, progress=self._progress(index, total))
            result = await self.executor.execute(step, ctx.at(index))
            ctx.results[step.id] = result
            self._count_cache_usage(step, result, stats)

            if result.success:
                logger.debug("Step %s completed%s", step.id, " (cached)" if result.from_cache else "")
                self._emit(
                    WorkflowEvent.STEP_COMPLETED,
                    workflow.id,
                    step.id,
                    progress=self._progress(index + 1, total),
                    message=f"Completed {step.id}",
                    from_cache=result.from_cache,
                )
                continue

            message = f"Step '{step.id}' failed: {result.error.message}"
            logger.warning("%s [%s]", message, result.error.code)
            self._emit(WorkflowEvent.STEP_FAILED, workflow.id, step.id, message=message)
            self._emit(
                WorkflowEvent.STEP_COMPLETED,
                workflow.id,
                step.id,
                progress=self._progress(index + 1, total),
                message=message,
                from_cache=False,
            )
            if step.error_policy is not OnError.CONTINUE:
                error = message
                break

        failed = [step_id for step_id, result in ctx.results.items() if not result.success]
        if error is None and failed:
            error = f"{len(failed)} step(s) failed: {', '.join(failed)}"
        success = error is None
        workflow_result = WorkflowResult(
            workflow_id=workflow.id,
            success=success,
            started_at=started_at,
            ended_at=utcnow(),
            step_results=ctx.results,
            error=error,
            cancelled=cancelled,
            cache_stats=stats,
        )

        if success:
            logger.info("Workflow %s completed (run %s)", workflow.id, run_id)
            self._emit(WorkflowEvent.WORKFLOW_COMPLETED, workflow.id, progress=100, message="Workflow completed")
        else:
            logger.info("Workflow %s failed (run %s): %s", workflow.id, run_id, error)
            self._emit(WorkflowEvent.WORKFLOW_FAILED, workflow.id, message=error)
        return workflow_result

    @staticmethod
    def _progress(done: int, total: int) -> int:
        return 100 if total == 0 else done * 100 // total

    @staticmethod
    def _count_cache_usage(step: WorkflowStep, result: StepResult, stats: CacheStats) -> None:
        if not step.caching or result.cache_key is None:
            return
        if result.from_cache:
            stats.cache_hits += 1
            return
        stats.cache_misses += 1
        if result.success:
            stats.steps_cached.append(step.id)

    def _emit(
        self,
        event: WorkflowEvent,
        workflow_id: str,
        step_id: str | None = None,
        progress: int | None = None,
        message: str | None = None,
        from_cache: bool | None = None,
    ) -> None:
        self.events.emit(
            event,
            WorkflowProgress(
                workflow_id=workflow_id,
                step_id=step_id,
                progress=progress,
                message=message,
                from_cache=from_cache,
            ),
        )
