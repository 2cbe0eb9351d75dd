import asyncio
import hashlib
import logging
import time
from collections import defaultdict
from collections.abc import Awaitable, Callable
from datetime import datetime, timezone
from typing import Any

import msgspec

from stepflow.application.port import CacheBackend, Context, TemplateStore, ToolRegistry
from stepflow.domain.entity import StepError, StepResult, Workflow, WorkflowStep
from stepflow.domain.exception import CacheError, ReferenceResolutionError, StepflowError, ToolExecutionError
from stepflow.domain.service import (
    check_inputs,
    check_reference,
    lookup_path,
    matches_tool_type,
    parse_reference,
)
from stepflow.domain.value_object import (
    MERGE_KEY,
    CacheEntry,
    ExecutionOptions,
    LiteralInput,
    MappingInput,
    MergeInput,
    OnError,
    ParsedReference,
    ReferenceInput,
    ReferenceKind,
    SequenceInput,
    WorkflowEvent,
    WorkflowInput,
    WorkflowProgress,
    join_path,
    parse_input,
)

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ExecutionContext(Context):
    """Holds the workflow being run, the current step position and results so far."""

    def __init__(self, workflow: Workflow, results: dict[str, StepResult] | None = None, index: int = 0):
        self.workflow = workflow
        self.results: dict[str, StepResult] = results if results is not None else {}
        self.index = index

    @property
    def current_step(self) -> WorkflowStep:
        return self.workflow.steps[self.index]

    def get_result(self, step_id: str) -> StepResult:
        """Retrieves the result of a previously executed step by its id."""
        return self.results[step_id]

    def at(self, index: int) -> "ExecutionContext":
        """A view of the same run positioned at another step."""
        return ExecutionContext(self.workflow, self.results, index)


class ReferenceResolver:
    """Resolves `$ref` and `$merge` nodes in step inputs against prior step results.

    Rules, for any object node, in precedence order:

    - ``{"$ref": "step"}`` is the full data of that step; ``{"$ref": "step.a.b[0]"}``
      is a nested lookup inside it.
    - ``{{previous}}`` / ``{{previous.path}}`` alias the step immediately before.
    - ``{{previous:type}}`` / ``{{previous:type.path}}`` alias the nearest prior
      step whose tool id matches ``type``.
    - ``{{template:ref}}`` is the template returned by the template store.
    - ``{"$merge": [...]}`` shallow-merges resolved objects left to right.

    Arrays and objects are resolved element-wise; primitives pass through.
    Resolution is strict: any failure raises ReferenceResolutionError.
    """

    def __init__(self, template_store: TemplateStore | None = None):
        self.template_store = template_store

    async def resolve(self, inputs: Any, ctx: ExecutionContext) -> Any:
        """
        Resolve a step's declared inputs.

        :param inputs: The raw input tree
        :type inputs: Any
        :param ctx: Execution context positioned at the step being resolved
        :type ctx: ExecutionContext
        :returns: The concrete input value
        :rtype: Any
        :raises ReferenceResolutionError: If any reference cannot be resolved
        """
        tree = parse_input(inputs)
        return await self._resolve_node(tree, ctx, "inputs")

    def validate(self, inputs: Any, workflow: Workflow, index: int) -> list[str]:
        """
        Structural check of an input tree for the step at ``index``, without results.

        :param inputs: The raw input tree
        :type inputs: Any
        :param workflow: The workflow the inputs belong to
        :type workflow: Workflow
        :param index: The step position
        :type index: int
        :returns: Error messages; empty when all references are valid
        :rtype: list[str]
        """
        return check_inputs(inputs, workflow, index)

    async def _resolve_node(self, node: WorkflowInput, ctx: ExecutionContext, path: str) -> Any:
        if isinstance(node, LiteralInput):
            return node.value
        if isinstance(node, ReferenceInput):
            return await self._resolve_reference(node.ref, ctx, path)
        if isinstance(node, MergeInput):
            merged: dict[str, Any] = {}
            for i, item in enumerate(node.items):
                item_path = join_path(f"{path}.{MERGE_KEY}", i)
                value = await self._resolve_node(item, ctx, item_path)
                if isinstance(value, msgspec.Struct):
                    value = msgspec.to_builtins(value)
                if not isinstance(value, dict):
                    raise ReferenceResolutionError(
                        f"{MERGE_KEY} entries must resolve to objects, got {type(value).__name__}", item_path
                    )
                merged.update(value)
            return merged
        if isinstance(node, SequenceInput):
            return [await self._resolve_node(item, ctx, join_path(path, i)) for i, item in enumerate(node.items)]
        if isinstance(node, MappingInput):
            return {key: await self._resolve_node(value, ctx, join_path(path, key)) for key, value in node.entries}
        raise TypeError(f"Unknown input node: {type(node).__name__}")

    async def _resolve_reference(self, ref: str, ctx: ExecutionContext, path: str) -> Any:
        try:
            parsed = parse_reference(ref)
        except ValueError as e:
            raise ReferenceResolutionError(str(e), path) from None

        if parsed.kind is ReferenceKind.TEMPLATE:
            return await self._resolve_template(parsed, path)

        step_id = self._target_step_id(parsed, ctx, path)
        result = ctx.results.get(step_id)
        if result is None or not result.success:
            raise ReferenceResolutionError(f'Step "{step_id}" not found or failed', path, {"ref": ref})
        if parsed.path is None:
            return result.data
        try:
            return lookup_path(result.data, parsed.path)
        except KeyError as e:
            raise ReferenceResolutionError(
                f'Property "{e.args[0]}" not found in result of step "{step_id}"', path, {"ref": ref}
            ) from None

    def _target_step_id(self, parsed: ParsedReference, ctx: ExecutionContext, path: str) -> str:
        problem = check_reference(parsed, ctx.workflow, ctx.index)
        if problem is not None:
            raise ReferenceResolutionError(problem, path, {"ref": parsed.raw})

        if parsed.kind is ReferenceKind.PREVIOUS:
            return ctx.workflow.steps[ctx.index - 1].id
        if parsed.kind is ReferenceKind.PREVIOUS_TOOL:
            # check_reference guarantees a match exists
            for i in range(ctx.index - 1, -1, -1):
                step = ctx.workflow.steps[i]
                if parsed.target is not None and matches_tool_type(step.tool_id, parsed.target):
                    return step.id
        return parsed.target

    async def _resolve_template(self, parsed: ParsedReference, path: str) -> Any:
        if self.template_store is None:
            raise ReferenceResolutionError("No template store configured", path, {"ref": parsed.raw})
        try:
            template = await self.template_store.resolve_template_reference(parsed.target)
        except Exception as e:
            raise ReferenceResolutionError(
                f'Template "{parsed.target}" lookup failed: {e}', path, {"ref": parsed.raw}
            ) from e
        if template is None:
            raise ReferenceResolutionError(f'Template "{parsed.target}" not found', path, {"ref": parsed.raw})
        return template


def _encode_fallback(obj: Any) -> Any:
    if isinstance(obj, (set, frozenset)):
        return sorted(obj, key=repr)
    return repr(obj)


def fingerprint(workflow_id: str, step_id: str, inputs: Any, explicit_key: str | None = None) -> str:
    """
    Cache key of a step invocation.

    An explicit key is used verbatim. Otherwise the key is a SHA-256 digest of
    the sorted-key JSON encoding of ``{workflowId, stepId, inputs}``, so equal
    inputs to the same step always address the same slot.

    :param workflow_id: The workflow identifier
    :type workflow_id: str
    :param step_id: The step identifier
    :type step_id: str
    :param inputs: The resolved step inputs
    :type inputs: Any
    :param explicit_key: Key configured on the step, if any
    :type explicit_key: str | None
    :returns: The cache key
    :rtype: str
    """
    if explicit_key:
        return explicit_key
    payload = msgspec.json.encode(
        {"workflowId": workflow_id, "stepId": step_id, "inputs": inputs},
        enc_hook=_encode_fallback,
        order="sorted",
    )
    return hashlib.sha256(payload).hexdigest()


def _now_ms() -> float:
    return time.time() * 1000


class CacheStore:
    """Two-tier step result cache.

    Every entry lives in the in-memory tier. Persistent entries are also written
    to the durable ``backend``; lookups check memory first, then the backend,
    repopulating memory on a durable hit. Durable-tier failures are logged and
    degrade to a miss.
    """

    def __init__(self, backend: CacheBackend | None = None, clock: Callable[[], float] | None = None):
        self.backend = backend
        self._clock = clock or _now_ms
        self._memory: dict[str, CacheEntry] = {}

    def now(self) -> float:
        return self._clock()

    async def get(self, key: str) -> CacheEntry | None:
        """
        Look up an unexpired entry.

        :param key: The cache key
        :type key: str
        :returns: The entry, or None on a miss
        :rtype: CacheEntry | None
        """
        now = self.now()
        entry = self._memory.get(key)
        if entry is not None:
            if entry.is_expired(now):
                await self._evict(entry)
                return None
            return entry

        if self.backend is None:
            return None
        try:
            entry = await asyncio.to_thread(self.backend.get, key)
        except CacheError as e:
            logger.warning("Durable cache read failed for %s, treating as miss: %s", key, e)
            return None
        if entry is None:
            return None
        if entry.is_expired(now):
            await self._evict(entry)
            return None
        self._memory[key] = entry
        return entry

    async def set(
        self,
        key: str,
        value: Any,
        ttl_ms: int | None = None,
        persistent: bool = False,
        workflow_id: str | None = None,
    ) -> CacheEntry:
        """
        Store a value. Persistent entries are written to both tiers.

        :param key: The cache key
        :type key: str
        :param value: The value to cache
        :type value: Any
        :param ttl_ms: Time to live in milliseconds; None never expires
        :type ttl_ms: int | None
        :param persistent: Also write to the durable tier
        :type persistent: bool
        :param workflow_id: Owner of the entry, used by scoped clears
        :type workflow_id: str | None
        :returns: The stored entry
        :rtype: CacheEntry
        """
        entry = CacheEntry(
            key=key,
            value=value,
            created_at=self.now(),
            ttl_ms=ttl_ms,
            workflow_id=workflow_id,
            persistent=persistent,
        )
        self._memory[key] = entry
        if persistent and self.backend is not None:
            try:
                await asyncio.to_thread(self.backend.set, entry)
            except CacheError as e:
                logger.warning("Durable cache write failed for %s, keeping in memory only: %s", key, e)
        return entry

    async def invalidate(self, key: str) -> bool:
        removed = self._memory.pop(key, None) is not None
        if self.backend is not None:
            try:
                removed = await asyncio.to_thread(self.backend.delete, key) or removed
            except CacheError as e:
                logger.warning("Durable cache delete failed for %s: %s", key, e)
        return removed

    async def clear(self, workflow_id: str | None = None) -> int:
        """
        Remove every entry, or every entry of one workflow.

        :param workflow_id: Scope; None clears all workflows
        :type workflow_id: str | None
        :returns: Number of in-memory entries removed
        :rtype: int
        """
        if workflow_id is None:
            count = len(self._memory)
            self._memory.clear()
        else:
            keys = [k for k, entry in self._memory.items() if entry.workflow_id == workflow_id]
            for k in keys:
                del self._memory[k]
            count = len(keys)
        if self.backend is not None:
            try:
                await asyncio.to_thread(self.backend.clear, workflow_id)
            except CacheError as e:
                logger.warning("Durable cache clear failed for %s: %s", workflow_id or "all workflows", e)
        logger.debug("Cleared %d cache entries for %s", count, workflow_id or "all workflows")
        return count

    def stats(self, workflow_id: str | None = None) -> dict[str, int]:
        entries = [e for e in self._memory.values() if workflow_id is None or e.workflow_id == workflow_id]
        return {
            "entries": len(entries),
            "persistentEntries": sum(1 for e in entries if e.persistent),
        }

    async def _evict(self, entry: CacheEntry) -> None:
        self._memory.pop(entry.key, None)
        if entry.persistent and self.backend is not None:
            try:
                await asyncio.to_thread(self.backend.delete, entry.key)
            except CacheError as e:
                logger.warning("Failed to evict expired entry %s from durable cache: %s", entry.key, e)


Listener = Callable[[WorkflowProgress], Any]


class WorkflowEventEmitter:
    """Synchronous progress event fan-out. Listener errors never reach the emitter."""

    def __init__(self):
        self._listeners: dict[str, list[Listener]] = defaultdict(list)

    def on(self, event: WorkflowEvent | str, callback: Listener) -> Callable[[], bool]:
        """
        Subscribe to an event.

        :param event: Event name, e.g. ``"step-completed"``
        :type event: WorkflowEvent | str
        :param callback: Called with a WorkflowProgress payload
        :type callback: Callable[[WorkflowProgress], Any]
        :returns: A function that removes the subscription
        :rtype: Callable[[], bool]
        """
        name = WorkflowEvent(event).value
        self._listeners[name].append(callback)
        return lambda: self.off(name, callback)

    def off(self, event: WorkflowEvent | str, callback: Listener) -> bool:
        callbacks = self._listeners.get(WorkflowEvent(event).value, [])
        if callback in callbacks:
            callbacks.remove(callback)
            return True
        return False

    def emit(self, event: WorkflowEvent | str, data: WorkflowProgress) -> None:
        name = WorkflowEvent(event).value
        for callback in list(self._listeners.get(name, [])):
            try:
                callback(data)
            except Exception:
                logger.exception("Error in workflow event callback for %s", name)


class StepExecutor:
    """Executes one workflow step: delay, input resolution, cache lookup, tool call with retries."""

    def __init__(
        self,
        registry: ToolRegistry,
        resolver: ReferenceResolver,
        cache: CacheStore,
        events: WorkflowEventEmitter,
        execution_options: ExecutionOptions,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.registry = registry
        self.resolver = resolver
        self.cache = cache
        self.events = events
        self.execution_options = execution_options
        self.sleep = sleep

    async def execute(self, step: WorkflowStep, ctx: ExecutionContext) -> StepResult:
        """
        Executes the step and returns a structured result. Never raises for step-level errors.

        :param step: The step to run
        :type step: WorkflowStep
        :param ctx: Execution context positioned at the step
        :type ctx: ExecutionContext
        :returns: The step result
        :rtype: StepResult
        """
        started_at = utcnow()
        if step.delay_ms:
            await self.sleep(step.delay_ms / 1000)

        try:
            resolved = await self.resolver.resolve(step.inputs, ctx)
        except ReferenceResolutionError as e:
            logger.warning("Step %s: %s", step.id, e)
            return self._failure(step, e, started_at)

        cache_key = None
        if step.caching:
            cache_key = fingerprint(ctx.workflow.id, step.id, resolved, step.cache.key)
            entry = await self.cache.get(cache_key)
            if entry is not None:
                logger.debug("Step %s served from cache (%s)", step.id, cache_key)
                return StepResult(
                    step_id=step.id,
                    tool_id=step.tool_id,
                    success=True,
                    data=entry.value,
                    started_at=started_at,
                    ended_at=utcnow(),
                    from_cache=True,
                    cache_key=cache_key,
                )

        retries = step.retry_count if step.error_policy is OnError.RETRY else 0
        attempt = 0
        while True:
            try:
                data = await self.registry.invoke(step.tool_id, resolved)
                break
            except ToolExecutionError as e:
                if attempt < retries:
                    delay_ms = self.execution_options.backoff_ms(attempt)
                    attempt += 1
                    logger.info(
                        "Step %s failed (%s), retry %d/%d in %dms", step.id, e.message, attempt, retries, delay_ms
                    )
                    self.events.emit(
                        WorkflowEvent.STEP_RETRYING,
                        WorkflowProgress(
                            workflow_id=ctx.workflow.id,
                            step_id=step.id,
                            message=f"Retry {attempt}/{retries}: {e.message}",
                        ),
                    )
                    if delay_ms > 0:
                        await self.sleep(delay_ms / 1000)
                    continue
                return self._failure(step, e, started_at, attempt, cache_key)
            except StepflowError as e:
                return self._failure(step, e, started_at, attempt, cache_key)

        if cache_key is not None:
            await self.cache.set(
                cache_key,
                data,
                ttl_ms=step.cache.ttl_ms,
                persistent=step.cache.persistent,
                workflow_id=ctx.workflow.id,
            )

        return StepResult(
            step_id=step.id,
            tool_id=step.tool_id,
            success=True,
            data=data,
            started_at=started_at,
            ended_at=utcnow(),
            retry_count=attempt,
            cache_key=cache_key,
        )

    def _failure(
        self,
        step: WorkflowStep,
        error: StepflowError,
        started_at: datetime,
        retry_count: int = 0,
        cache_key: str | None = None,
    ) -> StepResult:
        return StepResult(
            step_id=step.id,
            tool_id=step.tool_id,
            success=False,
            error=StepError(message=error.message, code=error.code, details=_safe_details(error.details)),
            started_at=started_at,
            ended_at=utcnow(),
            retry_count=retry_count,
            cache_key=cache_key,
        )


def _safe_details(details: dict[str, Any]) -> dict[str, Any]:
    safe = {}
    for key, value in details.items():
        if value is None or isinstance(value, (str, int, float, bool)):
            safe[key] = value
        else:
            safe[key] = repr(value)
    return safe
