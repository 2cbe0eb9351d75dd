from typing import Any, Literal

import msgspec

from stepflow.domain.entity import CacheConfig, Workflow, WorkflowStep
from stepflow.domain.service import validate_workflow
from stepflow.domain.value_object import MERGE_KEY, REF_KEY

OnErrorLiteral = Literal["stop", "continue", "retry"]


def _cache_config(cache: CacheConfig | dict | None) -> CacheConfig | None:
    if cache is None or isinstance(cache, CacheConfig):
        return cache
    return msgspec.convert(cache, type=CacheConfig)


def create_step(
    id: str,
    tool_id: str,
    inputs: Any = None,
    *,
    on_error: OnErrorLiteral = "stop",
    retry_count: int = 0,
    delay_ms: int | None = None,
    cache: CacheConfig | dict | None = None,
) -> WorkflowStep:
    """
    Build a single workflow step.

    :param id: Step identifier, unique within its workflow
    :type id: str
    :param tool_id: Registered tool to invoke
    :type tool_id: str
    :param inputs: Input tree; may contain ``ref``/``merge``/``previous``/``template`` nodes
    :type inputs: Any
    :param on_error: ``stop``, ``continue`` or ``retry``
    :type on_error: str
    :param retry_count: Extra attempts when ``on_error`` is ``retry``
    :type retry_count: int
    :param delay_ms: Pause before the step runs
    :type delay_ms: int | None
    :param cache: Cache policy, as a CacheConfig or a camelCase dict
    :type cache: CacheConfig | dict | None
    :returns: The step
    :rtype: WorkflowStep
    """
    return WorkflowStep(
        id=id,
        tool_id=tool_id,
        inputs=inputs,
        on_error=on_error,
        retry_count=retry_count,
        delay_ms=delay_ms,
        cache=_cache_config(cache),
    )


def create_workflow(
    id: str,
    name: str,
    steps: list[WorkflowStep],
    description: str | None = None,
    clear_cache_on_run: bool = False,
) -> Workflow:
    return Workflow(
        id=id,
        name=name,
        steps=tuple(steps),
        description=description,
        clear_cache_on_run=clear_cache_on_run,
    )


class WorkflowBuilder:
    """Fluent construction of an immutable Workflow.

    Example::

        wf = (
            workflow("ocr-flow", "Read a region")
            .cached_step("region", "screen-region-selector", {}, persistent=True)
            .step("shot", "screenshot", {"region": ref("region")})
            .step("text", "ocr", {"image": previous("image")})
            .build()
        )
    """

    def __init__(self, id: str, name: str, description: str | None = None):
        self.id = id
        self.name = name
        self.description = description
        self._steps: list[WorkflowStep] = []
        self._clear_cache_on_run = False

    def step(
        self,
        id: str,
        tool_id: str,
        inputs: Any = None,
        *,
        on_error: OnErrorLiteral = "stop",
        retry_count: int = 0,
        delay_ms: int | None = None,
        cache: CacheConfig | dict | None = None,
    ) -> "WorkflowBuilder":
        if any(existing.id == id for existing in self._steps):
            raise ValueError(f"Duplicate step id: {id}")
        self._steps.append(
            create_step(
                id,
                tool_id,
                inputs,
                on_error=on_error,
                retry_count=retry_count,
                delay_ms=delay_ms,
                cache=cache,
            )
        )
        return self

    def cached_step(
        self,
        id: str,
        tool_id: str,
        inputs: Any = None,
        *,
        key: str | None = None,
        persistent: bool = False,
        ttl_ms: int | None = None,
        on_error: OnErrorLiteral = "stop",
        retry_count: int = 0,
        delay_ms: int | None = None,
    ) -> "WorkflowBuilder":
        """Adds a step with caching enabled."""
        return self.step(
            id,
            tool_id,
            inputs,
            on_error=on_error,
            retry_count=retry_count,
            delay_ms=delay_ms,
            cache=CacheConfig(enabled=True, key=key, persistent=persistent, ttl_ms=ttl_ms),
        )

    def clear_cache_on_run(self, enabled: bool = True) -> "WorkflowBuilder":
        self._clear_cache_on_run = enabled
        return self

    def build(self, validate: bool = True) -> Workflow:
        """
        Produce the workflow.

        :param validate: Run structural and reference validation
        :type validate: bool
        :returns: The immutable workflow
        :rtype: Workflow
        :raises WorkflowValidationError: If ``validate`` is set and the workflow is malformed
        """
        built = create_workflow(self.id, self.name, self._steps, self.description, self._clear_cache_on_run)
        if validate:
            validate_workflow(built)
        return built


def workflow(id: str, name: str, description: str | None = None) -> WorkflowBuilder:
    return WorkflowBuilder(id, name, description)


def ref(step_id: str, path: str | None = None) -> dict[str, str]:
    """``{"$ref": "step_id"}`` or ``{"$ref": "step_id.path"}``."""
    return {REF_KEY: f"{step_id}.{path}" if path else step_id}


def merge(*inputs: Any) -> dict[str, list[Any]]:
    """``{"$merge": [...]}``; items are shallow-merged left to right at run time."""
    return {MERGE_KEY: list(inputs)}


def previous(path: str | None = None, tool_type: str | None = None) -> dict[str, str]:
    """Reference to the step before, or to the nearest earlier step of ``tool_type``."""
    target = f"previous:{tool_type}" if tool_type else "previous"
    if path:
        target = f"{target}.{path}"
    return {REF_KEY: "{{" + target + "}}"}


def template(reference: str) -> dict[str, str]:
    """Reference to a template by id, ``category/name`` or name."""
    return {REF_KEY: "{{template:" + reference + "}}"}
