from datetime import datetime
from typing import Any, Literal

import msgspec

from stepflow.domain.value_object import OnError


class CacheConfig(msgspec.Struct, frozen=True, rename="camel", forbid_unknown_fields=True):
    """Per-step caching policy. Without ``ttl_ms`` an entry lives until cleared."""

    enabled: bool
    key: str | None = None
    persistent: bool = False
    ttl_ms: int | None = None

    def validate(self) -> None:
        if self.ttl_ms is not None and self.ttl_ms <= 0:
            raise ValueError(f"Cache ttlMs must be positive, got {self.ttl_ms}")
        if self.key is not None and not self.key:
            raise ValueError("Cache key must not be empty")


class WorkflowStep(msgspec.Struct, frozen=True, kw_only=True, rename="camel", forbid_unknown_fields=True):
    """One tool invocation with declared inputs and an error/retry policy.

    ``inputs`` may contain any JSON value, including ``{"$ref": ...}`` and
    ``{"$merge": [...]}`` nodes.
    """

    id: str
    tool_id: str
    inputs: Any = None
    on_error: Literal["stop", "continue", "retry"] = "stop"
    retry_count: int = 0
    delay_ms: int | None = None
    cache: CacheConfig | None = None

    @property
    def error_policy(self) -> OnError:
        return OnError(self.on_error)

    @property
    def caching(self) -> bool:
        return self.cache is not None and self.cache.enabled

    def validate(self) -> None:
        if not self.id or not isinstance(self.id, str):
            raise ValueError(f"Invalid step id: {self.id!r}")
        if not self.tool_id:
            raise ValueError(f"Step {self.id} has no toolId")
        if self.on_error not in ("stop", "continue", "retry"):
            raise ValueError(f"Step {self.id} has invalid onError: {self.on_error!r}")
        if not 0 <= self.retry_count <= 10:
            raise ValueError(f"Step {self.id} retryCount must be between 0 and 10, got {self.retry_count}")
        if self.delay_ms is not None and self.delay_ms < 0:
            raise ValueError(f"Step {self.id} delayMs must not be negative, got {self.delay_ms}")
        if self.cache is not None:
            try:
                self.cache.validate()
            except ValueError as e:
                raise ValueError(f"Step {self.id}: {e}") from None


class Workflow(msgspec.Struct, frozen=True, kw_only=True, rename="camel", forbid_unknown_fields=True):
    """An ordered, immutable list of steps. Step order is execution order."""

    id: str
    name: str
    steps: tuple[WorkflowStep, ...] = ()
    description: str | None = None
    clear_cache_on_run: bool = False

    def index_of(self, step_id: str) -> int:
        """
        Position of a step in the workflow.

        :param step_id: The step identifier
        :type step_id: str
        :returns: Zero-based index of the step
        :rtype: int
        :raises KeyError: If no step has the given id
        """
        for index, step in enumerate(self.steps):
            if step.id == step_id:
                return index
        raise KeyError(step_id)

    def get_step(self, step_id: str) -> WorkflowStep:
        return self.steps[self.index_of(step_id)]

    @property
    def step_count(self) -> int:
        return len(self.steps)

    def to_dict(self) -> dict[str, Any]:
        return msgspec.to_builtins(self)


class StepError(msgspec.Struct, rename="camel"):
    """Error captured on a failed step."""

    message: str
    code: str
    details: dict[str, Any] = {}


class StepResult(msgspec.Struct, kw_only=True, rename="camel"):
    """Outcome of a single step within one run."""

    step_id: str
    tool_id: str
    success: bool
    started_at: datetime
    ended_at: datetime
    data: Any = None
    error: StepError | None = None
    retry_count: int = 0
    from_cache: bool = False
    cache_key: str | None = None


class CacheStats(msgspec.Struct, rename="camel"):
    """Cache usage for one run."""

    cache_hits: int = 0
    cache_misses: int = 0
    steps_cached: list[str] = []


class WorkflowResult(msgspec.Struct, kw_only=True, rename="camel"):
    """Result of running a workflow, including every step result gathered."""

    workflow_id: str
    success: bool
    started_at: datetime
    ended_at: datetime
    step_results: dict[str, StepResult] = {}
    error: str | None = None
    cancelled: bool = False
    cache_stats: CacheStats = msgspec.field(default_factory=CacheStats)

    @property
    def failed_steps(self) -> list[str]:
        return [step_id for step_id, result in self.step_results.items() if not result.success]

    def to_dict(self):
        """Convert the WorkflowResult to a dictionary."""
        return msgspec.to_builtins(self)

    def to_json(self) -> str:
        """Convert the WorkflowResult to a JSON string."""
        return msgspec.json.encode(self).decode()

    def to_yaml(self) -> str:
        """Convert the WorkflowResult to a YAML string."""
        return msgspec.yaml.encode(self).decode()


class Template(msgspec.Struct, kw_only=True, rename="camel"):
    """A named, persisted reference record, e.g. an image to match on screen."""

    id: str
    name: str
    category: str = "default"
    description: str | None = None
    tags: list[str] = []
    data: Any = None
    metadata: dict[str, Any] = {}


class WorkflowSummary(msgspec.Struct, kw_only=True, rename="camel"):
    """Listing entry returned by workflow storage."""

    id: str
    name: str
    step_count: int
    created_at: datetime
    updated_at: datetime
    description: str | None = None
    tags: list[str] = []
