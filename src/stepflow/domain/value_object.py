import os
from dataclasses import dataclass
from enum import Enum
from typing import Any

import msgspec

from stepflow.domain.exception import ReferenceResolutionError


@dataclass
class ExecutionOptions:
    """Engine wide execution settings.

    ``retry_delay_ms`` is the first backoff delay between retry attempts; each
    further attempt doubles it up to ``max_retry_delay_ms``.
    """

    retry_delay_ms: int = 100
    max_retry_delay_ms: int = 5000
    validate_references: bool = True

    @classmethod
    def from_env(cls, prefix: str = "STEPFLOW_") -> "ExecutionOptions":
        """
        Build options from environment variables.

        Recognised variables: ``<prefix>RETRY_DELAY_MS``, ``<prefix>MAX_RETRY_DELAY_MS``
        and ``<prefix>VALIDATE_REFERENCES``.

        :param prefix: Environment variable prefix
        :type prefix: str
        :returns: Options populated from the environment, falling back to defaults
        :rtype: ExecutionOptions
        """
        defaults = cls()
        validate = os.environ.get(f"{prefix}VALIDATE_REFERENCES")
        return cls(
            retry_delay_ms=int(os.environ.get(f"{prefix}RETRY_DELAY_MS", defaults.retry_delay_ms)),
            max_retry_delay_ms=int(os.environ.get(f"{prefix}MAX_RETRY_DELAY_MS", defaults.max_retry_delay_ms)),
            validate_references=(
                defaults.validate_references
                if validate is None
                else validate.strip().lower() in {"1", "true", "yes", "y"}
            ),
        )

    def backoff_ms(self, attempt: int) -> int:
        """Delay before retry number ``attempt`` (0-based)."""
        return min(self.retry_delay_ms * (2**attempt), self.max_retry_delay_ms)


class OnError(str, Enum):
    STOP = "stop"
    CONTINUE = "continue"
    RETRY = "retry"


class WorkflowEvent(str, Enum):
    WORKFLOW_STARTED = "workflow-started"
    STEP_STARTED = "step-started"
    STEP_RETRYING = "step-retrying"
    STEP_COMPLETED = "step-completed"
    STEP_FAILED = "step-failed"
    WORKFLOW_COMPLETED = "workflow-completed"
    WORKFLOW_FAILED = "workflow-failed"


class WorkflowProgress(msgspec.Struct, rename="camel", omit_defaults=True):
    """Payload delivered to progress event listeners."""

    workflow_id: str
    step_id: str | None = None
    progress: int | None = None
    message: str | None = None
    from_cache: bool | None = None


class CacheEntry(msgspec.Struct, rename="camel"):
    """A cached step result. ``created_at`` and ``ttl_ms`` are in milliseconds."""

    key: str
    value: Any
    created_at: float
    ttl_ms: int | None = None
    workflow_id: str | None = None
    persistent: bool = False

    @property
    def expires_at(self) -> float | None:
        if self.ttl_ms is None:
            return None
        return self.created_at + self.ttl_ms

    def is_expired(self, now_ms: float) -> bool:
        expires_at = self.expires_at
        return expires_at is not None and now_ms > expires_at


# WorkflowInput variants. The raw JSON input tree of a step is parsed into these
# so every resolver branch handles a closed set of node types.


class LiteralInput(msgspec.Struct, frozen=True, tag="literal"):
    value: Any


class ReferenceInput(msgspec.Struct, frozen=True, tag="reference"):
    ref: str


class MergeInput(msgspec.Struct, frozen=True, tag="merge"):
    items: tuple[Any, ...]


class SequenceInput(msgspec.Struct, frozen=True, tag="sequence"):
    items: tuple[Any, ...]


class MappingInput(msgspec.Struct, frozen=True, tag="mapping"):
    entries: tuple[tuple[str, Any], ...]


WorkflowInput = LiteralInput | ReferenceInput | MergeInput | SequenceInput | MappingInput

REF_KEY = "$ref"
MERGE_KEY = "$merge"


def join_path(path: str, key: str | int) -> str:
    """Extend an input path with a mapping key or a sequence index."""
    if isinstance(key, int):
        return f"{path}[{key}]"
    return f"{path}.{key}" if path else key


def parse_input(raw: Any, path: str = "inputs") -> WorkflowInput:
    """
    Parse a raw JSON-like input tree into WorkflowInput variants.

    Object nodes are classified in precedence order: ``$ref`` wins, then
    ``$merge``, otherwise the object is a plain mapping.

    :param raw: The input tree as declared on a workflow step
    :type raw: Any
    :param path: Location of ``raw`` inside the step inputs, used in error messages
    :type path: str
    :returns: The parsed input
    :rtype: WorkflowInput
    :raises ReferenceResolutionError: If a ``$ref`` is not a string or a ``$merge`` is not a list
    """
    if isinstance(raw, (LiteralInput, ReferenceInput, MergeInput, SequenceInput, MappingInput)):
        return raw
    if isinstance(raw, dict):
        if REF_KEY in raw:
            ref = raw[REF_KEY]
            if not isinstance(ref, str):
                raise ReferenceResolutionError(f"{REF_KEY} must be a string, got {type(ref).__name__}", path)
            return ReferenceInput(ref=ref)
        if MERGE_KEY in raw:
            items = raw[MERGE_KEY]
            if not isinstance(items, (list, tuple)):
                raise ReferenceResolutionError(f"{MERGE_KEY} must be a list, got {type(items).__name__}", path)
            return MergeInput(
                items=tuple(parse_input(item, join_path(f"{path}.{MERGE_KEY}", i)) for i, item in enumerate(items))
            )
        return MappingInput(entries=tuple((str(k), parse_input(v, join_path(path, str(k)))) for k, v in raw.items()))
    if isinstance(raw, (list, tuple)):
        return SequenceInput(items=tuple(parse_input(item, join_path(path, i)) for i, item in enumerate(raw)))
    return LiteralInput(value=raw)


class ReferenceKind(str, Enum):
    STEP = "step"
    PREVIOUS = "previous"
    PREVIOUS_TOOL = "previous_tool"
    TEMPLATE = "template"


class ParsedReference(msgspec.Struct, frozen=True):
    """A `$ref` string broken into its kind, target and optional property path.

    ``target`` is the step id for STEP, the tool type for PREVIOUS_TOOL, the
    template reference for TEMPLATE and None for PREVIOUS.
    """

    kind: ReferenceKind
    raw: str
    target: str | None = None
    path: str | None = None
