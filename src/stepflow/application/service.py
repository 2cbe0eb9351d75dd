import logging
from pathlib import Path

import msgspec

from stepflow.application.adapter import CacheStore, ReferenceResolver, WorkflowEventEmitter
from stepflow.application.port import TemplateStore, ToolRegistry, WorkflowEngine, WorkflowStorage
from stepflow.domain.entity import Workflow, WorkflowResult
from stepflow.domain.exception import WorkflowNotFoundError, WorkflowValidationError
from stepflow.domain.service import validate_workflow
from stepflow.domain.value_object import ExecutionOptions

logger = logging.getLogger(__name__)


def load_workflow(data: dict | Workflow, check_references: bool = True) -> Workflow:
    """
    Decodes and validates a workflow from a Python dictionary.

    :param data: The workflow as a camelCase dictionary or an existing Workflow
    :type data: dict | Workflow
    :param check_references: Also check every `$ref` structurally
    :type check_references: bool
    :returns: The validated workflow
    :rtype: Workflow
    :raises WorkflowValidationError: If decoding or validation fails
    """
    if isinstance(data, Workflow):
        validate_workflow(data, check_references)
        return data

    try:
        workflow = msgspec.convert(data, type=Workflow)
    except msgspec.ValidationError as e:
        workflow_id = data.get("id") if isinstance(data, dict) else None
        raise WorkflowValidationError(f"Invalid workflow definition: {e}", workflow_id, [str(e)]) from e
    validate_workflow(workflow, check_references)
    return workflow


def decode_workflow(text: str | bytes, format: str = "json", check_references: bool = True) -> Workflow:
    """
    Decodes a workflow from JSON or YAML text.

    :param text: The encoded definition
    :type text: str | bytes
    :param format: ``"json"`` or ``"yaml"``
    :type format: str
    :param check_references: Also check every `$ref` structurally
    :type check_references: bool
    :returns: The validated workflow
    :rtype: Workflow
    :raises WorkflowValidationError: If decoding or validation fails
    :raises ValueError: If the format is unsupported
    """
    if format == "json":
        decoder = msgspec.json.decode
    elif format in ("yaml", "yml"):
        decoder = msgspec.yaml.decode
    else:
        raise ValueError(f"Unsupported workflow format: {format}")

    try:
        data = decoder(text)
    except msgspec.DecodeError as e:
        raise WorkflowValidationError(f"Could not decode workflow: {e}", errors=[str(e)]) from e
    return load_workflow(data, check_references)


def read_workflow(path: str | Path, check_references: bool = True) -> Workflow:
    """Reads a workflow file, choosing the decoder from the file suffix."""
    path = Path(path)
    format = "yaml" if path.suffix.lower() in (".yaml", ".yml") else "json"
    return decode_workflow(path.read_bytes(), format, check_references)


def collect_workflow_errors(data: dict | Workflow) -> list[str]:
    """Every problem that would make ``load_workflow`` fail; empty when valid."""
    try:
        load_workflow(data)
    except WorkflowValidationError as e:
        return e.errors or [e.message]
    return []


class WorkflowClient:
    """
    Holds the wired components of one engine: tool registry, cache store,
    reference resolver, event emitter, workflow engine and optional workflow storage.

    Concrete wiring happens in the backend ``create`` functions; this class only
    loads definitions and hands them to the engine.
    """

    def __init__(
        self,
        registry: ToolRegistry,
        cache: CacheStore,
        resolver: ReferenceResolver,
        events: WorkflowEventEmitter,
        engine: WorkflowEngine,
        storage: WorkflowStorage | None = None,
        template_store: TemplateStore | None = None,
        execution_options: ExecutionOptions | None = None,
    ):
        self.registry = registry
        self.cache = cache
        self.resolver = resolver
        self.events = events
        self.engine = engine
        self.storage = storage
        self.template_store = template_store
        self.execution_options = execution_options if execution_options is not None else ExecutionOptions()

    async def run(self, workflow: dict | Workflow) -> WorkflowResult:
        """
        Loads and executes a workflow.

        :param workflow: The workflow definition
        :type workflow: dict | Workflow
        :returns: The run result
        :rtype: WorkflowResult
        :raises WorkflowValidationError: If the workflow is malformed
        """
        workflow = load_workflow(workflow, self.execution_options.validate_references)
        return await self.engine.run(workflow)

    async def run_stored(self, workflow_id: str) -> WorkflowResult:
        """
        Loads a workflow from storage and runs it.

        :param workflow_id: The stored workflow identifier
        :type workflow_id: str
        :returns: The run result
        :rtype: WorkflowResult
        :raises WorkflowNotFoundError: If no workflow with that id is stored
        """
        if self.storage is None:
            raise WorkflowNotFoundError(workflow_id)
        workflow = self.storage.load(workflow_id)
        if workflow is None:
            raise WorkflowNotFoundError(workflow_id)
        logger.debug("Running stored workflow %s", workflow_id)
        return await self.run(workflow)
