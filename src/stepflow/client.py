from collections.abc import Callable
from pathlib import Path
from typing import Any

from stepflow.application.service import WorkflowClient, collect_workflow_errors, load_workflow
from stepflow.domain.entity import Template, Workflow, WorkflowResult, WorkflowSummary
from stepflow.domain.exception import WorkflowNotFoundError
from stepflow.domain.value_object import WorkflowEvent, WorkflowProgress


class Client:
    """
    Unified client façade for workflow execution.

    The Client is the only thing users interact with. It registers tools,
    subscribes to progress events, runs and stores workflows and manages the
    step cache, delegating to the backend chosen in :func:`stepflow.create`.
    """

    def __init__(self, backend: WorkflowClient):
        """
        Initialize the client with a wired backend.

        :param backend: The backend components (registry, cache, engine, storage)
        :type backend: WorkflowClient
        """
        self._backend = backend

    @property
    def backend(self) -> WorkflowClient:
        return self._backend

    def tool(self, cls: type, tool_id: str | None = None) -> "Client":
        """
        Register a tool class with the client.

        :param cls: The tool class; instantiated lazily on first use
        :type cls: type
        :param tool_id: Overrides the class ``tool_id`` attribute
        :type tool_id: str | None
        :returns: The client instance for method chaining
        :rtype: Client
        """
        self._backend.registry.register_class(cls, tool_id)
        return self

    def register(self, tool_id: str, factory: Callable[[], Any], display_name: str | None = None) -> "Client":
        self._backend.registry.register(tool_id, factory, display_name)
        return self

    def discover(self, path: str | Path) -> list[str]:
        """
        Register every tool package found in a directory.

        :param path: Directory of tool packages
        :type path: str | Path
        :returns: Registered tool ids
        :rtype: list[str]
        """
        return self._backend.registry.discover(path)

    def list_tools(self) -> list[str]:
        return [registration.id for registration in self._backend.registry.list_tools()]

    def template(self, template: Template) -> "Client":
        self._backend.template_store.add(template)
        return self

    def on(self, event: WorkflowEvent | str, callback: Callable[[WorkflowProgress], Any]) -> Callable[[], bool]:
        """
        Subscribe to progress events.

        :param event: ``workflow-started``, ``step-started``, ``step-retrying``, ``step-completed``,
            ``step-failed``, ``workflow-completed`` or ``workflow-failed``
        :type event: WorkflowEvent | str
        :param callback: Receives a WorkflowProgress; exceptions it raises are logged
        :type callback: Callable[[WorkflowProgress], Any]
        :returns: A function that removes the subscription
        :rtype: Callable[[], bool]
        """
        return self._backend.events.on(event, callback)

    def off(self, event: WorkflowEvent | str, callback: Callable[[WorkflowProgress], Any]) -> bool:
        return self._backend.events.off(event, callback)

    async def run(self, workflow: dict | Workflow) -> WorkflowResult:
        """
        Execute a workflow.

        :param workflow: The workflow definition as a camelCase dictionary or a Workflow
        :type workflow: dict | Workflow
        :returns: The workflow execution result
        :rtype: WorkflowResult
        :raises WorkflowValidationError: If the definition is malformed; no step runs
        """
        return await self._backend.run(workflow)

    async def run_stored(self, workflow_id: str) -> WorkflowResult:
        return await self._backend.run_stored(workflow_id)

    def validate(self, workflow: dict | Workflow) -> list[str]:
        """
        Check a definition without running it.

        :param workflow: The workflow definition
        :type workflow: dict | Workflow
        :returns: Every problem found; empty when the workflow is valid
        :rtype: list[str]
        """
        return collect_workflow_errors(workflow)

    def cancel(self, workflow_id: str) -> bool:
        return self._backend.engine.cancel(workflow_id)

    async def clear_cache(self, workflow_id: str | None = None) -> int:
        """
        Drop cached step results.

        :param workflow_id: Only clear this workflow's entries; None clears everything
        :type workflow_id: str | None
        :returns: Number of in-memory entries removed
        :rtype: int
        """
        return await self._backend.cache.clear(workflow_id)

    def save_workflow(self, workflow: dict | Workflow, tags: list[str] | None = None) -> Workflow:
        """
        Validate and store a workflow definition.

        :param workflow: The workflow definition
        :type workflow: dict | Workflow
        :param tags: Tags used by :meth:`search_workflows`
        :type tags: list[str] | None
        :returns: The stored workflow
        :rtype: Workflow
        """
        workflow = load_workflow(workflow)
        self._storage().save(workflow, tags)
        return workflow

    def load_workflow(self, workflow_id: str) -> Workflow:
        """
        Retrieve a stored workflow.

        :param workflow_id: The workflow identifier
        :type workflow_id: str
        :returns: The stored workflow
        :rtype: Workflow
        :raises WorkflowNotFoundError: If no workflow with that id is stored
        """
        workflow = self._storage().load(workflow_id)
        if workflow is None:
            raise WorkflowNotFoundError(workflow_id)
        return workflow

    def list_workflows(self) -> list[WorkflowSummary]:
        return self._storage().list()

    def search_workflows(self, query: str) -> list[WorkflowSummary]:
        return self._storage().search(query)

    def delete_workflow(self, workflow_id: str) -> bool:
        return self._storage().delete(workflow_id)

    def _storage(self):
        if self._backend.storage is None:
            raise NotImplementedError("Backend does not support workflow storage")
        return self._backend.storage
