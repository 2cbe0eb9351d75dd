from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Callable
from typing import Any

from stepflow.domain.entity import StepResult, Template, Workflow, WorkflowResult, WorkflowSummary
from stepflow.domain.value_object import CacheEntry


class WorkflowEngine(ABC):
    """Abstract base class defining the workflow engine interface."""

    @abstractmethod
    async def run(self, workflow: Workflow) -> WorkflowResult:
        """
        Runs the given workflow.

        :param workflow: The workflow to execute
        :type workflow: Workflow
        :returns: The result of executing the workflow; step failures are reported, not raised
        :rtype: WorkflowResult
        :raises WorkflowValidationError: If the workflow is malformed
        """
        ...

    @abstractmethod
    def cancel(self, workflow_id: str) -> bool:
        """
        Asks an in-flight run to stop before its next step.

        :param workflow_id: The workflow identifier
        :type workflow_id: str
        :returns: True if a run of that workflow was in flight
        :rtype: bool
        """
        ...


class ToolRegistry(ABC):
    """Abstract interface mapping tool ids to lazily created tool instances."""

    @abstractmethod
    def register(self, tool_id: str, factory: Callable[[], Any], display_name: str | None = None) -> None:
        """
        Registers a factory without calling it.

        :param tool_id: The identifier steps use in ``toolId``
        :type tool_id: str
        :param factory: Zero-argument callable returning a tool, or an awaitable of one
        :type factory: Callable[[], Any]
        :param display_name: Human readable name
        :type display_name: str | None
        """

    @abstractmethod
    async def get(self, tool_id: str) -> Any:
        """
        Returns the initialized tool instance, creating it on first use.

        :param tool_id: The tool identifier
        :type tool_id: str
        :returns: The tool instance
        :rtype: Any
        :raises ToolNotFoundError: If the tool id is not registered
        :raises ToolExecutionError: If creating or initializing the tool fails
        """

    @abstractmethod
    async def invoke(self, tool_id: str, input: Any) -> Any:
        """
        Runs a tool on the given input.

        :param tool_id: The tool identifier
        :type tool_id: str
        :param input: The resolved step inputs
        :type input: Any
        :returns: The tool output
        :rtype: Any
        :raises ToolNotFoundError: If the tool id is not registered
        :raises ToolExecutionError: If the tool fails
        """


class CacheBackend(ABC):
    """Durable tier of the cache store."""

    @abstractmethod
    def get(self, key: str) -> CacheEntry | None:
        """
        Retrieve an entry by key.

        :param key: The cache key
        :type key: str
        :returns: The stored entry or None
        :rtype: CacheEntry | None
        :raises CacheError: On storage failures
        """

    @abstractmethod
    def set(self, entry: CacheEntry) -> None:
        """
        Store an entry, replacing any entry with the same key.

        :param entry: The entry to store
        :type entry: CacheEntry
        :raises CacheError: On storage failures
        """

    @abstractmethod
    def delete(self, key: str) -> bool:
        """
        Delete an entry.

        :param key: The cache key
        :type key: str
        :returns: True if an entry was deleted
        :rtype: bool
        :raises CacheError: On storage failures
        """

    @abstractmethod
    def clear(self, workflow_id: str | None = None) -> int:
        """
        Delete all entries, or those belonging to one workflow.

        :param workflow_id: Scope of the clear; None clears everything
        :type workflow_id: str | None
        :returns: Number of entries deleted
        :rtype: int
        :raises CacheError: On storage failures
        """


class TemplateStore(ABC):
    """Source of templates for ``{{template:...}}`` references."""

    @abstractmethod
    async def resolve_template_reference(self, reference: str) -> Template | None:
        """
        Looks up a template by id, then ``category/name``, then name.

        :param reference: Either the bare reference or the full ``{{template:...}}`` form
        :type reference: str
        :returns: The template, or None if nothing matches
        :rtype: Template | None
        """


class WorkflowStorage(ABC):
    """Key-value persistence of workflow definitions."""

    @abstractmethod
    def save(self, workflow: Workflow, tags: list[str] | None = None) -> None:
        """
        Stores a workflow, replacing an existing one with the same id.

        :param workflow: The workflow to store
        :type workflow: Workflow
        :param tags: Optional tags used by search
        :type tags: list[str] | None
        """

    @abstractmethod
    def load(self, workflow_id: str) -> Workflow | None:
        """
        Loads a workflow.

        :param workflow_id: The workflow identifier
        :type workflow_id: str
        :returns: The workflow or None if it does not exist
        :rtype: Workflow | None
        """

    @abstractmethod
    def list(self) -> list[WorkflowSummary]:
        """
        Lists stored workflows, most recently updated first.

        :returns: Summaries of all stored workflows
        :rtype: list[WorkflowSummary]
        """

    @abstractmethod
    def delete(self, workflow_id: str) -> bool:
        """
        Deletes a workflow.

        :param workflow_id: The workflow identifier
        :type workflow_id: str
        :returns: True if a workflow was deleted
        :rtype: bool
        """

    def exists(self, workflow_id: str) -> bool:
        return self.load(workflow_id) is not None

    def search(self, query: str) -> list[WorkflowSummary]:
        """
        Case-insensitive search over name, description and tags.

        :param query: Text to look for
        :type query: str
        :returns: Matching summaries
        :rtype: list[WorkflowSummary]
        """
        needle = query.lower()
        return [
            item
            for item in self.list()
            if needle in item.name.lower()
            or (item.description is not None and needle in item.description.lower())
            or any(needle in tag.lower() for tag in item.tags)
        ]

    def clear(self) -> None:
        for item in self.list():
            self.delete(item.id)


class Context(ABC):
    """Abstract interface for workflow execution context."""

    @abstractmethod
    def get_result(self, step_id: str) -> StepResult:
        """
        Get the result of a previously executed step.

        :param step_id: The ID of the step whose result to retrieve
        :type step_id: str
        :returns: The result of the specified step
        :rtype: StepResult
        :raises KeyError: If the step result is not found
        """
