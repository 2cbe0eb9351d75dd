from typing import Any


class StepflowError(Exception):
    """Base error carrying a machine readable code and optional details."""

    code = "STEPFLOW_ERROR"

    def __init__(self, message: str, code: str | None = None, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        self.details = details or {}


class ToolNotFoundError(StepflowError, KeyError):
    """Raised when a tool id is not registered."""

    code = "TOOL_NOT_FOUND"

    def __init__(self, tool_id: str):
        super().__init__(f"Tool '{tool_id}' is not registered", details={"toolId": tool_id})
        self.tool_id = tool_id

    def __str__(self) -> str:
        # KeyError would otherwise render the message with quotes
        return self.message


class ToolExecutionError(StepflowError):
    """Wraps a failure raised by a tool's factory, initialisation or execution."""

    code = "TOOL_EXECUTION_ERROR"

    def __init__(self, message: str, tool_id: str, details: dict[str, Any] | None = None):
        super().__init__(message, details={"toolId": tool_id, **(details or {})})
        self.tool_id = tool_id


class ReferenceResolutionError(StepflowError):
    """Raised when a `$ref` or `$merge` input cannot be resolved."""

    code = "REFERENCE_RESOLUTION_ERROR"

    def __init__(self, message: str, path: str = "", details: dict[str, Any] | None = None):
        location = path or "<inputs>"
        super().__init__(f"{location}: {message}", details={"path": location, **(details or {})})
        self.path = location


class CacheError(StepflowError):
    """Raised by the durable cache tier on I/O failures."""

    code = "CACHE_ERROR"


class WorkflowError(StepflowError):
    """Raised for workflow level failures that are not validation errors."""

    code = "WORKFLOW_ERROR"

    def __init__(self, message: str, workflow_id: str | None = None, details: dict[str, Any] | None = None):
        super().__init__(message, details={"workflowId": workflow_id, **(details or {})})
        self.workflow_id = workflow_id


class WorkflowValidationError(WorkflowError):
    """Raised when a workflow definition is malformed."""

    code = "WORKFLOW_VALIDATION_ERROR"

    def __init__(self, message: str, workflow_id: str | None = None, errors: list[str] | None = None):
        super().__init__(message, workflow_id, details={"errors": list(errors or [])})
        self.errors = list(errors or [])


class WorkflowNotFoundError(WorkflowError, KeyError):
    """Raised when a stored workflow does not exist."""

    code = "WORKFLOW_NOT_FOUND"

    def __init__(self, workflow_id: str):
        super().__init__(f"Workflow not found: {workflow_id}", workflow_id)

    def __str__(self) -> str:
        return self.message
