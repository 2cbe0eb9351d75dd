"""
stepflow - sequential tool workflow engine

Compose tools into named workflows, chain step outputs through `$ref`
references, and cache expensive or interactive steps across runs.
"""

from stepflow.backend import BackendType
from stepflow.builder import WorkflowBuilder, create_step, create_workflow, merge, previous, ref, template, workflow
from stepflow.client import Client
from stepflow.domain.entity import (
    CacheConfig,
    StepResult,
    Template,
    Workflow,
    WorkflowResult,
    WorkflowStep,
)
from stepflow.domain.exception import (
    CacheError,
    ReferenceResolutionError,
    StepflowError,
    ToolExecutionError,
    ToolNotFoundError,
    WorkflowError,
    WorkflowNotFoundError,
    WorkflowValidationError,
)
from stepflow.domain.port import ToolBase, ToolContext
from stepflow.domain.value_object import ExecutionOptions, WorkflowEvent, WorkflowProgress
from stepflow.factory import create

__all__ = [
    "BackendType",
    "CacheConfig",
    "CacheError",
    "Client",
    "ExecutionOptions",
    "ReferenceResolutionError",
    "StepResult",
    "StepflowError",
    "Template",
    "ToolBase",
    "ToolContext",
    "ToolExecutionError",
    "ToolNotFoundError",
    "Workflow",
    "WorkflowBuilder",
    "WorkflowError",
    "WorkflowEvent",
    "WorkflowNotFoundError",
    "WorkflowProgress",
    "WorkflowResult",
    "WorkflowStep",
    "WorkflowValidationError",
    "create",
    "create_step",
    "create_workflow",
    "merge",
    "previous",
    "ref",
    "template",
    "workflow",
]
