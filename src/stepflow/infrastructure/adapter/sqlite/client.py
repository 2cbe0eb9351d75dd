from stepflow.application.service import WorkflowClient
from stepflow.domain.entity import Template
from stepflow.domain.value_object import ExecutionOptions
from stepflow.infrastructure.adapter.in_memory.client import Tools, assemble
from stepflow.infrastructure.adapter.sqlite.cache_backend import SQLiteCacheBackend
from stepflow.infrastructure.adapter.sqlite.workflow_storage import SQLiteWorkflowStorage


class SQLiteClient(WorkflowClient):
    """Workflow client whose persistent cache entries and stored workflows live in SQLite."""

    pass


def create(
    tools: Tools | None = None,
    templates: list[Template] | None = None,
    execution_options: ExecutionOptions | None = None,
    db_path: str = ":memory:",
    **kwargs,
) -> SQLiteClient:
    """
    Creates a SQLiteClient with the specified tools and database path.

    :param tools: Tool classes, or a manifest mapping tool id to class/factory
    :type tools: list[type] | Mapping[str, Callable[[], Any]] | None
    :param templates: Templates available to ``{{template:...}}`` references
    :type templates: list[Template] | None
    :param execution_options: Engine settings
    :type execution_options: ExecutionOptions | None
    :param db_path: Path to SQLite database file (defaults to in-memory)
    :type db_path: str
    :returns: Configured SQLiteClient instance
    :rtype: SQLiteClient
    """
    return assemble(
        SQLiteClient,
        cache_backend=SQLiteCacheBackend(db_path=db_path),
        storage=SQLiteWorkflowStorage(db_path=db_path),
        tools=tools,
        templates=templates,
        execution_options=execution_options,
        **kwargs,
    )
