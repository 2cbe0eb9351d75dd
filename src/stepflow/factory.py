import logging
from collections.abc import Callable, Mapping
from typing import Any

from stepflow.backend import BackendType
from stepflow.client import Client
from stepflow.domain.entity import Template
from stepflow.domain.value_object import ExecutionOptions
from stepflow.infrastructure.adapter.in_memory.client import create as create_in_memory_client
from stepflow.infrastructure.adapter.sqlite.client import create as create_sqlite_client

logger = logging.getLogger(__name__)


def create(
    backend: BackendType = BackendType.IN_MEMORY,
    tools: list[type] | Mapping[str, Callable[[], Any]] | None = None,
    templates: list[Template] | None = None,
    options: ExecutionOptions | None = None,
    **kwargs,
) -> Client:
    """
    Factory function to create a Client with the specified backend.

    :param backend: Where persistent cache entries and stored workflows live
    :type backend: BackendType
    :param tools: Tool classes, or a manifest mapping tool id to class/factory
    :type tools: list[type] | Mapping[str, Callable[[], Any]] | None
    :param templates: Templates available to ``{{template:...}}`` references
    :type templates: list[Template] | None
    :param options: Engine settings; read from ``STEPFLOW_*`` environment variables when omitted
    :type options: ExecutionOptions | None
    :param kwargs: Backend specific options: ``db_path`` for SQLite, ``sleep`` and ``clock`` overrides
    :returns: A configured Client instance
    :rtype: Client
    :raises ValueError: If the backend type is unsupported
    """
    options = options if options is not None else ExecutionOptions.from_env()

    if backend == BackendType.IN_MEMORY:
        workflow_client = create_in_memory_client(tools, templates, options, **kwargs)

    elif backend == BackendType.SQLITE:
        db_path = kwargs.pop("db_path", ":memory:")
        workflow_client = create_sqlite_client(tools, templates, options, db_path=db_path, **kwargs)

    else:
        raise ValueError(f"Unsupported backend: {backend}")

    logger.debug("Created %s client", backend.value)
    return Client(workflow_client)
