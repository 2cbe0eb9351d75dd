import asyncio
from collections.abc import Awaitable, Callable, Mapping
from typing import Any

from stepflow.application.adapter import CacheStore, ReferenceResolver, WorkflowEventEmitter
from stepflow.application.port import CacheBackend, WorkflowStorage
from stepflow.application.service import WorkflowClient
from stepflow.domain.entity import Template
from stepflow.domain.port import ToolContext
from stepflow.domain.value_object import ExecutionOptions
from stepflow.infrastructure.adapter.in_memory.cache_backend import InMemoryCacheBackend
from stepflow.infrastructure.adapter.in_memory.template_store import InMemoryTemplateStore
from stepflow.infrastructure.adapter.in_memory.tool_registry import InMemoryToolRegistry
from stepflow.infrastructure.adapter.in_memory.workflow_engine import InMemoryWorkflowEngine
from stepflow.infrastructure.adapter.in_memory.workflow_storage import InMemoryWorkflowStorage

Tools = list[type] | Mapping[str, Callable[[], Any]]


class InMemoryClient(WorkflowClient):
    pass


def assemble(
    client_cls: type[WorkflowClient],
    cache_backend: CacheBackend | None,
    storage: WorkflowStorage | None,
    tools: Tools | None = None,
    templates: list[Template] | None = None,
    execution_options: ExecutionOptions | None = None,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    clock: Callable[[], float] | None = None,
) -> WorkflowClient:
    """
    Wires registry, cache, resolver, events and engine around the given storage adapters.

    :param client_cls: The WorkflowClient subclass to instantiate
    :type client_cls: type[WorkflowClient]
    :param cache_backend: Durable cache tier, or None for a memory-only cache
    :type cache_backend: CacheBackend | None
    :param storage: Workflow definition storage
    :type storage: WorkflowStorage | None
    :param tools: Tool classes, or a manifest mapping tool id to class/factory
    :type tools: list[type] | Mapping[str, Callable[[], Any]] | None
    :param templates: Templates available to ``{{template:...}}`` references
    :type templates: list[Template] | None
    :param execution_options: Engine settings
    :type execution_options: ExecutionOptions | None
    :param sleep: Coroutine used for delays and retry backoff
    :param clock: Millisecond clock used for cache expiry
    :returns: The configured client
    :rtype: WorkflowClient
    """
    execution_options = execution_options if execution_options is not None else ExecutionOptions()
    template_store = InMemoryTemplateStore(templates)

    if isinstance(tools, Mapping):
        registry = InMemoryToolRegistry(tools, context=ToolContext(template_store=template_store))
    else:
        registry = InMemoryToolRegistry(context=ToolContext(template_store=template_store))
        for tool in tools or []:
            registry.register_class(tool)

    cache = CacheStore(cache_backend, clock=clock)
    resolver = ReferenceResolver(template_store)
    events = WorkflowEventEmitter()
    engine = InMemoryWorkflowEngine(
        registry=registry,
        cache=cache,
        resolver=resolver,
        events=events,
        execution_options=execution_options,
        sleep=sleep,
    )
    return client_cls(
        registry=registry,
        cache=cache,
        resolver=resolver,
        events=events,
        engine=engine,
        storage=storage,
        template_store=template_store,
        execution_options=execution_options,
    )


def create(
    tools: Tools | None = None,
    templates: list[Template] | None = None,
    execution_options: ExecutionOptions | None = None,
    **kwargs,
) -> InMemoryClient:
    """
    Creates an InMemoryClient. Nothing outlives the process.

    :param tools: Tool classes, or a manifest mapping tool id to class/factory
    :type tools: list[type] | Mapping[str, Callable[[], Any]] | None
    :param templates: Templates available to ``{{template:...}}`` references
    :type templates: list[Template] | None
    :param execution_options: Engine settings
    :type execution_options: ExecutionOptions | None
    :param kwargs: ``sleep`` and ``clock`` overrides
    :returns: Configured InMemoryClient instance
    :rtype: InMemoryClient
    """
    return assemble(
        InMemoryClient,
        cache_backend=InMemoryCacheBackend(),
        storage=InMemoryWorkflowStorage(),
        tools=tools,
        templates=templates,
        execution_options=execution_options,
        **kwargs,
    )
