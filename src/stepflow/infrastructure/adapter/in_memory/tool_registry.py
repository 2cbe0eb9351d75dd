import asyncio
import inspect
import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from stepflow.application.port import ToolRegistry
from stepflow.domain.exception import ToolExecutionError, ToolNotFoundError
from stepflow.domain.port import ToolBase, ToolContext
from stepflow.infrastructure.provider import discover_tools

logger = logging.getLogger(__name__)


@dataclass
class ToolRegistration:
    """A registered tool. The factory runs lazily on first ``get``."""

    id: str
    factory: Callable[[], Any]
    display_name: str | None = None
    initialized: bool = False
    instance: Any = None
    lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False, compare=False)


async def _maybe_await(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


class InMemoryToolRegistry(ToolRegistry):
    """Maps tool ids to lazily created, once-initialized tool instances."""

    def __init__(self, manifest: Mapping[str, Callable[[], Any]] | None = None, context: ToolContext | None = None):
        """
        Initializes the registry from an optional manifest.

        :param manifest: Mapping of tool id to tool class or zero-argument factory
        :type manifest: Mapping[str, Callable[[], Any]] | None
        :param context: Passed to every tool's ``initialize``
        :type context: ToolContext | None
        """
        self._tools: dict[str, ToolRegistration] = {}
        self.context = context if context is not None else ToolContext()
        if self.context.registry is None:
            self.context.registry = self
        for tool_id, factory in (manifest or {}).items():
            self.register(tool_id, factory, getattr(factory, "display_name", None))

    def register(self, tool_id: str, factory: Callable[[], Any], display_name: str | None = None) -> None:
        if not tool_id:
            raise ValueError("Tool id must not be empty")
        if not callable(factory):
            raise TypeError(f"Factory for tool '{tool_id}' is not callable")
        if tool_id in self._tools:
            logger.warning("Replacing existing registration for tool %s", tool_id)
        self._tools[tool_id] = ToolRegistration(id=tool_id, factory=factory, display_name=display_name or tool_id)
        logger.debug("Registered tool %s", tool_id)

    def register_class(self, cls: type, tool_id: str | None = None) -> str:
        """
        Registers a tool class; the class itself is the factory.

        :param cls: A class exposing ``execute``
        :type cls: type
        :param tool_id: Overrides the class ``tool_id`` attribute and class name
        :type tool_id: str | None
        :returns: The id the class was registered under
        :rtype: str
        """
        if not callable(getattr(cls, "execute", None)):
            raise TypeError(f"{cls.__name__} must define a 'execute' method")
        if tool_id is not None:
            resolved = tool_id
        elif issubclass(cls, ToolBase):
            resolved = cls.resolve_id()
        else:
            resolved = getattr(cls, "tool_id", None) or cls.__name__
        self.register(resolved, cls, getattr(cls, "display_name", None))
        return resolved

    def discover(self, root_path: str | Path) -> list[str]:
        """
        Registers every tool class found under ``root_path`` without instantiating it.

        :param root_path: Directory of tool packages
        :type root_path: str | Path
        :returns: The ids registered by this pass
        :rtype: list[str]
        """
        manifest = discover_tools(root_path)
        for tool_id, cls in manifest.items():
            self.register(tool_id, cls, getattr(cls, "display_name", None))
        logger.info("Discovered %d tools in %s", len(manifest), root_path)
        return list(manifest)

    def has(self, tool_id: str) -> bool:
        return tool_id in self._tools

    def list_tools(self) -> list[ToolRegistration]:
        return list(self._tools.values())

    def unregister(self, tool_id: str) -> bool:
        return self._tools.pop(tool_id, None) is not None

    async def get(self, tool_id: str) -> Any:
        registration = self._tools.get(tool_id)
        if registration is None:
            raise ToolNotFoundError(tool_id)

        async with registration.lock:
            if registration.instance is None:
                try:
                    registration.instance = await _maybe_await(registration.factory())
                except Exception as e:
                    raise ToolExecutionError(
                        f"Failed to create tool '{tool_id}': {e}", tool_id, {"cause": repr(e)}
                    ) from e
                logger.debug("Created tool instance %s", tool_id)

            if not registration.initialized:
                initialize = getattr(registration.instance, "initialize", None)
                if callable(initialize):
                    try:
                        await _maybe_await(initialize(self.context))
                    except Exception as e:
                        raise ToolExecutionError(
                            f"Failed to initialize tool '{tool_id}': {e}", tool_id, {"cause": repr(e)}
                        ) from e
                registration.initialized = True

        return registration.instance

    async def invoke(self, tool_id: str, input: Any) -> Any:
        tool = await self.get(tool_id)
        try:
            return await _maybe_await(tool.execute(input))
        except ToolExecutionError:
            raise
        except Exception as e:
            raise ToolExecutionError(f"Tool '{tool_id}' failed: {e}", tool_id, {"cause": repr(e)}) from e
