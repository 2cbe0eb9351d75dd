from dataclasses import dataclass, field
from typing import Any


@dataclass
class ToolContext:
    """Handed to every tool's ``initialize`` call."""

    template_store: Any = None
    registry: Any = None
    extra: dict[str, Any] = field(default_factory=dict)


class ToolBase:
    """Base class for tools. Enforces an 'execute' method on subclasses.

    A tool is an opaque capability unit: ``initialize`` runs once before first
    use, ``execute`` runs once per step invocation. Either may be a coroutine
    function.
    """

    tool_id: str | None = None
    display_name: str | None = None

    def __init_subclass__(cls, **kwargs):
        """
        Ensures 'execute' is defined on the subclass or one of its tool bases.

        :param kwargs: Additional keyword arguments passed to super().__init_subclass__
        :raises TypeError: If no class in the hierarchy below ToolBase defines 'execute'
        """
        super().__init_subclass__(**kwargs)

        defined = any("execute" in klass.__dict__ for klass in cls.__mro__ if klass is not ToolBase)
        if not defined:
            raise TypeError(f"{cls.__name__} must define a 'execute' method")

    @classmethod
    def resolve_id(cls) -> str:
        """The registry id of this tool, defaulting to the class name."""
        return cls.tool_id or cls.__name__

    def initialize(self, context: ToolContext) -> Any:
        """
        Prepare the tool for use. The default does nothing.

        :param context: Shared services available to tools
        :type context: ToolContext
        """
        return None

    def execute(self, input: Any) -> Any:
        """
        Run the tool on resolved step inputs.

        :param input: The step inputs after reference resolution
        :type input: Any
        :returns: The tool output, recorded as the step's data
        :rtype: Any
        :raises NotImplementedError: Must be implemented by subclasses
        """
        raise NotImplementedError("Tools must implement the execute method")
