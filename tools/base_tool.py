"""Abstract base class for all tools."""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field


@dataclass(frozen=True)
class ToolDefinition:
    """What the provider is told about a tool."""
    name: str
    description: str
    parameters: dict = field(default_factory=dict)


class Tool(ABC):
    """
    Base class for all tools. Subclass this to create new tools.

    `parameters` is a JSON-schema object advertised to the model and used by
    the dispatcher to validate arguments before `execute` is called. Handlers
    return text; failures are raised as `ToolError` subclasses so the
    dispatcher can classify them.
    """

    name: str = ""
    description: str = ""
    parameters: dict = {"type": "object", "properties": {}, "required": []}
    timeout_seconds: float | None = None

    async def before_execution(self, **kwargs):
        """Hook called before execute. Override to validate args."""
        pass

    @abstractmethod
    async def execute(self, **kwargs) -> str:
        """Execute the tool. Must be implemented by subclasses."""
        ...

    async def after_execution(self, result: str) -> str:
        """Hook called after execute. Override to post-process the result."""
        return result

    def definition(self) -> ToolDefinition:
        return ToolDefinition(
            name=self.name,
            description=self.get_description(),
            parameters=self.parameters,
        )

    def get_description(self) -> str:
        """Description advertised to the model. Override to make it dynamic."""
        return self.description
