"""Registry of tools the model may call.

Each tool carries a ``ToolKind``. Whether a kind mutates external state is
configuration (``Settings.mutator_tool_kinds``), not something hardcoded in the
chat engine; ChatSession receives ``ToolRegistry.is_mutator`` as its lookup.
"""

import inspect
import logging
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Optional

from agentic_chat.domain.models.stream import ToolDeclaration

if TYPE_CHECKING:
    from neuroglia.hosting.abstractions import ApplicationBuilderBase

logger = logging.getLogger(__name__)

ToolHandler = Callable[[dict[str, Any]], Awaitable[Any] | Any]


class ToolKind(str, Enum):
    """Broad category of what a tool does."""

    READ = "read"
    EDIT = "edit"
    DELETE = "delete"
    MOVE = "move"
    SEARCH = "search"
    EXECUTE = "execute"
    THINK = "think"
    FETCH = "fetch"
    OTHER = "other"


DEFAULT_MUTATOR_KINDS = frozenset({ToolKind.EDIT, ToolKind.DELETE, ToolKind.MOVE, ToolKind.EXECUTE})


@dataclass
class Tool:
    """A callable tool.

    Attributes:
        name: Unique tool name, as the model refers to it
        description: What the tool does
        kind: Category, used for mutator classification and approval policy
        handler: Sync or async callable receiving the call arguments
        parameters: JSON Schema of the arguments
        requires_confirmation: Whether the tool may need human approval
    """

    name: str
    description: str
    kind: ToolKind
    handler: ToolHandler
    parameters: dict[str, Any] = field(default_factory=lambda: {"type": "object", "properties": {}})
    requires_confirmation: bool = True

    def declaration(self) -> ToolDeclaration:
        return ToolDeclaration(name=self.name, description=self.description, parameters=self.parameters)

    async def invoke(self, args: dict[str, Any]) -> Any:
        result = self.handler(args)
        if inspect.isawaitable(result):
            result = await result
        return result


class ToolRegistry:
    """Holds the tools available to a conversation."""

    def __init__(self, mutator_kinds: Optional[Iterable[ToolKind | str]] = None) -> None:
        self._tools: dict[str, Tool] = {}
        kinds = DEFAULT_MUTATOR_KINDS if mutator_kinds is None else mutator_kinds
        self._mutator_kinds = frozenset(ToolKind(k) for k in kinds)

    @property
    def mutator_kinds(self) -> frozenset[ToolKind]:
        return self._mutator_kinds

    def register(self, tool: Tool) -> None:
        if tool.name in self._tools:
            logger.warning(f"Replacing already registered tool '{tool.name}'")
        self._tools[tool.name] = tool
        logger.debug(f"Registered tool '{tool.name}' (kind={tool.kind.value})")

    def get(self, name: str) -> Optional[Tool]:
        return self._tools.get(name)

    def tools(self) -> list[Tool]:
        return list(self._tools.values())

    def declarations(self) -> list[ToolDeclaration]:
        """Declarations to advertise to the model."""
        return [tool.declaration() for tool in self._tools.values()]

    def is_mutator(self, name: str) -> bool:
        """True when the named tool's kind mutates state. Unknown tools are not mutators."""
        tool = self._tools.get(name)
        return tool is not None and tool.kind in self._mutator_kinds

    @staticmethod
    def configure(builder: "ApplicationBuilderBase") -> None:
        """Register an empty ToolRegistry using the configured mutator kinds.

        Args:
            builder: The application builder
        """
        from agentic_chat.application.settings import Settings, app_settings

        settings: Optional[Settings] = next((d.singleton for d in builder.services if d.service_type is Settings), None)
        if settings is None:
            logger.info("Settings not found in DI services, using app_settings singleton")
            settings = app_settings

        registry = ToolRegistry(mutator_kinds=settings.mutator_tool_kinds)
        builder.services.add_singleton(ToolRegistry, singleton=registry)
        logger.info(f"Configured ToolRegistry with mutator kinds={sorted(k.value for k in registry.mutator_kinds)}")
