"""Unit tests for ToolRegistry.

Tests cover:
- Registration and lookup
- Declarations advertised to the model
- Mutator classification by tool kind
- Sync and async tool handlers
- DI registration
"""

from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest

from agentic_chat.application.settings import Settings
from agentic_chat.domain.models.stream import ToolDeclaration
from agentic_chat.infrastructure.tool_registry import DEFAULT_MUTATOR_KINDS, Tool, ToolKind, ToolRegistry


def make_tool(name: str, kind: ToolKind = ToolKind.READ, handler=None) -> Tool:
    return Tool(name=name, description=f"{name} tool", kind=kind, handler=handler or (lambda args: "ok"))


@pytest.fixture
def registry():
    """Create a registry with one reading and one editing tool."""
    registry = ToolRegistry()
    registry.register(make_tool("read_cell", ToolKind.READ))
    registry.register(make_tool("write_cell", ToolKind.EDIT))
    return registry


class TestToolRegistry:
    """Test registration and classification."""

    def test_get_and_tools(self, registry):
        """Test lookup by name."""
        assert registry.get("read_cell").kind == ToolKind.READ
        assert registry.get("missing") is None
        assert [t.name for t in registry.tools()] == ["read_cell", "write_cell"]

    def test_register_replaces_same_name(self, registry):
        """Test that re-registering a name replaces the tool."""
        registry.register(make_tool("read_cell", ToolKind.SEARCH))
        assert registry.get("read_cell").kind == ToolKind.SEARCH
        assert len(registry.tools()) == 2

    def test_declarations(self, registry):
        """Test that declarations carry name, description and schema."""
        declarations = registry.declarations()
        assert declarations[0] == ToolDeclaration(name="read_cell", description="read_cell tool", parameters={"type": "object", "properties": {}})

    def test_default_mutator_kinds(self, registry):
        """Test that editing tools mutate and reading or unknown tools do not."""
        assert registry.mutator_kinds == DEFAULT_MUTATOR_KINDS
        assert registry.is_mutator("write_cell") is True
        assert registry.is_mutator("read_cell") is False
        assert registry.is_mutator("missing") is False

    def test_mutator_kinds_are_configurable(self):
        """Test that mutator kinds come from configuration, as enum values or strings."""
        registry = ToolRegistry(mutator_kinds=["read"])
        registry.register(make_tool("read_cell", ToolKind.READ))
        registry.register(make_tool("write_cell", ToolKind.EDIT))

        assert registry.is_mutator("read_cell") is True
        assert registry.is_mutator("write_cell") is False

    def test_unknown_mutator_kind_is_rejected(self):
        """Test that an invalid kind fails fast."""
        with pytest.raises(ValueError):
            ToolRegistry(mutator_kinds=["teleport"])


class TestToolInvoke:
    """Test tool handler invocation."""

    @pytest.mark.asyncio
    async def test_sync_handler(self):
        """Test that plain functions are called directly."""
        tool = make_tool("echo", handler=lambda args: args["value"])
        assert await tool.invoke({"value": 3}) == 3

    @pytest.mark.asyncio
    async def test_async_handler(self):
        """Test that coroutine functions are awaited."""

        async def handler(args):
            return args["value"] * 2

        tool = make_tool("double", handler=handler)
        assert await tool.invoke({"value": 3}) == 6


class TestConfigure:
    """Test DI registration."""

    def test_configure_uses_registered_settings(self):
        """Test that configure() reads mutator kinds from the registered Settings."""
        settings = Settings(mutator_tool_kinds=["delete"])
        builder = MagicMock()
        builder.services = MagicMock()
        builder.services.__iter__.return_value = iter([SimpleNamespace(service_type=Settings, singleton=settings)])

        ToolRegistry.configure(builder)

        builder.services.add_singleton.assert_called_once()
        registry = builder.services.add_singleton.call_args.kwargs["singleton"]
        assert builder.services.add_singleton.call_args.args[0] is ToolRegistry
        assert registry.mutator_kinds == frozenset({ToolKind.DELETE})
