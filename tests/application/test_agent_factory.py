"""Unit tests for AgentFactory.

Tests cover:
- ChatSession wiring from Settings and the ToolRegistry
- Orchestrator wiring (approval mode, compression, session store)
- DI registration and its prerequisites
"""

from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest

from agentic_chat.application.services.agent_factory import AgentFactory
from agentic_chat.application.settings import Settings
from agentic_chat.domain.models.tool_call import ApprovalMode
from agentic_chat.infrastructure.adapters.ollama_transport import OllamaTransport
from agentic_chat.infrastructure.tool_registry import Tool, ToolKind, ToolRegistry
from tests.fixtures.factories import RecordingSessionStore, ScriptedTransport


def builder_with(*descriptors) -> MagicMock:
    builder = MagicMock()
    builder.services = MagicMock()
    builder.services.__iter__.side_effect = lambda: iter([SimpleNamespace(service_type=t, singleton=s) for t, s in descriptors])
    return builder


@pytest.fixture
def settings():
    """Create settings with distinctive values."""
    return Settings(model_id="qwen3:8b", invalid_content_max_attempts=4, approval_mode="auto_edit", context_token_limit=1000)


@pytest.fixture
def registry():
    """Create a registry with one editing tool."""
    registry = ToolRegistry()
    registry.register(Tool(name="write_cell", description="Write a cell", kind=ToolKind.EDIT, handler=lambda args: "ok"))
    return registry


class TestAgentFactory:
    """Test session and orchestrator creation."""

    def test_chat_session_uses_settings_and_tools(self, settings, registry):
        """Test model, tool declarations, system instruction and retry budget."""
        factory = AgentFactory(ScriptedTransport(), registry, settings=settings)

        session = factory.create_chat_session(system_instruction="Be brief")

        assert session.model_id == "qwen3:8b"
        assert [t.name for t in session.generation_config.tools] == ["write_cell"]
        assert session.generation_config.system_instruction == "Be brief"
        assert session._retry_options.max_attempts == 4
        assert session._is_mutator("write_cell") is True

    def test_orchestrator_uses_configured_approval_mode(self, settings, registry):
        """Test approval mode and session store wiring."""
        store = RecordingSessionStore()
        factory = AgentFactory(ScriptedTransport(), registry, settings=settings, session_store=store)

        orchestrator = factory.create_orchestrator(confirmation_handler=MagicMock())

        assert orchestrator.approval_mode == ApprovalMode.AUTO_EDIT
        assert orchestrator.chat_session.model_id == "qwen3:8b"
        assert orchestrator._store is store

    def test_compression_service_thresholds(self, settings, registry):
        """Test that compression uses the configured context limit."""
        service = AgentFactory(ScriptedTransport(), registry, settings=settings).create_compression_service()
        assert service._token_limit == 1000


class TestConfigure:
    """Test DI registration."""

    def test_configure_registers_factory(self, settings, registry):
        """Test that configure() wires registered services."""
        transport = OllamaTransport()
        builder = builder_with((Settings, settings), (OllamaTransport, transport), (ToolRegistry, registry))

        AgentFactory.configure(builder)

        factory = builder.services.add_singleton.call_args.kwargs["singleton"]
        assert isinstance(factory, AgentFactory)
        assert factory.settings is settings

    def test_configure_requires_transport_and_registry(self, settings):
        """Test that missing prerequisites fail fast."""
        with pytest.raises(RuntimeError):
            AgentFactory.configure(builder_with((Settings, settings)))
