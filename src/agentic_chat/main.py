"""agentic-chat composition root.

Configures logging, then lets each component register itself into a neuroglia
service collection through its static ``configure(builder)``.

Usage:
    services = create_services()
    factory = services.get_required_service(AgentFactory)
    registry = services.get_required_service(ToolRegistry)
    registry.register(Tool(...))
    orchestrator = factory.create_orchestrator(confirmation_handler=channel.as_handler(session_id))
"""

import logging

from neuroglia.dependency_injection import ServiceCollection, ServiceProviderBase

from agentic_chat.application.services.agent_factory import AgentFactory
from agentic_chat.application.services.logger import configure_logging
from agentic_chat.application.settings import Settings, app_settings
from agentic_chat.infrastructure.adapters.ollama_transport import OllamaTransport
from agentic_chat.infrastructure.session_store import InMemorySessionStore
from agentic_chat.infrastructure.tool_registry import ToolRegistry

log = logging.getLogger(__name__)


class AgenticChatBuilder:
    """Holds the settings and the service collection components register into."""

    def __init__(self, settings: Settings) -> None:
        self.settings = settings
        self.services = ServiceCollection()
        self.services.add_singleton(Settings, singleton=settings)

    def build(self) -> ServiceProviderBase:
        return self.services.build()


def create_services(settings: Settings = app_settings) -> ServiceProviderBase:
    """Create and configure the agentic-chat services.

    Registration order matters: the session store and the agent factory look
    up the transport and the registry registered before them.

    Returns:
        Service provider exposing OllamaTransport, ToolRegistry, InMemorySessionStore and AgentFactory
    """
    configure_logging(log_level=settings.log_level, file=settings.log_file_enabled, filename=settings.log_filename)
    log.debug("🚀 Creating agentic-chat services...")

    builder = AgenticChatBuilder(settings)
    OllamaTransport.configure(builder)
    ToolRegistry.configure(builder)
    InMemorySessionStore.configure(builder)
    AgentFactory.configure(builder)

    return builder.build()
