"""Agent Factory for agentic-chat.

Centralizes how ChatSessions and AgenticOrchestrators are wired from Settings:
- Retry budgets for invalid streams and transport errors
- Tool declarations and the mutator lookup from the ToolRegistry
- Compression thresholds
- The in-process tool scheduler under the configured approval mode
"""

import logging
from typing import TYPE_CHECKING, Optional

from agentic_chat.application.chat.chat_session import ChatSession, InvalidContentRetryOptions
from agentic_chat.application.chat.compression import ChatCompressionService
from agentic_chat.application.orchestrator.orchestrator import AgenticOrchestrator
from agentic_chat.application.services.retry import PersistentQuotaHandler, RetryOptions
from agentic_chat.application.settings import Settings, app_settings
from agentic_chat.domain.contracts import ConfirmationHandler, SessionStore, Transport
from agentic_chat.domain.models.content import Turn
from agentic_chat.domain.models.stream import GenerationConfig
from agentic_chat.domain.models.tool_call import ApprovalMode
from agentic_chat.infrastructure.tool_registry import ToolRegistry
from agentic_chat.infrastructure.tool_scheduler import InProcessToolScheduler

if TYPE_CHECKING:
    from neuroglia.hosting.abstractions import ApplicationBuilderBase

logger = logging.getLogger(__name__)


class AgentFactory:
    """Factory for chat sessions and orchestrators.

    Usage:
        factory = AgentFactory(transport, registry, session_store=store)
        orchestrator = factory.create_orchestrator(confirmation_handler=channel.as_handler(session_id))
    """

    def __init__(
        self,
        transport: Transport,
        registry: ToolRegistry,
        settings: Optional[Settings] = None,
        session_store: Optional[SessionStore] = None,
        on_persistent_quota: Optional[PersistentQuotaHandler] = None,
    ) -> None:
        """Initialize the factory.

        Args:
            transport: Model transport shared by every session
            registry: Tools advertised to the model and executed by the scheduler
            settings: Configuration (defaults to app_settings)
            session_store: Display-history store handed to orchestrators
            on_persistent_quota: Fallback hook for repeated quota errors
        """
        self._transport = transport
        self._registry = registry
        self._settings = settings or app_settings
        self._session_store = session_store
        self._on_persistent_quota = on_persistent_quota

    @property
    def settings(self) -> Settings:
        return self._settings

    def create_chat_session(self, system_instruction: Optional[str] = None, history: Optional[list[Turn]] = None) -> ChatSession:
        """Create a ChatSession advertising every registered tool."""
        settings = self._settings
        return ChatSession(
            transport=self._transport,
            model_id=settings.model_id,
            generation_config=GenerationConfig(system_instruction=system_instruction, tools=self._registry.declarations()),
            history=history,
            is_mutator=self._registry.is_mutator,
            retry_options=InvalidContentRetryOptions(
                max_attempts=settings.invalid_content_max_attempts,
                initial_delay_ms=settings.invalid_content_initial_delay_ms,
            ),
            transport_retry_options=RetryOptions(
                max_attempts=settings.transport_retry_max_attempts,
                initial_delay_ms=settings.transport_retry_initial_delay_ms,
                max_delay_ms=settings.transport_retry_max_delay_ms,
                quota_fallback_after=settings.transport_quota_fallback_after,
            ),
            on_persistent_quota=self._on_persistent_quota,
        )

    def create_compression_service(self) -> ChatCompressionService:
        settings = self._settings
        return ChatCompressionService(
            token_limit=settings.context_token_limit,
            token_threshold=settings.compression_token_threshold,
            preserve_threshold=settings.compression_preserve_threshold,
        )

    def create_orchestrator(
        self,
        chat_session: Optional[ChatSession] = None,
        confirmation_handler: Optional[ConfirmationHandler] = None,
        system_instruction: Optional[str] = None,
    ) -> AgenticOrchestrator:
        """Create an orchestrator with its own chat session unless one is given."""
        approval_mode = ApprovalMode(self._settings.approval_mode)
        orchestrator = AgenticOrchestrator(
            chat_session=chat_session or self.create_chat_session(system_instruction=system_instruction),
            scheduler_factory=InProcessToolScheduler.factory(self._registry, approval_mode),
            session_store=self._session_store,
            confirmation_handler=confirmation_handler,
            compression_service=self.create_compression_service(),
            approval_mode=approval_mode,
            title_generation_enabled=self._settings.title_generation_enabled,
        )
        logger.debug(f"Created orchestrator: model={self._settings.model_id}, approval_mode={approval_mode.value}, tools={len(self._registry.tools())}")
        return orchestrator

    @staticmethod
    def configure(builder: "ApplicationBuilderBase") -> None:
        """Register an AgentFactory built from the registered transport, registry and session store.

        OllamaTransport.configure and ToolRegistry.configure must run first.

        Args:
            builder: The application builder

        Raises:
            RuntimeError: If the transport or registry is not registered
        """
        from agentic_chat.infrastructure.adapters.ollama_transport import OllamaTransport
        from agentic_chat.infrastructure.session_store import InMemorySessionStore

        def registered(service_type: type) -> object:
            return next((d.singleton for d in builder.services if d.service_type is service_type), None)

        settings = registered(Settings) or app_settings
        transport = registered(OllamaTransport)
        registry = registered(ToolRegistry)
        if transport is None or registry is None:
            raise RuntimeError("AgentFactory requires OllamaTransport and ToolRegistry to be configured first")

        factory = AgentFactory(transport=transport, registry=registry, settings=settings, session_store=registered(InMemorySessionStore))
        builder.services.add_singleton(AgentFactory, singleton=factory)
        logger.info(f"Configured AgentFactory (model={settings.model_id}, approval_mode={settings.approval_mode})")
