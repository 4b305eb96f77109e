"""In-memory session store for display history (for testing/development)."""

import logging
import re
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any, Optional
from uuid import uuid4

from agentic_chat.domain.contracts import Transport
from agentic_chat.domain.models.content import Turn
from agentic_chat.domain.models.message import DisplayMessage, MessageRole
from agentic_chat.domain.models.stream import GenerateRequest

if TYPE_CHECKING:
    from neuroglia.hosting.abstractions import ApplicationBuilderBase

logger = logging.getLogger(__name__)

DEFAULT_SESSION_TITLE = "New Chat"
CONTINUATION_PROMPT = "Please continue."
HEURISTIC_TITLE_MAX_CHARS = 30
INTELLIGENT_TITLE_EVERY = 5

TitleGenerator = Callable[[list[DisplayMessage]], Awaitable[str]]

TITLE_PROMPT = """Based on this conversation, generate a short, descriptive title (max 40 characters). Only respond with the title, no explanation:

{conversation}"""


def generate_title_from_message(message: str) -> str:
    """Build a short title from the first user message."""
    clean_message = re.sub(r"\n+", " ", message).strip()
    if len(clean_message) <= HEURISTIC_TITLE_MAX_CHARS:
        return clean_message

    truncated = clean_message[:HEURISTIC_TITLE_MAX_CHARS]
    last_space_index = truncated.rfind(" ")
    if last_space_index > 15:
        return clean_message[:last_space_index] + "..."
    return truncated + "..."


@dataclass
class SessionData:
    """A conversation's display history and metadata."""

    id: str
    title: str = DEFAULT_SESSION_TITLE
    messages: list[DisplayMessage] = field(default_factory=list)
    title_locked_by_user: bool = False
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    last_updated: datetime = field(default_factory=lambda: datetime.now(UTC))

    def user_messages(self) -> list[DisplayMessage]:
        return [m for m in self.messages if m.role == MessageRole.USER and m.content != CONTINUATION_PROMPT]

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "message_count": len(self.messages),
            "title_locked_by_user": self.title_locked_by_user,
            "created_at": self.created_at.isoformat(),
            "last_updated": self.last_updated.isoformat(),
        }


class InMemorySessionStore:
    """
    In-memory implementation of the SessionStore contract.

    Keeps every session's display messages and title in memory. Suitable for
    testing and single-process use.
    """

    def __init__(self, title_generator: Optional[TitleGenerator] = None) -> None:
        """
        Initialize the store.

        Args:
            title_generator: Optional async callable producing an LLM title from
                recent user messages; used on every fifth user message
        """
        self._sessions: dict[str, SessionData] = {}
        self._current_session_id: Optional[str] = None
        self._title_generator = title_generator

    def create_session(self, session_id: Optional[str] = None, title: str = DEFAULT_SESSION_TITLE) -> SessionData:
        """Create a session; it becomes current when none is."""
        session = SessionData(id=session_id or str(uuid4()), title=title)
        self._sessions[session.id] = session
        logger.debug(f"Created session {session.id}")
        if self._current_session_id is None:
            self._current_session_id = session.id
        return session

    def switch_session(self, session_id: str) -> None:
        if session_id not in self._sessions:
            raise KeyError(f"Session not found: {session_id}")
        self._current_session_id = session_id

    def get_current_session_id(self) -> Optional[str]:
        return self._current_session_id

    def get_session(self, session_id: str) -> Optional[SessionData]:
        return self._sessions.get(session_id)

    def delete_session(self, session_id: str) -> None:
        self._sessions.pop(session_id, None)
        if self._current_session_id == session_id:
            self._current_session_id = None
        logger.debug(f"Deleted session {session_id}")

    async def add_history(self, message: DisplayMessage) -> None:
        """Append a message to the current session, creating one if needed."""
        if self._current_session_id is None or self._current_session_id not in self._sessions:
            self.create_session()
        session = self._sessions[self._current_session_id]
        session.messages.append(message)
        session.last_updated = datetime.now(UTC)

    def get_history(self, session_id: Optional[str] = None) -> list[DisplayMessage]:
        session = self._sessions.get(session_id or self._current_session_id or "")
        return list(session.messages) if session else []

    def update_title(self, session_id: str, title: str) -> None:
        """Set a title manually; this locks it against automatic updates."""
        session = self._sessions[session_id]
        session.title = title
        session.title_locked_by_user = True
        session.last_updated = datetime.now(UTC)
        logger.info(f"Updated session {session_id} title to: {title} (locked by user)")

    def set_title_lock(self, session_id: str, locked: bool) -> None:
        self._sessions[session_id].title_locked_by_user = locked

    async def trigger_title_generation(self, session_id: str, model_info: str) -> None:
        """Refresh the title from the conversation.

        The first user message gives a heuristic title. Every fifth user message
        asks the title generator for a better one. Locked titles are left alone.
        """
        session = self._sessions.get(session_id)
        if session is None:
            return
        if session.title_locked_by_user:
            logger.debug(f"Title locked by user, skipping auto-generation: {session.title}")
            return

        user_messages = session.user_messages()
        if len(user_messages) == 1:
            session.title = generate_title_from_message(user_messages[0].content)
            session.last_updated = datetime.now(UTC)
            logger.info(f"Auto-generated title from first message: {session.title}")
        elif user_messages and len(user_messages) % INTELLIGENT_TITLE_EVERY == 0 and self._title_generator is not None:
            try:
                title = (await self._title_generator(user_messages[-INTELLIGENT_TITLE_EVERY:])).strip().strip('"')
            except Exception as e:
                logger.error(f"Error generating intelligent title with {model_info}: {e}")
                return
            if title:
                session.title = title[:40]
                session.last_updated = datetime.now(UTC)
                logger.info(f"Updating title at {len(user_messages)} messages: {session.title}")

    @staticmethod
    def configure(builder: "ApplicationBuilderBase") -> None:
        """Register an InMemorySessionStore in the service collection.

        When title generation is enabled and a transport is registered, the
        store generates LLM titles with the configured model.

        Args:
            builder: The application builder
        """
        from agentic_chat.application.settings import Settings, app_settings
        from agentic_chat.infrastructure.adapters.ollama_transport import OllamaTransport

        settings: Optional[Settings] = next((d.singleton for d in builder.services if d.service_type is Settings), None)
        if settings is None:
            logger.info("Settings not found in DI services, using app_settings singleton")
            settings = app_settings

        title_generator: Optional[TitleGenerator] = None
        transport = next((d.singleton for d in builder.services if d.service_type is OllamaTransport), None)
        if settings.title_generation_enabled and transport is not None:
            title_generator = make_llm_title_generator(transport, settings.model_id)

        store = InMemorySessionStore(title_generator=title_generator)
        builder.services.add_singleton(InMemorySessionStore, singleton=store)
        logger.info(f"Configured InMemorySessionStore (llm titles: {title_generator is not None})")


def make_llm_title_generator(transport: Transport, model_id: str) -> TitleGenerator:
    """Build a title generator that asks the model for a title."""

    async def generate(messages: list[DisplayMessage]) -> str:
        conversation = "\n".join(f"User: {m.content}" for m in messages)
        request = GenerateRequest(model_id=model_id, contents=[Turn.user(TITLE_PROMPT.format(conversation=conversation))], prompt_id="title-generation")
        response = await transport.generate_content(request)
        return response.text

    return generate
