"""Chat history compression.

When the curated history grows past a fraction of the model's context window,
the oldest part of the conversation is summarized into a state snapshot and the
history is rebuilt as ``[summary, acknowledgement, *recent turns]``.
"""

import json
import logging
import math
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any

from agentic_chat.domain.exceptions import TransportError
from agentic_chat.domain.models.content import Role, Turn
from agentic_chat.domain.models.stream import GenerateRequest, GenerationConfig
from agentic_chat.observability import compression_count

if TYPE_CHECKING:
    from agentic_chat.application.chat.chat_session import ChatSession

logger = logging.getLogger(__name__)

COMPRESSION_ACKNOWLEDGEMENT = "Got it. Thanks for the additional context!"

COMPRESSION_SYSTEM_PROMPT = """You are the component that summarizes internal chat history into a given structure.

When the conversation history grows too large, you will be invoked to distill the entire history into a concise, structured snapshot.
This snapshot is CRITICAL, as it will become the agent's *only* memory of the past. The agent will resume its work based solely on this snapshot.
All crucial details, plans, errors, and user directives MUST be preserved.

First, think through the entire history in a private <scratchpad>. Then generate the final <state_snapshot> XML object with these sections:
<overall_goal>, <key_knowledge>, <recent_actions>, <current_plan>."""

COMPRESSION_USER_PROMPT = "First, reason in your scratchpad. Then, generate the <state_snapshot>."


class CompressionStatus(str, Enum):
    """Outcome of a compression attempt."""

    COMPRESSED = "compressed"
    NOOP = "noop"
    COMPRESSION_FAILED_INFLATED_TOKEN_COUNT = "compression_failed_inflated_token_count"


@dataclass
class ChatCompressionInfo:
    """Token counts before and after a compression attempt."""

    original_token_count: int
    new_token_count: int
    compression_status: CompressionStatus

    def to_dict(self) -> dict[str, Any]:
        return {
            "original_token_count": self.original_token_count,
            "new_token_count": self.new_token_count,
            "compression_status": self.compression_status.value,
        }


def _char_count(turn: Turn) -> int:
    return len(json.dumps(turn.to_dict()))


def estimate_tokens(turns: list[Turn]) -> int:
    """Roughly 4 characters per token."""
    return math.ceil(sum(_char_count(t) for t in turns) / 4)


def find_compress_split_point(turns: list[Turn], fraction: float) -> int:
    """Return the index of the oldest turn to keep.

    Only user turns that carry no function response are valid split points.
    May return ``len(turns)``, meaning everything can be compressed.

    Raises:
        ValueError: If fraction is not strictly between 0 and 1
    """
    if fraction <= 0 or fraction >= 1:
        raise ValueError("Fraction must be between 0 and 1")

    char_counts = [_char_count(t) for t in turns]
    target_char_count = sum(char_counts) * fraction

    last_split_point = 0
    cumulative_char_count = 0
    for index, turn in enumerate(turns):
        if turn.role == Role.USER and not turn.function_responses:
            if cumulative_char_count >= target_char_count:
                return index
            last_split_point = index
        cumulative_char_count += char_counts[index]

    last_turn = turns[-1] if turns else None
    if last_turn is not None and last_turn.role == Role.MODEL and not last_turn.function_calls:
        return len(turns)

    return last_split_point


class ChatCompressionService:
    """Summarizes old history when it approaches the context limit.

    A failed (inflating) attempt suppresses further unforced attempts for the
    lifetime of the service.
    """

    def __init__(self, token_limit: int, token_threshold: float = 0.7, preserve_threshold: float = 0.3) -> None:
        self._token_limit = token_limit
        self._token_threshold = token_threshold
        self._preserve_threshold = preserve_threshold
        self._has_failed_compression_attempt = False

    async def try_compress(self, session: "ChatSession", prompt_id: str, force: bool = False) -> ChatCompressionInfo:
        curated_history = session.get_history(curated=True)

        if not curated_history or (self._has_failed_compression_attempt and not force):
            return ChatCompressionInfo(0, 0, CompressionStatus.NOOP)

        original_token_count = session.last_prompt_token_count or estimate_tokens(curated_history)

        if not force and original_token_count < self._token_threshold * self._token_limit:
            return ChatCompressionInfo(original_token_count, original_token_count, CompressionStatus.NOOP)

        split_point = find_compress_split_point(curated_history, 1 - self._preserve_threshold)
        history_to_compress = curated_history[:split_point]
        history_to_keep = curated_history[split_point:]

        logger.info(f"🗜️ Compressing chat history: {len(history_to_compress)} turn(s) summarized, {len(history_to_keep)} kept, ~{original_token_count} tokens")
        try:
            summary_response = await session.transport.generate_content(
                GenerateRequest(
                    model_id=session.model_id,
                    contents=[*history_to_compress, Turn.user(COMPRESSION_USER_PROMPT)],
                    config=GenerationConfig(system_instruction=COMPRESSION_SYSTEM_PROMPT),
                    prompt_id=prompt_id,
                )
            )
        except TransportError as e:
            logger.warning(f"⚠️ Compression request failed ({e.error_code}), sending the uncompressed history: {e}")
            compression_count.add(1, {"status": "error"})
            return ChatCompressionInfo(original_token_count, original_token_count, CompressionStatus.NOOP)
        summary = summary_response.text

        new_history = [Turn.user(summary), Turn.model(COMPRESSION_ACKNOWLEDGEMENT), *history_to_keep]
        new_token_count = estimate_tokens(new_history)

        if new_token_count >= original_token_count:
            status = CompressionStatus.COMPRESSION_FAILED_INFLATED_TOKEN_COUNT
            self._has_failed_compression_attempt = not force
            logger.warning(f"⚠️ Compression inflated the history ({original_token_count} -> {new_token_count} tokens), keeping original")
        else:
            status = CompressionStatus.COMPRESSED
            session.set_history(new_history)
            session.last_prompt_token_count = 0
            logger.info(f"✅ Chat history compressed: {original_token_count} -> {new_token_count} tokens")

        compression_count.add(1, {"status": status.value})
        return ChatCompressionInfo(original_token_count, new_token_count, status)
