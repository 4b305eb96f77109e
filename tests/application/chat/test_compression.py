"""Unit tests for chat history compression.

Tests cover:
- Token estimation
- Split point selection
- NOOP conditions (empty history, below threshold, after a failed attempt)
- Successful compression installing the summarized history
- Inflated summaries leaving history untouched
- Failed summary requests degrading to the uncompressed history
"""

import pytest

from agentic_chat.application.chat.chat_session import ChatSession
from agentic_chat.application.chat.compression import (
    COMPRESSION_ACKNOWLEDGEMENT,
    COMPRESSION_SYSTEM_PROMPT,
    COMPRESSION_USER_PROMPT,
    ChatCompressionService,
    CompressionStatus,
    estimate_tokens,
    find_compress_split_point,
)
from agentic_chat.domain.exceptions import TransportError
from agentic_chat.domain.models.content import TextPart, Turn
from agentic_chat.domain.models.stream import FinishReason, ResponseChunk
from tests.fixtures.factories import ScriptedTransport, TurnFactory


def long_history() -> list[Turn]:
    return [Turn.user("a" * 400), Turn.model("b" * 400), Turn.user("c" * 400), Turn.model("d" * 400), Turn.user("e" * 400)]


@pytest.fixture
def transport():
    """Create a transport whose summaries are short."""
    return ScriptedTransport(content_response=ResponseChunk(parts=[TextPart(text="summary")], finish_reason=FinishReason.STOP))


@pytest.fixture
def session(transport):
    """Create a ChatSession holding a long history."""
    return ChatSession(transport, model_id="test-model", history=long_history())


class TestEstimateTokens:
    """Test token estimation."""

    def test_four_characters_per_token_rounded_up(self):
        """Test the chars / 4 heuristic."""
        turns = [Turn.user("hello")]
        chars = len('{"role": "user", "parts": [{"text": "hello"}]}')
        assert estimate_tokens(turns) == -(-chars // 4)

    def test_empty_history(self):
        """Test that an empty history has no tokens."""
        assert estimate_tokens([]) == 0


class TestFindCompressSplitPoint:
    """Test split point selection."""

    def test_fraction_must_be_between_zero_and_one(self):
        """Test that out-of-range fractions are rejected."""
        with pytest.raises(ValueError):
            find_compress_split_point([Turn.user("a")], 0)
        with pytest.raises(ValueError):
            find_compress_split_point([Turn.user("a")], 1)

    def test_splits_at_first_user_turn_past_fraction(self):
        """Test that the first user turn beyond the fraction is chosen."""
        turns = [Turn.user("a" * 100), Turn.model("b" * 100), Turn.user("c" * 100), Turn.model("d" * 100)]
        assert find_compress_split_point(turns, 0.5) == 2

    def test_function_response_turns_are_not_split_points(self):
        """Test that a split never separates a call from its response."""
        turns = [TurnFactory.user("a" * 100), TurnFactory.model_call("c1"), TurnFactory.user_response("c1"), TurnFactory.model("d" * 100)]
        assert find_compress_split_point(turns, 0.5) == 4

    def test_everything_when_last_turn_is_a_plain_model_turn(self):
        """Test that a completed exchange can be compressed entirely."""
        turns = [Turn.user("a"), Turn.model("b")]
        assert find_compress_split_point(turns, 0.99) == 2

    def test_falls_back_to_last_candidate(self):
        """Test that a pending call keeps the last user turn as the split point."""
        turns = [TurnFactory.user("a"), TurnFactory.model_call("c1")]
        assert find_compress_split_point(turns, 0.99) == 0


class TestChatCompressionService:
    """Test try_compress."""

    @pytest.mark.asyncio
    async def test_noop_on_empty_history(self, transport):
        """Test that there is nothing to compress in an empty session."""
        service = ChatCompressionService(token_limit=10)
        info = await service.try_compress(ChatSession(transport, model_id="m"), "p")

        assert info.compression_status == CompressionStatus.NOOP
        assert (info.original_token_count, info.new_token_count) == (0, 0)

    @pytest.mark.asyncio
    async def test_noop_below_threshold(self, session, transport):
        """Test that small histories are left alone."""
        service = ChatCompressionService(token_limit=100_000)
        info = await service.try_compress(session, "p")

        assert info.compression_status == CompressionStatus.NOOP
        assert info.original_token_count == info.new_token_count > 0
        assert transport.content_requests == []

    @pytest.mark.asyncio
    async def test_reported_prompt_tokens_take_precedence(self, session):
        """Test that the model-reported prompt size drives the threshold."""
        session.last_prompt_token_count = 10
        service = ChatCompressionService(token_limit=100)

        info = await service.try_compress(session, "p")

        assert info.compression_status == CompressionStatus.NOOP
        assert info.original_token_count == 10

    @pytest.mark.asyncio
    async def test_compresses_older_history(self, session, transport):
        """Test that old turns are replaced by a summary and acknowledgement."""
        service = ChatCompressionService(token_limit=100)

        info = await service.try_compress(session, "prompt-1")

        assert info.compression_status == CompressionStatus.COMPRESSED
        assert info.new_token_count < info.original_token_count
        assert session.get_history() == [Turn.user("summary"), Turn.model(COMPRESSION_ACKNOWLEDGEMENT), Turn.user("e" * 400)]
        assert session.last_prompt_token_count == 0

        request = transport.content_requests[0]
        assert request.config.system_instruction == COMPRESSION_SYSTEM_PROMPT
        assert request.contents[-1] == Turn.user(COMPRESSION_USER_PROMPT)
        assert request.contents[:-1] == long_history()[:4]
        assert request.prompt_id == "prompt-1"

    @pytest.mark.asyncio
    async def test_inflated_summary_is_rejected_and_suppresses_retries(self, session, transport):
        """Test that a summary larger than the original leaves history unchanged."""
        transport.content_response = ResponseChunk(parts=[TextPart(text="x" * 10_000)], finish_reason=FinishReason.STOP)
        service = ChatCompressionService(token_limit=100)

        info = await service.try_compress(session, "p")
        assert info.compression_status == CompressionStatus.COMPRESSION_FAILED_INFLATED_TOKEN_COUNT
        assert session.get_history() == long_history()

        again = await service.try_compress(session, "p")
        assert again.compression_status == CompressionStatus.NOOP
        assert len(transport.content_requests) == 1

    @pytest.mark.asyncio
    async def test_force_bypasses_threshold_and_failure_flag(self, session, transport):
        """Test that a forced compression always runs."""
        service = ChatCompressionService(token_limit=100_000)

        info = await service.try_compress(session, "p", force=True)

        assert info.compression_status == CompressionStatus.COMPRESSED
        assert len(transport.content_requests) == 1

    @pytest.mark.asyncio
    async def test_failed_summary_request_keeps_history(self, session, transport):
        """Test that a transport failure leaves history as is and does not suppress later attempts."""
        transport.content_error = TransportError("AI model request timed out", error_code="timeout", is_retryable=True)
        service = ChatCompressionService(token_limit=100)

        info = await service.try_compress(session, "p")

        assert info.compression_status == CompressionStatus.NOOP
        assert info.new_token_count == info.original_token_count > 0
        assert session.get_history() == long_history()

        transport.content_error = None
        again = await service.try_compress(session, "p")
        assert again.compression_status == CompressionStatus.COMPRESSED
        assert len(transport.content_requests) == 2

    def test_info_to_dict(self):
        """Test compression info serialization."""
        from agentic_chat.application.chat.compression import ChatCompressionInfo

        info = ChatCompressionInfo(100, 40, CompressionStatus.COMPRESSED)
        assert info.to_dict() == {"original_token_count": 100, "new_token_count": 40, "compression_status": "compressed"}
