"""Unit tests for ConfirmationChannel.

Tests cover:
- Request/response correlation
- Unknown and duplicate responses
- Pending listing and the requests() stream
- Closing a session (or everything) abandons open requests as CANCEL
- The handler adapter used by the orchestrator
"""

import asyncio

import pytest

from agentic_chat.application.orchestrator.confirmation import ConfirmationChannel
from agentic_chat.domain.models.tool_call import ToolCallConfirmationDetails, ToolConfirmationOutcome


def details(tool_name: str = "write_cell") -> ToolCallConfirmationDetails:
    return ToolCallConfirmationDetails(call_id=f"{tool_name}-1", tool_name=tool_name, title=f"Confirm {tool_name}", args={"cell": "A1"})


async def wait_for_pending(channel: ConfirmationChannel, count: int = 1) -> None:
    while len(channel.pending()) < count:
        await asyncio.sleep(0)


@pytest.fixture
def channel():
    """Create an empty confirmation channel."""
    return ConfirmationChannel()


class TestRequestResponse:
    """Test correlation of requests and responses."""

    @pytest.mark.asyncio
    async def test_response_resolves_the_request(self, channel):
        """Test that respond() wakes the waiting requester with the outcome."""
        task = asyncio.create_task(channel.request("s1", details()))
        await wait_for_pending(channel)

        pending = channel.pending()[0]
        assert pending.session_id == "s1"
        assert pending.details.tool_name == "write_cell"
        assert channel.respond(pending.correlation_id, ToolConfirmationOutcome.PROCEED_ONCE) is True

        assert await task == ToolConfirmationOutcome.PROCEED_ONCE
        assert channel.pending() == []

    @pytest.mark.asyncio
    async def test_unknown_correlation_id_is_rejected(self, channel):
        """Test that answering an unknown id is a no-op."""
        assert channel.respond("missing", ToolConfirmationOutcome.CANCEL) is False

    @pytest.mark.asyncio
    async def test_second_response_is_rejected(self, channel):
        """Test that a request is answered at most once."""
        task = asyncio.create_task(channel.request("s1", details()))
        await wait_for_pending(channel)
        correlation_id = channel.pending()[0].correlation_id

        assert channel.respond(correlation_id, ToolConfirmationOutcome.CANCEL) is True
        assert channel.respond(correlation_id, ToolConfirmationOutcome.PROCEED_ONCE) is False
        assert await task == ToolConfirmationOutcome.CANCEL

    @pytest.mark.asyncio
    async def test_pending_filters_by_session(self, channel):
        """Test that pending() can be scoped to one session."""
        tasks = [asyncio.create_task(channel.request("s1", details("a"))), asyncio.create_task(channel.request("s2", details("b")))]
        await wait_for_pending(channel, 2)

        assert [r.details.tool_name for r in channel.pending("s2")] == ["b"]

        channel.close()
        await asyncio.gather(*tasks)

    @pytest.mark.asyncio
    async def test_requests_stream_yields_published_requests(self, channel):
        """Test that the UI side receives requests as they are published."""
        task = asyncio.create_task(channel.request("s1", details()))
        stream = channel.requests()

        published = await anext(stream)
        channel.respond(published.correlation_id, ToolConfirmationOutcome.PROCEED_ALWAYS)

        assert await task == ToolConfirmationOutcome.PROCEED_ALWAYS
        assert published.to_dict()["details"]["tool_name"] == "write_cell"
        await stream.aclose()


class TestClose:
    """Test abandoning open requests."""

    @pytest.mark.asyncio
    async def test_close_session_cancels_only_its_requests(self, channel):
        """Test that closing one session leaves other sessions waiting."""
        closed = asyncio.create_task(channel.request("s1", details("a")))
        other = asyncio.create_task(channel.request("s2", details("b")))
        await wait_for_pending(channel, 2)

        assert channel.close("s1") == 1
        assert await closed == ToolConfirmationOutcome.CANCEL
        assert not other.done()

        channel.respond(channel.pending("s2")[0].correlation_id, ToolConfirmationOutcome.PROCEED_ONCE)
        assert await other == ToolConfirmationOutcome.PROCEED_ONCE

    @pytest.mark.asyncio
    async def test_close_all(self, channel):
        """Test that closing without a session cancels everything."""
        tasks = [asyncio.create_task(channel.request("s1", details("a"))), asyncio.create_task(channel.request("s2", details("b")))]
        await wait_for_pending(channel, 2)

        assert channel.close() == 2
        assert await asyncio.gather(*tasks) == [ToolConfirmationOutcome.CANCEL, ToolConfirmationOutcome.CANCEL]

    @pytest.mark.asyncio
    async def test_closed_session_refuses_new_requests_until_reopened(self, channel):
        """Test that a closed session answers CANCEL immediately."""
        channel.close("s1")

        assert await channel.request("s1", details()) == ToolConfirmationOutcome.CANCEL
        assert channel.pending() == []

        channel.reopen("s1")
        task = asyncio.create_task(channel.request("s1", details()))
        await wait_for_pending(channel)
        channel.respond(channel.pending()[0].correlation_id, ToolConfirmationOutcome.PROCEED_ONCE)
        assert await task == ToolConfirmationOutcome.PROCEED_ONCE


class TestAsHandler:
    """Test the orchestrator-facing adapter."""

    @pytest.mark.asyncio
    async def test_handler_routes_through_the_channel(self, channel):
        """Test that the adapter publishes requests under its session id."""
        handler = channel.as_handler("s1")
        task = asyncio.create_task(handler(details()))
        await wait_for_pending(channel)

        request = channel.pending("s1")[0]
        channel.respond(request.correlation_id, ToolConfirmationOutcome.CANCEL)

        assert await task == ToolConfirmationOutcome.CANCEL
