"""Tests for the cross-context message channel."""

import asyncio

import pytest

from flowpilot.channel import Message, MessageChannel, MessageType, Response
from flowpilot.errors import ChannelTimeoutError, InvalidOperationError, TargetUnavailableError


def ping(**payload) -> Message:
    return Message(type=MessageType.GET_STATUS, payload=payload, sender="test")


class TestDelivery:
    """Tests for request/response delivery."""

    @pytest.mark.asyncio
    async def test_single_response_with_correlation(self):
        channel = MessageChannel()

        async def echo(message):
            return Response.ok(message.payload)

        channel.register("echo", echo)
        message = ping(n=1)

        response = await channel.send("echo", message)

        assert response.success
        assert response.data == {"n": 1}
        assert response.correlation_id == message.message_id
        await channel.close()

    @pytest.mark.asyncio
    async def test_messages_handled_in_send_order(self):
        channel = MessageChannel()
        handled = []

        async def slow_first(message):
            if message.payload["n"] == 0:
                await asyncio.sleep(0.05)
            handled.append(message.payload["n"])
            return Response.ok()

        channel.register("worker", slow_first)
        await asyncio.gather(*(channel.send("worker", ping(n=i)) for i in range(5)))

        assert handled == [0, 1, 2, 3, 4]
        await channel.close()

    @pytest.mark.asyncio
    async def test_flowpilot_errors_become_failed_responses(self):
        channel = MessageChannel()

        async def refuse(message):
            raise InvalidOperationError("not now")

        channel.register("refuser", refuse)

        response = await channel.send("refuser", ping())

        assert not response.success
        assert response.error == "not now"
        assert response.error_code == "INVALID_OPERATION"
        await channel.close()

    @pytest.mark.asyncio
    async def test_unexpected_errors_become_internal_errors(self):
        channel = MessageChannel()

        async def broken(message):
            raise KeyError("boom")

        channel.register("broken", broken)

        response = await channel.send("broken", ping())
        follow_up = await channel.send("broken", ping())

        assert response.error_code == "INTERNAL_ERROR"
        assert follow_up.error_code == "INTERNAL_ERROR"
        await channel.close()


class TestFailures:
    """Tests for unavailable targets and timeouts."""

    @pytest.mark.asyncio
    async def test_unknown_context(self):
        channel = MessageChannel()

        with pytest.raises(TargetUnavailableError) as exc_info:
            await channel.send("nobody", ping())

        assert exc_info.value.code == "TARGET_UNAVAILABLE"

    @pytest.mark.asyncio
    async def test_not_ready_context(self):
        channel = MessageChannel()

        async def handler(message):
            return Response.ok()

        channel.register("loading", handler, ready=False)
        assert not channel.is_available("loading")

        with pytest.raises(TargetUnavailableError):
            await channel.send("loading", ping())

        channel.mark_ready("loading")
        assert (await channel.send("loading", ping())).success
        await channel.close()

    @pytest.mark.asyncio
    async def test_timeout_and_late_response_is_dropped(self):
        channel = MessageChannel()
        release = asyncio.Event()
        handled = []

        async def stuck(message):
            await release.wait()
            handled.append(message.payload["n"])
            return Response.ok(message.payload["n"])

        channel.register("stuck", stuck)

        with pytest.raises(ChannelTimeoutError) as exc_info:
            await channel.send("stuck", ping(n=1), timeout=0.05)
        assert exc_info.value.code == "CHANNEL_TIMEOUT"

        release.set()
        response = await channel.send("stuck", ping(n=2), timeout=1)

        assert handled == [1, 2]
        assert response.data == 2
        await channel.close()

    @pytest.mark.asyncio
    async def test_unregister_fails_queued_requests(self):
        channel = MessageChannel()
        gate = asyncio.Event()

        async def blocked(message):
            await gate.wait()
            return Response.ok()

        channel.register("blocked", blocked)
        first = asyncio.create_task(channel.send("blocked", ping(), timeout=1))
        second = asyncio.create_task(channel.send("blocked", ping(), timeout=1))
        await asyncio.sleep(0.01)

        await channel.unregister("blocked")

        with pytest.raises(TargetUnavailableError):
            await second
        with pytest.raises(ChannelTimeoutError):
            await first
        assert "blocked" not in channel.contexts

    @pytest.mark.asyncio
    async def test_duplicate_registration(self):
        channel = MessageChannel()

        async def handler(message):
            return Response.ok()

        channel.register("once", handler)
        with pytest.raises(ValueError):
            channel.register("once", handler)
        await channel.close()
