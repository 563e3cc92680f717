"""Tests for the message bus."""

import asyncio

import pytest

from buddian.bus.events import InboundMessage, OutboundMessage
from buddian.bus.queue import MessageBus


@pytest.fixture
def bus():
    """Provide a MessageBus instance."""
    return MessageBus()


def test_inbound_message_helpers():
    msg = InboundMessage(channel="telegram", sender_id="1", chat_id="9", content="  /help")
    assert msg.is_command is True
    assert InboundMessage(channel="cli", sender_id="1", chat_id="9", content="hi").is_command is False


@pytest.mark.asyncio
async def test_inbound_round_trip(bus):
    msg = InboundMessage(channel="cli", sender_id="1", chat_id="9", content="hi")
    await bus.publish_inbound(msg)
    assert bus.inbound_size == 1
    assert await bus.consume_inbound() is msg
    assert bus.inbound_size == 0


@pytest.mark.asyncio
async def test_dispatch_outbound_routes_by_channel(bus):
    telegram, cli = [], []

    async def to_telegram(msg):
        telegram.append(msg.content)

    async def broken(msg):
        raise RuntimeError("send failed")

    async def to_cli(msg):
        cli.append(msg.content)

    bus.subscribe_outbound("telegram", broken)
    bus.subscribe_outbound("telegram", to_telegram)
    bus.subscribe_outbound("cli", to_cli)

    task = asyncio.create_task(bus.dispatch_outbound())
    await bus.publish_outbound(OutboundMessage(channel="telegram", chat_id="1", content="a"))
    await bus.publish_outbound(OutboundMessage(channel="cli", chat_id="1", content="b"))
    for _ in range(50):
        if telegram and cli:
            break
        await asyncio.sleep(0.01)

    bus.stop()
    task.cancel()
    await asyncio.gather(task, return_exceptions=True)

    assert telegram == ["a"]
    assert cli == ["b"]
