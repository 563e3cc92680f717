"""Async queues between chat channels and the message handler."""

import asyncio
from typing import Awaitable, Callable

from loguru import logger

from buddian.bus.events import InboundMessage, OutboundMessage
from buddian.core.logger import log_error

OutboundCallback = Callable[[OutboundMessage], Awaitable[None]]


class MessageBus:
    """
    Inbound and outbound queues for chat traffic.

    Channels publish user messages to ``inbound``; the message handler consumes
    them. Replies (including plugin replies) go to ``outbound`` and are fanned
    out per channel by ``dispatch_outbound``.
    """

    def __init__(self):
        self.inbound: asyncio.Queue[InboundMessage] = asyncio.Queue()
        self.outbound: asyncio.Queue[OutboundMessage] = asyncio.Queue()
        self._outbound_subscribers: dict[str, list[OutboundCallback]] = {}
        self._running = False

    async def publish_inbound(self, msg: InboundMessage) -> None:
        await self.inbound.put(msg)

    async def consume_inbound(self) -> InboundMessage:
        """Wait for the next inbound message."""
        return await self.inbound.get()

    async def publish_outbound(self, msg: OutboundMessage) -> None:
        await self.outbound.put(msg)

    def subscribe_outbound(self, channel: str, callback: OutboundCallback) -> None:
        """Deliver outbound messages for ``channel`` to ``callback``, in subscription order."""
        self._outbound_subscribers.setdefault(channel, []).append(callback)

    async def dispatch_outbound(self) -> None:
        """
        Deliver outbound messages to their channel's subscribers until stop().

        A failing subscriber is logged and does not keep the message from the
        remaining subscribers.
        """
        self._running = True
        while self._running:
            try:
                msg = await asyncio.wait_for(self.outbound.get(), timeout=1.0)
            except asyncio.TimeoutError:
                continue
            for callback in self._outbound_subscribers.get(msg.channel, []):
                try:
                    await callback(msg)
                except Exception as e:
                    log_error(logger, e, operation="dispatch_outbound", channel=msg.channel, chat_id=msg.chat_id)

    def stop(self) -> None:
        self._running = False

    @property
    def inbound_size(self) -> int:
        """Number of inbound messages not yet consumed."""
        return self.inbound.qsize()
