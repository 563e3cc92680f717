"""Inbound message handling: command routing, persistence and plugin events."""

from __future__ import annotations

from typing import Any, Awaitable, Callable

from loguru import logger

from buddian.bus.events import InboundMessage
from buddian.bus.queue import MessageBus
from buddian.core.logger import log_error
from buddian.handlers.commands import ChatCommandContext, CommandRouter, parse_command
from buddian.plugins.manager import PluginManager
from buddian.plugins.types import PluginContext, PluginEvent, PluginEventType

# Stores a message and returns its id (or None when the store assigns none)
PersistCallback = Callable[[InboundMessage], Awaitable[str | None]]


def message_payload(msg: InboundMessage, stored_id: str | None = None) -> dict[str, Any]:
    """Event data describing an inbound message."""
    return {
        "id": stored_id or msg.message_id,
        "channel": msg.channel,
        "sender_id": msg.sender_id,
        "chat_id": msg.chat_id,
        "content": msg.content,
        "language": msg.language,
        "media": list(msg.media),
        "metadata": dict(msg.metadata),
    }


class MessageHandler:
    """Classifies inbound messages and feeds them to the router or to plugins."""

    def __init__(
        self,
        bus: MessageBus,
        manager: PluginManager,
        router: CommandRouter,
        persist: PersistCallback | None = None,
        allow_from: list[str] | None = None,
    ):
        self.bus = bus
        self.manager = manager
        self.router = router
        self.persist = persist
        self.allow_from = list(allow_from or [])

    def is_allowed(self, sender_id: str) -> bool:
        """Check the sender against ``allow_from``. An empty list allows everyone."""
        if not self.allow_from:
            return True
        sender_str = str(sender_id)
        if sender_str in self.allow_from:
            return True
        # Composite ids like "123|username"
        return any(part in self.allow_from for part in sender_str.split("|") if part)

    async def handle(self, msg: InboundMessage) -> bool:
        """
        Process one inbound message.

        Returns:
            True if the message was a command that got handled.
        """
        if not self.is_allowed(msg.sender_id):
            logger.warning(f"Ignoring message from {msg.sender_id} on {msg.channel}: sender not in allow_from")
            return False
        if msg.is_command:
            return await self._handle_command(msg)
        await self._handle_text(msg)
        return False

    async def _handle_command(self, msg: InboundMessage) -> bool:
        ctx = ChatCommandContext.from_message(msg, self.bus)
        handled = await self.router.route(msg.content, ctx)
        if handled:
            name, args = parse_command(msg.content)
            await self._broadcast(
                PluginEventType.COMMAND_EXECUTED,
                {"command": name, "args": args, "builtin": self.router.is_builtin(name)},
                msg,
            )
        return handled

    async def _handle_text(self, msg: InboundMessage) -> None:
        stored_id = None
        if self.persist is not None:
            try:
                stored_id = await self.persist(msg)
            except Exception as e:
                log_error(logger, e, operation="store_message", chat_id=msg.chat_id)

        event_type = PluginEventType.FILE_UPLOADED if msg.media else PluginEventType.MESSAGE_RECEIVED
        await self._broadcast(event_type, message_payload(msg, stored_id), msg)

    async def _broadcast(self, event_type: PluginEventType, data: Any, msg: InboundMessage) -> None:
        event = PluginEvent(
            type=event_type,
            data=data,
            context=PluginContext(
                user_id=msg.sender_id,
                chat_id=msg.chat_id,
                message_id=msg.message_id,
                language=msg.language or "en",
                metadata={"channel": msg.channel},
            ),
        )
        try:
            await self.manager.broadcast_event(event)
        except Exception as e:
            log_error(
                logger,
                e,
                operation="plugin_event_broadcast",
                message_id=msg.message_id,
                event_type=str(event_type),
            )

    async def run(self) -> None:
        """Consume the inbound queue until cancelled."""
        logger.info("Message handler started")
        while True:
            msg = await self.bus.consume_inbound()
            try:
                await self.handle(msg)
            except Exception as e:
                log_error(logger, e, operation="handle_message", chat_id=msg.chat_id)
