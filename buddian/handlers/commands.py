"""
Slash command routing for chat messages.

Intercepts messages starting with ``/``. Built-in commands are answered
directly; anything else falls through to the plugin manager.
"""

from __future__ import annotations

import shlex
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable

from loguru import logger

from buddian.bus.events import InboundMessage, OutboundMessage
from buddian.bus.queue import MessageBus
from buddian.core.logger import log_error
from buddian.plugins.manager import AvailableCommand, PluginManager, PluginStatsSnapshot
from buddian.plugins.types import PluginContext

WELCOME_TEXT = """🤖 Welcome to Buddian! I'm your conversation assistant.

I can help you:
• 📝 Remember important decisions and action items
• 🔍 Search through your conversation history
• 🔌 Run commands provided by plugins

Just start chatting naturally.

Use /help to see all available commands."""


@dataclass
class ChatCommandContext:
    """Command carrier handed to built-in and plugin command handlers."""

    bus: MessageBus
    channel: str
    chat_id: str
    user_id: str
    message_id: str = ""
    language: str = "en"
    message: str = ""
    args: list[str] = field(default_factory=list)

    @classmethod
    def from_message(cls, msg: InboundMessage, bus: MessageBus) -> "ChatCommandContext":
        return cls(
            bus=bus,
            channel=msg.channel,
            chat_id=msg.chat_id,
            user_id=msg.sender_id,
            message_id=msg.message_id,
            language=msg.language or "en",
            message=msg.content,
        )

    async def reply(self, text: str, **kwargs: Any) -> None:
        await self.bus.publish_outbound(OutboundMessage(
            channel=self.channel,
            chat_id=self.chat_id,
            content=text,
            reply_to=self.message_id or None,
            metadata=kwargs,
        ))

    def to_plugin_context(self) -> PluginContext:
        return PluginContext(
            user_id=self.user_id,
            chat_id=self.chat_id,
            message_id=self.message_id,
            language=self.language,
            metadata={"channel": self.channel},
        )


BuiltinHandler = Callable[[ChatCommandContext], Awaitable[str]]


@dataclass
class CommandRegistration:
    name: str
    handler: BuiltinHandler
    description: str


def parse_command(text: str) -> tuple[str, list[str]]:
    """Split ``/name arg1 "arg two"`` into a lowercase name and its arguments."""
    try:
        parts = shlex.split(text.strip())
    except ValueError:
        # Unbalanced quotes
        parts = text.strip().split()
    if not parts:
        return "", []
    name = parts[0].lstrip("/").split("@", 1)[0].lower()
    return name, parts[1:]


def render_plugins_overview(
    commands: list[AvailableCommand],
    stats: list[PluginStatsSnapshot],
) -> str:
    """Text for the /plugins command."""
    if not stats and not commands:
        return "🔌 No plugins are currently loaded. Plugin system may be disabled or no plugins are available."

    by_name = {stat.name: stat for stat in stats}
    grouped: dict[str, list[AvailableCommand]] = {}
    for item in commands:
        grouped.setdefault(item.plugin, []).append(item)

    lines = ["🔌 Available Plugin Commands:", ""]
    for plugin_name, items in grouped.items():
        stat = by_name.get(plugin_name)
        status = "✅" if stat and stat.active else "❌"
        version = stat.version if stat else "unknown"
        lines.append(f"{status} {plugin_name} (v{version})")
        for item in items:
            command = item.command
            lines.append(f"• /{command.name} - {command.description}")
            if command.usage and command.usage != f"/{command.name}":
                lines.append(f"  Usage: {command.usage}")
        lines.append("")
    if not grouped:
        lines.extend(["No plugin commands are currently available.", ""])

    if stats:
        lines.append("📊 Plugin Statistics:")
        for stat in stats:
            status = "✅" if stat.active else "❌"
            lines.append(
                f"{status} {stat.name}: {stat.stats.executions} executions, {stat.command_count} commands"
            )

    lines.append("")
    lines.append("💡 Tip: Use any plugin command by typing /commandname. Plugin commands are processed automatically!")
    return "\n".join(lines)


class CommandRouter:
    """
    Routes ``/command arg1 arg2`` messages to built-in handlers or plugins.

    Usage:
        router = CommandRouter(manager)
        handled = await router.route("/weather London", ctx)
    """

    def __init__(self, manager: PluginManager):
        self.manager = manager
        self._commands: dict[str, CommandRegistration] = {}
        self._start_time = time.time()
        self.register("start", self._start, "Get started with Buddian")
        self.register("help", self._help, "Show this help message")
        self.register("ping", self._ping, "Check that the assistant is responsive")
        self.register("plugins", self._plugins, "List plugin commands and statistics")

    def register(self, name: str, handler: BuiltinHandler, description: str = "") -> None:
        """Register a built-in command. Built-ins take precedence over plugins."""
        normalized = name.lower().strip().lstrip("/")
        self._commands[normalized] = CommandRegistration(normalized, handler, description)
        logger.debug(f"Registered command: /{normalized}")

    def is_builtin(self, name: str) -> bool:
        return name.lower() in self._commands

    async def route(self, text: str, ctx: ChatCommandContext) -> bool:
        """
        Route a slash command.

        Returns:
            True if a built-in or plugin handled the command.
        """
        if not text or not text.strip().startswith("/"):
            return False

        name, args = parse_command(text)
        if not name:
            return False
        ctx.args = args

        registration = self._commands.get(name)
        if registration is not None:
            return await self._run_builtin(registration, ctx)

        if not self.manager.has_command(name):
            await ctx.reply(f"❓ Unknown command /{name}. Use /help to see available commands.")
            return False

        return await self.manager.execute_command(name, ctx, args)

    async def _run_builtin(self, registration: CommandRegistration, ctx: ChatCommandContext) -> bool:
        try:
            logger.info(f"Executing command: /{registration.name} (args={ctx.args})")
            response = await registration.handler(ctx)
        except Exception as e:
            log_error(logger, e, operation=f"{registration.name}_command", chat_id=ctx.chat_id)
            await ctx.reply(f"❌ Command /{registration.name} failed. Please try again.")
            return True

        if response:
            await ctx.reply(response)
        return True

    def get_help_text(self) -> str:
        lines = ["🤖 Buddian Commands", "", "📋 Commands:"]
        for name, reg in self._commands.items():
            lines.append(f"  /{name} - {reg.description}")

        plugin_commands = self.manager.get_available_commands()
        if plugin_commands:
            lines.append("")
            lines.append("🔌 Plugin commands:")
            for item in plugin_commands:
                lines.append(f"  /{item.command.name} - {item.command.description} ({item.plugin})")
        return "\n".join(lines)

    @property
    def uptime_seconds(self) -> float:
        return time.time() - self._start_time

    # ------------------------------------------------------------------
    # Built-in handlers
    # ------------------------------------------------------------------

    async def _start(self, ctx: ChatCommandContext) -> str:
        return WELCOME_TEXT

    async def _help(self, ctx: ChatCommandContext) -> str:
        return self.get_help_text()

    async def _ping(self, ctx: ChatCommandContext) -> str:
        start = time.perf_counter()
        health = await self.manager.health_check() if self.manager.is_ready else {}
        elapsed_ms = (time.perf_counter() - start) * 1000

        healthy = all(health.values())
        lines = ["🏓 Pong!", "", f"Response Time: {elapsed_ms:.0f}ms"]
        lines.append(f"Plugins: {sum(health.values())}/{len(health)} healthy")
        lines.append(f"Status: {'🟢 All systems operational' if healthy else '🟡 Some issues detected'}")
        return "\n".join(lines)

    async def _plugins(self, ctx: ChatCommandContext) -> str:
        return render_plugins_overview(
            self.manager.get_available_commands(),
            self.manager.get_plugin_stats(),
        )
