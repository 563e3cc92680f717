"""Trivial plugin registered when no other plugin is installed."""

from typing import Any

from buddian.core.logger import plugin_logger
from buddian.plugins.interface import BasePlugin, CommandHandler
from buddian.plugins.types import PluginEvent


class DemoPlugin(BasePlugin):
    def get_name(self) -> str:
        return "Demo Plugin"

    def get_version(self) -> str:
        return "1.0.0"

    def get_commands(self) -> list[CommandHandler]:
        return [
            CommandHandler.create(
                "demo",
                self._demo,
                description="Demo plugin command",
                usage="/demo [message]",
            )
        ]

    async def initialize(self) -> None:
        plugin_logger.info("Demo plugin initialized")

    async def on_event(self, event: PluginEvent) -> None:
        plugin_logger.debug(f"Demo plugin received event: {event.type}")

    async def _demo(self, carrier: Any, args: list[str]) -> None:
        message = " ".join(args) if args else "Hello from demo plugin!"
        await carrier.reply(f"🔌 Demo Plugin: {message}")
