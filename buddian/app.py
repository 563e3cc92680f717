"""Composition root: wires the bus, plugin manager and chat handlers together."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from pathlib import Path

from loguru import logger

from buddian.bus.queue import MessageBus
from buddian.config.schema import Config
from buddian.handlers.commands import CommandRouter
from buddian.handlers.message import MessageHandler, PersistCallback
from buddian.plugins.builtin.weather import WeatherPlugin
from buddian.plugins.manager import PluginManager


@dataclass
class Runtime:
    config: Config
    bus: MessageBus
    manager: PluginManager
    router: CommandRouter
    handler: MessageHandler
    _tasks: list[asyncio.Task] = field(default_factory=list)

    async def start(self, consume: bool = False) -> None:
        """Load plugins. With ``consume`` also start the inbound and outbound loops."""
        await self.manager.initialize()
        if consume:
            self._tasks.append(asyncio.create_task(self.handler.run()))
            self._tasks.append(asyncio.create_task(self.bus.dispatch_outbound()))
        logger.info(f"{self.config.bot.name} runtime started ({self.manager.plugin_count} plugin(s))")

    async def stop(self) -> None:
        self.bus.stop()
        if self.bus.inbound_size:
            logger.warning(f"Stopping with {self.bus.inbound_size} unprocessed inbound message(s)")
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()
        await self.manager.shutdown()
        logger.info(f"{self.config.bot.name} runtime stopped")


async def build_runtime(
    config: Config | None = None,
    persist: PersistCallback | None = None,
    cwd: Path | None = None,
) -> Runtime:
    """Create a runtime. Call ``start()`` on the result to load plugins."""
    config = config or Config()
    bus = MessageBus()
    manager = PluginManager(config.plugins, cwd=cwd)

    if config.plugins.openweathermap_api_key:
        await manager.register_plugin(WeatherPlugin(api_key=config.plugins.openweathermap_api_key))

    router = CommandRouter(manager)
    handler = MessageHandler(bus, manager, router, persist=persist, allow_from=config.bot.allow_from)
    return Runtime(config=config, bus=bus, manager=manager, router=router, handler=handler)
