"""
Plugin manager: discovery, command dispatch, event broadcast and shutdown.

The manager is the only owner of the plugin registry. Every hook it awaits
(``initialize``, command handlers, ``on_event``, ``health_check``,
``ingest_data``) is raced against a timeout. The timeout is advisory: the
manager stops waiting and reports failure, but the losing hook keeps running
in the background until it finishes on its own.
"""

from __future__ import annotations

import asyncio
import inspect
import time
from dataclasses import dataclass, replace
from datetime import datetime
from enum import StrEnum
from pathlib import Path
from typing import Any, Callable

from buddian.config.schema import PluginsConfig
from buddian.core.logger import log_error, plugin_logger
from buddian.plugins.builtin.demo import DemoPlugin
from buddian.plugins.errors import PluginLoadError, PluginTimeoutError
from buddian.plugins.interface import CommandHandler
from buddian.plugins.loader import discover_plugin_dirs, load_plugin_from_dir, resolve_plugin_directory
from buddian.plugins.registry import LoadedPlugin, PluginRegistry, PluginStats
from buddian.plugins.types import DataIngestionConfig, PluginCommand, PluginEvent, PluginResult

FAILURE_NOTICE = "❌ Plugin command failed. Please try again later."


class ManagerState(StrEnum):
    UNINITIALIZED = "uninitialized"
    INITIALIZING = "initializing"
    READY = "ready"
    DISABLED = "disabled"
    SHUTTING_DOWN = "shutting_down"
    SHUTDOWN = "shutdown"


@dataclass
class AvailableCommand:
    plugin: str
    command: PluginCommand


@dataclass
class PluginStatsSnapshot:
    name: str
    version: str
    active: bool
    command_count: int
    stats: PluginStats
    last_used: datetime | None = None


class PluginManager:
    """
    Load plugins and route commands and events to them.

    Usage:
        manager = PluginManager(config.plugins)
        await manager.initialize()
        handled = await manager.execute_command("demo", carrier, ["hello"])
        await manager.broadcast_event(event)
        await manager.shutdown()
    """

    def __init__(self, config: PluginsConfig | None = None, cwd: Path | None = None):
        self.config = config or PluginsConfig()
        self._cwd = cwd
        self._registry = PluginRegistry()
        self._state = ManagerState.UNINITIALIZED
        self._builtin: list[tuple[Any, str]] = []
        self._lifecycle_lock = asyncio.Lock()
        # Hooks that lost their timeout race and are still running
        self._orphans: set[asyncio.Future] = set()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def state(self) -> ManagerState:
        return self._state

    @property
    def is_ready(self) -> bool:
        return self._state == ManagerState.READY and self.config.enabled

    @property
    def plugin_count(self) -> int:
        return len(self._registry)

    async def register_plugin(self, plugin: Any, source: str = "builtin") -> bool:
        """
        Register a plugin object that does not live in the plugin directory.

        Before initialize() the plugin is queued and loaded ahead of the
        discovered ones. Once ready it is initialized and registered right
        away. Either way it is loaded again by every later initialize().
        Registering the same object again is a no-op.

        Returns:
            False if the plugin failed to load.
        """
        queued = any(existing is plugin for existing, _ in self._builtin)
        if self._state != ManagerState.READY:
            if not queued:
                self._builtin.append((plugin, source))
            return True
        if any(loaded.plugin is plugin for loaded in self._registry.list_all()):
            return True
        loaded = await self._load(plugin, source=source)
        if loaded and not queued:
            self._builtin.append((plugin, source))
        return loaded

    async def initialize(self) -> None:
        """Discover and load plugins. No-op when already ready or disabled."""
        async with self._lifecycle_lock:
            if self._state in (ManagerState.READY, ManagerState.DISABLED):
                return

            if not self.config.enabled:
                self._state = ManagerState.DISABLED
                plugin_logger.info("Plugin system disabled")
                return

            self._state = ManagerState.INITIALIZING
            try:
                await self._discover_plugins()
            except Exception as e:
                log_error(plugin_logger, e, operation="discover_plugins")

            self._state = ManagerState.READY
            plugin_logger.info(f"Plugin manager initialized with {len(self._registry)} plugin(s)")

    async def _discover_plugins(self) -> None:
        for plugin, source in self._builtin:
            await self._load(plugin, source=source)

        root = resolve_plugin_directory(self.config.directory, self._cwd)
        candidates = discover_plugin_dirs(root)

        if candidates is None:
            plugin_logger.info(f"Plugin directory not found: {root}")
        for plugin_dir in candidates or []:
            try:
                plugin, _manifest = load_plugin_from_dir(plugin_dir)
            except Exception as e:
                log_error(plugin_logger, e, operation="load_plugin", plugin_dir=plugin_dir.name)
                continue
            await self._load(plugin, source=str(plugin_dir))

        # Demo only when nothing was discovered and nothing was registered explicitly
        # (a configured weather plugin counts as registered)
        if not candidates and not len(self._registry):
            plugin_logger.info("No plugins installed, using basic plugin system")
            await self._load(DemoPlugin(), source="builtin")

    async def _load(self, plugin: Any, source: str) -> bool:
        """Initialize a plugin, build its command table and register it."""
        try:
            name = plugin.get_name()
            version = plugin.get_version()
            timeout_ms = self._plugin_timeout_override(plugin)
            await self._call_hook(
                plugin.initialize, (), self._timeout_seconds(timeout_ms), what="initialize", plugin=name
            )

            commands: dict[str, CommandHandler] = {}
            for item in plugin.get_commands() or []:
                handler = _as_command_handler(item)
                commands[handler.name] = handler
        except Exception as e:
            log_error(plugin_logger, e, operation="load_plugin", source=source)
            return False

        previous = self._registry.get(name)
        if previous is not None:
            plugin_logger.warning(f"Plugin {name} registered twice, replacing previous instance")
            if previous.plugin is not plugin:
                await self._shutdown_plugin(previous)

        self._registry.register(LoadedPlugin(
            name=name,
            version=version,
            plugin=plugin,
            commands=commands,
            source=source,
            timeout_ms=timeout_ms,
        ))
        plugin_logger.info(f"Plugin loaded successfully: {name} v{version} ({len(commands)} command(s))")
        return True

    async def shutdown(self) -> None:
        """Run every plugin's cleanup concurrently, then clear the registry."""
        async with self._lifecycle_lock:
            self._state = ManagerState.SHUTTING_DOWN
            plugin_logger.info(f"Shutting down plugin manager ({len(self._registry)} plugin(s))")

            await asyncio.gather(
                *(self._shutdown_plugin(loaded) for loaded in self._registry.list_all()),
                return_exceptions=True,
            )

            if self._orphans:
                plugin_logger.warning(f"{len(self._orphans)} timed-out plugin call(s) still running at shutdown")

            self._registry.clear()
            self._state = ManagerState.SHUTDOWN

    async def _shutdown_plugin(self, loaded: LoadedPlugin) -> None:
        cleanup = getattr(loaded.plugin, "cleanup", None)
        try:
            if callable(cleanup):
                result = cleanup()
                if inspect.isawaitable(result):
                    await result
            plugin_logger.info(f"Plugin shutdown completed: {loaded.name}")
        except Exception as e:
            log_error(plugin_logger, e, operation="shutdown_plugin", plugin=loaded.name)

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    async def execute_command(self, command_name: str, carrier: Any, args: list[str] | None = None) -> bool:
        """
        Execute a plugin command.

        The first active plugin (in registration order) owning ``command_name``
        handles it.

        Returns:
            True if a plugin executed the command successfully, False when no
            plugin owns it, the manager is not ready, or the handler failed
            or timed out.
        """
        if not self.is_ready:
            return False

        args = list(args or [])
        for loaded in self._registry.list_all():
            if not loaded.active:
                continue
            handler = loaded.commands.get(command_name)
            if handler is None:
                continue
            return await self._dispatch(loaded, handler, carrier, args)

        return False

    async def _dispatch(self, loaded: LoadedPlugin, handler: CommandHandler, carrier: Any, args: list[str]) -> bool:
        start = time.perf_counter()
        try:
            await self._call_hook(
                handler.execute,
                (carrier, args),
                self._timeout_seconds(loaded.timeout_ms),
                what="command",
                plugin=loaded.name,
            )
        except Exception as e:
            elapsed_ms = (time.perf_counter() - start) * 1000
            loaded.stats.record_failure(elapsed_ms)
            log_error(
                plugin_logger,
                e,
                operation="execute_plugin_command",
                plugin=loaded.name,
                command=handler.name,
                execution_time_ms=round(elapsed_ms, 3),
            )
            await self._notify_failure(carrier)
            return False

        elapsed_ms = (time.perf_counter() - start) * 1000
        loaded.stats.record_success(elapsed_ms)
        loaded.last_used = datetime.now()
        plugin_logger.info(
            f"Plugin command executed: {loaded.name}/{handler.name} "
            f"in {elapsed_ms:.1f}ms (args={len(args)})"
        )
        return True

    async def _notify_failure(self, carrier: Any) -> None:
        reply = getattr(carrier, "reply", None)
        if not callable(reply):
            return
        try:
            result = reply(FAILURE_NOTICE)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            log_error(plugin_logger, e, operation="plugin_error_reply")

    # ------------------------------------------------------------------
    # Broadcast
    # ------------------------------------------------------------------

    async def broadcast_event(self, event: PluginEvent) -> None:
        """
        Deliver an event to every active plugin concurrently.

        Returns once every delivery has settled. Failures and timeouts are
        logged per plugin and never reach siblings or the caller.
        """
        if not self.is_ready:
            return

        await asyncio.gather(
            *(self._deliver_event(loaded, event) for loaded in self._registry.list_active()),
            return_exceptions=True,
        )

    async def _deliver_event(self, loaded: LoadedPlugin, event: PluginEvent) -> None:
        try:
            await self._call_hook(
                loaded.plugin.on_event,
                (event,),
                self._timeout_seconds(loaded.timeout_ms),
                what="event",
                plugin=loaded.name,
            )
        except Exception as e:
            log_error(
                plugin_logger,
                e,
                operation="execute_plugin_event",
                plugin=loaded.name,
                event_type=str(event.type),
            )

    # ------------------------------------------------------------------
    # Health and ingestion
    # ------------------------------------------------------------------

    async def health_check(self) -> dict[str, bool]:
        """Run every loaded plugin's health check concurrently."""
        loaded_plugins = self._registry.list_all()
        results = await asyncio.gather(*(self._check_health(loaded) for loaded in loaded_plugins))
        return {loaded.name: ok for loaded, ok in zip(loaded_plugins, results)}

    async def _check_health(self, loaded: LoadedPlugin) -> bool:
        check = getattr(loaded.plugin, "health_check", None)
        if not callable(check):
            return True
        try:
            healthy = await self._call_hook(
                check, (), self._timeout_seconds(loaded.timeout_ms), what="health check", plugin=loaded.name
            )
        except Exception as e:
            plugin_logger.warning(f"Health check failed for {loaded.name}: {e}")
            return False
        return bool(healthy)

    async def ingest_data(self, plugin_name: str, config: DataIngestionConfig | dict[str, Any]) -> PluginResult:
        """Ask one active plugin to ingest data from an external source."""
        if not self.is_ready:
            return PluginResult.fail("Plugin system is not ready")

        loaded = self._registry.get(plugin_name)
        if loaded is None or not loaded.active:
            return PluginResult.fail(f"Plugin not available: {plugin_name}")

        ingest = getattr(loaded.plugin, "ingest_data", None)
        if not callable(ingest):
            return PluginResult.fail(f"{plugin_name} does not support data ingestion")

        try:
            if not isinstance(config, DataIngestionConfig):
                config = DataIngestionConfig.model_validate(config)
            result = await self._call_hook(
                ingest, (config,), self._timeout_seconds(loaded.timeout_ms), what="ingestion", plugin=plugin_name
            )
        except Exception as e:
            log_error(plugin_logger, e, operation="ingest_data", plugin=plugin_name)
            return PluginResult.fail(str(e) or type(e).__name__)

        if isinstance(result, PluginResult):
            return result
        return PluginResult.ok(data=result)

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    def get_available_commands(self) -> list[AvailableCommand]:
        """Commands of active plugins, in registration and table order."""
        return [
            AvailableCommand(plugin=loaded.name, command=handler.command)
            for loaded in self._registry.list_active()
            for handler in loaded.commands.values()
        ]

    def get_plugin_stats(self) -> list[PluginStatsSnapshot]:
        """Snapshot of every loaded plugin, active or not."""
        return [
            PluginStatsSnapshot(
                name=loaded.name,
                version=loaded.version,
                active=loaded.active,
                command_count=len(loaded.commands),
                stats=replace(loaded.stats),
                last_used=loaded.last_used,
            )
            for loaded in self._registry.list_all()
        ]

    def set_plugin_active(self, plugin_name: str, active: bool) -> bool:
        """Toggle dispatch and broadcast visibility without unloading. No hooks run."""
        loaded = self._registry.get(plugin_name)
        if loaded is None:
            return False
        loaded.active = active
        plugin_logger.info(f"Plugin {'enabled' if active else 'disabled'}: {plugin_name}")
        return True

    def has_command(self, command_name: str) -> bool:
        return any(command_name in loaded.commands for loaded in self._registry.list_active())

    def get_plugin(self, plugin_name: str) -> LoadedPlugin | None:
        return self._registry.get(plugin_name)

    # ------------------------------------------------------------------
    # Timeout race
    # ------------------------------------------------------------------

    def _plugin_timeout_override(self, plugin: Any) -> int | None:
        get_timeout = getattr(plugin, "get_timeout_ms", None)
        if not callable(get_timeout):
            return None
        value = get_timeout()
        return int(value) if value else None

    def _timeout_seconds(self, override_ms: int | None) -> float:
        if override_ms:
            return override_ms / 1000
        return self.config.timeout_seconds

    async def _call_hook(
        self,
        hook: Callable[..., Any],
        args: tuple,
        timeout: float,
        what: str,
        plugin: str,
    ) -> Any:
        """
        Call a plugin hook and wait for it for at most ``timeout`` seconds.

        Synchronous hooks are accepted; their return value is used directly.
        On timeout the awaited work is left running and PluginTimeoutError is
        raised.
        """
        result = hook(*args)
        if not inspect.isawaitable(result):
            return result

        future = asyncio.ensure_future(result)
        try:
            return await asyncio.wait_for(asyncio.shield(future), timeout)
        except asyncio.TimeoutError:
            self._track_orphan(future, what, plugin)
            raise PluginTimeoutError(
                f"Plugin {what} timeout after {timeout * 1000:.0f}ms",
                plugin_id=plugin,
                context={"what": what},
            ) from None

    def _track_orphan(self, future: asyncio.Future, what: str, plugin: str) -> None:
        self._orphans.add(future)

        def _settled(done: asyncio.Future) -> None:
            self._orphans.discard(done)
            if done.cancelled():
                return
            error = done.exception()
            if error is not None:
                plugin_logger.warning(f"Timed-out plugin {what} of {plugin} later failed: {error}")
            else:
                plugin_logger.debug(f"Timed-out plugin {what} of {plugin} finished late")

        future.add_done_callback(_settled)


def _as_command_handler(item: Any) -> CommandHandler:
    """Accept CommandHandler objects or anything with name/execute (object or dict)."""
    if isinstance(item, CommandHandler):
        return item
    if isinstance(item, dict):
        get = item.get
    else:
        def get(key: str, default: Any = None) -> Any:
            return getattr(item, key, default)

    name = get("name")
    execute = get("execute")
    if not name or not callable(execute):
        raise PluginLoadError(f"Invalid command definition: {item!r}")
    return CommandHandler.create(
        str(name),
        execute,
        description=str(get("description", "") or ""),
        usage=str(get("usage", "") or ""),
    )
