"""
Plugin contract.

Every plugin the manager loads must look like :class:`BasePlugin`: stable
identity, a command table queried once at load time, an ``initialize`` hook,
an event handler and optional cleanup/ingestion/health hooks. Plugins that
prefer declaring their commands as data can extend :class:`StructuredPlugin`.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Protocol, runtime_checkable

from loguru import logger
from pydantic import ValidationError

from buddian.plugins.errors import PluginValidationError
from buddian.plugins.rate_limit import RateLimiter
from buddian.plugins.types import (
    DataIngestionConfig,
    PluginCommand,
    PluginConfig,
    PluginContext,
    PluginEvent,
    PluginEventType,
    PluginMetadata,
    PluginResult,
)


@runtime_checkable
class CommandCarrier(Protocol):
    """Whatever the transport hands a command handler. It must be able to reply."""

    async def reply(self, text: str, **kwargs: Any) -> Any: ...


CommandExecutor = Callable[[Any, list[str]], Awaitable[None]]


@dataclass
class CommandHandler:
    """A command descriptor bound to the coroutine that executes it."""

    command: PluginCommand
    execute: CommandExecutor

    @property
    def name(self) -> str:
        return self.command.name

    @classmethod
    def create(
        cls,
        name: str,
        execute: CommandExecutor,
        description: str = "",
        usage: str = "",
        **extra: Any,
    ) -> "CommandHandler":
        command = PluginCommand(name=name, description=description, usage=usage or f"/{name}", **extra)
        return cls(command=command, execute=execute)


def context_from_carrier(carrier: Any) -> PluginContext:
    """Build a PluginContext from a command carrier's attributes."""
    to_context = getattr(carrier, "to_plugin_context", None)
    if callable(to_context):
        return to_context()
    return PluginContext(
        user_id=str(getattr(carrier, "user_id", "") or ""),
        chat_id=str(getattr(carrier, "chat_id", "") or ""),
        message_id=str(getattr(carrier, "message_id", "") or ""),
        language=getattr(carrier, "language", None) or "en",
    )


def render_result(result: PluginResult) -> str:
    """Chat text for a structured command result."""
    if result.success:
        return result.message or "✅ Done."
    return f"⚠️ {result.error or 'Command failed.'}"


class BasePlugin(ABC):
    """
    Abstract base class for plugins.

    Hooks are awaited by the plugin manager, each raced against the configured
    timeout. A hook that loses the race is not cancelled; plugins own the
    consistency of their internal state.
    """

    @abstractmethod
    def get_name(self) -> str:
        """Stable name, used as the registry key."""

    @abstractmethod
    def get_version(self) -> str:
        """Version string, display only."""

    def get_commands(self) -> list[CommandHandler]:
        """Commands this plugin provides. Queried once at load time."""
        return []

    @abstractmethod
    async def initialize(self) -> None:
        """
        Prepare plugin resources.

        Called exactly once, before the plugin is registered. Raising aborts
        loading of this plugin only.
        """

    @abstractmethod
    async def on_event(self, event: PluginEvent) -> None:
        """Handle a broadcast event. Failures stay isolated to this plugin."""

    async def cleanup(self) -> None:
        """Release resources during shutdown. Best-effort."""

    def get_timeout_ms(self) -> int | None:
        """Per-call timeout override; None uses the manager default."""
        return None

    async def ingest_data(self, config: DataIngestionConfig) -> PluginResult:
        return PluginResult.fail(f"{self.get_name()} does not support data ingestion")

    async def health_check(self) -> bool:
        return True


class StructuredPlugin(BasePlugin):
    """
    Plugin whose commands are declared as data in ``config``.

    Subclasses set ``metadata`` and ``config`` and implement
    :meth:`execute_command`. Chat arguments are bound to the declared
    parameters, the plugin's rate limit is enforced and the returned
    :class:`PluginResult` is rendered back to the user. Business failures are
    results, not exceptions; only unexpected errors propagate to the manager.
    """

    metadata: PluginMetadata
    config: PluginConfig

    def __init__(self) -> None:
        policy = self.config.rate_limit
        self._limiter = RateLimiter.from_policy(policy) if policy else None

    def get_name(self) -> str:
        return self.metadata.name

    def get_version(self) -> str:
        return self.metadata.version

    def get_timeout_ms(self) -> int | None:
        return self.config.timeout_ms

    async def initialize(self) -> None:
        logger.debug(f"Plugin {self.metadata.id} initialized")

    async def activate(self, context: PluginContext) -> None:
        """Called when a plugin_activated event targets this plugin."""

    async def deactivate(self, context: PluginContext) -> None:
        """Called when a plugin_deactivated event targets this plugin."""

    async def handle_event(self, event: PluginEvent) -> None:
        """Hook for any broadcast event."""

    async def validate_config(self, config: Any) -> bool:
        try:
            PluginConfig.model_validate(config)
        except ValidationError:
            return False
        return True

    @abstractmethod
    async def execute_command(
        self,
        command: str,
        parameters: dict[str, Any],
        context: PluginContext,
    ) -> PluginResult:
        """Run a declared command with bound parameters."""

    def get_commands(self) -> list[CommandHandler]:
        return [
            CommandHandler(command=command, execute=self._make_executor(command.name))
            for command in self.config.commands
        ]

    def _make_executor(self, name: str) -> CommandExecutor:
        async def execute(carrier: Any, args: list[str]) -> None:
            result = await self.run_command(name, args, context_from_carrier(carrier))
            await carrier.reply(render_result(result))

        return execute

    async def run_command(self, name: str, args: list[str], context: PluginContext) -> PluginResult:
        """Bind, rate limit and execute a command, returning its result."""
        command = self.config.get_command(name)
        if command is None:
            return PluginResult.fail(
                f"Unknown command: {name}",
                available_commands=[c.name for c in self.config.commands],
            )

        if self._limiter and not self._limiter.allow(context.user_id or "anonymous"):
            return PluginResult.fail("Rate limit exceeded. Please try again later.", rate_limited=True)

        try:
            parameters = command.bind_arguments(args)
        except PluginValidationError as e:
            return PluginResult.fail(e.message, validation_error=True)

        return await self.execute_command(name, parameters, context)

    def _is_target(self, event: PluginEvent) -> bool:
        data = event.data if isinstance(event.data, dict) else {}
        return data.get("plugin") in (self.metadata.id, self.metadata.name)

    async def on_event(self, event: PluginEvent) -> None:
        if event.type == PluginEventType.PLUGIN_ACTIVATED and self._is_target(event):
            await self.activate(event.context)
        elif event.type == PluginEventType.PLUGIN_DEACTIVATED and self._is_target(event):
            await self.deactivate(event.context)
        await self.handle_event(event)
