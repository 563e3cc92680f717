"""Plugin registry for managing loaded plugins."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from buddian.plugins.interface import CommandHandler


@dataclass
class PluginStats:
    """Running counters for a loaded plugin. Never decremented."""
    executions: int = 0
    errors: int = 0
    total_execution_time_ms: float = 0.0

    def record_success(self, elapsed_ms: float) -> None:
        self.executions += 1
        self.total_execution_time_ms += elapsed_ms

    def record_failure(self, elapsed_ms: float) -> None:
        self.errors += 1
        self.total_execution_time_ms += elapsed_ms

    @property
    def average_execution_time_ms(self) -> float:
        attempts = self.executions + self.errors
        return self.total_execution_time_ms / attempts if attempts else 0.0


@dataclass
class LoadedPlugin:
    """Represents a loaded plugin and its command table."""
    name: str
    version: str
    plugin: Any
    commands: dict[str, CommandHandler] = field(default_factory=dict)
    active: bool = True
    last_used: datetime | None = None
    stats: PluginStats = field(default_factory=PluginStats)
    source: str = "builtin"  # Plugin directory path, or "builtin"
    timeout_ms: int | None = None  # Plugin-specific override of the manager timeout


class PluginRegistry:
    """Registry for managing plugins, preserving registration order."""

    def __init__(self):
        self._plugins: dict[str, LoadedPlugin] = {}

    def register(self, plugin: LoadedPlugin):
        """Register a plugin. Re-registering a name replaces it in place."""
        self._plugins[plugin.name] = plugin

    def get(self, name: str) -> LoadedPlugin | None:
        """Get a plugin by name."""
        return self._plugins.get(name)

    def list_all(self) -> list[LoadedPlugin]:
        """List all registered plugins in registration order."""
        return list(self._plugins.values())

    def list_active(self) -> list[LoadedPlugin]:
        return [p for p in self._plugins.values() if p.active]

    def unregister(self, name: str) -> bool:
        """Unregister a plugin by name. Returns True if plugin was found."""
        if name in self._plugins:
            del self._plugins[name]
            return True
        return False

    def clear(self) -> None:
        self._plugins.clear()

    def __len__(self) -> int:
        return len(self._plugins)

    def __contains__(self, name: object) -> bool:
        return name in self._plugins
