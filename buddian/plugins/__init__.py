"""Chat plugins module with command dispatch, event broadcast and dynamic loading."""

from buddian.plugins.errors import (
    PluginError,
    PluginExecutionError,
    PluginLoadError,
    PluginTimeoutError,
    PluginValidationError,
)
from buddian.plugins.interface import BasePlugin, CommandCarrier, CommandHandler, StructuredPlugin
from buddian.plugins.loader import PluginManifest, load_plugin_from_dir
from buddian.plugins.manager import AvailableCommand, ManagerState, PluginManager, PluginStatsSnapshot
from buddian.plugins.registry import LoadedPlugin, PluginRegistry, PluginStats
from buddian.plugins.scaffold import scaffold_plugin
from buddian.plugins.types import (
    DataIngestionConfig,
    PluginCommand,
    PluginConfig,
    PluginContext,
    PluginEvent,
    PluginEventType,
    PluginMetadata,
    PluginParameter,
    PluginResult,
)

__all__ = [
    "PluginManager", "ManagerState", "AvailableCommand", "PluginStatsSnapshot",
    "PluginRegistry", "LoadedPlugin", "PluginStats",
    "BasePlugin", "StructuredPlugin", "CommandHandler", "CommandCarrier",
    "PluginCommand", "PluginParameter", "PluginConfig", "PluginMetadata",
    "PluginContext", "PluginEvent", "PluginEventType", "PluginResult", "DataIngestionConfig",
    "PluginError", "PluginValidationError", "PluginExecutionError", "PluginTimeoutError", "PluginLoadError",
    "PluginManifest", "load_plugin_from_dir",
    "scaffold_plugin",
]
