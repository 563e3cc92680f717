"""Error types for the plugin system."""

from typing import Any


class PluginError(Exception):
    """Base error raised by or about a plugin."""

    code = "PLUGIN_ERROR"

    def __init__(
        self,
        message: str,
        plugin_id: str = "",
        code: str | None = None,
        context: dict[str, Any] | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.plugin_id = plugin_id
        if code:
            self.code = code
        self.context = context or {}

    def __str__(self) -> str:
        return self.message


class PluginValidationError(PluginError):
    code = "VALIDATION_ERROR"


class PluginExecutionError(PluginError):
    code = "EXECUTION_ERROR"


class PluginTimeoutError(PluginError):
    code = "TIMEOUT_ERROR"


class PluginLoadError(PluginError):
    code = "LOAD_ERROR"
