"""
Plugin data model.

Schemas (metadata, configuration, commands and their parameters) are pydantic
models so that third-party plugin declarations are validated at load time.
Request-scoped values (context, events, results) are plain dataclasses.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

from buddian.plugins.errors import PluginValidationError

ParameterType = Literal["string", "number", "boolean", "array", "object"]

_TRUE_WORDS = {"true", "1", "yes", "y", "on"}
_FALSE_WORDS = {"false", "0", "no", "n", "off"}


class ParameterValidation(BaseModel):
    """Validation rules for a command parameter."""
    min: float | None = None  # Value bound for numbers, length bound for strings/arrays
    max: float | None = None
    pattern: str | None = None  # Full-match regex for strings
    enum: list[str] | None = None


class PluginParameter(BaseModel):
    """A typed positional parameter of a plugin command."""
    name: str
    type: ParameterType = "string"
    required: bool = False
    description: str = ""
    default: Any = None
    validation: ParameterValidation | None = None

    def coerce(self, raw: Any) -> Any:
        """Convert a raw chat argument to the declared type and validate it."""
        if self.type == "number":
            value = self._to_number(raw)
        elif self.type == "boolean":
            value = self._to_bool(raw)
        elif self.type == "array":
            value = raw if isinstance(raw, list) else [p.strip() for p in str(raw).split(",") if p.strip()]
        elif self.type == "object":
            value = self._to_object(raw)
        else:
            value = str(raw)

        self._validate(value)
        return value

    def accepts(self, raw: Any) -> bool:
        """Whether ``raw`` parses as the declared type and matches any enum. Bounds are not checked."""
        try:
            if self.type == "number":
                value = self._to_number(raw)
            elif self.type == "boolean":
                value = self._to_bool(raw)
            elif self.type == "object":
                value = self._to_object(raw)
            else:
                value = raw
        except PluginValidationError:
            return False
        rules = self.validation
        if rules and rules.enum and self.type != "array":
            return str(value) in rules.enum
        return True

    def _fail(self, reason: str) -> PluginValidationError:
        return PluginValidationError(
            f"Invalid value for '{self.name}': {reason}",
            context={"parameter": self.name},
        )

    def _to_number(self, raw: Any) -> int | float:
        if isinstance(raw, bool):
            raise self._fail("expected a number")
        if isinstance(raw, (int, float)):
            return raw
        text = str(raw).strip()
        try:
            return int(text)
        except ValueError:
            pass
        try:
            return float(text)
        except ValueError:
            raise self._fail(f"expected a number, got '{text}'") from None

    def _to_bool(self, raw: Any) -> bool:
        if isinstance(raw, bool):
            return raw
        text = str(raw).strip().lower()
        if text in _TRUE_WORDS:
            return True
        if text in _FALSE_WORDS:
            return False
        raise self._fail(f"expected true/false, got '{raw}'")

    def _to_object(self, raw: Any) -> dict[str, Any]:
        if isinstance(raw, dict):
            return raw
        try:
            value = json.loads(str(raw))
        except json.JSONDecodeError:
            raise self._fail("expected a JSON object") from None
        if not isinstance(value, dict):
            raise self._fail("expected a JSON object")
        return value

    def _validate(self, value: Any) -> None:
        rules = self.validation
        if rules is None:
            return

        if isinstance(value, (int, float)) and not isinstance(value, bool):
            measure, unit = value, ""
        elif isinstance(value, (str, list)):
            measure, unit = len(value), " in length"
        else:
            measure, unit = None, ""

        if measure is not None:
            if rules.min is not None and measure < rules.min:
                raise self._fail(f"must be at least {rules.min:g}{unit}")
            if rules.max is not None and measure > rules.max:
                raise self._fail(f"must be at most {rules.max:g}{unit}")

        if isinstance(value, str):
            if rules.pattern and not re.fullmatch(rules.pattern, value):
                raise self._fail(f"does not match pattern {rules.pattern}")
            if rules.enum and value not in rules.enum:
                raise self._fail(f"must be one of {', '.join(rules.enum)}")
        elif rules.enum and str(value) not in rules.enum:
            raise self._fail(f"must be one of {', '.join(rules.enum)}")


class PluginCommand(BaseModel):
    """Descriptor of a command a plugin exposes to chat users."""
    name: str
    description: str = ""
    usage: str = ""
    parameters: list[PluginParameter] = Field(default_factory=list)
    examples: list[str] | None = None
    category: str | None = None

    def bind_arguments(self, args: list[str]) -> dict[str, Any]:
        """
        Map positional chat arguments onto the declared parameters.

        The first string parameter absorbs multi-word values: it takes every
        surplus word, then keeps taking words the next parameter would reject.
        So ``/weather New York`` and ``/weather New York imperial`` both bind
        ``city="New York"``.
        """
        params = self.parameters
        args = list(args)
        absorb = next((i for i, p in enumerate(params) if p.type == "string"), None)
        if absorb is not None and len(args) > absorb:
            end = absorb + 1 + max(0, len(args) - len(params))
            following = params[absorb + 1] if absorb + 1 < len(params) else None
            while end < len(args) and following is not None and not following.accepts(args[end]):
                end += 1
            args = args[:absorb] + [" ".join(args[absorb:end])] + args[end:]

        bound: dict[str, Any] = {}
        for index, param in enumerate(params):
            if index < len(args):
                bound[param.name] = param.coerce(args[index])
            elif param.required:
                usage = f" Usage: {self.usage}" if self.usage else ""
                raise PluginValidationError(
                    f"Missing required parameter '{param.name}'.{usage}",
                    context={"command": self.name, "parameter": param.name},
                )
            elif param.default is not None:
                bound[param.name] = param.default
        return bound


class RateLimitPolicy(BaseModel):
    """Allow at most ``requests`` calls per ``window_ms`` milliseconds."""
    requests: int = Field(gt=0)
    window_ms: int = Field(gt=0)


class PluginConfig(BaseModel):
    """Static configuration a plugin declares about itself."""
    commands: list[PluginCommand] = Field(default_factory=list)
    permissions: list[str] = Field(default_factory=list)
    settings: dict[str, Any] = Field(default_factory=dict)
    api_keys: dict[str, str] | None = None
    rate_limit: RateLimitPolicy | None = None
    timeout_ms: int | None = Field(default=None, gt=0)  # Overrides the manager default

    def get_command(self, name: str) -> PluginCommand | None:
        return next((c for c in self.commands if c.name == name), None)


class PluginMetadata(BaseModel):
    """Identity record of a plugin. Immutable once loaded."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    version: str
    description: str = ""
    author: str = ""
    homepage: str | None = None
    repository: str | None = None
    license: str | None = None
    tags: list[str] | None = None
    dependencies: dict[str, str] | None = None
    min_buddian_version: str | None = None


class IngestionAuthentication(BaseModel):
    type: Literal["bearer", "basic", "api_key", "oauth"]
    credentials: dict[str, str] = Field(default_factory=dict)


class IngestionFilter(BaseModel):
    field: str
    operator: Literal["equals", "contains", "greater_than", "less_than"]
    value: Any = None


class IngestionTransformation(BaseModel):
    format: Literal["json", "xml", "csv", "text"] = "json"
    mapping: dict[str, str] = Field(default_factory=dict)
    filters: list[IngestionFilter] = Field(default_factory=list)


class DataIngestionConfig(BaseModel):
    """Describes an external data source a plugin should ingest."""
    source: str
    type: Literal["api", "webhook", "file", "database", "stream"]
    schedule: str | None = None  # cron expression for scheduled ingestion
    authentication: IngestionAuthentication | None = None
    transformation: IngestionTransformation | None = None


@dataclass
class PluginContext:
    """Request-scoped information passed into plugin hooks. Treat as read-only."""

    user_id: str
    chat_id: str
    message_id: str = ""
    language: str = "en"
    timestamp: datetime = field(default_factory=datetime.now)
    metadata: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def system(cls, source: str = "system", **metadata: Any) -> "PluginContext":
        """Context for work not triggered by a chat user (schedules, ingestion)."""
        return cls(
            user_id="system",
            chat_id="system",
            message_id=source,
            metadata={"source": source, **metadata},
        )


class PluginEventType(StrEnum):
    """Closed set of events broadcast to plugins."""
    MESSAGE_RECEIVED = "message_received"
    FILE_UPLOADED = "file_uploaded"
    COMMAND_EXECUTED = "command_executed"
    USER_JOINED = "user_joined"
    USER_LEFT = "user_left"
    PLUGIN_ACTIVATED = "plugin_activated"
    PLUGIN_DEACTIVATED = "plugin_deactivated"
    SCHEDULED_TASK = "scheduled_task"


@dataclass
class PluginEvent:
    """A fire-and-forget notification delivered to every active plugin."""

    type: PluginEventType
    data: Any
    context: PluginContext
    timestamp: datetime = field(default_factory=datetime.now)

    def __post_init__(self) -> None:
        # Raises ValueError for anything outside the closed set
        self.type = PluginEventType(self.type)


@dataclass
class PluginResult:
    """Uniform outcome of a structured plugin command."""

    success: bool
    data: Any = None
    message: str | None = None
    error: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def ok(cls, message: str | None = None, data: Any = None, **metadata: Any) -> "PluginResult":
        return cls(success=True, data=data, message=message, metadata=metadata)

    @classmethod
    def fail(cls, error: str, **metadata: Any) -> "PluginResult":
        return cls(success=False, error=error, metadata=metadata)
