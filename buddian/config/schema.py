"""Configuration schema using Pydantic."""

from __future__ import annotations

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class BotConfig(BaseModel):
    """Chat-facing bot settings."""
    name: str = "Buddian"
    default_language: str = "en"
    allow_from: list[str] = Field(default_factory=list)  # Allowed user IDs (empty = everyone)


class PluginsConfig(BaseModel):
    """Plugin subsystem configuration."""
    enabled: bool = True
    timeout_ms: int = Field(default=30000, gt=0)  # Per-call timeout for plugin hooks
    directory: str = "./plugins"  # Resolved against the process working directory
    openweathermap_api_key: str = ""  # Enables the built-in weather plugin when set

    @property
    def timeout_seconds(self) -> float:
        return self.timeout_ms / 1000


class LoggingConfig(BaseModel):
    """Logging configuration."""
    enabled: bool = True
    level: str = "INFO"
    file_enabled: bool = True
    file_path: str = "~/.buddian/logs/buddian.log"
    rotation: str = "10 MB"
    retention: str = "7 days"


class Config(BaseSettings):
    """Root configuration for buddian."""

    model_config = SettingsConfigDict(env_prefix="BUDDIAN_", env_nested_delimiter="__")

    bot: BotConfig = Field(default_factory=BotConfig)
    plugins: PluginsConfig = Field(default_factory=PluginsConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
