"""
Weather plugin backed by the OpenWeatherMap REST API.

Shows the structured plugin contract end to end: declared commands with
typed parameters, a response cache, an hourly request budget, data ingestion
and a health check.
"""

from __future__ import annotations

import asyncio
import time
from datetime import datetime, timezone
from typing import Any, Callable

import httpx
from loguru import logger

from buddian.plugins.errors import PluginExecutionError
from buddian.plugins.interface import StructuredPlugin
from buddian.plugins.types import (
    DataIngestionConfig,
    ParameterValidation,
    PluginCommand,
    PluginConfig,
    PluginContext,
    PluginEvent,
    PluginEventType,
    PluginMetadata,
    PluginParameter,
    PluginResult,
    RateLimitPolicy,
)

API_BASE = "https://api.openweathermap.org/data/2.5"
INGESTION_CITIES = ("London", "New York", "Tokyo", "Paris", "Sydney")
WEATHER_KEYWORDS = ("weather", "temperature", "forecast", "rain", "sunny", "cloudy")

_UNIT_SYMBOLS = {"metric": "C", "imperial": "F", "kelvin": "K"}
# OpenWeatherMap calls Kelvin "standard"
_API_UNITS = {"metric": "metric", "imperial": "imperial", "kelvin": "standard"}


class WeatherPlugin(StructuredPlugin):
    metadata = PluginMetadata(
        id="weather-demo",
        name="Weather Demo Plugin",
        version="1.0.0",
        description="Weather information from the OpenWeatherMap API",
        author="Buddian Team",
        license="MIT",
        tags=["weather", "api", "demo"],
        min_buddian_version="0.1.0",
    )

    config = PluginConfig(
        commands=[
            PluginCommand(
                name="weather",
                description="Get current weather for a city",
                usage="/weather <city> [units]",
                parameters=[
                    PluginParameter(
                        name="city",
                        type="string",
                        required=True,
                        description="Name of the city to get weather for",
                        validation=ParameterValidation(min=2, max=100),
                    ),
                    PluginParameter(
                        name="units",
                        type="string",
                        description="Temperature units (metric, imperial, kelvin)",
                        default="metric",
                        validation=ParameterValidation(enum=["metric", "imperial", "kelvin"]),
                    ),
                ],
                examples=["/weather London", "/weather New York imperial", "/weather Tokyo metric"],
                category="information",
            ),
            PluginCommand(
                name="forecast",
                description="Get a multi-day weather forecast for a city",
                usage="/forecast <city> [days]",
                parameters=[
                    PluginParameter(
                        name="city",
                        type="string",
                        required=True,
                        description="Name of the city to get forecast for",
                    ),
                    PluginParameter(
                        name="days",
                        type="number",
                        description="Number of days (1-5)",
                        default=3,
                        validation=ParameterValidation(min=1, max=5),
                    ),
                ],
                examples=["/forecast Paris", "/forecast Berlin 5"],
                category="information",
            ),
        ],
        permissions=["network.http", "storage.read", "storage.write"],
        settings={
            "api_key": "",
            "default_units": "metric",
            "cache_timeout_ms": 300_000,
            "max_requests_per_hour": 1000,
        },
        rate_limit=RateLimitPolicy(requests=60, window_ms=60_000),
        timeout_ms=10_000,
    )

    def __init__(
        self,
        api_key: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        clock: Callable[[], float] = time.time,
    ):
        # Per-instance copy so settings can be adjusted without touching the class default
        self.config = self.config.model_copy(deep=True)
        if api_key is not None:
            self.config.settings["api_key"] = api_key
        super().__init__()
        self._transport = transport
        self._clock = clock
        self._client: httpx.AsyncClient | None = None
        self._cache: dict[str, tuple[float, Any]] = {}
        self._cache_lock = asyncio.Lock()
        self._request_count = 0
        self._window_start = clock()
        self.weather_mentions = 0

    @property
    def api_key(self) -> str:
        keys = self.config.api_keys or {}
        return keys.get("openweathermap") or str(self.config.settings.get("api_key") or "")

    async def initialize(self) -> None:
        if not self.api_key:
            logger.warning("Weather plugin loaded without an OpenWeatherMap API key")
        self._get_client()

    async def activate(self, context: PluginContext) -> None:
        logger.info(f"Weather plugin activated by user {context.user_id}")
        if not self.api_key:
            raise PluginExecutionError(
                "OpenWeatherMap API key not configured",
                self.metadata.id,
                context={"user_id": context.user_id},
            )

    async def deactivate(self, context: PluginContext) -> None:
        logger.info(f"Weather plugin deactivated by user {context.user_id}")
        async with self._cache_lock:
            self._cache.clear()

    async def cleanup(self) -> None:
        async with self._cache_lock:
            self._cache.clear()
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def validate_config(self, config: Any) -> bool:
        if not await super().validate_config(config):
            return False
        settings = PluginConfig.model_validate(config).settings
        return bool(settings.get("api_key"))

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    async def execute_command(
        self,
        command: str,
        parameters: dict[str, Any],
        context: PluginContext,
    ) -> PluginResult:
        if not self.api_key:
            return PluginResult.fail("Weather service is not configured (missing API key).")
        if not self._check_request_budget():
            return PluginResult.fail("Rate limit exceeded. Please try again later.", rate_limited=True)

        try:
            if command == "weather":
                return await self.get_current_weather(parameters)
            if command == "forecast":
                return await self.get_forecast(parameters)
        except PluginExecutionError as e:
            logger.error(f"Weather command {command} failed: {e}")
            return PluginResult.fail(e.message, command=command, chat_id=context.chat_id)

        return PluginResult.fail(
            f"Unknown command: {command}",
            available_commands=[c.name for c in self.config.commands],
        )

    async def get_current_weather(self, parameters: dict[str, Any]) -> PluginResult:
        city = parameters.get("city")
        if not city:
            return PluginResult.fail("City parameter is required")
        units = parameters.get("units") or self.config.settings.get("default_units", "metric")

        cache_key = f"weather:{city.lower()}:{units}"
        cached = await self._get_cached(cache_key)
        if cached is not None:
            return PluginResult.ok(
                f"Current weather in {cached['city']} (cached)",
                data=cached,
                cached=True,
                city=city,
                units=units,
            )

        response = await self._request("/weather", {"q": city, "units": _API_UNITS.get(units, "metric")})
        if response.status_code == 404:
            return PluginResult.fail(f'City "{city}" not found')
        if response.status_code == 401:
            return PluginResult.fail("Invalid API key")
        self._raise_for_status(response, city=city)

        payload = response.json()
        weather = {
            "city": payload.get("name", city),
            "country": payload.get("sys", {}).get("country", ""),
            "temperature": payload["main"]["temp"],
            "description": payload["weather"][0]["description"],
            "humidity": payload["main"].get("humidity"),
            "wind_speed": payload.get("wind", {}).get("speed"),
            "units": units,
        }
        await self._set_cached(cache_key, weather)

        symbol = _UNIT_SYMBOLS.get(units, "C")
        return PluginResult.ok(
            f"Current weather in {weather['city']}, {weather['country']}: "
            f"{weather['temperature']}°{symbol}, {weather['description']}",
            data=weather,
            cached=False,
            city=city,
            units=units,
        )

    async def get_forecast(self, parameters: dict[str, Any]) -> PluginResult:
        city = parameters.get("city")
        if not city:
            return PluginResult.fail("City parameter is required")
        days = int(parameters.get("days") or 3)

        cache_key = f"forecast:{city.lower()}:{days}"
        cached = await self._get_cached(cache_key)
        if cached is not None:
            return PluginResult.ok(
                f"{days}-day forecast for {cached['city']} (cached)",
                data=cached,
                cached=True,
                city=city,
                days=days,
            )

        response = await self._request("/forecast", {"q": city, "units": "metric"})
        if response.status_code == 404:
            return PluginResult.fail(f'City "{city}" not found')
        if response.status_code == 401:
            return PluginResult.fail("Invalid API key")
        self._raise_for_status(response, city=city, days=days)

        payload = response.json()
        # Entries are 3 hours apart: take one per day
        entries = payload.get("list", [])[: days * 8 : 8]
        forecast = {
            "city": payload.get("city", {}).get("name", city),
            "country": payload.get("city", {}).get("country", ""),
            "forecast": [
                {
                    "date": datetime.fromtimestamp(item["dt"], tz=timezone.utc).date().isoformat(),
                    "temperature": {"min": item["main"]["temp_min"], "max": item["main"]["temp_max"]},
                    "description": item["weather"][0]["description"],
                    "humidity": item["main"].get("humidity"),
                }
                for item in entries
            ],
        }
        await self._set_cached(cache_key, forecast)

        lines = [f"{days}-day forecast for {forecast['city']}, {forecast['country']}"]
        for day in forecast["forecast"]:
            temp = day["temperature"]
            lines.append(f"• {day['date']}: {temp['min']}°C to {temp['max']}°C, {day['description']}")
        return PluginResult.ok("\n".join(lines), data=forecast, cached=False, city=city, days=days)

    # ------------------------------------------------------------------
    # Events, ingestion, health
    # ------------------------------------------------------------------

    async def handle_event(self, event: PluginEvent) -> None:
        if event.type == PluginEventType.MESSAGE_RECEIVED:
            data = event.data if isinstance(event.data, dict) else {}
            text = str(data.get("content") or "").lower()
            if any(keyword in text for keyword in WEATHER_KEYWORDS):
                self.weather_mentions += 1
                logger.debug(f"Weather-related message detected in chat {event.context.chat_id}")
        elif event.type == PluginEventType.SCHEDULED_TASK:
            await self._scheduled_update(event.data)

    async def _scheduled_update(self, data: Any) -> None:
        cities = data.get("cities", []) if isinstance(data, dict) else []
        for city in cities:
            try:
                await self.get_current_weather({"city": city})
            except PluginExecutionError as e:
                logger.warning(f"Scheduled weather refresh for {city} failed: {e}")

    async def ingest_data(self, config: DataIngestionConfig) -> PluginResult:
        logger.info(f"Weather plugin ingesting data from {config.source}")
        if config.type == "api":
            results = []
            for city in INGESTION_CITIES:
                try:
                    result = await self.get_current_weather({"city": city})
                except PluginExecutionError as e:
                    logger.warning(f"Failed to ingest weather for {city}: {e}")
                    continue
                if result.success:
                    results.append(result.data)
            return PluginResult.ok(
                f"Ingested weather data for {len(results)} cities",
                data=results,
                cities=len(results),
                source=config.source,
            )
        if config.type == "webhook":
            return PluginResult.ok("Webhook handler not implemented yet", source=config.source)
        return PluginResult.fail(f"Unsupported ingestion type: {config.type}")

    async def health_check(self) -> bool:
        if not self.api_key:
            return False
        try:
            response = await self._get_client().get("/weather", params={"q": "London", "appid": self.api_key})
        except httpx.HTTPError as e:
            logger.warning(f"Weather health check failed: {e}")
            return False
        return response.status_code == 200

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=API_BASE,
                headers={"User-Agent": "buddian-weather/1.0"},
                timeout=(self.config.timeout_ms or 10_000) / 1000,
                transport=self._transport,
            )
        return self._client

    async def _request(self, path: str, params: dict[str, Any]) -> httpx.Response:
        try:
            return await self._get_client().get(path, params={**params, "appid": self.api_key})
        except httpx.HTTPError as e:
            raise PluginExecutionError(
                f"Failed to fetch weather data: {e}",
                self.metadata.id,
                context={"path": path},
            ) from e

    def _raise_for_status(self, response: httpx.Response, **context: Any) -> None:
        if response.is_success:
            return
        raise PluginExecutionError(
            f"Failed to fetch weather data: HTTP {response.status_code}",
            self.metadata.id,
            context=context,
        )

    def _check_request_budget(self) -> bool:
        now = self._clock()
        if now - self._window_start > 3600:
            self._request_count = 0
            self._window_start = now
        if self._request_count >= int(self.config.settings.get("max_requests_per_hour", 1000)):
            return False
        self._request_count += 1
        return True

    async def _get_cached(self, key: str) -> Any | None:
        ttl = float(self.config.settings.get("cache_timeout_ms", 300_000)) / 1000
        async with self._cache_lock:
            entry = self._cache.get(key)
            if entry is None:
                return None
            stored_at, data = entry
            if self._clock() - stored_at > ttl:
                del self._cache[key]
                return None
            return data

    async def _set_cached(self, key: str, data: Any) -> None:
        async with self._cache_lock:
            self._cache[key] = (self._clock(), data)


def create_plugin() -> WeatherPlugin:
    return WeatherPlugin()
