"""
Weather Tools - current conditions and forecasts from OpenWeatherMap.

Provides three tools:
- get_current_weather: current weather for one city
- get_weather_forecast: 5-day forecast (3-hour steps) for one city
- get_multiple_weather: current weather for comma-separated cities

Requires OWM_API_KEY. A missing key is a FatalToolError: the run stops rather
than letting the model retry a call that can never succeed.
"""

from __future__ import annotations

import logging
from collections import OrderedDict
from datetime import datetime
from typing import Any

import httpx

from loom.config import require_env
from loom.runner.tool_registry import FunctionTool, HandlerError, ToolRegistry

logger = logging.getLogger(__name__)

_CURRENT_URL = "https://api.openweathermap.org/data/2.5/weather"
_FORECAST_URL = "https://api.openweathermap.org/data/2.5/forecast"
_REQUEST_TIMEOUT = 10.0

CITY_SEPARATOR = "\n\n" + "═" * 64 + "\n\n"

_ICONS = {
    "clear": "☀️",
    "clouds": "☁️",
    "rain": "🌧️",
    "drizzle": "🌦️",
    "thunderstorm": "⛈️",
    "snow": "❄️",
    "mist": "🌫️",
    "fog": "🌫️",
    "haze": "🌫️",
}

_DIRECTIONS = ["North", "Northeast", "East", "Southeast", "South", "Southwest", "West", "Northwest"]


def weather_icon(condition: str) -> str:
    return _ICONS.get(condition.lower(), "🌤️")


def wind_direction(degrees: float) -> str:
    """Compass direction (8 points) the wind blows from."""
    return _DIRECTIONS[int((degrees + 22.5) / 45) % 8]


def _condition(entry: dict[str, Any]) -> tuple[str, str]:
    weather = (entry.get("weather") or [{}])[0]
    description = weather.get("description") or "unknown"
    return weather.get("main", ""), description[:1].upper() + description[1:]


def format_current_weather(data: dict[str, Any]) -> str:
    """Markdown summary of an OpenWeatherMap /weather response."""
    main = data["main"]
    wind = data.get("wind", {})
    condition, description = _condition(data)
    return (
        f"{weather_icon(condition)} **{data['name']}, {data.get('sys', {}).get('country', '')} "
        "Current Weather:**\n\n"
        f"- 🌡️ **Temperature:** {int(main['temp'])}°C (Feels like {int(main['feels_like'])}°C)\n"
        f"- ☁️ **Condition:** {description}\n"
        f"- 💧 **Humidity:** {main['humidity']}%\n"
        f"- 📊 **Pressure:** {main['pressure']} hPa\n"
        f"- 🌬️ **Wind Speed:** {int(wind.get('speed', 0) * 3.6)} km/h "
        f"(from {wind_direction(wind.get('deg') or 0)})\n"
        f"- 👁️ **Visibility:** {data.get('visibility', 0) / 1000.0} km\n\n"
        f"**Temperature Range:** {int(main['temp_min'])}°C ~ {int(main['temp_max'])}°C"
    )


def format_forecast(data: dict[str, Any], days: int = 5, entries_per_day: int = 3) -> str:
    """Markdown forecast grouped by local date, a few entries per day."""
    city = data["city"]
    lines = [f"📅 **{city['name']}, {city.get('country', '')} - Weather Forecast:**", ""]

    by_date: OrderedDict[str, list[tuple[datetime, dict[str, Any]]]] = OrderedDict()
    for item in data.get("list", []):
        when = datetime.fromtimestamp(item["dt"])
        by_date.setdefault(when.strftime("%Y-%m-%d"), []).append((when, item))

    for entries in list(by_date.values())[:days]:
        lines.append(f"📆 **{entries[0][0].strftime('%A, %b %d')}:**")
        for when, item in entries[:entries_per_day]:
            condition, description = _condition(item)
            lines.append(
                f"  ⏰ {when.strftime('%H:%M')}: {weather_icon(condition)} "
                f"{int(item['main']['temp'])}°C, {description}"
            )
        lines.append("")

    return "\n".join(lines) + "\n"


class WeatherClient:
    """Async OpenWeatherMap client. The API key is read on first use."""

    def __init__(
        self,
        api_key: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        timeout: float = _REQUEST_TIMEOUT,
    ):
        self._api_key = api_key
        self._transport = transport
        self._timeout = timeout

    @property
    def api_key(self) -> str:
        if self._api_key is None:
            self._api_key = require_env("OWM_API_KEY")
        return self._api_key

    async def _get(self, url: str, city: str) -> dict[str, Any]:
        params = {"q": city.strip(), "appid": self.api_key, "units": "metric"}
        async with httpx.AsyncClient(transport=self._transport, timeout=self._timeout) as client:
            try:
                response = await client.get(url, params=params)
            except httpx.HTTPError as e:
                logger.error(f"🚨 Weather request failed: {e}")
                raise HandlerError("天气服务暂时不可用，请稍后重试。") from e

        if response.status_code != 200:
            logger.warning(f"🚨 OpenWeatherMap error {response.status_code}: {response.text}")
            raise HandlerError(f"无法获取 {city} 的天气信息。请检查城市名称是否正确。")
        return response.json()

    async def current(self, city: str) -> str:
        return format_current_weather(await self._get(_CURRENT_URL, city))

    async def forecast(self, city: str) -> str:
        return format_forecast(await self._get(_FORECAST_URL, city))

    async def multiple(self, cities: str) -> str:
        names = [c.strip() for c in cities.split(",") if c.strip()]
        if not names:
            raise HandlerError("请提供有效的城市名称")

        reports = []
        for name in names:
            try:
                reports.append(await self.current(name))
            except HandlerError as e:
                reports.append(f"❌ {e}")
        return CITY_SEPARATOR.join(reports)


def register_tools(registry: ToolRegistry, client: WeatherClient | None = None) -> None:
    """Register the weather tools with a registry."""
    client = client or WeatherClient()
    city_schema = {
        "type": "object",
        "properties": {
            "city": {"type": "string", "description": "City name (e.g., 'Beijing', 'London', 'New York')"}
        },
        "required": ["city"],
    }

    registry.register(
        FunctionTool(
            name="get_current_weather",
            description=(
                "Get CURRENT/REAL-TIME weather information for any city. Use this for 'now', "
                "'current', 'currently', 'today', 'right now', '现在', '当前', '今天' queries."
            ),
            func=client.current,
            input_schema=city_schema,
        )
    )
    registry.register(
        FunctionTool(
            name="get_weather_forecast",
            description=(
                "Get FUTURE weather forecast for any city. Use this for 'tomorrow', 'next', "
                "'later', 'forecast', 'future', '明天', '后天', '未来', '预报' queries."
            ),
            func=client.forecast,
            input_schema=city_schema,
        )
    )
    registry.register(
        FunctionTool(
            name="get_multiple_weather",
            description=(
                "Get CURRENT weather for multiple cities at once. Use this for multiple city "
                "queries like 'Tokyo,Paris,London weather'."
            ),
            func=client.multiple,
            input_schema={
                "type": "object",
                "properties": {
                    "cities": {
                        "type": "string",
                        "description": "Comma-separated city names (e.g., 'Beijing,London,New York')",
                    }
                },
                "required": ["cities"],
            },
        )
    )
