from __future__ import annotations

import json
import time
from typing import Any, Protocol

from loguru import logger

from graded_chat.errors import ChatEngineError
from graded_chat.markers import HourlyForecast, WeatherData
from graded_chat.tools.base import ToolResult
from graded_chat.tools.web.search_provider import SearchProvider
from graded_chat.tools.web.search_web_tool import run_search

_EXTRACTION_SYSTEM_PROMPT = "You extract structured data from text. Return only valid JSON."

_EXTRACTION_PROMPT = """\
Extract weather data from this text into JSON. Return ONLY valid JSON, no markdown backticks, no explanation, no extra text.

Required format:
{{
  "city": "city name",
  "temp": current temperature in Fahrenheit as number,
  "feelsLike": feels-like temperature in Fahrenheit as number (use temp if not mentioned),
  "conditions": "brief description like Clear, Partly Cloudy, Light Rain",
  "humidity": humidity percentage as integer (0 if not mentioned),
  "windSpeed": wind speed in mph as number (0 if not mentioned),
  "iconCode": "weather icon code from list below",
  "high": daily high in Fahrenheit as number or null if not mentioned,
  "low": daily low in Fahrenheit as number or null if not mentioned,
  "utcOffsetHours": UTC offset for this location as number,
  "hourly": [
    {{"hour": "'Now', '3 PM', ...", "temp": number, "conditions": "brief description",
      "iconCode": "icon code", "pop": precipitation probability 0.0 to 1.0}}
  ]
}}

Include up to 6 hourly entries when hourly data is present, the first labelled "Now".
If no hourly data is available, return "hourly": [].

iconCode values: "01d"/"01n" clear, "02d"/"02n" few clouds, "03d" scattered clouds,
"04d" overcast, "09d" showers, "10d"/"10n" rain, "11d" thunderstorm, "13d" snow,
"50d" fog. Use "d" for daytime (6am-8pm), "n" for night.

Text to extract from:
{text}"""

_NO_LOCATION = {"", "none", "null"}


class Extractor(Protocol):
    async def single_shot(
        self,
        model: str,
        system_prompt: str,
        messages: list[dict],
        *,
        max_tokens: int = 256,
    ) -> tuple[str, int, int]: ...


def _number(value: Any, default: float | None) -> float | None:
    if isinstance(value, bool):
        return default
    if isinstance(value, (int, float)):
        return float(value)
    return default


def _strip_code_fence(text: str) -> str:
    cleaned = text.strip()
    if cleaned.startswith("```"):
        _, _, cleaned = cleaned.partition("\n")
        if cleaned.endswith("```"):
            cleaned = cleaned[:-3]
        cleaned = cleaned.strip()
    return cleaned


def weather_from_extraction(data: dict[str, Any], fallback_city: str, observed_at: int) -> WeatherData:
    temp = _number(data.get("temp"), 0.0) or 0.0
    hourly: list[HourlyForecast] = []
    for entry in (data.get("hourly") or [])[:6]:
        if not isinstance(entry, dict) or not entry.get("hour"):
            continue
        hourly.append(
            HourlyForecast(
                hour=str(entry["hour"]),
                temp=_number(entry.get("temp"), 0.0) or 0.0,
                conditions=str(entry.get("conditions") or "Unknown"),
                icon_code=str(entry.get("iconCode") or "03d"),
                pop=_number(entry.get("pop"), 0.0) or 0.0,
            )
        )
    offset_hours = _number(data.get("utcOffsetHours"), None)
    humidity = _number(data.get("humidity"), 0.0) or 0.0
    return WeatherData(
        city=str(data.get("city") or fallback_city),
        temp=temp,
        feels_like=_number(data.get("feelsLike"), temp) or temp,
        conditions=str(data.get("conditions") or "Unknown"),
        humidity=int(humidity),
        wind_speed=_number(data.get("windSpeed"), 0.0) or 0.0,
        icon_code=str(data.get("iconCode") or "03d"),
        high=_number(data.get("high"), None),
        low=_number(data.get("low"), None),
        hourly_forecast=hourly,
        observation_time=observed_at,
        timezone_offset=int(offset_hours * 3600) if offset_hours is not None else None,
    )


def format_weather_text(weather: WeatherData) -> str:
    lines = [
        f"Current Weather for {weather.city}:",
        f"• Conditions: {weather.conditions}",
        f"• Temperature: {weather.temp:.1f}°F (feels like {weather.feels_like:.1f}°F)",
    ]
    if weather.high is not None and weather.low is not None:
        lines.append(f"• High: {weather.high:.0f}°F / Low: {weather.low:.0f}°F")
    lines.append(f"• Humidity: {weather.humidity}%")
    lines.append(f"• Wind Speed: {weather.wind_speed:.1f} mph")
    return "\n".join(lines)


class WeatherTool:
    def __init__(
        self,
        search_provider: SearchProvider,
        extractor: Extractor,
        *,
        extraction_model: str,
        default_location: str = "Catonsville, Maryland",
    ) -> None:
        self._search_provider = search_provider
        self._extractor = extractor
        self._extraction_model = extraction_model
        self._default_location = default_location

    @property
    def name(self) -> str:
        return "get_weather"

    @property
    def description(self) -> str:
        return (
            "Get current weather information for a specific location. "
            f"Defaults to {self._default_location} if no location specified."
        )

    @property
    def input_schema(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "location": {
                    "type": "string",
                    "description": (
                        "The location to get weather for (city, state, country). "
                        "Leave empty for default location."
                    ),
                },
            },
            "required": ["location"],
        }

    async def execute(self, tool_input: dict[str, Any]) -> ToolResult:
        location = str(tool_input.get("location") or "").strip()
        if location.lower() in _NO_LOCATION:
            location = self._default_location

        logger.info(f"Getting weather for: {location}")
        query = f"current weather and hourly forecast next 6 hours {location} temperature humidity wind"
        search = await run_search(self._search_provider, query)
        if not search.found:
            return ToolResult(search.text)
        search_text = search.text

        try:
            json_text, input_tokens, output_tokens = await self._extractor.single_shot(
                self._extraction_model,
                _EXTRACTION_SYSTEM_PROMPT,
                [{"role": "user", "content": _EXTRACTION_PROMPT.format(text=search_text)}],
                max_tokens=1024,
            )
        except ChatEngineError as ex:
            logger.warning(f"Weather extraction failed: {ex}, returning plain text")
            return ToolResult(search_text)

        try:
            data = json.loads(_strip_code_fence(json_text))
        except json.JSONDecodeError:
            logger.warning(f"Weather extraction returned non-JSON: {json_text[:200]}")
            return ToolResult(search_text)
        if not isinstance(data, dict):
            return ToolResult(search_text)

        weather = weather_from_extraction(data, location, int(time.time()))
        return ToolResult(
            format_weather_text(weather),
            embedded_marker=weather.encode(),
            overhead_input_tokens=input_tokens,
            overhead_output_tokens=output_tokens,
        )
