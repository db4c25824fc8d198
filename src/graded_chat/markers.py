"""Inline markers carrying structured payloads inside plain transcript text.

A marker is an HTML comment of the form ``<!--kind:payload-->`` written on its
own line ahead of the visible text. Renderers that do not know about markers
simply show nothing for them; consumers that do (model input, display, export)
extract or strip them with the helpers below.
"""

from __future__ import annotations

import html
import json
import re
from dataclasses import asdict, dataclass, field
from typing import Any
from uuid import uuid4

from loguru import logger

IMAGE = "image"
WEATHER = "weather"
TIP = "tip"

KNOWN_KINDS = (IMAGE, WEATHER, TIP)

# Tip payloads are free text and may span lines; JSON payloads never do.
_TEXT_KINDS = {TIP}


def _pattern(kind: str) -> re.Pattern[str]:
    flags = re.DOTALL if kind in _TEXT_KINDS else 0
    return re.compile(r"<!--" + re.escape(kind) + r":(.+?)-->\n?", flags)


_PATTERNS = {kind: _pattern(kind) for kind in KNOWN_KINDS}


def _pattern_for(kind: str) -> re.Pattern[str]:
    return _PATTERNS.get(kind) or _pattern(kind)


def encode(kind: str, payload: Any) -> str:
    """Render ``payload`` as a marker. The body never contains ``-->``.

    JSON bodies escape ``>`` as ``\\u003e``, which ``json.loads`` reverses.
    Text bodies are HTML-escaped and unescaped again on decode.
    """
    if kind in _TEXT_KINDS:
        body = html.escape(str(payload).strip(), quote=False)
    else:
        body = json.dumps(payload, separators=(",", ":"), ensure_ascii=False).replace(">", "\\u003e")
    return f"<!--{kind}:{body}-->"


def _decode(kind: str, raw: str) -> Any:
    if kind in _TEXT_KINDS:
        return html.unescape(raw.strip())
    return json.loads(raw)


def extract(kind: str, content: str) -> tuple[list[Any], str]:
    """Return every payload of ``kind`` in document order plus the content without them.

    Malformed payloads are dropped from the result but their markers are still
    removed from the returned text.
    """
    pattern = _pattern_for(kind)
    payloads: list[Any] = []
    matched = False
    for match in pattern.finditer(content):
        matched = True
        try:
            payloads.append(_decode(kind, match.group(1)))
        except ValueError as ex:
            logger.warning(f"Skipping malformed {kind} marker: {ex}")
    if not matched:
        return [], content
    return payloads, pattern.sub("", content).strip()


def strip_all(content: str) -> str:
    """Remove image, weather and tip markers. Markers of other kinds are kept."""
    result = content
    for kind in KNOWN_KINDS:
        result = _PATTERNS[kind].sub("", result)
    return result.strip()


def prefix_markers(markers: list[str], text: str) -> str:
    if not markers:
        return text
    return "\n".join(markers) + "\n" + text


# Typed payloads


@dataclass(frozen=True)
class ImageMarker:
    id: str
    media_type: str
    data: str

    def encode(self) -> str:
        return encode(IMAGE, {"id": self.id, "media_type": self.media_type, "data": self.data})


def image_marker(media_type: str, data: str, image_id: str | None = None) -> ImageMarker:
    return ImageMarker(id=image_id or str(uuid4()), media_type=media_type, data=data)


@dataclass(frozen=True)
class HourlyForecast:
    hour: str
    temp: float
    conditions: str
    icon_code: str
    pop: float = 0.0


@dataclass(frozen=True)
class WeatherData:
    city: str
    temp: float
    feels_like: float
    conditions: str
    humidity: int
    wind_speed: float
    icon_code: str
    high: float | None = None
    low: float | None = None
    hourly_forecast: list[HourlyForecast] = field(default_factory=list)
    observation_time: int | None = None
    timezone_offset: int | None = None

    def to_payload(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> WeatherData:
        hourly = [HourlyForecast(**entry) for entry in payload.get("hourly_forecast", [])]
        fields = {k: v for k, v in payload.items() if k != "hourly_forecast"}
        return cls(hourly_forecast=hourly, **fields)

    def encode(self) -> str:
        return encode(WEATHER, self.to_payload())


@dataclass(frozen=True)
class ParsedContent:
    display_text: str
    images: list[ImageMarker]
    weather: list[WeatherData]
    tip: str | None
    raw_text: str


def extract_images(content: str) -> list[ImageMarker]:
    payloads, _ = extract(IMAGE, content)
    images: list[ImageMarker] = []
    for payload in payloads:
        if not isinstance(payload, dict):
            continue
        try:
            images.append(
                ImageMarker(
                    id=str(payload["id"]),
                    media_type=str(payload["media_type"]),
                    data=str(payload["data"]),
                )
            )
        except KeyError:
            logger.warning("Skipping image marker without id/media_type/data")
    return images


def extract_weather(content: str) -> list[WeatherData]:
    payloads, _ = extract(WEATHER, content)
    results: list[WeatherData] = []
    for payload in payloads:
        try:
            results.append(WeatherData.from_payload(payload))
        except (TypeError, AttributeError) as ex:
            logger.warning(f"Skipping weather marker with unexpected shape: {ex}")
    return results


def extract_tip(content: str) -> str | None:
    tips, _ = extract(TIP, content)
    return tips[0] if tips else None


def extract_and_strip_tip(content: str) -> tuple[str, str | None]:
    tips, cleaned = extract(TIP, content)
    if not tips:
        return content.strip(), None
    return cleaned, tips[0]


def parse(content: str) -> ParsedContent:
    return ParsedContent(
        display_text=strip_all(content),
        images=extract_images(content),
        weather=extract_weather(content),
        tip=extract_tip(content),
        raw_text=content,
    )
