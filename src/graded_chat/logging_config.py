import sys
from pathlib import Path
from typing import Any, Protocol, runtime_checkable

from loguru import logger

_FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level:<8} | {name}:{function}:{line} - {message}"
_CONSOLE_FORMAT = "<level>{level:<8}</level> | <cyan>{name}</cyan> - <level>{message}</level>"


@runtime_checkable
class LogConsumer(Protocol):
    def register(self, level: str) -> None: ...
    def describe(self, level: str) -> str: ...


def _module_filter(prefix: str | None):
    if not prefix:
        return None
    return lambda record: (record["name"] or "").startswith(prefix)


class ConsoleLogConsumer:
    """Logs to stderr so they never interleave with streamed reply text on stdout."""

    def __init__(self, colorize: bool | None = None, only: str | None = None):
        self._colorize = colorize
        self._only = only

    def register(self, level: str) -> None:
        logger.add(
            sys.stderr,
            level=level,
            colorize=self._colorize,
            format=_CONSOLE_FORMAT,
            filter=_module_filter(self._only),
        )

    def describe(self, level: str) -> str:
        scope = f", {self._only} only" if self._only else ""
        return f"console (stderr, {level}{scope})"


class FileLogConsumer:
    """Rotating log file. ``serialize`` writes one JSON record per line instead of text."""

    def __init__(
        self,
        path: str = ".graded_chat/graded_chat.log",
        rotation: str = "10 MB",
        retention: int = 3,
        serialize: bool = False,
    ):
        self._path = Path(path)
        self._rotation = rotation
        self._retention = retention
        self._serialize = serialize

    def register(self, level: str) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        sink_options: dict[str, Any] = {"serialize": True} if self._serialize else {"format": _FILE_FORMAT}
        logger.add(
            str(self._path),
            level=level,
            rotation=self._rotation,
            retention=self._retention,
            encoding="utf-8",
            **sink_options,
        )

    def describe(self, level: str) -> str:
        kind = "jsonl" if self._serialize else "file"
        return f"{kind} ({self._path}, {level})"


_CONSUMER_TYPES: dict[str, type] = {
    "console": ConsoleLogConsumer,
    "file": FileLogConsumer,
}

# Console only shows problems by default; the file keeps the full trail.
_DEFAULT_CONSUMERS: list[dict[str, Any]] = [
    {"type": "console", "level": "WARNING"},
    {"type": "file"},
]


def build_consumer(config: dict[str, Any]) -> LogConsumer | None:
    cls = _CONSUMER_TYPES.get(config.get("type", ""))
    if cls is None:
        return None
    return cls(**{k: v for k, v in config.items() if k not in ("type", "level")})


def setup_logging(
    level: str = "INFO",
    consumers: list[dict[str, Any]] | None = None,
) -> list[str]:
    """Replace loguru's default sink with the configured consumers.

    Each entry of ``consumers`` is a ``LogConsumers`` item from config.json,
    e.g. ``{"type": "file", "path": "chat.log", "level": "DEBUG", "serialize": true}``.
    Returns a description of every consumer registered.
    """
    logger.remove()

    registered: list[str] = []
    for entry in consumers if consumers is not None else _DEFAULT_CONSUMERS:
        consumer = build_consumer(entry)
        if consumer is None:
            logger.warning(f"Unknown log consumer type: {entry.get('type')!r}")
            continue
        sink_level = str(entry.get("level", level)).upper()
        consumer.register(sink_level)
        registered.append(consumer.describe(sink_level))
    return registered
