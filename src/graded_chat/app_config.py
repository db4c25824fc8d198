from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path

DEFAULT_MODEL = "claude-sonnet-4-5-20250929"
DEFAULT_SESSION = "Scratch Pad"


@dataclass
class AppConfig:
    model: str
    auto_route: bool
    max_tokens: int
    max_tool_iterations: int
    tool_timeout_seconds: float
    api_base_url: str
    db_path: str
    default_session: str
    default_location: str
    timezone: str
    system_prompt: str | None
    log_level: str
    log_consumers: list | None


def load_json_config(path: Path | None = None) -> dict:
    config_path = path or Path.cwd() / "config.json"
    if config_path.exists():
        with open(config_path) as f:
            return json.load(f)
    return {}


def parse_app_config(config: dict) -> AppConfig:
    system_prompt = config.get("SystemPrompt")
    return AppConfig(
        model=str(config.get("Model", DEFAULT_MODEL)),
        auto_route=bool(config.get("AutoRoute", True)),
        max_tokens=int(config.get("MaxTokens", 8192)),
        max_tool_iterations=max(1, int(config.get("MaxToolIterations", 5))),
        tool_timeout_seconds=float(config.get("ToolTimeoutSeconds", 45)),
        api_base_url=str(config.get("ApiBaseUrl", "https://api.anthropic.com")).rstrip("/"),
        db_path=str(config.get("DbPath", ".graded_chat/chat.db")),
        default_session=str(config.get("DefaultSession", DEFAULT_SESSION)).strip() or DEFAULT_SESSION,
        default_location=str(config.get("DefaultLocation", "Catonsville, Maryland")),
        timezone=str(config.get("Timezone", "America/New_York")),
        system_prompt=str(system_prompt) if system_prompt else None,
        log_level=config.get("LogLevel", "INFO"),
        log_consumers=config.get("LogConsumers"),
    )
