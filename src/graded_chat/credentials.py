from __future__ import annotations

import os
from typing import Protocol, runtime_checkable

from graded_chat.errors import ConfigurationError

ANTHROPIC = "anthropic"
TAVILY = "tavily"

_ENV_VARS = {
    ANTHROPIC: "ANTHROPIC_API_KEY",
    TAVILY: "TAVILY_API_KEY",
}


@runtime_checkable
class CredentialStore(Protocol):
    def get_credential(self, service: str) -> str | None: ...


class EnvCredentialStore:
    """Reads API keys from environment variables (``.env`` is loaded by the CLI)."""

    def __init__(self, env_vars: dict[str, str] | None = None):
        self._env_vars = dict(_ENV_VARS)
        if env_vars:
            self._env_vars.update(env_vars)

    def get_credential(self, service: str) -> str | None:
        var = self._env_vars.get(service)
        if var is None:
            return None
        value = os.environ.get(var, "").strip()
        return value or None

    def env_var_for(self, service: str) -> str | None:
        return self._env_vars.get(service)


class StaticCredentialStore:
    def __init__(self, credentials: dict[str, str] | None = None):
        self._credentials = dict(credentials or {})

    def get_credential(self, service: str) -> str | None:
        value = self._credentials.get(service, "").strip()
        return value or None

    def set_credential(self, service: str, value: str | None) -> None:
        if value:
            self._credentials[service] = value
        else:
            self._credentials.pop(service, None)


def require_credential(store: CredentialStore, service: str) -> str:
    value = store.get_credential(service)
    if not value:
        raise ConfigurationError(
            f"No API key configured for {service}. Add it to the environment or .env before retrying."
        )
    return value
