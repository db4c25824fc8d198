from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from graded_chat.app_config import AppConfig
from graded_chat.chat_service import ChatService
from graded_chat.credentials import CredentialStore
from graded_chat.logging_config import setup_logging
from graded_chat.memory import EventEmitter, MemoryStore, SessionManager
from graded_chat.model_router import ModelRouter
from graded_chat.providers.anthropic_provider import AnthropicProvider
from graded_chat.tool_registry import get_all
from graded_chat.tools.base import Tool


@dataclass
class AppRuntime:
    service: ChatService
    provider: AnthropicProvider
    memory_store: MemoryStore
    tools: list[Tool]
    log_descriptions: list[str]

    async def aclose(self) -> None:
        await self.provider.aclose()
        self.memory_store.close()


def bootstrap_runtime(app: AppConfig, credentials: CredentialStore) -> AppRuntime:
    log_descriptions = setup_logging(level=app.log_level, consumers=app.log_consumers)

    provider = AnthropicProvider(credentials, base_url=app.api_base_url, max_tokens=app.max_tokens)
    tools = get_all(
        credentials,
        extractor=provider,
        extraction_model=app.model,
        timezone=app.timezone,
        default_location=app.default_location,
    )

    db_path = Path(app.db_path)
    if not db_path.is_absolute():
        db_path = Path.cwd() / db_path
    memory_store = MemoryStore(str(db_path))
    session_manager = SessionManager(
        memory_store,
        EventEmitter(memory_store),
        default_session=app.default_session,
    )

    router = ModelRouter(provider) if app.auto_route else None
    service = ChatService(app, provider, session_manager, tools, credentials, router=router)
    service.initialize()

    return AppRuntime(
        service=service,
        provider=provider,
        memory_store=memory_store,
        tools=tools,
        log_descriptions=log_descriptions,
    )
