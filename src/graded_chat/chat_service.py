from __future__ import annotations

from collections.abc import Callable, Sequence
from datetime import datetime
from uuid import uuid4

from loguru import logger

from graded_chat import context_filter, markers, pricing
from graded_chat.app_config import AppConfig
from graded_chat.credentials import ANTHROPIC, CredentialStore, require_credential
from graded_chat.errors import ChatEngineError, SendInProgressError
from graded_chat.markers import ImageMarker
from graded_chat.memory.models import ASSISTANT, USER, Message, SessionInfo, clamp_grade
from graded_chat.memory.session_manager import SessionManager
from graded_chat.model_router import ModelRouter
from graded_chat.system_prompt import build_system_prompt
from graded_chat.tools.base import Tool
from graded_chat.turn_engine import StreamingProvider, TurnEngine


class ChatService:
    """The conversation engine for one process.

    Holds the selected session, its messages in memory and its token totals.
    At most one ``send_message`` runs at a time. Storage failures propagate as
    ``StorageError`` without rolling back the in-memory state.
    """

    def __init__(
        self,
        config: AppConfig,
        provider: StreamingProvider,
        session_manager: SessionManager,
        tools: Sequence[Tool],
        credentials: CredentialStore,
        router: ModelRouter | None = None,
    ):
        self._config = config
        self._provider = provider
        self._router = router
        self._sessions = session_manager
        self._credentials = credentials
        self._engine = TurnEngine(
            provider=provider,
            model=config.model,
            system_prompt=build_system_prompt(
                [t.name for t in tools],
                default_location=config.default_location,
                custom_prompt=config.system_prompt,
            ),
            tools=tools,
            max_iterations=config.max_tool_iterations,
            tool_timeout=config.tool_timeout_seconds,
            default_location=config.default_location.split(",")[0],
        )
        self._session_id = session_manager.default_session
        self._messages: list[Message] = []
        self._threshold = 0
        self._total_input_tokens = 0
        self._total_output_tokens = 0
        self._sending = False

    def initialize(self) -> None:
        """Migrate legacy rows, make sure the default session exists and open it."""
        self._sessions.backfill_turn_ids()
        default = self._sessions.ensure_default_session()
        self.select_session(default.id)

    # -- state --------------------------------------------------------------

    @property
    def current_session(self) -> str:
        return self._session_id

    @property
    def messages(self) -> list[Message]:
        return list(self._messages)

    @property
    def threshold(self) -> int:
        return self._threshold

    @property
    def total_input_tokens(self) -> int:
        return self._total_input_tokens

    @property
    def total_output_tokens(self) -> int:
        return self._total_output_tokens

    @property
    def is_sending(self) -> bool:
        return self._sending

    @property
    def model(self) -> str:
        return self._engine.model

    @property
    def auto_routing(self) -> bool:
        return self._router is not None

    def replayed_messages(self) -> list[Message]:
        """Messages that the next request would replay under the current threshold."""
        return context_filter.filter_history(self._messages, self._threshold)

    # -- sending ------------------------------------------------------------

    async def send_message(
        self,
        text: str,
        images: Sequence[ImageMarker] = (),
        *,
        on_text_chunk: Callable[[str], None] | None = None,
        on_tool_activity: Callable[[str | None], None] | None = None,
        model: str | None = None,
    ) -> Message:
        """Run one turn and return the persisted assistant message.

        The user message is persisted before the model is called and stays in
        place when the turn fails; no assistant message is written in that case.
        An explicit ``model`` wins over the router, which wins over the
        configured model.
        """
        if self._sending:
            raise SendInProgressError("A message is already being sent")
        text = text.strip()
        if not text and not images:
            raise ValueError("Nothing to send")
        require_credential(self._credentials, ANTHROPIC)

        self._sending = True
        try:
            session_id = self._session_id
            turn_id = str(uuid4())
            user_message = Message(
                role=USER,
                content=context_filter.compose_user_content(text, images),
                turn_id=turn_id,
            )
            tips = self.collect_tips()
            self._messages.append(user_message)
            self._sessions.save_message(session_id, user_message)

            if model is None and self._router is not None:
                model = (await self._router.classify(text, tips)).model

            history = context_filter.filter_history(self._messages, self._threshold, excluding_last=True)
            logger.debug(
                f"Sending turn {turn_id}: {len(history)} of {len(self._messages) - 1} message(s) replayed "
                f"at threshold {self._threshold}"
            )
            try:
                result = await self._engine.run(
                    history,
                    text,
                    images,
                    on_text_chunk=on_text_chunk,
                    on_tool_activity=on_tool_activity,
                    model=model,
                )
            except ChatEngineError as ex:
                logger.error(f"Turn {turn_id} failed: {ex}")
                raise

            assistant_message = Message(
                role=ASSISTANT,
                content=result.content,
                turn_id=turn_id,
                text_grade=user_message.text_grade,
                image_grade=user_message.text_grade,
                input_tokens=result.input_tokens,
                output_tokens=result.output_tokens,
                model_used=result.model,
                tip=result.tip or "",
            )
            self._messages.append(assistant_message)
            self._total_input_tokens += result.input_tokens
            self._total_output_tokens += result.output_tokens
            self._sessions.save_message(session_id, assistant_message)
            self._sessions.save_session_metadata(
                session_id,
                self._total_input_tokens,
                self._total_output_tokens,
            )
            return assistant_message
        finally:
            self._sending = False

    # -- sessions -----------------------------------------------------------

    def list_sessions(self) -> list[SessionInfo]:
        return self._sessions.list_sessions()

    def select_session(self, name: str) -> SessionInfo:
        self._ensure_idle()
        session = self._sessions.load_or_create(name)
        self._session_id = session.id
        self._messages = self._sessions.load_messages(session.id)
        self._threshold = session.context_threshold
        self._total_input_tokens = session.total_input_tokens
        self._total_output_tokens = session.total_output_tokens
        logger.debug(f"Selected session '{session.id}' with {len(self._messages)} message(s)")
        return session

    def create_session(self, name: str) -> SessionInfo:
        self._ensure_idle()
        session = self._sessions.create_session(name)
        return self.select_session(session.id)

    def delete_session(self, name: str) -> None:
        self._ensure_idle()
        self._sessions.delete_session(name)
        if name == self._session_id:
            self.select_session(self._sessions.default_session)

    def rename_session(self, new_name: str, old_name: str | None = None) -> SessionInfo:
        self._ensure_idle()
        old_name = old_name or self._session_id
        session = self._sessions.rename_session(old_name, new_name)
        if old_name == self._session_id:
            self._session_id = session.id
        return session

    def clear_session(self) -> None:
        self._ensure_idle()
        self._sessions.clear_session(self._session_id)
        self._messages = []
        self._total_input_tokens = 0
        self._total_output_tokens = 0

    # -- grading ------------------------------------------------------------

    def set_message_grade(self, message_id: str, grade: int) -> int:
        """Grade the turn that ``message_id`` belongs to. Both messages of the turn get the grade."""
        value = clamp_grade(grade)
        turn = self._turn_of(message_id)
        turn_id = turn[0].turn_id
        if turn_id:
            self._sessions.set_turn_grade(turn_id, value)
        else:
            for message in turn:
                self._sessions.set_grade(message.id, value)
        for message in turn:
            message.text_grade = value
            message.image_grade = value
        return value

    def set_all_grades(self, grade: int) -> int:
        value = self._sessions.set_all_grades(self._session_id, grade)
        for message in self._messages:
            message.text_grade = value
            message.image_grade = value
        return value

    def set_threshold(self, value: int) -> int:
        self._threshold = self._sessions.set_threshold(self._session_id, value)
        return self._threshold

    def cycle_threshold(self) -> int:
        return self.set_threshold(context_filter.next_threshold(self._threshold))

    # -- editing, cost, export ----------------------------------------------

    def edit_user_message(self, message_id: str, text: str) -> Message:
        """Replace the visible text of a user message, keeping its attached images."""
        text = text.strip()
        if not text:
            raise ValueError("Edited text must not be empty")
        message = self._find(message_id)
        if not message.is_user:
            raise ValueError("Only user messages can be edited")

        images = markers.extract_images(message.content)
        content = context_filter.compose_user_content(text, images)
        self._sessions.update_message_content(message_id, content)
        message.content = content
        message.is_edited = True
        return message

    def calculate_cost(self) -> float:
        return pricing.calculate_cost(self._messages)

    def export_markdown(self, *, exported_at: datetime | None = None) -> str:
        return context_filter.export_markdown(
            self._session_id,
            self._messages,
            self._threshold,
            exported_at=exported_at,
        )

    def copy_turn(self, message_id: str) -> str:
        return context_filter.format_turn_for_clipboard(self._messages, message_id)

    def collect_tips(self) -> list[str]:
        return context_filter.collect_tips(self._messages)

    def recent_events(self, limit: int = 20) -> list[dict]:
        return self._sessions.recent_events(self._session_id, limit)

    # -- helpers ------------------------------------------------------------

    def _ensure_idle(self) -> None:
        if self._sending:
            raise SendInProgressError("Cannot change sessions while a message is being sent")

    def _find(self, message_id: str) -> Message:
        for message in self._messages:
            if message.id == message_id:
                return message
        raise ValueError(f"Message does not exist: {message_id}")

    def _turn_of(self, message_id: str) -> list[Message]:
        message = self._find(message_id)
        if message.turn_id:
            return [m for m in self._messages if m.turn_id == message.turn_id]

        index = self._messages.index(message)
        if message.role == USER:
            following = self._messages[index + 1] if index + 1 < len(self._messages) else None
            return [message, following] if following is not None and following.role == ASSISTANT else [message]
        previous = self._messages[index - 1] if index > 0 else None
        return [previous, message] if previous is not None and previous.role == USER else [message]
