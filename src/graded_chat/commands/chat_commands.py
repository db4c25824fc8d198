from __future__ import annotations

import base64
import json
import mimetypes
from pathlib import Path

from graded_chat import markers, pricing
from graded_chat.chat_service import ChatService
from graded_chat.commands.router import CommandRouter
from graded_chat.errors import ChatEngineError
from graded_chat.markers import ImageMarker, image_marker
from graded_chat.memory.models import Message
from graded_chat.model_router import FORCED_MODELS

_SUPPORTED_IMAGE_TYPES = {"image/jpeg", "image/png", "image/gif", "image/webp"}
_PREVIEW_CHARS = 60
_SESSION_USAGE = "/session [list | new <name> | use <name> | rename <name> | delete <name> | clear | events]"


def short_id(value: str, length: int = 8) -> str:
    return value if len(value) <= length else value[:length]


def _preview(text: str) -> str:
    flat = " ".join(text.split())
    return flat if len(flat) <= _PREVIEW_CHARS else flat[: _PREVIEW_CHARS - 3] + "..."


def _model_label(model: str) -> str:
    known = pricing.PRICING.get(model)
    return known.display_name if known is not None else (model or "assistant")


def load_image(path: str) -> ImageMarker:
    file_path = Path(path).expanduser()
    media_type, _ = mimetypes.guess_type(file_path.name)
    if media_type not in _SUPPORTED_IMAGE_TYPES:
        raise ValueError(f"Unsupported image type for {file_path.name}: {media_type or 'unknown'}")
    data = base64.b64encode(file_path.read_bytes()).decode("ascii")
    return image_marker(media_type, data)


class ChatCommands:
    """Local ``/`` commands of the REPL. Output goes to stdout with the assistant prefix."""

    def __init__(self, service: ChatService, *, line_prefix: str = "assistant> "):
        self._service = service
        self._prefix = line_prefix
        self.pending_images: list[ImageMarker] = []
        self.forced_model: str | None = None
        self.queued_message: str | None = None

    def build_router(self) -> CommandRouter:
        return CommandRouter(
            {
                "help": self.help,
                "session": self.session,
                "threshold": self.threshold,
                "grade": self.grade,
                "image": self.image,
                "cost": self.cost,
                "export": self.export,
                "history": self.history,
                "edit": self.edit,
                "copy": self.copy,
                "tips": self.tips,
                "opus": self.opus,
                "sonnet": self.sonnet,
                "haiku": self.haiku,
            },
            on_unknown=self.unknown,
        )

    def take_pending_images(self) -> list[ImageMarker]:
        images, self.pending_images = self.pending_images, []
        return images

    def take_forced_model(self) -> str | None:
        model, self.forced_model = self.forced_model, None
        return model

    def take_queued_message(self) -> str | None:
        """Text a model command asked to send right away, if any."""
        text, self.queued_message = self.queued_message, None
        return text

    def _print(self, line: str = "") -> None:
        print(f"{self._prefix}{line}")

    def unknown(self, command: str) -> None:
        self._print(f"Unknown local command: {command}")

    async def help(self, _: str) -> None:
        self._print("Available commands:")
        for line in (
            "/help",
            _SESSION_USAGE,
            "/threshold [0-5]         (no value cycles 0 -> 5 -> 0)",
            "/grade <0-5>             (grades the last turn)",
            "/grade <id> <0-5>        (grades the turn containing message <id>)",
            "/grade all <0-5>",
            "/image <path>            (attach an image to the next message)",
            "/edit <id> <text>",
            "/copy <id>",
            "/history",
            "/tips",
            "/cost",
            "/export [path]",
            "/opus [text]             (force Opus for the next message)",
            "/sonnet [text]           (force Sonnet for the next message)",
            "/haiku [text]            (force Haiku for the next message)",
        ):
            self._print(f"- {line}")

    async def session(self, args: str) -> None:
        action, _, rest = args.partition(" ")
        rest = rest.strip()
        try:
            if not action:
                self._print(f"Current session: {self._service.current_session}")
            elif action == "list":
                for info in self._service.list_sessions():
                    marker = "*" if info.id == self._service.current_session else " "
                    default = " (default)" if info.is_default else ""
                    self._print(
                        f"{marker} {info.name}{default} (threshold={info.context_threshold}, "
                        f"tokens={info.total_input_tokens}/{info.total_output_tokens}, updated={info.updated_at})"
                    )
            elif action == "new" and rest:
                self._service.create_session(rest)
                self._print(f"Created session: {rest}")
            elif action == "use" and rest:
                info = self._service.select_session(rest)
                self._print(f"Switched to session: {info.name} ({len(self._service.messages)} messages)")
            elif action == "rename" and rest:
                info = self._service.rename_session(rest)
                self._print(f"Session renamed to: {info.name}")
            elif action == "delete" and rest:
                self._service.delete_session(rest)
                self._print(f"Deleted session: {rest}")
            elif action == "clear":
                self._service.clear_session()
                self._print(f"Cleared session: {self._service.current_session}")
            elif action == "events":
                events = self._service.recent_events()
                if not events:
                    self._print("No events recorded.")
                for event in events:
                    self._print(f"{event['created_at']} {event['type']} {json.dumps(event['payload'])}")
            else:
                self._print(f"Usage: {_SESSION_USAGE}")
        except (ValueError, ChatEngineError) as ex:
            self._print(str(ex))

    async def threshold(self, args: str) -> None:
        if not args:
            value = self._service.cycle_threshold()
        else:
            try:
                value = self._service.set_threshold(int(args))
            except ValueError:
                self._print("Usage: /threshold [0-5]")
                return
        replayed = len(self._service.replayed_messages())
        self._print(f"Context threshold: {value} ({replayed} of {len(self._service.messages)} messages replayed)")

    async def grade(self, args: str) -> None:
        parts = args.split()
        try:
            if len(parts) == 1:
                target = self._last_user_message()
                grade = int(parts[0])
                if target is None:
                    self._print("No turn to grade yet.")
                    return
                value = self._service.set_message_grade(target.id, grade)
            elif len(parts) == 2 and parts[0] == "all":
                value = self._service.set_all_grades(int(parts[1]))
                self._print(f"All turns graded {value}")
                return
            elif len(parts) == 2:
                target = self._resolve(parts[0])
                value = self._service.set_message_grade(target.id, int(parts[1]))
            else:
                self._print("Usage: /grade <0-5> | /grade <id> <0-5> | /grade all <0-5>")
                return
        except (ValueError, ChatEngineError) as ex:
            self._print(str(ex))
            return
        self._print(f"Turn [{short_id(target.id)}] graded {value}")

    async def image(self, args: str) -> None:
        if not args:
            self._print("Usage: /image <path>")
            return
        try:
            self.pending_images.append(load_image(args))
        except (OSError, ValueError) as ex:
            self._print(f"Cannot attach image: {ex}")
            return
        self._print(f"Attached {Path(args).name} ({len(self.pending_images)} pending)")

    async def cost(self, _: str) -> None:
        cost = self._service.calculate_cost()
        self._print(
            f"Session cost: {pricing.format_cost(cost)} "
            f"(input tokens: {self._service.total_input_tokens:,}, "
            f"output tokens: {self._service.total_output_tokens:,})"
        )

    async def export(self, args: str) -> None:
        text = self._service.export_markdown()
        if not args:
            print(text)
            return
        try:
            Path(args).expanduser().write_text(text, encoding="utf-8")
        except OSError as ex:
            self._print(f"Export failed: {ex}")
            return
        self._print(f"Exported to {args}")

    async def history(self, _: str) -> None:
        messages = self._service.messages
        if not messages:
            self._print("No messages in this session.")
            return
        replayed = {m.id for m in self._service.replayed_messages()}
        for message in messages:
            parsed = markers.parse(message.content)
            role = "you" if message.is_user else _model_label(message.model_used)
            flag = " " if message.id in replayed else "-"
            edited = " (edited)" if message.is_edited else ""
            attached = f" [{len(parsed.images)} image(s)]" if parsed.images else ""
            if parsed.weather:
                attached += f" [weather: {', '.join(w.city for w in parsed.weather)}]"
            self._print(
                f"{flag} [{short_id(message.id)}] g{message.text_grade} {role}:{attached} "
                f"{_preview(parsed.display_text)}{edited}"
            )

    async def edit(self, args: str) -> None:
        message_id, _, text = args.partition(" ")
        if not message_id or not text.strip():
            self._print("Usage: /edit <id> <text>")
            return
        try:
            message = self._service.edit_user_message(self._resolve(message_id).id, text)
        except (ValueError, ChatEngineError) as ex:
            self._print(str(ex))
            return
        self._print(f"Edited [{short_id(message.id)}]")

    async def copy(self, args: str) -> None:
        if not args:
            self._print("Usage: /copy <id>")
            return
        try:
            print(self._service.copy_turn(self._resolve(args).id))
        except ValueError as ex:
            self._print(str(ex))

    async def tips(self, _: str) -> None:
        tips = self._service.collect_tips()
        if not tips:
            self._print("No tips recorded yet.")
        for tip in tips:
            self._print(f"- {tip}")

    async def opus(self, args: str) -> None:
        self._force_model("opus", args)

    async def sonnet(self, args: str) -> None:
        self._force_model("sonnet", args)

    async def haiku(self, args: str) -> None:
        self._force_model("haiku", args)

    def _force_model(self, name: str, text: str) -> None:
        self.forced_model = FORCED_MODELS[name]
        if text:
            self.queued_message = text
            return
        self._print(f"Next message will use {_model_label(self.forced_model)}")

    def _last_user_message(self) -> Message | None:
        for message in reversed(self._service.messages):
            if message.is_user:
                return message
        return None

    def _resolve(self, id_prefix: str) -> Message:
        matches = [m for m in self._service.messages if m.id.startswith(id_prefix)]
        if not matches:
            raise ValueError(f"No message with id {id_prefix}")
        if len(matches) > 1:
            raise ValueError(f"Message id {id_prefix} is ambiguous")
        return matches[0]
