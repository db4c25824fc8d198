"""Which persisted turns are replayed to the model, and in what wire format.

A turn is a user message plus the final assistant reply that follows it. The
user message's grade decides for both: a turn is replayed when that grade is at
least the session threshold. Grade 0 means "never replay" regardless of the
threshold.
"""

from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime
from typing import Any

from graded_chat import markers
from graded_chat.markers import ImageMarker
from graded_chat.memory.models import ASSISTANT, MAX_GRADE, MIN_GRADE, USER, Message

IMAGE_PLACEHOLDER = "[Image previously shared and analyzed]"


def _is_replayed(grade: int, threshold: int) -> bool:
    return grade > MIN_GRADE and grade >= threshold


def _pair_turns(messages: Sequence[Message]) -> list[tuple[Message, Message | None]]:
    """Pair each user message with the assistant message right after it. Orphan assistants are dropped."""
    turns: list[tuple[Message, Message | None]] = []
    i = 0
    while i < len(messages):
        message = messages[i]
        if message.role != USER:
            i += 1
            continue
        reply = messages[i + 1] if i + 1 < len(messages) and messages[i + 1].role == ASSISTANT else None
        turns.append((message, reply))
        i += 2 if reply is not None else 1
    return turns


def filter_history(messages: Sequence[Message], threshold: int, *, excluding_last: bool = False) -> list[Message]:
    candidates = list(messages[:-1] if excluding_last and messages else messages)
    final_only = [m for m in candidates if m.is_final_response]

    filtered: list[Message] = []
    for user, reply in _pair_turns(final_only):
        if not _is_replayed(user.text_grade, threshold):
            continue
        filtered.append(user)
        if reply is not None:
            filtered.append(reply)
    return filtered


def build_api_message(message: Message) -> dict[str, Any]:
    """Serialise a past message. Image payloads are never replayed, only a placeholder."""
    if message.role == USER:
        images, text = markers.extract(markers.IMAGE, message.content)
        if images:
            blocks: list[dict[str, Any]] = [{"type": "text", "text": IMAGE_PLACEHOLDER} for _ in images]
            text = markers.strip_all(text)
            if text:
                blocks.append({"type": "text", "text": text})
            return {"role": USER, "content": blocks}
    return {"role": message.role, "content": markers.strip_all(message.content)}


def build_current_user_message(text: str, images: Sequence[ImageMarker] = ()) -> dict[str, Any]:
    if not images:
        return {"role": USER, "content": text}

    blocks: list[dict[str, Any]] = [
        {
            "type": "image",
            "source": {"type": "base64", "media_type": image.media_type, "data": image.data},
        }
        for image in images
    ]
    if text.strip():
        blocks.append({"type": "text", "text": text})
    return {"role": USER, "content": blocks}


def compose_user_content(text: str, images: Sequence[ImageMarker] = ()) -> str:
    """Stored form of a user message: one image marker per attachment, then the text."""
    return markers.prefix_markers([image.encode() for image in images], text)


def next_threshold(value: int) -> int:
    return MIN_GRADE if value >= MAX_GRADE else max(MIN_GRADE, value) + 1


def collect_tips(messages: Sequence[Message]) -> list[str]:
    return [m.tip for m in messages if m.role == ASSISTANT and m.is_final_response and m.tip]


def export_markdown(
    session_name: str,
    messages: Sequence[Message],
    threshold: int,
    *,
    exported_at: datetime | None = None,
) -> str:
    """Markdown transcript of the turns whose user grade is at least ``threshold``."""
    turns = _pair_turns([m for m in messages if m.is_final_response])
    included = [(user, reply) for user, reply in turns if user.text_grade >= threshold]
    exported_at = exported_at or datetime.now()

    lines = [
        f"# {session_name}",
        "",
        f"Exported: {exported_at:%B} {exported_at.day}, {exported_at:%Y} | "
        f"Turns: {len(included)} of {len(turns)} (threshold ≥ {threshold})",
        "",
    ]
    for user, reply in included:
        lines += ["---", "", "**User:**", markers.strip_all(user.content), ""]
        if reply is not None:
            lines += ["**Claude:**", markers.strip_all(reply.content), ""]
    if included:
        lines.append("---")
    return "\n".join(lines)


def _turn_messages(messages: Sequence[Message], message_id: str) -> list[Message]:
    index = next((i for i, m in enumerate(messages) if m.id == message_id), None)
    if index is None:
        raise ValueError(f"Message does not exist: {message_id}")
    message = messages[index]

    if message.turn_id:
        return [m for m in messages if m.turn_id == message.turn_id and m.is_final_response]

    if message.role == USER:
        pair = [message]
        if index + 1 < len(messages) and messages[index + 1].role == ASSISTANT:
            pair.append(messages[index + 1])
        return pair
    if index > 0 and messages[index - 1].role == USER:
        return [messages[index - 1], message]
    return [message]


def format_turn_for_clipboard(messages: Sequence[Message], message_id: str) -> str:
    parts = []
    for message in sorted(_turn_messages(messages, message_id), key=lambda m: m.timestamp):
        prefix = "**User:**" if message.role == USER else "**Claude:**"
        parts.append(f"{prefix}\n{markers.strip_all(message.content)}")
    return "\n\n".join(parts)
