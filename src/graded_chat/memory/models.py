from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from uuid import uuid4

USER = "user"
ASSISTANT = "assistant"

MIN_GRADE = 0
MAX_GRADE = 5


def clamp_grade(value: int) -> int:
    return max(MIN_GRADE, min(MAX_GRADE, int(value)))


def _now() -> datetime:
    return datetime.now(UTC)


@dataclass
class Message:
    role: str
    content: str
    id: str = field(default_factory=lambda: str(uuid4()))
    timestamp: datetime = field(default_factory=_now)
    turn_id: str = ""
    is_final_response: bool = True
    text_grade: int = MAX_GRADE
    image_grade: int = MAX_GRADE
    input_tokens: int = 0
    output_tokens: int = 0
    model_used: str = ""
    tip: str = ""
    is_edited: bool = False

    @property
    def is_user(self) -> bool:
        return self.role == USER

    @property
    def is_assistant(self) -> bool:
        return self.role == ASSISTANT


@dataclass(frozen=True)
class SessionInfo:
    id: str
    total_input_tokens: int
    total_output_tokens: int
    context_threshold: int
    is_default: bool
    created_at: str
    updated_at: str

    @property
    def name(self) -> str:
        return self.id
