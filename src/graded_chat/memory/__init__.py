from graded_chat.memory.events import EventEmitter
from graded_chat.memory.models import ASSISTANT, USER, Message, SessionInfo, clamp_grade
from graded_chat.memory.session_manager import SessionManager
from graded_chat.memory.store import MemoryStore

__all__ = [
    "ASSISTANT",
    "EventEmitter",
    "MemoryStore",
    "Message",
    "SessionInfo",
    "SessionManager",
    "USER",
    "clamp_grade",
]
