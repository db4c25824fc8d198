from __future__ import annotations


class ChatEngineError(Exception):
    """Base class for errors surfaced to the caller of the chat engine."""


class ConfigurationError(ChatEngineError):
    """A required credential or setting is missing. Not retryable."""


class TransportError(ChatEngineError):
    def __init__(self, message: str, *, status_code: int | None = None, body: str = ""):
        super().__init__(message)
        self.status_code = status_code
        self.body = body

    @classmethod
    def from_status(cls, status_code: int, body: str) -> TransportError:
        return cls(f"HTTP {status_code}: {body}", status_code=status_code, body=body)


class StorageError(ChatEngineError):
    pass


class SendInProgressError(ChatEngineError):
    pass
