from __future__ import annotations

from collections.abc import Callable

import httpx
from loguru import logger
from tenacity import retry_if_exception, stop_after_attempt, wait_exponential
from tenacity.wait import wait_base

from graded_chat.errors import TransportError

# Rate limited / overloaded. Anything else non-2xx is surfaced immediately.
RETRYABLE_STATUS_CODES = frozenset({429, 529})


def _on_retry(retry_state) -> None:
    attempt = retry_state.attempt_number
    wait = retry_state.next_action.sleep if retry_state.next_action else 0
    exc = retry_state.outcome.exception() if retry_state.outcome else None
    reason = type(exc).__name__ if exc else "Unknown"
    if isinstance(exc, TransportError) and exc.status_code is not None:
        reason = f"HTTP {exc.status_code}"
    logger.warning(f"{reason}. Retrying in {wait:.0f}s (attempt {attempt})...")


def is_retryable(ex: BaseException) -> bool:
    if isinstance(ex, (httpx.ConnectError, httpx.ConnectTimeout)):
        return True
    return isinstance(ex, TransportError) and ex.status_code in RETRYABLE_STATUS_CODES


def default_retry_kwargs(
    predicate: Callable[[BaseException], bool] = is_retryable,
    *,
    attempts: int = 5,
    wait: wait_base | None = None,
) -> dict:
    return {
        "retry": retry_if_exception(predicate),
        "wait": wait or wait_exponential(multiplier=10, min=10, max=320),
        "stop": stop_after_attempt(attempts),
        "before_sleep": _on_retry,
        "reraise": True,
    }
