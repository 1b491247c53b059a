"""
Retry with exponential backoff, and error classification.

Used for hosted-store writes and other flaky I/O. The classifier maps raw
error text to a category plus a remediation hint; it is advisory only and
never changes retry timing.
"""
import asyncio
import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, Optional, TypeVar, Union

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ErrorCategory(Enum):
    AUTH = "auth"
    RATE_LIMIT = "rate_limit"
    TIMEOUT = "timeout"
    NOT_FOUND = "not_found"
    PERMISSION = "permission"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class ErrorClassification:
    category: ErrorCategory
    hint: str


# Ordered: first match wins
_ERROR_RULES = [
    (
        ErrorCategory.AUTH,
        re.compile(r"oauth|access.?token|token.*expired|190"),
        "Access token may be expired. Re-read credentials from .env.local before calling the API.",
    ),
    (
        ErrorCategory.RATE_LIMIT,
        re.compile(r"rate.?limit|too many requests|429"),
        "Rate limit hit. Wait 60 seconds before retrying.",
    ),
    (
        ErrorCategory.TIMEOUT,
        re.compile(r"timeout|timed out|etimedout|econnreset|connection reset"),
        "Request timed out. Break the task into smaller steps and retry one at a time.",
    ),
    (
        ErrorCategory.NOT_FOUND,
        re.compile(r"not found|404|does not exist"),
        "Resource not found. Verify the campaign or event ID by listing active items first.",
    ),
    (
        ErrorCategory.PERMISSION,
        re.compile(r"permission|forbidden|403|unauthorized"),
        "Permission denied. Check that the token has ads_management and ads_read scopes.",
    ),
]

_UNKNOWN_HINT = "Unexpected error. Check the raw API response for details."


def classify_error(error: Union[BaseException, str, None]) -> ErrorClassification:
    """Classify an error message into a category and a human-actionable hint."""
    msg = str(error if error is not None else "").lower()
    for category, pattern, hint in _ERROR_RULES:
        if pattern.search(msg):
            return ErrorClassification(category, hint)
    return ErrorClassification(ErrorCategory.UNKNOWN, _UNKNOWN_HINT)


def backoff_delay(attempt: int, base_delay: float, max_delay: float) -> float:
    """Delay after failed attempt `attempt` (1-indexed)."""
    return min(base_delay * (2 ** (attempt - 1)), max_delay)


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    *,
    max_attempts: int = 3,
    base_delay: float = 1.0,
    max_delay: float = 30.0,
    on_retry: Optional[Callable[[int, BaseException], None]] = None,
) -> T:
    """Retry an async operation with exponential backoff.

    Doubles the delay each attempt, capped at max_delay (seconds). The last
    attempt never waits; its exception is re-raised.
    """
    if max_attempts < 1:
        raise ValueError("max_attempts must be >= 1")

    for attempt in range(1, max_attempts + 1):
        try:
            return await operation()
        except Exception as e:
            if attempt == max_attempts:
                raise

            delay = backoff_delay(attempt, base_delay, max_delay)
            logger.warning(
                f"event=retry attempt={attempt}/{max_attempts} error={e} delay_s={delay:.2f}"
            )
            if on_retry is not None:
                try:
                    on_retry(attempt, e)
                except Exception as cb_err:
                    logger.warning(f"on_retry callback failed: {cb_err}")
            await asyncio.sleep(delay)

    # Unreachable: the loop either returns or raises
    raise RuntimeError("with_retry exhausted without result")
