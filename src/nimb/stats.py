"""Process-wide usage statistics and the bounded error log."""

import logging
from collections import deque
from datetime import datetime, timezone
from typing import Any, Deque, Dict, Optional

from .models import ErrorEntry

logger = logging.getLogger(__name__)

ERROR_LOG_CAPACITY = 50


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class UsageAccumulator:
    """
    Counters for requests, tokens and errors.

    All mutations happen on the event loop thread between awaits, so plain
    attribute updates are enough. The error log keeps the most recent entry
    first and silently drops the oldest past ERROR_LOG_CAPACITY.
    """

    def __init__(self):
        self.reset()

    def reset(self) -> None:
        self.message_count = 0
        self.error_count = 0
        self.prompt_tokens = 0
        self.completion_tokens = 0
        self.total_tokens = 0
        self.last_request_time: Optional[str] = None
        self.start_time = _now()
        self.error_log: Deque[ErrorEntry] = deque(maxlen=ERROR_LOG_CAPACITY)

    def record_request(self) -> None:
        self.message_count += 1
        self.last_request_time = _now()

    def add_tokens(self, prompt: int = 0, completion: int = 0, total: int = 0) -> None:
        self.prompt_tokens += prompt
        self.completion_tokens += completion
        self.total_tokens += total

    def add_usage(self, usage: Any) -> None:
        """Add an upstream usage object; anything that isn't a dict is ignored."""
        if not isinstance(usage, dict):
            return
        self.add_tokens(
            token_count(usage.get("prompt_tokens")),
            token_count(usage.get("completion_tokens")),
            token_count(usage.get("total_tokens")),
        )

    def record_error(self, message: str, code: int = 500) -> None:
        self.error_count += 1
        self.error_log.appendleft(
            ErrorEntry(timestamp=_now(), message=message, code=code)
        )
        logger.warning(f"Recorded error ({code}): {message}")

    def snapshot(self) -> Dict[str, Any]:
        return {
            "messageCount": self.message_count,
            "promptTokens": self.prompt_tokens,
            "completionTokens": self.completion_tokens,
            "totalTokens": self.total_tokens,
            "errorCount": self.error_count,
            "lastRequestTime": self.last_request_time,
            "startTime": self.start_time,
            "errorLog": [entry.model_dump() for entry in self.error_log],
        }


def token_count(value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return 0
    return max(int(value), 0)
