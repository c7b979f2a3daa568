"""
Error types, the rate-limited user notice sink, and input normalisers.

Fetch failures are logged and surfaced to the user at most once per
``ALERT_MIN_INTERVAL_S``; "not found" results are a normal outcome and never
go through here.
"""
import logging
import math
import time
from collections import deque
from datetime import datetime, timezone
from typing import Any, Callable, Deque, Dict, List, Optional

from columnsync.config import (
    ALERT_MIN_INTERVAL_S,
    DEFAULT_USER_MESSAGE,
    MSG_INVALID_SENSOR_ID,
    NOTICE_BACKLOG,
)

logger = logging.getLogger("columnsync.errors")


class ColumnSyncError(Exception):
    """Base class for all sync engine errors."""


class FeatureServiceError(ColumnSyncError):
    """Transport failure, non-2xx status or non-JSON body from a collaborator."""

    def __init__(self, message: str, status_code: Optional[int] = None, url: str = ""):
        super().__init__(message)
        self.status_code = status_code
        self.url = url


class InvalidInputError(ColumnSyncError, ValueError):
    """Malformed user input, rejected before any network call."""


class Notifier:
    """
    Collects user-facing notices.

    ``alert`` drops a message if another one was accepted less than
    ``min_interval_s`` ago. ``notice`` always records (used for
    not-found feedback, which is not an error).
    """

    def __init__(
        self,
        min_interval_s: float = ALERT_MIN_INTERVAL_S,
        clock: Callable[[], float] = time.monotonic,
        backlog: int = NOTICE_BACKLOG,
    ):
        self.min_interval_s = min_interval_s
        self._clock = clock
        self._last_alert_at: Optional[float] = None
        self._messages: Deque[Dict[str, Any]] = deque(maxlen=backlog)

    def alert(self, message: str) -> bool:
        now = self._clock()
        if self._last_alert_at is not None and now - self._last_alert_at <= self.min_interval_s:
            return False
        self._last_alert_at = now
        self._push("alert", message)
        return True

    def notice(self, message: str) -> None:
        self._push("notice", message)

    def _push(self, kind: str, message: str) -> None:
        self._messages.append({
            "kind": kind,
            "message": message,
            "at": datetime.now(timezone.utc).isoformat(),
        })

    def drain(self) -> List[Dict[str, Any]]:
        out = list(self._messages)
        self._messages.clear()
        return out

    def peek(self) -> List[Dict[str, Any]]:
        return list(self._messages)


def handle_error(
    err: BaseException,
    notifier: Optional[Notifier] = None,
    where: str = "",
    user_message: str = DEFAULT_USER_MESSAGE,
) -> None:
    """Log a failure and raise a (rate-limited) user alert."""
    logger.error(f"[{where}] {err}", exc_info=err)
    if notifier is not None:
        notifier.alert(user_message)


def ensure_number(value: Any, default: float = 0.0) -> float:
    if isinstance(value, bool):
        return default
    if isinstance(value, (int, float)) and math.isfinite(value):
        return float(value)
    return default


def normalize_bay(value: Any) -> Any:
    return value.strip().upper() if isinstance(value, str) else value


def normalize_id(value: Any) -> str:
    """Canonical string form of a building/column id (``12``, ``12.0`` and ``"12"`` agree)."""
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value).strip()


def parse_sensor_id(raw: Any) -> str:
    """Accept only numeric sensor ids; returns the trimmed string form."""
    text = str(raw if raw is not None else "").strip()
    if not (text.isascii() and text.isdigit()):
        raise InvalidInputError(MSG_INVALID_SENSOR_ID)
    return text


def parse_column_id(raw: Any) -> int:
    text = str(raw).strip()
    if not text.isascii():
        raise InvalidInputError(f"Column id must be numeric: {raw!r}")
    try:
        value = float(text)
    except (TypeError, ValueError):
        raise InvalidInputError(f"Column id must be numeric: {raw!r}")
    if not math.isfinite(value) or not value.is_integer():
        raise InvalidInputError(f"Column id must be an integer: {raw!r}")
    return int(value)
