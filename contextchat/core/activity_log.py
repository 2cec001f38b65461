# contextchat/core/activity_log.py
import time
from collections import deque
from typing import Any, Callable, Deque, Dict, List, Optional

from loguru import logger

from .models import ActivityEntry

USER_INPUT = "user-input"
USER_MESSAGE_ONLY = "user-message-only"
API_RESPONSE = "api-response"
FILES_INCLUDED = "files-included"
MESSAGE_EDIT = "message-edit"
MESSAGE_DELETE = "message-delete"
CLEAR_HISTORY = "clear-history"
REGENERATE_ASSISTANT = "regenerate-assistant"
RERUN_FROM_USER = "rerun-from-user"
WARNING = "warning"
ERROR = "error"
INFO = "info"

ENTRY_TYPES = frozenset({
    USER_INPUT, USER_MESSAGE_ONLY, API_RESPONSE, FILES_INCLUDED, MESSAGE_EDIT, MESSAGE_DELETE,
    CLEAR_HISTORY, REGENERATE_ASSISTANT, RERUN_FROM_USER, WARNING, ERROR, INFO,
})

Subscriber = Callable[[ActivityEntry], None]


class ActivityLog:
    """Bounded in-memory record of what happened during the session, newest last."""

    def __init__(self, max_entries: int = 500):
        self._entries: Deque[ActivityEntry] = deque(maxlen=max(1, max_entries))
        self._subscribers: List[Subscriber] = []

    def __len__(self):
        return len(self._entries)

    @property
    def entries(self) -> List[ActivityEntry]:
        return list(self._entries)

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """Registers ``callback``; the returned function unsubscribes it."""
        self._subscribers.append(callback)

        def unsubscribe():
            if callback in self._subscribers:
                self._subscribers.remove(callback)
        return unsubscribe

    def add(self,
            entry_type: str,
            message: str,
            token_count: Optional[int] = None,
            response_time_ms: Optional[int] = None,
            details: Optional[Dict[str, Any]] = None) -> ActivityEntry:
        if entry_type not in ENTRY_TYPES:
            raise ValueError(f"Unknown activity type: {entry_type}")
        entry = ActivityEntry(type=entry_type, message=message, timestamp=time.time(),
                              token_count=token_count, response_time_ms=response_time_ms,
                              details=dict(details or {}))
        self._entries.append(entry)
        for callback in list(self._subscribers):
            try: callback(entry)
            except Exception as e: logger.error(f"Error in activity subscriber: {e}")
        return entry

    def clear(self):
        self._entries.clear()
