# contextchat/core/conversation.py
import time
from typing import Callable, List, Optional

from loguru import logger

from .models import ROLE_ASSISTANT, ROLE_USER, Message


def _now_ms() -> int:
    return int(time.time() * 1000)


class ConversationStore:
    """Ordered message list with stable, strictly increasing ids.

    Ids are creation timestamps in milliseconds; two messages created in the
    same millisecond get consecutive ids instead of colliding.
    """

    def __init__(self, clock: Callable[[], int] = _now_ms):
        self._messages: List[Message] = []
        self._clock = clock
        self._last_id = 0

    def __len__(self):
        return len(self._messages)

    def __iter__(self):
        return iter(list(self._messages))

    @property
    def messages(self) -> List[Message]:
        return list(self._messages)

    def _next_id(self) -> int:
        self._last_id = max(self._clock(), self._last_id + 1)
        return self._last_id

    def append(self, role: str, content: str, is_error: bool = False) -> Message:
        if role not in (ROLE_USER, ROLE_ASSISTANT):
            raise ValueError(f"Unknown message role: {role}")
        message = Message(id=self._next_id(), role=role, content=content, is_error=is_error)
        self._messages.append(message)
        logger.debug(f"Message {message.id} appended ({role}{', error' if is_error else ''}).")
        return message

    def find_index(self, message_id: int) -> int:
        """Index of the message, or -1."""
        for idx, message in enumerate(self._messages):
            if message.id == message_id:
                return idx
        return -1

    def get(self, message_id: int) -> Optional[Message]:
        idx = self.find_index(message_id)
        return self._messages[idx] if idx >= 0 else None

    def edit(self, message_id: int, content: str) -> bool:
        """Replaces the content in place; the id and position are kept."""
        message = self.get(message_id)
        if message is None:
            logger.warning(f"Edit requested for unknown message {message_id}.")
            return False
        message.content = content
        message.is_error = False
        logger.debug(f"Message {message_id} edited.")
        return True

    def delete(self, message_id: int) -> Optional[Message]:
        idx = self.find_index(message_id)
        if idx < 0:
            logger.warning(f"Delete requested for unknown message {message_id}.")
            return None
        removed = self._messages.pop(idx)
        logger.debug(f"Message {message_id} deleted.")
        return removed

    def regenerate_cut_index(self, message_id: int) -> int:
        """Index of the user message a regenerate of ``message_id`` restarts from.

        An assistant message maps to the nearest user message before it; a user
        message maps to itself. Returns -1 when there is no such user message.
        """
        idx = self.find_index(message_id)
        if idx < 0:
            return -1
        for i in range(idx, -1, -1):
            if self._messages[i].role == ROLE_USER:
                return i
        return -1

    def truncate_for_regenerate(self, message_id: int) -> Optional[Message]:
        """Drops everything after the restart point and returns that user message."""
        cut = self.regenerate_cut_index(message_id)
        if cut < 0:
            logger.warning(f"No user message to regenerate from for message {message_id}.")
            return None
        dropped = len(self._messages) - cut - 1
        del self._messages[cut + 1:]
        logger.debug(f"Truncated conversation after index {cut} ({dropped} message(s) dropped).")
        return self._messages[cut]

    def clear(self):
        self._messages.clear()
        logger.debug("Conversation cleared.")
