# contextchat/core/chat_session.py
"""Chat turns on top of the conversation store and the Gemini client.

Failed requests never raise out of ``submit``/``regenerate``: they become an
``is_error`` assistant message shown inline, which the next request skips.
"""
from typing import Callable, Optional, Sequence

from loguru import logger

from ..config.schema import GenerationConfig
from . import activity_log as activity
from .activity_log import ActivityLog
from .conversation import ConversationStore
from .errors import ContextChatError
from .gemini_client import GeminiClientFactory, render_file_context
from .models import ROLE_ASSISTANT, ROLE_USER, Message, ProcessedFile
from .token_budget import DEFAULT_MODEL


class ChatSession:
    def __init__(self,
                 client_factory: GeminiClientFactory,
                 credential_provider: Callable[[], str],
                 conversation: Optional[ConversationStore] = None,
                 activity_log: Optional[ActivityLog] = None,
                 model: str = DEFAULT_MODEL,
                 generation: Optional[GenerationConfig] = None,
                 system_instructions: str = ""):
        self.client_factory = client_factory
        self.credential_provider = credential_provider
        self.conversation = conversation or ConversationStore()
        self.activity = activity_log or ActivityLog()
        self.model = model
        self.generation = generation or GenerationConfig()
        self.system_instructions = system_instructions
        self.files: Sequence[ProcessedFile] = ()
        self.is_busy = False

    @property
    def messages(self):
        return self.conversation.messages

    async def submit(self, text: str) -> Optional[Message]:
        """Appends the user turn and requests a reply. Returns the reply (or error) message."""
        text = text.strip()
        if not text:
            return None
        if self.is_busy:
            logger.warning("Submit ignored: a request is already in flight.")
            return None
        self.conversation.append(ROLE_USER, text)
        self.activity.add(activity.USER_INPUT, text)
        return await self._generate()

    def append(self, text: str) -> Optional[Message]:
        """Adds a user turn without sending it."""
        text = text.strip()
        if not text:
            return None
        message = self.conversation.append(ROLE_USER, text)
        self.activity.add(activity.USER_MESSAGE_ONLY, text)
        return message

    async def regenerate(self, message_id: int) -> Optional[Message]:
        """Replays the conversation up to the user turn behind ``message_id``.

        Everything after that user turn is discarded first.
        """
        if self.is_busy:
            logger.warning("Regenerate ignored: a request is already in flight.")
            return None
        target = self.conversation.get(message_id)
        if target is None:
            logger.warning(f"Regenerate requested for unknown message {message_id}.")
            return None
        anchor = self.conversation.truncate_for_regenerate(message_id)
        if anchor is None:
            self.activity.add(activity.WARNING, "Nothing to regenerate from: no preceding user message.")
            return None
        if target.role == ROLE_ASSISTANT:
            self.activity.add(activity.REGENERATE_ASSISTANT, f"Regenerating response to: {anchor.content[:80]}")
        else:
            self.activity.add(activity.RERUN_FROM_USER, f"Re-running from: {anchor.content[:80]}")
        return await self._generate()

    def edit(self, message_id: int, content: str) -> bool:
        if not self.conversation.edit(message_id, content):
            return False
        self.activity.add(activity.MESSAGE_EDIT, f"Edited message {message_id}.", details={"id": message_id})
        return True

    def delete(self, message_id: int) -> bool:
        removed = self.conversation.delete(message_id)
        if removed is None:
            return False
        self.activity.add(activity.MESSAGE_DELETE, f"Deleted {removed.role} message {message_id}.", details={"id": message_id})
        return True

    def clear(self):
        self.conversation.clear()
        self.activity.add(activity.CLEAR_HISTORY, "Conversation cleared.")

    def copy_text(self, message_id: int) -> str:
        message = self.conversation.get(message_id)
        return message.content if message else ""

    async def _generate(self) -> Message:
        self.is_busy = True
        try:
            client = self.client_factory.get(self.credential_provider())
            file_context = render_file_context(self.files)
            if self.files:
                self.activity.add(activity.FILES_INCLUDED, f"Included {len(self.files)} file(s) as context.",
                                  details={"files": [f.name for f in self.files]})
            result = await client.generate_response(
                self.conversation.messages, self.model, self.generation,
                system_instructions=self.system_instructions, file_context_text=file_context,
            )
        except ContextChatError as e:
            logger.error(f"Chat request failed: {e.user_message}")
            self.activity.add(activity.ERROR, e.user_message)
            return self.conversation.append(ROLE_ASSISTANT, e.user_message, is_error=True)
        except ValueError as e:
            logger.error(f"Chat request rejected: {e}")
            self.activity.add(activity.ERROR, str(e))
            return self.conversation.append(ROLE_ASSISTANT, str(e), is_error=True)
        finally:
            self.is_busy = False

        self.activity.add(activity.API_RESPONSE, f"Response from {result.model_used}",
                          token_count=result.token_count, response_time_ms=result.response_time_ms,
                          details={"temperature": result.temperature, "output_length": result.output_length,
                                   "top_p": result.top_p})
        return self.conversation.append(ROLE_ASSISTANT, result.text)


# --- Qt Adapter Task ---

from PySide6.QtCore import QObject, QRunnable, Signal, Slot

class ChatRequestSignals(QObject):
    finished = Signal(object); error = Signal(str)

class ChatRequestTask(QRunnable):
    """Runs one submit/regenerate coroutine on the shared event loop."""
    def __init__(self, make_coroutine: Callable):
        super().__init__(); self.make_coroutine = make_coroutine
        self.signals = ChatRequestSignals(); self.setAutoDelete(True)
    @Slot()
    def run(self) -> None:
        from ..services.async_utils import run_coroutine
        try:
            message = run_coroutine(self.make_coroutine())
            self.signals.finished.emit(message)
        except Exception as e: logger.exception(f"Unexpected error during chat request: {e}"); self.signals.error.emit(f"Unexpected error: {e}")
