# contextchat/core/token_budget.py
"""Token budget engine.

Conversation tokens (system instructions + role-prefixed history) are counted
with one remote call per recompute. File-pool tokens were already counted at
ingestion time and are only summed. The two numbers stay separate for display
and are combined for the comparison against the model's context window.
"""
import asyncio
import itertools
from typing import Dict, List, Optional, Protocol, Sequence

from loguru import logger

from .errors import ContextChatError
from .models import ROLE_ASSISTANT, Message, ModelInfo, ModelProfile, ProcessedFile, TokenBudget

DEFAULT_MODEL = "gemini-2.0-flash-lite"
DEFAULT_PROFILE = ModelProfile(context_token_limit=32768, max_output_tokens=8192)

MODEL_PROFILES: Dict[str, ModelProfile] = {
    "gemini-2.5-pro-exp-03-25": ModelProfile(1048576, 65536),
    "gemini-2.5-pro-preview-03-25": ModelProfile(1048576, 65536),
    "gemini-1.5-pro": ModelProfile(2097152, 8192),
    "gemini-1.5-flash-8b": ModelProfile(1048576, 8192),
    "gemini-1.5-flash": ModelProfile(1048576, 8192),
    "gemini-2.0-flash": ModelProfile(1048576, 8192),
    "gemini-2.0-flash-lite": ModelProfile(1048576, 8192),
    "gemini-1.0-pro": ModelProfile(32768, 8192),
}

MODEL_CATALOGUE: List[ModelInfo] = [
    ModelInfo("gemini-2.5-pro-preview-03-25", "Gemini 2.5 Pro Preview"),
    ModelInfo("gemini-2.0-flash", "Gemini 2.0 Flash"),
    ModelInfo("gemini-2.0-flash-lite", "Gemini 2.0 Flash-Lite"),
    ModelInfo("gemini-1.5-flash", "Gemini 1.5 Flash"),
    ModelInfo("gemini-1.5-flash-8b", "Gemini 1.5 Flash-8B"),
    ModelInfo("gemini-1.5-pro", "Gemini 1.5 Pro"),
]


def limit_for(model: str) -> ModelProfile:
    """Static lookup; unknown models get the conservative default."""
    return MODEL_PROFILES.get(model, DEFAULT_PROFILE)


class Tokenizer(Protocol):
    async def count_tokens(self, text: str, model_id: str) -> int: ...


def build_conversation_text(messages: Sequence[Message], system_instructions: str = "") -> str:
    """System instructions (if any) followed by the role-prefixed history."""
    parts = []
    if system_instructions and system_instructions.strip():
        parts.append(f"System: {system_instructions.strip()}\n\n")
    parts.append("\n".join(
        f"{'Assistant' if msg.role == ROLE_ASSISTANT else 'User'}: {msg.content}" for msg in messages
    ))
    return "".join(parts)


def file_pool_tokens(file_pool: Sequence[ProcessedFile]) -> int:
    return sum(f.token_count for f in file_pool)


class TokenBudgetEngine:
    """Recomputes the budget from scratch on every call.

    Each recompute takes a fresh epoch; ``is_current(epoch)`` lets callers drop
    results that finished after a newer recompute was started.
    """

    def __init__(self, tokenizer: Optional[Tokenizer] = None):
        self.tokenizer = tokenizer
        self._epochs = itertools.count(1)
        self._latest_epoch = 0

    def next_epoch(self) -> int:
        self._latest_epoch = next(self._epochs)
        return self._latest_epoch

    def is_current(self, epoch: int) -> bool:
        return epoch == self._latest_epoch

    @staticmethod
    def limit_for(model: str) -> ModelProfile:
        return limit_for(model)

    def placeholder(self, model: str, file_pool: Sequence[ProcessedFile] = ()) -> TokenBudget:
        """Budget shown immediately on a model switch, before the recount lands."""
        profile = limit_for(model)
        return TokenBudget(conversation_tokens=0, file_pool_tokens=file_pool_tokens(file_pool),
                           limit=profile.context_token_limit, max_output_tokens=profile.max_output_tokens)

    async def recompute(self,
                        messages: Sequence[Message],
                        system_instructions: str,
                        file_pool: Sequence[ProcessedFile],
                        model: str,
                        tokenizer: Optional[Tokenizer] = None) -> TokenBudget:
        tokenizer = tokenizer or self.tokenizer
        profile = limit_for(model)
        pool_tokens = file_pool_tokens(file_pool)
        text = build_conversation_text(messages, system_instructions)

        conversation_tokens = 0
        error: Optional[str] = None
        if text and tokenizer is None:
            error = "No tokenizer available; conversation tokens not counted."
            logger.warning(error)
        elif text:
            try:
                conversation_tokens = await tokenizer.count_tokens(text, model)
            except ContextChatError as e:
                error = e.user_message
                logger.error(f"Error counting conversation tokens for {model}: {e.user_message}")
            except (asyncio.TimeoutError, OSError) as e:
                error = f"Failed to count tokens: {e}"
                logger.error(f"Error counting conversation tokens for {model}: {e}")

        budget = TokenBudget(conversation_tokens=conversation_tokens, file_pool_tokens=pool_tokens,
                             limit=profile.context_token_limit, max_output_tokens=profile.max_output_tokens,
                             error=error)
        logger.debug(f"Token budget for {model}: conversation={budget.conversation_tokens}, files={budget.file_pool_tokens}, combined={budget.combined_tokens}/{budget.limit}")
        return budget


# --- Qt Adapter Task ---

from PySide6.QtCore import QObject, QRunnable, Signal, Slot

class TokenRecountSignals(QObject):
    finished = Signal(int, object); error = Signal(int, str)

class TokenRecountTask(QRunnable):
    """Runs one TokenBudgetEngine.recompute on the shared event loop."""
    def __init__(self, engine: TokenBudgetEngine, epoch: int, messages: Sequence[Message], system_instructions: str,
                 file_pool: Sequence[ProcessedFile], model: str, tokenizer: Optional[Tokenizer]):
        super().__init__(); self.engine = engine; self.epoch = epoch
        self.messages = list(messages); self.system_instructions = system_instructions
        self.file_pool = list(file_pool); self.model = model; self.tokenizer = tokenizer
        self.signals = TokenRecountSignals(); self.setAutoDelete(True)
    @Slot()
    def run(self) -> None:
        from ..services.async_utils import run_coroutine
        try:
            budget = run_coroutine(self.engine.recompute(self.messages, self.system_instructions, self.file_pool, self.model, self.tokenizer))
            self.signals.finished.emit(self.epoch, budget)
        except Exception as e: logger.exception(f"Unexpected error during token recount: {e}"); self.signals.error.emit(self.epoch, f"Token count failed: {e}")
