# contextchat/core/file_pipeline.py
import asyncio
import itertools
from typing import Callable, Iterable, List, Optional, Tuple

from loguru import logger

from .errors import ContextChatError, ExtractionError, MissingCredential, RemoteApiError
from .extractors import extract_text
from .fs_walker import DirectoryWalker
from .models import FileError, PipelineResult, ProcessedFile
from .token_budget import Tokenizer

NO_CREDENTIAL_WARNING = "No API key configured; file token counts are unavailable."


# --- Core Logic (Pure Python) ---

class FileProcessingPipeline:
    """Turns a selection into the file pool: walk, extract, count tokens.

    Per-file failures are collected and the successful files are still committed.
    A failure of the walk itself keeps the previous pool untouched. Every trigger
    takes a new epoch; a completion whose epoch is no longer the latest (newer
    trigger or ``clear()``) is reported as stale and not committed.
    """

    def __init__(self,
                 walker: Optional[DirectoryWalker] = None,
                 tokenizer_concurrency: int = 4,
                 progress_callback: Optional[Callable[[str], None]] = None):
        self.walker = walker or DirectoryWalker()
        self.tokenizer_concurrency = max(1, tokenizer_concurrency)
        self.progress_callback = progress_callback
        self.files: List[ProcessedFile] = []
        self.file_pool_tokens = 0
        self.is_loading = False
        self.last_error: Optional[str] = None
        self.warnings: List[str] = []
        self._epochs = itertools.count(1)
        self._epoch = 0

    def _emit_progress(self, message: str, callback: Optional[Callable[[str], None]] = None):
        callback = callback or self.progress_callback
        if callback:
            try: callback(message)
            except Exception as e: logger.error(f"Error in progress callback: {e}")

    @property
    def epoch(self) -> int:
        return self._epoch

    def _next_epoch(self) -> int:
        self._epoch = next(self._epochs)
        return self._epoch

    def clear(self):
        """Drops the pool and invalidates any load still in flight."""
        self._next_epoch()
        self._commit([], [], [], None)
        self.is_loading = False
        logger.info("File pool cleared.")

    def _commit(self, files: List[ProcessedFile], errors: List[FileError], warnings: List[str], error_message: Optional[str]):
        self.files = files
        self.file_pool_tokens = sum(f.token_count for f in files)
        self.warnings = warnings
        self.last_error = error_message

    async def trigger(self, selection: Iterable[str], model: str, tokenizer: Optional[Tokenizer] = None,
                      progress_callback: Optional[Callable[[str], None]] = None) -> PipelineResult:
        """``progress_callback`` receives this trigger's progress only; it falls back to the pipeline's own."""
        epoch = self._next_epoch()
        paths = list(selection)
        self.is_loading = True
        try:
            if not paths:
                logger.debug("Empty selection; clearing file pool.")
                self._commit([], [], [], None)
                return PipelineResult(epoch=epoch)
            return await self._run(epoch, paths, model, tokenizer, progress_callback)
        finally:
            if epoch == self._epoch:
                self.is_loading = False

    async def _run(self, epoch: int, paths: List[str], model: str, tokenizer: Optional[Tokenizer],
                   progress: Optional[Callable[[str], None]]) -> PipelineResult:
        logger.info(f"Processing selection of {len(paths)} path(s) for model {model}.")
        self._emit_progress("Reading selected files...", progress)
        try:
            walk = await self.walker.read_selection_recursively(paths)
        except (ContextChatError, OSError, TypeError, ValueError) as e:
            message = getattr(e, "user_message", None) or f"Failed to read selection: {e}"
            logger.error(f"Selection read failed: {e}")
            result = PipelineResult(epoch=epoch, fatal_error=message, stale=epoch != self._epoch)
            if not result.stale:
                self.last_error = message # Pool and token counts stay as they were
            return result

        warnings: List[str] = []
        if tokenizer is None and walk.files:
            warnings.append(NO_CREDENTIAL_WARNING)
            logger.warning(NO_CREDENTIAL_WARNING)

        semaphore = asyncio.Semaphore(self.tokenizer_concurrency)
        outcomes = await asyncio.gather(*(self._process(record, model, tokenizer, semaphore, progress) for record in walk.files))

        files: List[ProcessedFile] = []
        errors: List[FileError] = list(walk.errors)
        for record, error in outcomes:
            if record is not None:
                files.append(record)
            if error is not None:
                if error.message == NO_CREDENTIAL_WARNING:
                    if NO_CREDENTIAL_WARNING not in warnings:
                        warnings.append(NO_CREDENTIAL_WARNING)
                else:
                    errors.append(error)

        result = PipelineResult(epoch=epoch, files=files, errors=errors, warnings=warnings,
                                file_pool_tokens=sum(f.token_count for f in files))
        if epoch != self._epoch:
            logger.info(f"Discarding stale file processing result (epoch {epoch}, current {self._epoch}).")
            result.stale = True
            return result

        self._commit(files, errors, warnings, result.error_message)
        if errors:
            logger.warning(f"File processing finished with {len(errors)} error(s): {result.error_message}")
        logger.info(f"File pool ready: {len(files)} file(s), {result.file_pool_tokens} tokens.")
        return result

    async def _process(self, record: ProcessedFile, model: str, tokenizer: Optional[Tokenizer],
                       semaphore: asyncio.Semaphore,
                       progress: Optional[Callable[[str], None]] = None) -> Tuple[Optional[ProcessedFile], Optional[FileError]]:
        try:
            record.content = await asyncio.to_thread(extract_text, record)
        except ExtractionError as e:
            logger.warning(f"Extraction failed for {record.path}: {e.user_message}")
            return None, FileError(record.path, record.name, e.user_message)

        if tokenizer is None:
            return record, None
        try:
            async with semaphore:
                record.token_count = await tokenizer.count_tokens(record.content, model)
        except MissingCredential:
            return record, FileError(record.path, record.name, NO_CREDENTIAL_WARNING)
        except RemoteApiError as e:
            logger.warning(f"Token count failed for {record.path}: {e.user_message}")
            return None, FileError(record.path, record.name, e.user_message)
        self._emit_progress(f"Processed: {record.name} ({record.token_count} tokens)", progress)
        return record, None


# --- Qt Adapter Task ---

from PySide6.QtCore import QObject, QRunnable, Signal, Slot

class FileProcessingSignals(QObject):
    finished = Signal(object); error = Signal(str); progress = Signal(str)

class FileProcessingTask(QRunnable):
    """QRunnable adapter running one pipeline trigger on the shared event loop."""
    def __init__(self, pipeline: FileProcessingPipeline, selection: Iterable[str], model: str, tokenizer: Optional[Tokenizer]):
        super().__init__(); self.pipeline = pipeline; self.selection = list(selection); self.model = model; self.tokenizer = tokenizer
        self.signals = FileProcessingSignals(); self.setAutoDelete(True)
    @Slot()
    def run(self) -> None:
        from ..services.async_utils import run_coroutine
        try:
            result = run_coroutine(self.pipeline.trigger(self.selection, self.model, self.tokenizer, self.signals.progress.emit))
            self.signals.finished.emit(result)
        except Exception as e: logger.exception(f"Unexpected error during file processing: {e}"); self.signals.error.emit(f"Unexpected processing error: {e}")
