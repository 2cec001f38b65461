# contextchat/core/fs_walker.py
import asyncio
import base64
import os
from typing import Callable, FrozenSet, Iterable, List, Optional, Sequence, Set

from loguru import logger

from .errors import FileSystemError
from .filesystem import FileSystemProvider, LocalFileSystem
from .models import (CONTENT_BASE64, CONTENT_TEXT, KIND_PDF, KIND_RTF, KIND_TEXT,
                     DirectoryEntry, FileError, ProcessedFile, WalkResult)

DEFAULT_ACCEPTED_EXTENSIONS = (".txt", ".pdf", ".rtf")
_KIND_BY_EXTENSION = {".txt": KIND_TEXT, ".pdf": KIND_PDF, ".rtf": KIND_RTF}


def sort_entries(entries: Iterable[DirectoryEntry]) -> List[DirectoryEntry]:
    """Directories first, then case-insensitive name."""
    return sorted(entries, key=lambda e: (not e.is_directory, e.name.lower(), e.name))


def _display_sort_key(path: str):
    # Files inside subdirectories sort before files of the same directory
    parts = [p for p in path.replace("\\", "/").split("/") if p]
    if not parts:
        return [(1, path.lower())]
    return [(0, p.lower()) for p in parts[:-1]] + [(1, parts[-1].lower())]


# --- Core Logic (Pure Python) ---

class DirectoryWalker:
    """Lists directories lazily and reads selections recursively.

    ``list_children`` is always a single level. ``read_selection_recursively`` fans
    out over roots and directory children concurrently and only returns once every
    branch has finished. Failures on one entry are recorded and never abort siblings.
    """

    def __init__(self,
                 fs: Optional[FileSystemProvider] = None,
                 accepted_extensions: Sequence[str] = DEFAULT_ACCEPTED_EXTENSIONS,
                 max_concurrency: int = 32,
                 browse_root: Optional[str] = None,
                 progress_callback: Optional[Callable[[str], None]] = None,
                 error_callback: Optional[Callable[[str], None]] = None):
        self.fs = fs or LocalFileSystem()
        self.accepted_extensions = {ext.lower() for ext in accepted_extensions}
        self.max_concurrency = max(1, max_concurrency)
        self.browse_root = browse_root or os.path.expanduser("~")
        self.progress_callback = progress_callback
        self.error_callback = error_callback
        logger.debug(f"DirectoryWalker initialized (extensions={sorted(self.accepted_extensions)}, concurrency={self.max_concurrency})")

    def _emit_progress(self, message: str):
        if self.progress_callback:
            try: self.progress_callback(message)
            except Exception as e: logger.error(f"Error in progress callback: {e}")

    def _emit_error(self, message: str):
        if self.error_callback:
            try: self.error_callback(message)
            except Exception as e: logger.error(f"Error in error callback: {e}")

    def classify(self, path: str) -> Optional[str]:
        """Returns the file kind for an accepted extension, else None."""
        ext = os.path.splitext(path)[1].lower()
        if ext not in self.accepted_extensions:
            return None
        return _KIND_BY_EXTENSION.get(ext, KIND_TEXT)

    async def list_children(self, path: str) -> List[DirectoryEntry]:
        """Single-level listing; an empty path lists the browse root.

        Raises PermissionDenied, NotFound or ReadFailure.
        """
        path = path or self.browse_root
        logger.debug(f"Listing directory: {path}")
        entries = await self.fs.list_dir(path)
        return sort_entries(entries)

    async def read_selection_recursively(self, paths: Iterable[str]) -> WalkResult:
        roots = list(paths)
        if not roots:
            return WalkResult()
        logger.info(f"Reading {len(roots)} selected root path(s) recursively.")
        run = _WalkRun(self)
        await asyncio.gather(*(run.walk(root, frozenset()) for root in roots))

        unique = {record.id: record for record in run.files}
        files = sorted(unique.values(), key=lambda f: _display_sort_key(f.path))
        logger.info(f"Recursive read finished: {len(files)} file(s), {len(run.errors)} error(s).")
        return WalkResult(files=files, errors=run.errors)


class _WalkRun:
    """State for one read_selection_recursively call."""

    def __init__(self, walker: DirectoryWalker):
        self.walker = walker
        self.fs = walker.fs
        self.semaphore = asyncio.Semaphore(walker.max_concurrency)
        self.files: List[ProcessedFile] = []
        self.errors: List[FileError] = []
        self.visited_dirs: Set[str] = set()

    def _record_error(self, path: str, message: str):
        name = os.path.basename(path.rstrip("/\\")) or path
        logger.warning(f"Skipping {path}: {message}")
        self.errors.append(FileError(path=path, name=name, message=message))
        self.walker._emit_error(f"{name}: {message}")

    async def walk(self, path: str, ancestors: FrozenSet[str]):
        try:
            async with self.semaphore:
                st = await self.fs.stat(path)
        except FileSystemError as e:
            self._record_error(path, e.user_message)
            return

        if st.is_directory:
            await self._walk_directory(path, st.real_path, ancestors)
        else:
            await self._read_file(path, st.size)

    async def _walk_directory(self, path: str, real_path: str, ancestors: FrozenSet[str]):
        if real_path in ancestors:
            self._record_error(path, "symlink cycle")
            return
        if real_path in self.visited_dirs:
            logger.trace(f"Directory already covered by another selection: {path}")
            return
        self.visited_dirs.add(real_path)

        try:
            async with self.semaphore:
                children = await self.fs.list_dir(path)
        except FileSystemError as e:
            self._record_error(path, e.user_message)
            return

        self.walker._emit_progress(f"Scanning: {os.path.basename(path) or path}")
        branch = ancestors | {real_path}
        await asyncio.gather(*(self.walk(child.path, branch) for child in children))

    async def _read_file(self, path: str, size: int):
        kind = self.walker.classify(path)
        if kind is None:
            logger.trace(f"Ignoring unsupported file type: {path}")
            return
        try:
            async with self.semaphore:
                data = await self.fs.read_bytes(path)
        except FileSystemError as e:
            self._record_error(path, e.user_message)
            return

        name = os.path.basename(path)
        if kind == KIND_PDF:
            raw, content_type = base64.b64encode(data).decode("ascii"), CONTENT_BASE64
        else:
            raw, content_type = data.decode("utf-8", errors="replace"), CONTENT_TEXT
        self.files.append(ProcessedFile(id=path, path=path, name=name, raw_content=raw,
                                        content_type=content_type, size=size or len(data), kind=kind))
        self.walker._emit_progress(f"Read: {name}")


# --- Qt Adapter Task ---

from PySide6.QtCore import QObject, QRunnable, Signal, Slot

class DirectoryListingSignals(QObject):
    finished = Signal(str, list); error = Signal(str, str)

class DirectoryListingTask(QRunnable):
    """QRunnable adapter listing one directory level in a background thread."""
    def __init__(self, path: str, walker: Optional[DirectoryWalker] = None):
        super().__init__(); self.path = path; self.walker = walker or DirectoryWalker()
        self.signals = DirectoryListingSignals(); self.setAutoDelete(True)
    @Slot()
    def run(self) -> None:
        try:
            from ..services.async_utils import run_coroutine
            entries = run_coroutine(self.walker.list_children(self.path))
            self.signals.finished.emit(self.path, entries)
        except FileSystemError as e: logger.warning(f"Listing failed for {self.path}: {e.user_message}"); self.signals.error.emit(self.path, e.user_message)
        except Exception as e: logger.exception(f"Unexpected error listing {self.path}: {e}"); self.signals.error.emit(self.path, f"Failed to read directory: {self.path}")
