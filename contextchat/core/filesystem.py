# contextchat/core/filesystem.py
"""Filesystem boundary used by the walker.

The walker only talks to a provider exposing ``list_dir``, ``stat`` and
``read_bytes``. ``LocalFileSystem`` is the desktop implementation; it runs the
blocking calls in the default executor so the event loop never stalls.
"""
import asyncio
import os
from dataclasses import dataclass
from typing import List, Protocol

from loguru import logger

from .errors import map_os_error
from .models import DirectoryEntry


@dataclass(frozen=True)
class StatResult:
    is_directory: bool
    size: int
    real_path: str # Symlinks resolved; used for cycle detection


class FileSystemProvider(Protocol):
    async def list_dir(self, path: str) -> List[DirectoryEntry]: ...
    async def stat(self, path: str) -> StatResult: ...
    async def read_bytes(self, path: str) -> bytes: ...


class LocalFileSystem:
    """Process-local provider. Raises PermissionDenied / NotFound / ReadFailure."""

    async def list_dir(self, path: str) -> List[DirectoryEntry]:
        return await asyncio.to_thread(self._list_dir_sync, path)

    async def stat(self, path: str) -> StatResult:
        return await asyncio.to_thread(self._stat_sync, path)

    async def read_bytes(self, path: str) -> bytes:
        return await asyncio.to_thread(self._read_bytes_sync, path)

    @staticmethod
    def _list_dir_sync(path: str) -> List[DirectoryEntry]:
        try:
            entries = []
            with os.scandir(path) as it:
                for entry in it:
                    try:
                        is_dir = entry.is_dir() # Follows symlinks, like the OS file dialog
                    except OSError as e:
                        logger.trace(f"Could not determine type of {entry.path}: {e}")
                        is_dir = False
                    entries.append(DirectoryEntry(name=entry.name, is_directory=is_dir, path=os.path.join(path, entry.name)))
            return entries
        except OSError as e:
            raise map_os_error(path, e) from e

    @staticmethod
    def _stat_sync(path: str) -> StatResult:
        try:
            st = os.stat(path)
            is_dir = os.path.isdir(path)
            return StatResult(is_directory=is_dir, size=st.st_size, real_path=os.path.realpath(path))
        except OSError as e:
            raise map_os_error(path, e) from e

    @staticmethod
    def _read_bytes_sync(path: str) -> bytes:
        try:
            with open(path, "rb") as f:
                return f.read()
        except OSError as e:
            raise map_os_error(path, e) from e
