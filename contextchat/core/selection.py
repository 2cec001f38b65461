# contextchat/core/selection.py
"""Selection model for the file browser.

The selection set holds exactly the paths the user ticked. Everything else is
derived from it on demand:

* ancestors: directories containing at least one selection (highlighted in the tree)
* implied: descendants of a selected directory (shown as selected, never stored)

Paths are handled as strings with both ``/`` and ``\\`` accepted as separators
so Windows drive paths behave the same on every host.
"""
import re
from typing import Iterable, List, Optional, Set

from loguru import logger

from .models import SelectionState

_DRIVE = re.compile(r"^[A-Za-z]:$")
_DRIVE_ROOT = re.compile(r"^[A-Za-z]:[\\/]?$")


def is_root(path: str) -> bool:
    return path in ("/", "\\") or bool(_DRIVE_ROOT.match(path))


def parent_path(path: str) -> Optional[str]:
    """Parent directory of ``path``, or None once the root sentinel is reached."""
    if not path or is_root(path):
        return None
    stripped = path.rstrip("/\\")
    if not stripped:
        return None
    idx = max(stripped.rfind("/"), stripped.rfind("\\"))
    if idx < 0:
        return None # No separator left
    parent = stripped[:idx]
    if parent == "":
        return stripped[0] # POSIX root
    if _DRIVE.match(parent):
        return parent + stripped[idx] # "C:" -> "C:\"
    return parent


def compute_ancestors(selection: Iterable[str]) -> Set[str]:
    """Every proper ancestor directory of every selected path, recomputed from scratch."""
    ancestors: Set[str] = set()
    for path in selection:
        current = parent_path(path)
        while current is not None and current not in ancestors:
            ancestors.add(current)
            current = parent_path(current)
    return ancestors


def effective_selection(path: str, selection: Set[str], parent_is_selected: bool) -> SelectionState:
    """Display state of one tree item given whether its parent is (effectively) selected."""
    if path in selection:
        return SelectionState.DIRECT
    if parent_is_selected:
        return SelectionState.IMPLIED
    return SelectionState.NEITHER


class SelectionModel:
    """Holds the authoritative selection set. Derived views are computed per call."""

    def __init__(self, initial: Iterable[str] = ()):
        self._selected: Set[str] = set(initial)

    def __len__(self):
        return len(self._selected)

    def __contains__(self, path: str):
        return path in self._selected

    @property
    def selected(self) -> Set[str]:
        return set(self._selected)

    def toggle(self, path: str, is_selected: bool) -> bool:
        """Inserts or removes ``path``. Returns True when the set changed."""
        if is_selected:
            if path in self._selected:
                return False
            self._selected.add(path)
        else:
            if path not in self._selected:
                return False
            self._selected.discard(path)
        logger.debug(f"Selection {'added' if is_selected else 'removed'}: {path} ({len(self._selected)} selected)")
        return True

    def clear(self) -> bool:
        if not self._selected:
            return False
        self._selected.clear()
        logger.debug("Selection cleared.")
        return True

    def ancestors(self) -> Set[str]:
        return compute_ancestors(self._selected)

    def is_ancestor(self, path: str) -> bool:
        return path in self.ancestors()

    def is_implied(self, path: str) -> bool:
        """True when some proper ancestor of ``path`` is directly selected."""
        current = parent_path(path)
        while current is not None:
            if current in self._selected:
                return True
            current = parent_path(current)
        return False

    def state_of(self, path: str, parent_is_selected: Optional[bool] = None) -> SelectionState:
        if parent_is_selected is None:
            parent_is_selected = self.is_implied(path)
        return effective_selection(path, self._selected, parent_is_selected)

    def read_paths(self) -> List[str]:
        """Roots handed to the walker; descendants are reached by recursion."""
        return sorted(self._selected)
