# contextchat/ui/widgets/file_browser.py
import os
from typing import Dict, List, Optional

from PySide6.QtWidgets import (
    QTreeWidget, QTreeWidgetItem, QHeaderView, QAbstractItemView, QMenu
)
from PySide6.QtCore import Qt, Signal, Slot, QPoint
from PySide6.QtGui import QPalette, QFont
from loguru import logger

from ...core.fs_walker import DirectoryListingTask, DirectoryWalker
from ...core.models import DirectoryEntry, SelectionState
from ...core.selection import SelectionModel
from ...services.async_utils import run_in_background

PATH_ROLE = Qt.ItemDataRole.UserRole
IS_DIR_ROLE = Qt.ItemDataRole.UserRole + 1
LOADED_ROLE = Qt.ItemDataRole.UserRole + 2

ANCESTOR_SUFFIX = " *"


class FileBrowserWidget(QTreeWidget):
    """Lazily loaded directory tree with one checkbox per entry.

    The checkbox reflects direct selection only. Entries under a checked
    directory are drawn italic and grey (implied), and directories that
    contain a selection are drawn bold with a trailing ``*``.
    """

    selection_changed = Signal()
    listing_error = Signal(str)

    def __init__(self, walker: DirectoryWalker, selection: Optional[SelectionModel] = None, parent=None):
        super().__init__(parent)
        self.walker = walker
        self.selection = selection or SelectionModel()
        self.setColumnCount(1)
        self.setHeaderLabels(["Name"])
        self.setSelectionMode(QAbstractItemView.SelectionMode.NoSelection)
        self.setAnimated(False)
        self.header().setSectionResizeMode(0, QHeaderView.ResizeMode.Stretch)
        self.setMinimumWidth(280)

        self._root_path = walker.browse_root
        self._items: Dict[str, QTreeWidgetItem] = {}
        self._pending: Dict[str, DirectoryListingTask] = {}

        self.itemChanged.connect(self._on_item_changed)
        self.itemExpanded.connect(self._on_item_expanded)
        self.setContextMenuPolicy(Qt.ContextMenuPolicy.CustomContextMenu)
        self.customContextMenuRequested.connect(self._show_context_menu)

    # --- Population ---
    def load_root(self, path: str = ""):
        """Clears the tree and lists ``path`` (empty means the browse root)."""
        self.blockSignals(True)
        try:
            self.clear(); self._items.clear()
            self._add_placeholder(self.invisibleRootItem(), "Loading…")
        finally: self.blockSignals(False)
        self._root_path = path or self.walker.browse_root
        self._request_listing(self._root_path)

    def _request_listing(self, path: str):
        if path in self._pending: return
        task = DirectoryListingTask(path, self.walker)
        task.signals.finished.connect(self._on_listing_finished)
        task.signals.error.connect(self._on_listing_error)
        self._pending[path] = task
        run_in_background(task)

    def _container_for(self, path: str) -> Optional[QTreeWidgetItem]:
        if path == self._root_path:
            return self.invisibleRootItem()
        return self._items.get(path)

    def _add_placeholder(self, parent: QTreeWidgetItem, text: str, is_error: bool = False):
        item = QTreeWidgetItem(parent)
        item.setText(0, text)
        item.setFlags(Qt.ItemFlag.NoItemFlags)
        role = QPalette.ColorRole.PlaceholderText
        item.setForeground(0, self.palette().color(role))
        if is_error: item.setToolTip(0, text)
        return item

    def _create_item(self, entry: DirectoryEntry, parent: QTreeWidgetItem) -> QTreeWidgetItem:
        item = QTreeWidgetItem(parent)
        item.setText(0, entry.name); item.setToolTip(0, entry.path)
        item.setData(0, PATH_ROLE, entry.path); item.setData(0, IS_DIR_ROLE, entry.is_directory); item.setData(0, LOADED_ROLE, False)
        item.setFlags(Qt.ItemFlag.ItemIsUserCheckable | Qt.ItemFlag.ItemIsEnabled)
        item.setCheckState(0, Qt.CheckState.Checked if entry.path in self.selection else Qt.CheckState.Unchecked)
        if entry.is_directory:
            item.setChildIndicatorPolicy(QTreeWidgetItem.ChildIndicatorPolicy.ShowIndicator)
        self._items[entry.path] = item
        return item

    @Slot(str, list)
    def _on_listing_finished(self, path: str, entries: List[DirectoryEntry]):
        self._pending.pop(path, None)
        container = self._container_for(path)
        if container is None:
            logger.debug(f"Listing for {path} arrived after its item was removed.")
            return
        self.blockSignals(True)
        try:
            container.takeChildren()
            if not entries:
                self._add_placeholder(container, "(empty)")
            for entry in entries:
                self._create_item(entry, container)
            if container is not self.invisibleRootItem():
                container.setData(0, LOADED_ROLE, True)
        finally: self.blockSignals(False)
        self.refresh_styles()
        logger.debug(f"Listed {len(entries)} entries under {path}")

    @Slot(str, str)
    def _on_listing_error(self, path: str, message: str):
        self._pending.pop(path, None)
        container = self._container_for(path)
        if container is not None:
            self.blockSignals(True)
            try:
                container.takeChildren()
                self._add_placeholder(container, message, is_error=True)
            finally: self.blockSignals(False)
        self.listing_error.emit(message)

    @Slot(QTreeWidgetItem)
    def _on_item_expanded(self, item: QTreeWidgetItem):
        if not item.data(0, IS_DIR_ROLE) or item.data(0, LOADED_ROLE):
            return
        path = item.data(0, PATH_ROLE)
        if item.childCount() == 0:
            self.blockSignals(True)
            try: self._add_placeholder(item, "Loading…")
            finally: self.blockSignals(False)
        self._request_listing(path)

    # --- Selection ---
    @Slot(QTreeWidgetItem, int)
    def _on_item_changed(self, item: QTreeWidgetItem, column: int):
        if column != 0: return
        path = item.data(0, PATH_ROLE)
        if not path: return
        is_checked = item.checkState(0) == Qt.CheckState.Checked
        if self.selection.toggle(path, is_checked):
            logger.trace(f"Item '{item.text(0)}' check state changed to: {is_checked}")
            self.refresh_styles()
            self.selection_changed.emit()

    def refresh_styles(self):
        """Re-derives implied and ancestor styling for every loaded item."""
        ancestors = self.selection.ancestors()
        placeholder = self.palette().color(QPalette.ColorRole.PlaceholderText)
        normal = self.palette().color(QPalette.ColorRole.Text)
        self.blockSignals(True)
        try:
            stack = [(self.invisibleRootItem().child(i), False) for i in range(self.invisibleRootItem().childCount())]
            while stack:
                item, parent_selected = stack.pop()
                path = item.data(0, PATH_ROLE)
                if not path: continue # Placeholder
                state = self.selection.state_of(path, parent_selected)
                name = os.path.basename(path.rstrip("/\\")) or path
                is_ancestor = path in ancestors
                font = QFont(item.font(0))
                font.setItalic(state is SelectionState.IMPLIED)
                font.setBold(is_ancestor)
                item.setFont(0, font)
                item.setForeground(0, placeholder if state is SelectionState.IMPLIED else normal)
                item.setText(0, name + ANCESTOR_SUFFIX if is_ancestor else name)
                wanted = Qt.CheckState.Checked if state is SelectionState.DIRECT else Qt.CheckState.Unchecked
                if item.checkState(0) != wanted: item.setCheckState(0, wanted)
                effective = state is not SelectionState.NEITHER
                stack.extend((item.child(i), effective) for i in range(item.childCount()))
        finally: self.blockSignals(False)

    def clear_selection(self):
        if self.selection.clear():
            self.refresh_styles()
            self.selection_changed.emit()

    def selected_paths(self) -> List[str]:
        return self.selection.read_paths()

    # --- Context Menu ---
    @Slot(QPoint)
    def _show_context_menu(self, pos: QPoint):
        item = self.itemAt(pos)
        if not item or not item.data(0, PATH_ROLE): return
        menu = QMenu(self)
        action_check = menu.addAction("Select"); action_uncheck = menu.addAction("Deselect")
        action_check.triggered.connect(lambda: item.setCheckState(0, Qt.CheckState.Checked))
        action_uncheck.triggered.connect(lambda: item.setCheckState(0, Qt.CheckState.Unchecked))
        if item.data(0, IS_DIR_ROLE):
            menu.addSeparator()
            action_reload = menu.addAction("Reload")
            action_reload.triggered.connect(lambda: self._reload_item(item))
        menu.exec(self.mapToGlobal(pos))

    def _reload_item(self, item: QTreeWidgetItem):
        path = item.data(0, PATH_ROLE)
        self.blockSignals(True)
        try:
            prefix = path.rstrip("/\\")
            for child_path in [p for p in self._items if p[len(prefix):len(prefix) + 1] in ("/", "\\") and p.startswith(prefix)]:
                self._items.pop(child_path, None)
            item.takeChildren(); item.setData(0, LOADED_ROLE, False)
            self._add_placeholder(item, "Loading…")
        finally: self.blockSignals(False)
        item.setExpanded(True)
        self._request_listing(path)

