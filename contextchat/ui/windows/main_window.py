# contextchat/ui/windows/main_window.py
import time
from typing import Optional

from PySide6.QtWidgets import (QMainWindow, QWidget, QSplitter, QLabel, QMessageBox, QFileDialog,
                               QInputDialog, QLineEdit, QStatusBar, QProgressBar, QDockWidget,
                               QPlainTextEdit, QApplication)
from PySide6.QtGui import QKeySequence
from PySide6.QtCore import Qt, Slot, Signal, QByteArray

from loguru import logger

from ..widgets.chat_panel import ChatPanelWidget
from ..widgets.file_browser import FileBrowserWidget
from ..widgets.side_panel import SidePanelWidget
from ...config.credentials import CredentialStore
from ...config.loader import get_config, save_config
from ...config.schema import GenerationConfig
from ...services.async_utils import Debouncer, run_in_background
from ...core.activity_log import ERROR, INFO, WARNING, ActivityLog
from ...core.chat_session import ChatRequestTask, ChatSession
from ...core.errors import MissingCredential
from ...core.file_pipeline import FileProcessingPipeline, FileProcessingTask
from ...core.fs_walker import DirectoryWalker
from ...core.gemini_client import GeminiClient, GeminiClientFactory
from ...core.models import ActivityEntry, Message, PipelineResult, TokenBudget
from ...core.token_budget import TokenBudgetEngine, TokenRecountTask

SELECTION_DEBOUNCE_MS = 350
RECOUNT_DEBOUNCE_MS = 500


class MainWindow(QMainWindow):
    """Main application window and composition root of the desktop shell."""

    # Activity entries may be recorded on the worker loop thread; this hops them to the GUI thread
    activity_recorded = Signal(object)

    def __init__(self, client_factory: GeminiClientFactory, parent: QWidget | None = None):
        super().__init__(parent)
        self.setWindowTitle("ContextChat")

        self.config = get_config()
        self.credentials = CredentialStore()
        self.client_factory = client_factory
        self.walker = DirectoryWalker(accepted_extensions=self.config.accepted_extensions,
                                      max_concurrency=self.config.walker_concurrency,
                                      browse_root=self.config.browse_root)
        self.pipeline = FileProcessingPipeline(self.walker, tokenizer_concurrency=self.config.tokenizer_concurrency)
        self.budget_engine = TokenBudgetEngine()
        self.activity = ActivityLog()
        self.session = ChatSession(client_factory, self.credentials.load_credential, activity_log=self.activity,
                                   model=self.config.selected_model, generation=self.config.generation,
                                   system_instructions=self.config.system_instructions)
        self._missing_key_warned = False
        self._chat_running = False

        self.pipeline_debouncer = Debouncer(SELECTION_DEBOUNCE_MS, self._trigger_file_processing, self)
        self.recount_debouncer = Debouncer(RECOUNT_DEBOUNCE_MS, self._request_recount, self)

        self._setup_ui()
        self._setup_menus()
        self._setup_statusbar()
        self._connect_signals()
        self._load_state()

        self.file_browser.load_root(self.config.browse_root or "")
        self.side_panel.show_budget(self.budget_engine.placeholder(self.session.model))
        logger.info("MainWindow initialized.")

    # --- UI Setup ---
    def _setup_ui(self):
        self.main_splitter = QSplitter(Qt.Orientation.Horizontal, self)
        self.setCentralWidget(self.main_splitter)
        self.file_browser = FileBrowserWidget(self.walker)
        self.chat_panel = ChatPanelWidget(self.config.system_instructions)
        self.side_panel = SidePanelWidget(self.config.selected_model, self.config.generation)
        self.main_splitter.addWidget(self.file_browser); self.main_splitter.addWidget(self.chat_panel); self.main_splitter.addWidget(self.side_panel)
        self.main_splitter.setSizes([300, 600, 300])

        self.activity_view = QPlainTextEdit(); self.activity_view.setReadOnly(True); self.activity_view.setMaximumBlockCount(1000)
        self.activity_dock = QDockWidget("Activity", self); self.activity_dock.setObjectName("ActivityDock")
        self.activity_dock.setWidget(self.activity_view)
        self.addDockWidget(Qt.DockWidgetArea.BottomDockWidgetArea, self.activity_dock)
        self.activity_dock.hide()

    def _setup_menus(self):
        menubar = self.menuBar(); file_menu = menubar.addMenu("&File")
        self.open_folder_action = file_menu.addAction("&Open Folder...", self._open_folder, QKeySequence.StandardKey.Open)
        self.set_key_action = file_menu.addAction("Set &API Key...", self._set_api_key)
        file_menu.addSeparator(); self.save_config_action = file_menu.addAction("&Save Configuration", self._save_state_now, QKeySequence.StandardKey.Save)
        file_menu.addSeparator(); self.quit_action = file_menu.addAction("&Quit", self.close, QKeySequence.StandardKey.Quit)
        edit_menu = menubar.addMenu("&Edit")
        self.clear_selection_action = edit_menu.addAction("C&lear File Selection", self.file_browser.clear_selection)
        self.clear_chat_action = edit_menu.addAction("Clear &Chat", self._clear_chat)
        view_menu = menubar.addMenu("&View"); view_menu.addAction(self.activity_dock.toggleViewAction())
        help_menu = menubar.addMenu("&Help"); self.about_action = help_menu.addAction("&About", self._show_about_dialog)

    def _setup_statusbar(self):
        self.status_bar = QStatusBar(self); self.setStatusBar(self.status_bar); self.status_label = QLabel("Ready")
        self.status_progress = QProgressBar(); self.status_progress.setRange(0, 0); self.status_progress.setVisible(False); self.status_progress.setFixedWidth(150)
        self.status_bar.addWidget(self.status_label, 1); self.status_bar.addPermanentWidget(self.status_progress)

    def _connect_signals(self):
        self.file_browser.selection_changed.connect(self._on_selection_changed)
        self.file_browser.listing_error.connect(lambda msg: self._show_status_message(msg, 5000))
        self.side_panel.model_changed.connect(self._on_model_changed)
        self.side_panel.generation_changed.connect(self._on_generation_changed)
        self.chat_panel.system_instructions_changed.connect(self._on_system_instructions_changed)
        self.chat_panel.submit_requested.connect(self._submit)
        self.chat_panel.append_requested.connect(self._append)
        self.chat_panel.regenerate_requested.connect(self._regenerate)
        self.chat_panel.edit_requested.connect(self._edit_message)
        self.chat_panel.delete_requested.connect(self._delete_message)
        self.chat_panel.copy_requested.connect(self._copy_message)
        self.chat_panel.clear_requested.connect(self._clear_chat)
        self.activity_recorded.connect(self._append_activity)
        self.activity.subscribe(self.activity_recorded.emit)

    # --- State Management ---
    def _load_state(self):
        try:
            if self.config.window_geometry:
                if not self.restoreGeometry(QByteArray.fromHex(self.config.window_geometry.encode('ascii'))): logger.warning("Failed to restore window geometry."); self.resize(1400, 850)
            else: self.resize(1400, 850)
            if self.config.window_state:
                if not self.restoreState(QByteArray.fromHex(self.config.window_state.encode('ascii'))): logger.warning("Failed to restore window state.")
        except (ValueError, UnicodeError) as e: logger.error(f"Error restoring window state/geometry: {e}"); self.resize(1400, 850)

    def update_config_before_save(self):
        logger.debug("Updating config object before saving...")
        self.config.window_geometry = bytes(self.saveGeometry().toHex()).decode('ascii')
        self.config.window_state = bytes(self.saveState().toHex()).decode('ascii')
        self.config.selected_model = self.session.model
        self.config.generation = self.session.generation
        self.config.system_instructions = self.session.system_instructions

    def _save_state_now(self):
        self.update_config_before_save()
        if save_config(self.config): self._show_status_message("Configuration saved.", 3000)
        else: self._show_status_message("Failed to save configuration.", 5000)

    def closeEvent(self, event):
        logger.info("Close event triggered. Saving state...")
        if self._chat_running:
            reply = QMessageBox.question(self, "Request Running", "A chat request is still running. Quit anyway?", QMessageBox.StandardButton.Yes | QMessageBox.StandardButton.No, QMessageBox.StandardButton.No)
            if reply == QMessageBox.StandardButton.No: event.ignore(); return
        self.pipeline_debouncer.cancel(); self.recount_debouncer.cancel()
        self.update_config_before_save(); event.accept()

    # --- Credentials ---
    def _tokenizer(self) -> Optional[GeminiClient]:
        try:
            return self.client_factory.get(self.credentials.load_credential())
        except MissingCredential:
            if not self._missing_key_warned:
                self._show_status_message("No API key configured. Use File > Set API Key to enable token counts and chat.", 0)
                self._missing_key_warned = True
            return None

    @Slot()
    def _set_api_key(self):
        key, ok = QInputDialog.getText(self, "Gemini API Key", "Enter your Gemini API key:", QLineEdit.EchoMode.Password)
        if not ok: return
        if self.credentials.save_credential(key):
            self._missing_key_warned = False
            self._show_status_message("API key saved." if key.strip() else "API key cleared.", 3000)
            self.pipeline_debouncer.trigger() # File counts depend on the key
        else:
            QMessageBox.warning(self, "API Key", "Could not save the API key. See the log for details.")

    # --- File Pool ---
    @Slot()
    def _open_folder(self):
        folder = QFileDialog.getExistingDirectory(self, "Select Folder", self.walker.browse_root)
        if not folder: return
        logger.info(f"Browsing folder: {folder}")
        self.config.browse_root = folder
        self.walker.browse_root = folder
        self.file_browser.load_root(folder)

    @Slot()
    def _on_selection_changed(self):
        if self.file_browser.selected_paths():
            self.pipeline_debouncer.trigger(); return
        # Empty selection: drop the pool right away, no walk and no task
        self.pipeline_debouncer.cancel()
        self.pipeline.clear()
        self.session.files = []
        self.side_panel.set_loading(False)
        self.side_panel.show_files([], None)
        self.side_panel.show_budget(self.budget_engine.placeholder(self.session.model))
        self._show_status_message("File selection cleared.", 3000, show_progress=False)
        self._request_recount()

    def _trigger_file_processing(self):
        paths = self.file_browser.selected_paths()
        logger.debug(f"Debounced trigger for file processing ({len(paths)} path(s)).")
        task = FileProcessingTask(self.pipeline, paths, self.session.model, self._tokenizer())
        task.signals.finished.connect(self._on_file_processing_finished)
        task.signals.error.connect(self._on_file_processing_error)
        task.signals.progress.connect(lambda msg: self._show_status_message(msg, 0))
        self.side_panel.set_loading(True)
        self._show_status_message("Processing selected files...", 0, show_progress=True)
        run_in_background(task)

    @Slot(object)
    def _on_file_processing_finished(self, result: PipelineResult):
        if result.stale:
            logger.debug(f"Ignoring stale file processing result (epoch {result.epoch}).")
            return
        self.side_panel.set_loading(self.pipeline.is_loading)
        self.session.files = list(self.pipeline.files)
        self.side_panel.show_files(self.pipeline.files, self.pipeline.last_error)
        for warning in result.warnings: self.activity.add(WARNING, warning)
        if result.error_message: self.activity.add(ERROR, result.error_message)
        self._show_status_message(f"{len(self.pipeline.files)} file(s), {self.pipeline.file_pool_tokens:,} tokens.", 5000, show_progress=False)
        self._request_recount()

    @Slot(str)
    def _on_file_processing_error(self, message: str):
        # A newer load keeps the pipeline loading; only its own outcome may stop the indicator
        loading = self.pipeline.is_loading
        self.side_panel.set_loading(loading)
        self._show_status_message(f"Error: {message}", 0, show_progress=loading)

    # --- Token Budget ---
    def _request_recount(self):
        epoch = self.budget_engine.next_epoch()
        task = TokenRecountTask(self.budget_engine, epoch, self.session.messages, self.session.system_instructions,
                                self.pipeline.files, self.session.model, self._tokenizer())
        task.signals.finished.connect(self._on_recount_finished)
        task.signals.error.connect(lambda ep, msg: self._show_status_message(msg, 5000) if self.budget_engine.is_current(ep) else None)
        run_in_background(task)

    @Slot(int, object)
    def _on_recount_finished(self, epoch: int, budget: TokenBudget):
        if not self.budget_engine.is_current(epoch):
            logger.trace(f"Dropping stale token recount (epoch {epoch}).")
            return
        self.side_panel.show_budget(budget)

    @Slot(str)
    def _on_model_changed(self, model: str):
        self.session.model = model
        self.session.generation = self.session.generation.for_model(model)
        self.side_panel.set_generation(self.session.generation)
        self.side_panel.show_budget(self.budget_engine.placeholder(model, self.pipeline.files))
        self.activity.add(INFO, f"Model changed to {model}.")
        if self.file_browser.selected_paths(): self.pipeline_debouncer.trigger() # Counts are per model
        else: self._request_recount()

    @Slot(object)
    def _on_generation_changed(self, generation: GenerationConfig):
        self.session.generation = generation

    @Slot(str)
    def _on_system_instructions_changed(self, text: str):
        self.session.system_instructions = text
        self.recount_debouncer.trigger()

    # --- Chat ---
    def _run_chat(self, make_coroutine):
        if self._chat_running:
            self._show_status_message("A request is already running.", 3000); return
        self._chat_running = True
        self.chat_panel.set_busy(True)
        self._show_status_message("Waiting for response...", 0, show_progress=True)
        task = ChatRequestTask(make_coroutine)
        task.signals.finished.connect(self._on_chat_finished)
        task.signals.error.connect(self._on_chat_error)
        run_in_background(task)

    @Slot(str)
    def _submit(self, text: str):
        self._run_chat(lambda: self.session.submit(text))

    @Slot(object)
    def _regenerate(self, message_id: int):
        self._run_chat(lambda: self.session.regenerate(message_id))

    @Slot(object)
    def _on_chat_finished(self, message: Optional[Message]):
        self._chat_running = False
        self.chat_panel.set_busy(False)
        self.chat_panel.show_messages(self.session.messages)
        if message is not None and message.is_error: self._show_status_message(message.content, 5000, show_progress=False)
        else: self._show_status_message("Response received.", 3000, show_progress=False)
        self._request_recount()

    @Slot(str)
    def _on_chat_error(self, message: str):
        self._chat_running = False
        self.chat_panel.set_busy(False)
        self.chat_panel.show_messages(self.session.messages)
        self._show_status_message(message, 0, show_progress=False)

    def _after_local_change(self):
        self.chat_panel.show_messages(self.session.messages)
        self._request_recount()

    @Slot(str)
    def _append(self, text: str):
        if self._chat_running: return
        if self.session.append(text): self._after_local_change()

    @Slot(object, str)
    def _edit_message(self, message_id: int, content: str):
        if self._chat_running: return
        if self.session.edit(message_id, content): self._after_local_change()

    @Slot(object)
    def _delete_message(self, message_id: int):
        if self._chat_running: return
        if self.session.delete(message_id): self._after_local_change()

    @Slot(object)
    def _copy_message(self, message_id: int):
        text = self.session.copy_text(message_id)
        if text: QApplication.clipboard().setText(text); self._show_status_message("Message copied to clipboard!", 3000)

    @Slot()
    def _clear_chat(self):
        if self._chat_running: return
        self.session.clear(); self._after_local_change()

    # --- Activity ---
    @Slot(object)
    def _append_activity(self, entry: ActivityEntry):
        stamp = time.strftime('%H:%M:%S', time.localtime(entry.timestamp))
        extra = []
        if entry.token_count is not None: extra.append(f"{entry.token_count:,} tokens")
        if entry.response_time_ms is not None: extra.append(f"{entry.response_time_ms} ms")
        suffix = f" ({', '.join(extra)})" if extra else ""
        self.activity_view.appendPlainText(f"[{stamp}] {entry.type}: {entry.message}{suffix}")

    @Slot()
    def _show_about_dialog(self):
        from ... import __version__; QMessageBox.about(self, "About ContextChat", f"<b>ContextChat v{__version__}</b><br><br>Chat with Gemini using your local files as context.")

    # --- Status Bar Updates ---
    @Slot(str)
    @Slot(str, int)
    def _show_status_message(self, message: str, timeout: int = 0, show_progress: bool | None = None):
        """Displays a message in the status bar. show_progress=None means don't change."""
        self.status_label.setText(message)
        if timeout <= 0: self.status_bar.clearMessage()
        else: self.status_bar.showMessage(message, timeout)
        if show_progress is True: self.status_progress.setVisible(True)
        elif show_progress is False: self.status_progress.setVisible(False)
