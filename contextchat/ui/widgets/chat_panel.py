# contextchat/ui/widgets/chat_panel.py
from typing import Dict, Sequence

from PySide6.QtWidgets import (QWidget, QVBoxLayout, QHBoxLayout, QPlainTextEdit, QPushButton, QLabel,
                               QScrollArea, QFrame, QInputDialog, QSizePolicy)
from PySide6.QtCore import Qt, Signal, Slot, QTimer

from ...core.models import ROLE_ASSISTANT, Message


class PromptInputEdit(QPlainTextEdit):
    """Plain-text prompt box. Ctrl+Enter runs, Alt+Enter appends without sending."""

    run_requested = Signal()
    append_requested = Signal()

    def __init__(self, parent=None):
        super().__init__(parent)
        self.setPlaceholderText("Type a message… (Ctrl+Enter to run, Alt+Enter to append)")
        self.setSizePolicy(QSizePolicy.Policy.Expanding, QSizePolicy.Policy.Fixed)
        self.setFixedHeight(90)

    def keyPressEvent(self, event):
        if event.key() in (Qt.Key.Key_Return, Qt.Key.Key_Enter):
            modifiers = event.modifiers()
            if modifiers & Qt.KeyboardModifier.ControlModifier:
                self.run_requested.emit(); return
            if modifiers & Qt.KeyboardModifier.AltModifier:
                self.append_requested.emit(); return
        super().keyPressEvent(event)


class MessageBubble(QFrame):
    """One message with its actions. Error messages are drawn as inline error bubbles."""

    edit_clicked = Signal(object) # Message id (ms timestamp, exceeds 32-bit int)
    delete_clicked = Signal(object)
    regenerate_clicked = Signal(object)
    copy_clicked = Signal(object)

    def __init__(self, message: Message, parent=None):
        super().__init__(parent)
        self.message_id = message.id
        self.setFrameShape(QFrame.Shape.StyledPanel)
        is_assistant = message.role == ROLE_ASSISTANT
        if message.is_error:
            self.setStyleSheet("MessageBubble { background: #fdecea; border: 1px solid #e74c3c; }")
        elif is_assistant:
            self.setStyleSheet("MessageBubble { background: palette(alternate-base); }")

        layout = QVBoxLayout(self); layout.setContentsMargins(8, 6, 8, 6)
        role_label = QLabel("Error" if message.is_error else ("Assistant" if is_assistant else "You"))
        role_label.setStyleSheet("font-weight: bold;")
        body = QLabel(message.content); body.setWordWrap(True); body.setTextFormat(Qt.TextFormat.PlainText)
        body.setTextInteractionFlags(Qt.TextInteractionFlag.TextSelectableByMouse)
        layout.addWidget(role_label); layout.addWidget(body)

        actions = QHBoxLayout(); actions.addStretch(1)
        for text, signal in (("Copy", self.copy_clicked), ("Edit", self.edit_clicked),
                             ("Regenerate" if is_assistant else "Re-run", self.regenerate_clicked),
                             ("Delete", self.delete_clicked)):
            if message.is_error and text == "Edit": continue
            button = QPushButton(text); button.setFlat(True)
            button.clicked.connect(lambda _=False, s=signal: s.emit(self.message_id))
            actions.addWidget(button)
        layout.addLayout(actions)


class ChatPanelWidget(QWidget):
    """System instructions, the message list and the prompt box."""

    submit_requested = Signal(str)
    append_requested = Signal(str)
    edit_requested = Signal(object, str)
    delete_requested = Signal(object)
    regenerate_requested = Signal(object)
    copy_requested = Signal(object)
    clear_requested = Signal()
    system_instructions_changed = Signal(str)

    def __init__(self, system_instructions: str = "", parent=None):
        super().__init__(parent)
        self._messages: Dict[int, Message] = {}
        self._setup_ui(system_instructions)

    def _setup_ui(self, system_instructions: str):
        layout = QVBoxLayout(self); layout.setContentsMargins(5, 5, 5, 5)
        si_label = QLabel("System Instructions"); si_label.setStyleSheet("font-weight: bold;")
        self.system_edit = QPlainTextEdit(); self.system_edit.setPlainText(system_instructions); self.system_edit.setFixedHeight(70)
        self.system_edit.setPlaceholderText("Optional instructions sent with every request")
        self.system_edit.textChanged.connect(lambda: self.system_instructions_changed.emit(self.system_edit.toPlainText()))
        layout.addWidget(si_label); layout.addWidget(self.system_edit)

        self.scroll = QScrollArea(); self.scroll.setWidgetResizable(True)
        self.messages_host = QWidget(); self.messages_layout = QVBoxLayout(self.messages_host)
        self.messages_layout.addStretch(1)
        self.scroll.setWidget(self.messages_host)
        layout.addWidget(self.scroll, 1)

        self.input_edit = PromptInputEdit()
        self.input_edit.run_requested.connect(self._on_run)
        self.input_edit.append_requested.connect(self._on_append)
        layout.addWidget(self.input_edit)

        buttons = QHBoxLayout()
        self.clear_button = QPushButton("Clear Chat"); self.append_button = QPushButton("Append"); self.run_button = QPushButton("Run")
        self.busy_label = QLabel("")
        self.clear_button.clicked.connect(self.clear_requested.emit)
        self.append_button.clicked.connect(self._on_append); self.run_button.clicked.connect(self._on_run)
        buttons.addWidget(self.clear_button); buttons.addWidget(self.busy_label, 1)
        buttons.addWidget(self.append_button); buttons.addWidget(self.run_button)
        layout.addLayout(buttons)

    # --- Input ---
    def _take_input(self) -> str:
        text = self.input_edit.toPlainText().strip()
        if text: self.input_edit.clear()
        return text

    @Slot()
    def _on_run(self):
        if not self.run_button.isEnabled(): return
        text = self._take_input()
        if text: self.submit_requested.emit(text)

    @Slot()
    def _on_append(self):
        text = self._take_input()
        if text: self.append_requested.emit(text)

    def set_busy(self, busy: bool):
        self.run_button.setEnabled(not busy)
        self.busy_label.setText("Waiting for response…" if busy else "")

    # --- Messages ---
    def show_messages(self, messages: Sequence[Message]):
        while self.messages_layout.count() > 1:
            item = self.messages_layout.takeAt(0)
            if item.widget(): item.widget().deleteLater()
        self._messages = {m.id: m for m in messages}
        for message in messages:
            bubble = MessageBubble(message)
            bubble.copy_clicked.connect(self.copy_requested.emit)
            bubble.edit_clicked.connect(self._edit_message)
            bubble.delete_clicked.connect(self.delete_requested.emit)
            bubble.regenerate_clicked.connect(self.regenerate_requested.emit)
            self.messages_layout.insertWidget(self.messages_layout.count() - 1, bubble)
        QTimer.singleShot(0, lambda: self.scroll.verticalScrollBar().setValue(self.scroll.verticalScrollBar().maximum()))

    @Slot(object)
    def _edit_message(self, message_id: int):
        message = self._messages.get(message_id)
        if not message: return
        text, ok = QInputDialog.getMultiLineText(self, "Edit Message", "Message:", message.content)
        if ok and text.strip() and text != message.content:
            self.edit_requested.emit(message_id, text)
