# contextchat/ui/widgets/side_panel.py
from typing import Optional, Sequence

from PySide6.QtWidgets import (QWidget, QVBoxLayout, QFormLayout, QComboBox, QDoubleSpinBox,
                               QSpinBox, QLabel, QListWidget, QListWidgetItem, QProgressBar, QGroupBox)
from PySide6.QtCore import Qt, Signal, Slot
from loguru import logger

from ...config.schema import GenerationConfig
from ...core.models import ProcessedFile, TokenBudget
from ...core.token_budget import MODEL_CATALOGUE, limit_for


class SidePanelWidget(QWidget):
    """Model and generation settings, token budget readout and the file pool."""

    model_changed = Signal(str)
    generation_changed = Signal(object) # GenerationConfig

    def __init__(self, model: str, generation: GenerationConfig, parent=None):
        super().__init__(parent)
        self._setup_ui()
        self._populate_models(model)
        self._apply_output_cap(model)
        self.set_generation(generation)
        self._connect_signals()

    def _setup_ui(self):
        layout = QVBoxLayout(self); layout.setContentsMargins(5, 5, 5, 5)

        settings_box = QGroupBox("Model"); form = QFormLayout(settings_box)
        self.model_combo = QComboBox()
        self.temperature_spin = QDoubleSpinBox(); self.temperature_spin.setRange(0.0, 2.0); self.temperature_spin.setSingleStep(0.05); self.temperature_spin.setDecimals(2)
        self.top_p_spin = QDoubleSpinBox(); self.top_p_spin.setRange(0.0, 1.0); self.top_p_spin.setSingleStep(0.05); self.top_p_spin.setDecimals(2)
        self.output_spin = QSpinBox(); self.output_spin.setRange(1, 8192); self.output_spin.setSingleStep(256)
        form.addRow("Model:", self.model_combo); form.addRow("Temperature:", self.temperature_spin)
        form.addRow("Top-P:", self.top_p_spin); form.addRow("Output Length:", self.output_spin)
        layout.addWidget(settings_box)

        tokens_box = QGroupBox("Tokens"); tokens_form = QFormLayout(tokens_box)
        self.conversation_label = QLabel("0"); self.files_label = QLabel("0")
        self.combined_label = QLabel("0 / 0"); self.combined_label.setTextFormat(Qt.TextFormat.PlainText)
        self.budget_error_label = QLabel(""); self.budget_error_label.setWordWrap(True); self.budget_error_label.setStyleSheet("color: #c0392b;")
        tokens_form.addRow("Conversation:", self.conversation_label); tokens_form.addRow("Files:", self.files_label)
        tokens_form.addRow("Combined:", self.combined_label); tokens_form.addRow(self.budget_error_label)
        layout.addWidget(tokens_box)

        files_box = QGroupBox("File Pool"); files_layout = QVBoxLayout(files_box)
        self.loading_bar = QProgressBar(); self.loading_bar.setRange(0, 0); self.loading_bar.setVisible(False)
        self.file_list = QListWidget()
        self.file_errors_label = QLabel(""); self.file_errors_label.setWordWrap(True); self.file_errors_label.setStyleSheet("color: #c0392b;")
        files_layout.addWidget(self.loading_bar); files_layout.addWidget(self.file_list, 1); files_layout.addWidget(self.file_errors_label)
        layout.addWidget(files_box, 1)

    def _populate_models(self, current: str):
        self.model_combo.blockSignals(True)
        try:
            for info in MODEL_CATALOGUE:
                self.model_combo.addItem(info.name, info.code)
            idx = self.model_combo.findData(current)
            if idx < 0:
                # Configured model outside the catalogue; keep it selectable
                self.model_combo.addItem(current, current); idx = self.model_combo.count() - 1
            self.model_combo.setCurrentIndex(idx)
        finally: self.model_combo.blockSignals(False)

    def _connect_signals(self):
        self.model_combo.currentIndexChanged.connect(self._on_model_index_changed)
        self.temperature_spin.valueChanged.connect(self._emit_generation)
        self.top_p_spin.valueChanged.connect(self._emit_generation)
        self.output_spin.valueChanged.connect(self._emit_generation)

    def current_model(self) -> str:
        return self.model_combo.currentData()

    def generation(self) -> GenerationConfig:
        return GenerationConfig(temperature=self.temperature_spin.value(), top_p=self.top_p_spin.value(),
                                output_length=self.output_spin.value())

    def set_generation(self, generation: GenerationConfig):
        for spin, value in ((self.temperature_spin, generation.temperature), (self.top_p_spin, generation.top_p),
                            (self.output_spin, generation.output_length)):
            spin.blockSignals(True); spin.setValue(value); spin.blockSignals(False)

    def _apply_output_cap(self, model: str):
        cap = limit_for(model).max_output_tokens
        self.output_spin.setMaximum(cap) # Clamps the current value too

    @Slot(int)
    def _on_model_index_changed(self, index: int):
        model = self.model_combo.itemData(index)
        logger.info(f"Model changed to {model}")
        self._apply_output_cap(model)
        self.model_changed.emit(model)

    @Slot()
    def _emit_generation(self):
        self.generation_changed.emit(self.generation())

    # --- Readouts ---
    def show_budget(self, budget: TokenBudget):
        self.conversation_label.setText(f"{budget.conversation_tokens:,}")
        self.files_label.setText(f"{budget.file_pool_tokens:,}")
        self.combined_label.setText(f"{budget.combined_tokens:,} / {budget.limit:,}")
        self.combined_label.setStyleSheet("color: #c0392b; font-weight: bold;" if budget.over_limit else "")
        self.budget_error_label.setText(budget.error or "")

    def show_files(self, files: Sequence[ProcessedFile], error_message: Optional[str] = None):
        self.file_list.clear()
        for record in files:
            item = QListWidgetItem(f"{record.name} ({record.token_count:,} tokens)")
            item.setToolTip(record.path)
            self.file_list.addItem(item)
        self.file_errors_label.setText(error_message or "")

    def set_loading(self, loading: bool):
        self.loading_bar.setVisible(loading)
