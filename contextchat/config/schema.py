# contextchat/config/schema.py
from pydantic import BaseModel, ConfigDict, Field
from typing import List, Optional
from loguru import logger

from ..core.token_budget import DEFAULT_MODEL, limit_for

GEMINI_API_BASE_URL = "https://generativelanguage.googleapis.com/v1beta"


class GenerationConfig(BaseModel):
    """Immutable generation parameters sent with every chat request."""
    model_config = ConfigDict(frozen=True)

    temperature: float = Field(default=1.0, ge=0.0, le=2.0)
    top_p: float = Field(default=0.95, ge=0.0, le=1.0)
    output_length: int = Field(default=8192, ge=1)

    def for_model(self, model: str) -> "GenerationConfig":
        """Returns a copy whose output length respects the model's output cap."""
        max_allowed = limit_for(model).max_output_tokens
        if self.output_length > max_allowed:
            logger.warning(f"Configured Output Length ({self.output_length}) exceeds limit ({max_allowed}) for model {model}. It will be capped.")
            return self.model_copy(update={"output_length": max_allowed})
        return self


class AppConfig(BaseModel):
    selected_model: str = DEFAULT_MODEL
    generation: GenerationConfig = Field(default_factory=GenerationConfig)
    system_instructions: str = ""
    browse_root: Optional[str] = None # None means the user's home directory
    accepted_extensions: List[str] = Field(default_factory=lambda: [".txt", ".pdf", ".rtf"])
    walker_concurrency: int = Field(default=32, ge=1)
    tokenizer_concurrency: int = Field(default=4, ge=1)
    request_timeout_s: float = Field(default=120.0, gt=0)
    api_base_url: str = GEMINI_API_BASE_URL
    window_geometry: Optional[str] = None # Hex of QMainWindow.saveGeometry()
    window_state: Optional[str] = None    # Hex of QMainWindow.saveState()
