# contextchat/core/models.py
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, List, Dict, Any

# File kinds and content encodings carried on ProcessedFile
KIND_TEXT = "text"
KIND_PDF = "pdf"
KIND_RTF = "rtf"

CONTENT_TEXT = "text"
CONTENT_BASE64 = "base64"

ROLE_USER = "user"
ROLE_ASSISTANT = "assistant"


@dataclass(frozen=True)
class DirectoryEntry:
    """One row of a single-level directory listing."""
    name: str
    is_directory: bool
    path: str


@dataclass
class ProcessedFile:
    """A file read by the walker. ``content`` and ``token_count`` are filled in by the pipeline."""
    id: str # Absolute path
    path: str
    name: str
    raw_content: str
    content_type: str # CONTENT_TEXT or CONTENT_BASE64
    size: int
    kind: str # KIND_TEXT, KIND_PDF or KIND_RTF
    token_count: int = 0
    content: str = "" # Extracted plain text

    def __hash__(self):
        return hash(self.id)

    def __eq__(self, other):
        if not isinstance(other, ProcessedFile):
            return NotImplemented
        return self.id == other.id


@dataclass(frozen=True)
class FileError:
    """A per-entry failure recorded instead of aborting the batch."""
    path: str
    name: str
    message: str

    def describe(self) -> str:
        return f"{self.name}: {self.message}"


@dataclass
class WalkResult:
    files: List[ProcessedFile] = field(default_factory=list)
    errors: List[FileError] = field(default_factory=list)


@dataclass
class PipelineResult:
    """Outcome of one FileProcessingPipeline trigger."""
    epoch: int
    files: List[ProcessedFile] = field(default_factory=list)
    errors: List[FileError] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    file_pool_tokens: int = 0
    stale: bool = False # Superseded by a newer trigger; not committed
    fatal_error: Optional[str] = None # Walker call itself failed; previous pool kept

    @property
    def error_message(self) -> Optional[str]:
        if self.fatal_error:
            return self.fatal_error
        if not self.errors:
            return None
        return "; ".join(err.describe() for err in self.errors)


class SelectionState(Enum):
    DIRECT = "direct"
    IMPLIED = "implied"
    NEITHER = "neither"


@dataclass
class Message:
    id: int # Creation timestamp in ms
    role: str # ROLE_USER or ROLE_ASSISTANT
    content: str
    is_error: bool = False


@dataclass(frozen=True)
class ModelProfile:
    context_token_limit: int
    max_output_tokens: int


@dataclass(frozen=True)
class ModelInfo:
    code: str
    name: str


@dataclass(frozen=True)
class TokenBudget:
    conversation_tokens: int
    file_pool_tokens: int
    limit: int
    max_output_tokens: int
    error: Optional[str] = None # Set when the conversation count failed

    @property
    def combined_tokens(self) -> int:
        return self.conversation_tokens + self.file_pool_tokens

    @property
    def over_limit(self) -> bool:
        return self.combined_tokens > self.limit


@dataclass
class GenerationResult:
    text: str
    token_count: int
    response_time_ms: int
    model_used: str
    temperature: float
    output_length: int
    top_p: float


@dataclass
class ActivityEntry:
    type: str
    message: str
    timestamp: float
    token_count: Optional[int] = None
    response_time_ms: Optional[int] = None
    details: Dict[str, Any] = field(default_factory=dict)
