# contextchat/core/extractors.py
"""Format-specific text extraction.

Three independent conversions dispatched by file kind:

* text: bytes decoded as UTF-8, strings passed through
* PDF: page text runs joined by single spaces, pages joined by a blank line
* RTF: best-effort control-word stripping (no formatting fidelity, lossy by contract)

Corrupt input raises a typed error naming the file so the pipeline can turn it
into a per-file error record.
"""
import base64
import binascii
import re
import threading
from typing import Union

import fitz  # PyMuPDF
from loguru import logger

from .errors import ExtractionError, PdfParseError, RtfReadError
from .models import CONTENT_BASE64, KIND_PDF, KIND_RTF, ProcessedFile

# --- Plain text ---

def extract_text_from_text(source: Union[str, bytes]) -> str:
    if isinstance(source, bytes):
        return source.decode("utf-8", errors="replace")
    return source


# --- PDF ---

# MuPDF is not thread-safe; one document is open at a time across all threads
_PDF_LOCK = threading.Lock()


def _page_text(page) -> str:
    runs = []
    for block in page.get_text("dict").get("blocks", []):
        if block.get("type") != 0: # Image blocks carry no text
            continue
        for line in block.get("lines", []):
            for span in line.get("spans", []):
                text = span.get("text", "")
                if text:
                    runs.append(text)
    return " ".join(runs)


def extract_text_from_pdf(data: bytes, file_name: str = "document.pdf") -> str:
    """Extracts text page by page (1-based order), joining pages with a blank line.

    Calls are serialized process-wide.
    """
    with _PDF_LOCK:
        return _extract_pdf_locked(data, file_name)


def _extract_pdf_locked(data: bytes, file_name: str) -> str:
    try:
        doc = fitz.open(stream=data, filetype="pdf")
    except Exception as e:
        logger.error(f"Error opening PDF {file_name}: {e}")
        raise PdfParseError(file_name, str(e) or type(e).__name__) from e

    with doc:
        if doc.needs_pass:
            raise PdfParseError(file_name, "document is password protected")
        pages = []
        for page_number in range(1, doc.page_count + 1):
            try:
                page = doc.load_page(page_number - 1)
                pages.append(_page_text(page))
            except Exception as e:
                logger.error(f"Error reading page {page_number} of {file_name}: {e}")
                raise PdfParseError(file_name, f"page {page_number}: {e}") from e
            finally:
                page = None # Drop page resources before loading the next one
    logger.debug(f"Extracted {len(pages)} page(s) from PDF {file_name}")
    return "\n\n".join(pages)


# --- RTF ---

_RTF_TOKEN = re.compile(
    r"\\\\"                       # escaped backslash
    r"|\\[{}]"                    # escaped brace
    r"|\\'([0-9a-fA-F]{2})"       # hex character escape
    r"|\\~"                       # non-breaking space
    r"|\\-"                       # optional hyphen
    r"|\\\*"                      # destination marker
    r"|\\([a-z]+)(-?\d+)?\s?"     # control word, optional numeric parameter, one delimiter (space or newline)
    r"|[{}]"                      # group braces
)

_RTF_CONTROL_WORDS = {
    "par": "\n",
    "line": "\n",
    "tab": "\t",
    "page": "\n\n",
    "sect": "\n\n",
}


def _decode_hex_escape(hex_digits: str) -> str:
    value = int(hex_digits, 16)
    try:
        return bytes([value]).decode("cp1252")
    except UnicodeDecodeError:
        return chr(value)


def _replace_rtf_token(match: "re.Match[str]") -> str:
    token = match.group(0)
    if match.group(1) is not None:
        return _decode_hex_escape(match.group(1))
    if match.group(2) is not None:
        return _RTF_CONTROL_WORDS.get(match.group(2), "")
    if token == "\\\\": return "\\"
    if token == "\\{": return "{"
    if token == "\\}": return "}"
    if token == "\\~": return " "
    if token == "\\-": return "-"
    return "" # \* markers and bare braces


def extract_text_from_rtf(source: Union[str, bytes], file_name: str = "document.rtf") -> str:
    """Best-effort RTF to plain text. Malformed markup degrades, it does not raise."""
    if isinstance(source, bytes):
        try:
            source = source.decode("utf-8")
        except UnicodeDecodeError as e:
            raise RtfReadError(file_name, str(e)) from e
    if not isinstance(source, str):
        raise RtfReadError(file_name, f"unexpected content type {type(source).__name__}")
    return _RTF_TOKEN.sub(_replace_rtf_token, source).strip()


# --- Dispatch ---

def extract_text(record: ProcessedFile) -> str:
    """Decodes a walker record (base64 when flagged) and routes it to its extractor."""
    payload: Union[str, bytes] = record.raw_content
    if record.content_type == CONTENT_BASE64:
        try:
            payload = base64.b64decode(record.raw_content, validate=True)
        except (binascii.Error, ValueError) as e:
            if record.kind == KIND_PDF:
                raise PdfParseError(record.name, f"invalid base64 payload: {e}") from e
            raise ExtractionError(record.name, f"Failed to decode {record.name}: {e}") from e

    if record.kind == KIND_PDF:
        if isinstance(payload, str):
            payload = payload.encode("latin-1", errors="replace")
        return extract_text_from_pdf(payload, record.name)
    if record.kind == KIND_RTF:
        return extract_text_from_rtf(payload, record.name)
    return extract_text_from_text(payload)
