# contextchat/core/errors.py
"""Error taxonomy shared by the walker, extractors, pipeline and API client.

Every error carries a short ``user_message`` suitable for the status bar or an
inline chat bubble. The full exception (and traceback) only goes to the log.
"""
from typing import Optional


class ContextChatError(Exception):
    """Base class for all application errors."""

    def __init__(self, user_message: str):
        super().__init__(user_message)
        self.user_message = user_message


# --- Filesystem ---

class FileSystemError(ContextChatError):
    def __init__(self, path: str, user_message: str):
        super().__init__(user_message)
        self.path = path


class PermissionDenied(FileSystemError):
    def __init__(self, path: str):
        super().__init__(path, f"Permission denied accessing: {path}")


class NotFound(FileSystemError):
    def __init__(self, path: str):
        super().__init__(path, f"Path not found: {path}")


class ReadFailure(FileSystemError):
    def __init__(self, path: str, cause: str = ""):
        message = f"Failed to read: {path}"
        if cause:
            message += f" ({cause})"
        super().__init__(path, message)


def map_os_error(path: str, err: OSError) -> FileSystemError:
    """Translates an ``OSError`` into the filesystem taxonomy."""
    if isinstance(err, PermissionError):
        return PermissionDenied(path)
    if isinstance(err, (FileNotFoundError, NotADirectoryError)):
        return NotFound(path)
    return ReadFailure(path, err.strerror or str(err))


# --- Extraction ---

class ExtractionError(ContextChatError):
    def __init__(self, file_name: str, user_message: str):
        super().__init__(user_message)
        self.file_name = file_name


class PdfParseError(ExtractionError):
    def __init__(self, file_name: str, cause: str = "Unknown PDF parsing error"):
        super().__init__(file_name, f"Failed to parse PDF ({file_name}): {cause}")


class RtfReadError(ExtractionError):
    def __init__(self, file_name: str, cause: str = ""):
        message = f"Failed to read RTF file ({file_name})"
        if cause:
            message += f": {cause}"
        super().__init__(file_name, message)


# --- Remote API ---

class RemoteApiError(ContextChatError):
    def __init__(self, user_message: str, status_code: Optional[int] = None):
        super().__init__(user_message)
        self.status_code = status_code


class TokenizerFailure(RemoteApiError):
    def __init__(self, cause: str, status_code: Optional[int] = None):
        super().__init__(f"Failed to count tokens: {cause}", status_code)


class RateLimited(RemoteApiError):
    def __init__(self, status_code: Optional[int] = 429):
        super().__init__("API Rate Limit Exceeded. Please wait and try again.", status_code)


class InvalidCredential(RemoteApiError):
    def __init__(self, user_message: str = "Invalid API Key. Check your key in Settings.",
                 status_code: Optional[int] = None):
        super().__init__(user_message, status_code)


class MissingCredential(InvalidCredential):
    def __init__(self):
        super().__init__("No API key configured. Add your Gemini API key first.")


class NetworkError(RemoteApiError):
    def __init__(self, cause: str):
        super().__init__(f"Network error during API call: {cause}")


class ContentBlocked(RemoteApiError):
    def __init__(self, reason: str = "SAFETY"):
        super().__init__(f"Content blocked due to safety settings ({reason}).")
        self.reason = reason
