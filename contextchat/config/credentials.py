# contextchat/config/credentials.py
"""Local storage for the Gemini API key.

The key is kept in its own JSON file (mode 0600 on POSIX) next to config.json
rather than inside it, so sharing a config file never shares the key.
"""
import json
import os
from pathlib import Path
from typing import Optional

from loguru import logger

from .loader import write_atomic
from .paths import get_credentials_file

CREDENTIAL_KEY = "gemini_api_key"
CREDENTIAL_ENV_VAR = "GEMINI_API_KEY"


class CredentialStore:
    def __init__(self, path: Optional[Path] = None):
        self._path = path

    @property
    def path(self) -> Path:
        return self._path or get_credentials_file()

    def load_credential(self) -> str:
        """Environment first, then the credentials file. Empty string when absent or unreadable."""
        env_value = os.environ.get(CREDENTIAL_ENV_VAR, "").strip()
        if env_value:
            logger.debug(f"Using API key from {CREDENTIAL_ENV_VAR}.")
            return env_value

        path = self.path
        if not path.exists():
            return ""
        try:
            with open(path, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except (json.JSONDecodeError, OSError) as e:
            logger.error(f"Failed to read credentials file {path}: {e}")
            return ""
        value = data.get(CREDENTIAL_KEY, "") if isinstance(data, dict) else ""
        return value.strip() if isinstance(value, str) else ""

    def save_credential(self, value: str) -> bool:
        """Stores the key (an empty value clears it). Returns False on failure."""
        path = self.path
        try:
            write_atomic(path, json.dumps({CREDENTIAL_KEY: value.strip()}, indent=4), file_mode=0o600)
        except OSError as e:
            logger.error(f"Failed to save credentials to {path}: {e}")
            return False
        logger.info(f"API key {'cleared' if not value.strip() else 'saved'}.")
        return True
