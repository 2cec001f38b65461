# contextchat/config/paths.py
import sys
import os
from pathlib import Path

def _get_app_name() -> str:
    return "ContextChat"

def get_user_data_dir() -> Path:
    """Per-user data directory.

    ``CONTEXTCHAT_HOME`` wins when set. Otherwise ``%APPDATA%/ContextChat`` on
    Windows and ``$XDG_CONFIG_HOME/contextchat`` (or ``~/.config/contextchat``)
    everywhere else.
    """
    override = os.environ.get("CONTEXTCHAT_HOME")
    if override:
        path = Path(override)
    elif sys.platform == "win32":
        appdata_path = os.environ.get("APPDATA")
        base = Path(appdata_path) if appdata_path else Path.home() / "AppData/Roaming"
        path = base / _get_app_name()
    else:
        xdg = os.environ.get("XDG_CONFIG_HOME")
        base = Path(xdg) if xdg else Path.home() / ".config"
        path = base / _get_app_name().lower()

    path.mkdir(parents=True, exist_ok=True)
    return path

def get_user_config_file() -> Path:
    """Get the path to the user's config.json file."""
    return get_user_data_dir() / "config.json"

def get_credentials_file() -> Path:
    return get_user_data_dir() / "credentials.json"

def get_user_log_dir() -> Path:
    """Get the path to the user's log directory."""
    path = get_user_data_dir() / "logs"
    path.mkdir(parents=True, exist_ok=True)
    return path
