# contextchat/config/loader.py
import json
import os
import tempfile
from pathlib import Path
from typing import Optional

from pydantic import ValidationError
from loguru import logger

from .schema import AppConfig
from .paths import get_user_config_file

_cached_config: Optional[AppConfig] = None

MODEL_ENV_VAR = "CONTEXTCHAT_MODEL"

def load_config() -> AppConfig:
    """Loads the application configuration."""
    global _cached_config
    if _cached_config:
        return _cached_config

    config_path = get_user_config_file()
    loaded_data = {}

    if config_path.exists():
        logger.info(f"Loading user configuration from: {config_path}")
        try:
            with open(config_path, 'r', encoding='utf-8') as f:
                loaded_data = json.load(f)
            if not isinstance(loaded_data, dict):
                raise ValueError("top-level JSON value is not an object")
        except (json.JSONDecodeError, ValueError, OSError) as e:
            logger.error(f"Failed to load user config file {config_path}: {e}")
            try:
                 backup_path = config_path.with_suffix(".json.corrupted")
                 if backup_path.exists(): backup_path.unlink(missing_ok=True) # Remove old backup
                 config_path.rename(backup_path)
                 logger.info(f"Backed up corrupted config to: {backup_path}")
            except OSError as backup_err:
                 logger.error(f"Failed to backup corrupted config: {backup_err}")
            loaded_data = {} # Fallback to defaults
    else:
        logger.info("No user config found. Using default settings.")

    env_model = os.environ.get(MODEL_ENV_VAR)
    if env_model:
        logger.info(f"Model overridden by {MODEL_ENV_VAR}: {env_model}")
        loaded_data["selected_model"] = env_model

    try:
        config = AppConfig(**loaded_data)
        _cached_config = config
        logger.info("Configuration loaded successfully.")
        return config
    except ValidationError as e:
        logger.error(f"Configuration validation failed: {e}")
        logger.warning("Falling back to default configuration.")
        _cached_config = AppConfig() # Use default config on validation error
        return _cached_config

def write_atomic(target: Path, text: str, file_mode: Optional[int] = None) -> None:
    """Writes ``text`` to ``target`` via a temp file in the same directory and os.replace.

    Raises OSError; the temporary file never outlives the call.
    """
    temp_file_path: Optional[Path] = None
    try:
        with tempfile.NamedTemporaryFile(
            mode='w',
            encoding='utf-8',
            dir=target.parent,
            prefix=f".{target.name}_tmp",
            suffix=".json",
            delete=False # Keep the file after closing for os.replace
        ) as temp_f:
            temp_file_path = Path(temp_f.name)
            logger.debug(f"Writing {target.name} to temporary file: {temp_file_path}")
            temp_f.write(text)
            temp_f.flush()
            os.fsync(temp_f.fileno())
        if file_mode is not None and os.name == "posix":
            os.chmod(temp_file_path, file_mode)
        os.replace(temp_file_path, target)
        temp_file_path = None
    finally:
        if temp_file_path and temp_file_path.exists():
             logger.warning(f"Cleaning up leftover temporary file: {temp_file_path}")
             try: temp_file_path.unlink()
             except OSError as unlink_err: logger.error(f"Failed to remove temporary file {temp_file_path}: {unlink_err}")

def save_config(config: AppConfig) -> bool:
    """Saves the application configuration atomically. Returns False on failure."""
    global _cached_config
    config_path = get_user_config_file()
    logger.info(f"Saving configuration to: {config_path}")
    try:
        write_atomic(config_path, config.model_dump_json(indent=4))
    except (OSError, TypeError, ValueError) as e:
        logger.error(f"Failed to save configuration to {config_path}: {e}")
        return False
    _cached_config = config
    logger.info("Configuration saved successfully.")
    return True

def get_config() -> AppConfig:
    """Returns the cached configuration object, loading if necessary."""
    if _cached_config is None:
        return load_config()
    return _cached_config

def reset_config_cache() -> None:
    """Forgets the cached configuration so the next access reloads from disk."""
    global _cached_config
    _cached_config = None
