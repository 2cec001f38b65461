# contextchat/services/logging.py
import sys
from loguru import logger

from ..config.paths import get_user_log_dir

def setup_logging(level="INFO", verbose=False):
    """Configures logging using Loguru."""
    log_level = "DEBUG" if verbose else level
    log_dir = get_user_log_dir()
    log_file_str = str(log_dir / "contextchat_{time:YYYY-MM-DD}.log")

    # Remove default handler
    logger.remove()

    fmt_console = "<level>{level: <8}</level> | <cyan>{name}:{function}:{line}</cyan> - <level>{message}</level>"
    logger.add(
        sys.stderr,
        level=log_level,
        format=fmt_console,
        colorize=True,
        enqueue=True # Make logging calls non-blocking
    )

    fmt_file = "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | {process} | {thread.name} | {name}:{function}:{line} - {message}"
    try:
        logger.add(
            log_file_str,
            level="DEBUG", # Log more details to file
            format=fmt_file,
            rotation="1 day",
            retention="7 days",
            compression="zip",
            enqueue=True,
            encoding="utf-8"
        )
        logger.info(f"Logging initialized. Level: {log_level}. Log file: {log_file_str}")
    except (OSError, ValueError) as e:
         # Fallback if file logging fails (e.g., permissions)
         logger.error(f"Could not configure file logging to {log_file_str}: {e}")
         logger.warning("File logging disabled.")
