# contextchat/ui/application.py
import sys
from PySide6.QtWidgets import QApplication
from loguru import logger

from .windows.main_window import MainWindow
from ..config.loader import load_config, save_config
from ..core.gemini_client import GeminiClientFactory
from ..services.async_utils import shutdown_event_loop

def run(argv=None):
    """Initializes and runs the QApplication."""
    if argv is None:
        argv = sys.argv

    app = QApplication(argv)
    app.setApplicationName("ContextChat")

    try:
        config = load_config()
    except Exception as e:
        logger.exception(f"Fatal error loading configuration on startup: {e}")
        QApplication.beep()
        return 1

    # Composition root: the factory owns every HTTP client for the lifetime of the app
    client_factory = GeminiClientFactory(base_url=config.api_base_url, timeout=config.request_timeout_s)

    try:
        main_window = MainWindow(client_factory)
        main_window.show()
    except Exception as e:
        logger.exception(f"Fatal error creating or showing the main window: {e}")
        QApplication.beep()
        shutdown_event_loop()
        return 1

    exit_code = app.exec()

    try:
        main_window.update_config_before_save()
        save_config(main_window.config)
    except Exception as e:
        logger.exception(f"Error saving configuration on exit: {e}")

    shutdown_event_loop(client_factory.aclose)
    logger.info(f"Application finished with exit code {exit_code}.")
    return exit_code
