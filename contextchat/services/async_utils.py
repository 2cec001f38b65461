# contextchat/services/async_utils.py
import asyncio
import threading
from concurrent.futures import Future
from typing import Any, Awaitable, Callable, Coroutine, Optional, TypeVar

from PySide6.QtCore import QThreadPool, QRunnable, QTimer
from loguru import logger

T = TypeVar("T")

_thread_pool: QThreadPool | None = None
_loop: Optional[asyncio.AbstractEventLoop] = None
_loop_thread: Optional[threading.Thread] = None
_loop_lock = threading.Lock()

def get_global_thread_pool() -> QThreadPool:
    """Gets the global QThreadPool instance, creating if necessary."""
    global _thread_pool
    if _thread_pool is None:
        _thread_pool = QThreadPool.globalInstance()
        logger.info(f"Initialized global QThreadPool. Max threads: {_thread_pool.maxThreadCount()}")
    return _thread_pool

def run_in_background(runnable: QRunnable):
    """Submits a QRunnable task to the global thread pool."""
    pool = get_global_thread_pool()
    logger.debug(f"Submitting task {type(runnable).__name__} to thread pool. Active threads: {pool.activeThreadCount()}")
    pool.start(runnable)

# --- Shared asyncio loop ---
# httpx clients are bound to the loop they were first used on, so every
# coroutine started from a worker thread runs on this one background loop.

def get_event_loop() -> asyncio.AbstractEventLoop:
    global _loop, _loop_thread
    with _loop_lock:
        if _loop is None or _loop.is_closed():
            _loop = asyncio.new_event_loop()
            _loop_thread = threading.Thread(target=_loop.run_forever, name="contextchat-asyncio", daemon=True)
            _loop_thread.start()
            logger.info("Started background asyncio event loop.")
        return _loop

def submit_coroutine(coro: Coroutine[Any, Any, T]) -> "Future[T]":
    """Schedules ``coro`` on the shared loop and returns a concurrent Future."""
    return asyncio.run_coroutine_threadsafe(coro, get_event_loop())

def run_coroutine(coro: Coroutine[Any, Any, T], timeout: Optional[float] = None) -> T:
    """Blocks the calling (worker) thread until ``coro`` finishes on the shared loop."""
    return submit_coroutine(coro).result(timeout)

def shutdown_event_loop(cleanup: Optional[Callable[[], Awaitable[Any]]] = None, timeout: float = 5.0):
    """Runs an optional async cleanup (e.g. closing HTTP clients), then stops the loop."""
    global _loop, _loop_thread
    with _loop_lock:
        loop, thread = _loop, _loop_thread
        _loop, _loop_thread = None, None
    if loop is None:
        return
    if cleanup is not None:
        try:
            asyncio.run_coroutine_threadsafe(cleanup(), loop).result(timeout)
        except Exception as e:
            logger.error(f"Error during event loop cleanup: {e}")
    loop.call_soon_threadsafe(loop.stop)
    if thread is not None:
        thread.join(timeout)
    loop.close()
    logger.info("Background asyncio event loop stopped.")

# --- Debounce helper ---

class Debouncer:
    """Collapses bursts of calls into one, fired ``interval_ms`` after the last call.

    Must be created and triggered from the Qt main thread.
    """
    def __init__(self, interval_ms: int, func: Callable[[], None], parent=None):
        self._func = func
        self._timer = QTimer(parent)
        self._timer.setSingleShot(True)
        self._timer.setInterval(interval_ms)
        self._timer.timeout.connect(self._fire)

    def trigger(self):
        self._timer.start() # (Re)start

    def cancel(self):
        self._timer.stop()

    def _fire(self):
        try:
            self._func()
        except Exception as e:
            logger.exception(f"Debounced call failed: {e}")
