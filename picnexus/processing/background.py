"""
Detached background tasks.

Side effects that must never hold up an upload (WebDAV sync, notifications)
run here. ``submit`` hands back a Future so tests can wait for completion;
production callers simply drop it.
"""

import threading
from concurrent.futures import ThreadPoolExecutor, Future, TimeoutError as FuturesTimeout
from typing import Callable, Optional, Set

from picnexus.utils.logger import log


class BackgroundTasks:
    """Generic best-effort background task runner."""

    def __init__(self, max_workers: int = 2, name: str = "picnexus-bg"):
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix=name)
        self._pending: Set[Future] = set()
        self._lock = threading.Lock()

    def submit(self, func: Callable, *args, description: Optional[str] = None, **kwargs) -> Future:
        """Run func(*args, **kwargs) detached. Exceptions are logged, not raised."""
        label = description or getattr(func, "__name__", "task")

        def run():
            try:
                return func(*args, **kwargs)
            except Exception as e:
                log(f"Background task '{label}' failed: {e}", level="warning", category="general")
                return None

        future = self._executor.submit(run)
        with self._lock:
            self._pending.add(future)
        future.add_done_callback(self._discard)
        return future

    def _discard(self, future: Future) -> None:
        with self._lock:
            self._pending.discard(future)

    @property
    def pending_count(self) -> int:
        with self._lock:
            return len(self._pending)

    def wait_all(self, timeout: Optional[float] = None) -> None:
        """Block until every submitted task settled (used by the CLI before exit)."""
        with self._lock:
            pending = list(self._pending)
        for future in pending:
            try:
                future.exception(timeout=timeout)
            except FuturesTimeout:
                log(f"Background task still running after {timeout}s", level="warning", category="general")

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)


_default_tasks: Optional[BackgroundTasks] = None


def get_background_tasks() -> BackgroundTasks:
    global _default_tasks
    if _default_tasks is None:
        _default_tasks = BackgroundTasks()
    return _default_tasks
