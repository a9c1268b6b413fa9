"""
Persisted queue of failed, retryable uploads.

Each entry keeps a snapshot of the configuration the upload was attempted
with, so a retry reproduces the original attempt even if settings changed
since.
"""

import random
import threading
import time
from typing import Any, Callable, Dict, List, Optional

from picnexus.core.config import UserConfig
from picnexus.core.constants import RETRY_KEY, RETRY_BASE_DELAY, RETRY_MAX_DELAY
from picnexus.core.error_classifier import classify
from picnexus.core.models import FailedItem, UploadOutcome, generate_item_id, now_ms
from picnexus.storage.encrypted_store import EncryptedStore
from picnexus.utils.logger import log

# (file_path, config) -> outcome; must not enqueue a new retry entry itself
UploadHandler = Callable[[str, UserConfig], UploadOutcome]
CountListener = Callable[[int], None]


def compute_backoff(failures: int, base: float = RETRY_BASE_DELAY, cap: float = RETRY_MAX_DELAY) -> float:
    """Exponential backoff with 0-50% jitter, capped."""
    delay = base * (2 ** max(0, failures - 1))
    delay += delay * random.uniform(0, 0.5)
    return min(delay, cap)


class RetryQueue:
    """Failed uploads stored under the 'failed' key of the retry document."""

    def __init__(self, store: EncryptedStore, upload_handler: Optional[UploadHandler] = None,
                 base_delay: float = RETRY_BASE_DELAY, max_delay: float = RETRY_MAX_DELAY,
                 sleep: Callable[[float], None] = time.sleep):
        self._store = store
        self.upload_handler = upload_handler
        self._base_delay = base_delay
        self._max_delay = max_delay
        self._sleep = sleep
        self._listeners: List[CountListener] = []
        self._listeners_lock = threading.Lock()

    # ------------------------------------------------------------------
    # Count-changed listeners
    # ------------------------------------------------------------------

    def on_count_changed(self, listener: CountListener) -> Callable[[], None]:
        """Register a listener for queue size changes. Returns an unsubscribe function."""
        with self._listeners_lock:
            self._listeners.append(listener)

        def unsubscribe() -> None:
            with self._listeners_lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)
        return unsubscribe

    def _emit_count(self, count: int) -> None:
        with self._listeners_lock:
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(count)
            except Exception as e:
                log(f"Retry count listener failed: {e}", level="warning", category="retry")

    # ------------------------------------------------------------------
    # Queue operations
    # ------------------------------------------------------------------

    def _raw_items(self) -> List[Dict[str, Any]]:
        items = self._store.get(RETRY_KEY, [])
        return items if isinstance(items, list) else []

    def list(self) -> List[FailedItem]:
        return [FailedItem.from_dict(raw) for raw in self._raw_items() if isinstance(raw, dict)]

    def count(self) -> int:
        return len(self._raw_items())

    def get(self, item_id: str) -> Optional[FailedItem]:
        for item in self.list():
            if item.id == item_id:
                return item
        return None

    def add(self, file_path: str, config_snapshot: Dict[str, Any], message: str,
            error_kind: Optional[str] = None) -> FailedItem:
        """Persist a failed upload (newest first). Raises StoreError on write failure."""
        item = FailedItem(
            id=generate_item_id(),
            file_path=file_path,
            config_snapshot=config_snapshot,
            error_message=message,
            error_kind=error_kind,
        )
        items = self._store.update(RETRY_KEY, lambda current: [item.to_dict()] + list(current or []), default=[])
        log(f"Queued {file_path} for retry: {message}", level="info", category="retry")
        self._emit_count(len(items))
        return item

    def _replace(self, item_id: str, mutate: Callable[[Dict[str, Any]], Optional[Dict[str, Any]]]) -> bool:
        found: List[bool] = []

        def apply(current):
            result = []
            for raw in current or []:
                if isinstance(raw, dict) and raw.get('id') == item_id:
                    found.append(True)
                    replacement = mutate(raw)
                    if replacement is not None:
                        result.append(replacement)
                else:
                    result.append(raw)
            return result

        items = self._store.update(RETRY_KEY, apply, default=[])
        if found:
            self._emit_count(len(items))
        return bool(found)

    def remove(self, item_id: str) -> bool:
        removed = self._replace(item_id, lambda raw: None)
        if removed:
            log(f"Removed retry entry {item_id}", level="debug", category="retry")
        return removed

    def clear(self) -> None:
        self._store.set(RETRY_KEY, [])
        log("Retry queue cleared", level="info", category="retry")
        self._emit_count(0)

    def retry(self, item_id: str) -> Optional[UploadOutcome]:
        """Re-run one failed upload with its config snapshot.

        Removes the entry on success; on failure the entry stays with the
        new error message. Returns None when the id is unknown.
        """
        if self.upload_handler is None:
            raise RuntimeError("RetryQueue has no upload handler")
        item = self.get(item_id)
        if item is None:
            log(f"Retry entry {item_id} not found", level="warning", category="retry")
            return None

        log(f"Retrying {item.file_path}", level="info", category="retry")
        outcome = self.upload_handler(item.file_path, UserConfig.from_dict(item.config_snapshot))

        if outcome.ok:
            self.remove(item_id)
            return outcome

        message = outcome.message or "retry failed"

        def update(raw: Dict[str, Any]) -> Dict[str, Any]:
            updated = dict(raw)
            updated['errorMessage'] = message
            updated['errorKind'] = classify(message).kind.value
            updated['timestamp'] = now_ms()
            return updated

        self._replace(item_id, update)
        return outcome

    def retry_all(self) -> Dict[str, int]:
        """Retry every entry sequentially, backing off after failures.

        Returns:
            {'succeeded': n, 'failed': m}
        """
        succeeded = failed = 0
        consecutive_failures = 0
        for item in self.list():
            if consecutive_failures:
                delay = compute_backoff(consecutive_failures, self._base_delay, self._max_delay)
                log(f"Waiting {delay:.1f}s before next retry", level="debug", category="retry")
                self._sleep(delay)

            outcome = self.retry(item.id)
            if outcome is not None and outcome.ok:
                succeeded += 1
                consecutive_failures = 0
            else:
                failed += 1
                consecutive_failures += 1

        log(f"Retry run finished: {succeeded} succeeded, {failed} failed", level="info", category="retry")
        return {'succeeded': succeeded, 'failed': failed}
