"""
Queue Manager for PicNexus.
Tracks per-file queue items and runs them through the multi-service
upload path with a bounded number of files in flight.
"""

import os
import threading
import time
import concurrent.futures
from collections import OrderedDict
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Dict, List, Optional

from picnexus.core.config import UserConfig
from picnexus.core.constants import (
    DEFAULT_MAX_CONCURRENT, MAX_COMPLETED_QUEUE_ITEMS,
    QUEUE_STATE_PENDING, QUEUE_STATE_UPLOADING, QUEUE_STATE_COMPLETE, QUEUE_STATE_FAILED,
    RESULT_SUCCESS, RESULT_FAILED,
)
from picnexus.core.errors import AllServicesFailedError, ValidationError
from picnexus.core.events import ProgressBus, ProgressEvent, get_progress_bus
from picnexus.core.models import (
    QueueItem, ServiceProgress, ServiceUploadResult, generate_item_id,
)
from picnexus.processing.orchestrator import UploadOrchestrator
from picnexus.utils.logger import log

PROGRESS_UPLOADING = "uploading"


class QueueManager:
    """Manages the upload queue and the bounded concurrency window"""

    def __init__(self, orchestrator: UploadOrchestrator, progress_bus: Optional[ProgressBus] = None,
                 max_concurrent: int = DEFAULT_MAX_CONCURRENT,
                 on_item_finished: Optional[Callable[[QueueItem], None]] = None):
        self.orchestrator = orchestrator
        self.on_item_finished = on_item_finished
        self.progress_bus = progress_bus or get_progress_bus()
        self.max_concurrent = max(1, max_concurrent)

        self._items: "OrderedDict[str, QueueItem]" = OrderedDict()
        self._lock = threading.RLock()
        self._active = 0
        self._peak_active = 0

        self._subscription = self.progress_bus.subscribe(self._on_progress)

    def close(self) -> None:
        """Stop listening to progress events."""
        self.progress_bus.unsubscribe(self._subscription)

    # ------------------------------------------------------------------
    # Items
    # ------------------------------------------------------------------

    def add_file(self, file_path: str, file_name: Optional[str] = None,
                 services: Optional[List[str]] = None) -> Optional[str]:
        """Queue a file. Returns the new item id, or None for a duplicate."""
        with self._lock:
            for item in self._items.values():
                if item.file_path == file_path and item.status in (QUEUE_STATE_PENDING, QUEUE_STATE_UPLOADING):
                    log(f"{file_path} is already queued", level="debug", category="queue")
                    return None

            services = list(services or [])
            item = QueueItem(
                id=generate_item_id(),
                file_path=file_path,
                file_name=file_name or os.path.basename(file_path),
                enabled_services=services,
                service_progress={s: ServiceProgress(service_id=s) for s in services},
            )
            self._items[item.id] = item
        log(f"Queued {item.file_name} for {', '.join(services) or 'no services'}",
            level="debug", category="queue")
        return item.id

    def get_item(self, item_id: str) -> Optional[QueueItem]:
        with self._lock:
            return self._items.get(item_id)

    def get_items(self) -> List[QueueItem]:
        with self._lock:
            return list(self._items.values())

    def _on_progress(self, event: ProgressEvent) -> None:
        self.update_service_progress(event.item_id, event.service_id, percent=event.percent)

    def update_service_progress(self, item_id: str, service_id: str, percent: Optional[float] = None,
                                status: Optional[str] = None, link: Optional[str] = None,
                                error: Optional[str] = None) -> bool:
        with self._lock:
            item = self._items.get(item_id)
            if item is None:
                return False
            progress = item.service_progress.setdefault(service_id, ServiceProgress(service_id=service_id))
            if percent is not None:
                progress.percent = max(0.0, min(100.0, float(percent)))
            if status is not None:
                progress.status = status
            if link is not None:
                progress.link = link
            if error is not None:
                progress.error = error
            return True

    def mark_item_complete(self, item_id: str, primary_url: Optional[str] = None) -> None:
        with self._lock:
            item = self._items.get(item_id)
            if item is None:
                return
            item.status = QUEUE_STATE_COMPLETE
            item.primary_url = primary_url
            item.error_message = None
            item.finished_time = time.time()
        log(f"{item.file_name} complete: {primary_url}", level="info", category="queue")
        self._notify_finished(item)

    def mark_item_failed(self, item_id: str, message: str) -> None:
        with self._lock:
            item = self._items.get(item_id)
            if item is None:
                return
            item.status = QUEUE_STATE_FAILED
            item.error_message = message
            item.finished_time = time.time()
        log(f"{item.file_name} failed: {message}", level="warning", category="queue")
        self._notify_finished(item)

    def _notify_finished(self, item: QueueItem) -> None:
        if self.on_item_finished is None:
            return
        try:
            self.on_item_finished(item)
        except Exception as e:
            log(f"Queue listener failed: {e}", level="warning", category="queue")

    def reset_item_for_retry(self, item_id: str) -> bool:
        """Put a failed item back to pending. False when unknown or out of retries."""
        with self._lock:
            item = self._items.get(item_id)
            if item is None or item.status != QUEUE_STATE_FAILED:
                return False
            if item.retry_count >= item.max_retries:
                log(f"{item.file_name}: retry limit ({item.max_retries}) reached", level="warning", category="queue")
                return False
            item.retry_count += 1
            item.status = QUEUE_STATE_PENDING
            item.error_message = None
            item.finished_time = None
            item.service_progress = {s: ServiceProgress(service_id=s) for s in item.enabled_services}
            return True

    def reset_service_for_retry(self, item_id: str, service_id: str) -> bool:
        with self._lock:
            item = self._items.get(item_id)
            if item is None:
                return False
            item.service_progress[service_id] = ServiceProgress(
                service_id=service_id, status=PROGRESS_UPLOADING, is_retrying=True,
            )
            return True

    def trim_queue(self, max_completed: int = MAX_COMPLETED_QUEUE_ITEMS) -> int:
        """Drop the oldest completed items beyond max_completed. Returns how many were dropped."""
        with self._lock:
            completed = [i for i in self._items.values() if i.status == QUEUE_STATE_COMPLETE]
            excess = len(completed) - max_completed
            if excess <= 0:
                return 0
            completed.sort(key=lambda i: i.finished_time or 0)
            for item in completed[:excess]:
                del self._items[item.id]
        log(f"Trimmed {excess} completed queue item(s)", level="debug", category="queue")
        return excess

    def clear_queue(self) -> int:
        """Remove every item that is not currently uploading."""
        with self._lock:
            removable = [i for i, item in self._items.items() if item.status != QUEUE_STATE_UPLOADING]
            for item_id in removable:
                del self._items[item_id]
        return len(removable)

    @property
    def active_count(self) -> int:
        with self._lock:
            return self._active

    @property
    def peak_active(self) -> int:
        with self._lock:
            return self._peak_active

    # ------------------------------------------------------------------
    # Processing
    # ------------------------------------------------------------------

    def process_files(self, paths: List[str], config: UserConfig, services: List[str],
                      max_concurrent: Optional[int] = None) -> List[str]:
        """Queue paths and upload them. Returns the ids of the items that ran."""
        item_ids = [i for i in (self.add_file(p, services=services) for p in paths) if i is not None]
        self.run(item_ids, config, max_concurrent)
        return item_ids

    def run(self, item_ids: List[str], config: UserConfig, max_concurrent: Optional[int] = None) -> None:
        """Upload the given items, keeping at most max_concurrent in flight."""
        limit = max(1, max_concurrent or self.max_concurrent)
        remaining = [i for i in item_ids if self.get_item(i) is not None]
        if not remaining:
            return

        log(f"Processing {len(remaining)} file(s), {limit} at a time", level="info", category="queue")
        with ThreadPoolExecutor(max_workers=limit, thread_name_prefix="picnexus-queue") as executor:
            futures_map: Dict[concurrent.futures.Future, str] = {}
            # Prime pool
            for _ in range(min(limit, len(remaining))):
                item_id = remaining.pop(0)
                futures_map[executor.submit(self._process_item, item_id, config)] = item_id

            while futures_map:
                done, _ = concurrent.futures.wait(list(futures_map.keys()),
                                                  return_when=concurrent.futures.FIRST_COMPLETED)
                for fut in done:
                    futures_map.pop(fut)
                    fut.result()
                    if remaining:
                        nxt = remaining.pop(0)
                        futures_map[executor.submit(self._process_item, nxt, config)] = nxt

        log(f"Queue drained (peak concurrency {self.peak_active})", level="debug", category="queue")

    def _enter(self) -> None:
        with self._lock:
            self._active += 1
            if self._active > self._peak_active:
                self._peak_active = self._active

    def _leave(self) -> None:
        with self._lock:
            self._active -= 1

    def _apply_results(self, item_id: str, results: List[ServiceUploadResult]) -> None:
        for r in results:
            if r.succeeded:
                self.update_service_progress(item_id, r.service_id, percent=100,
                                             status=RESULT_SUCCESS, link=r.result.url)
            else:
                self.update_service_progress(item_id, r.service_id, status=RESULT_FAILED, error=r.error)

    def _process_item(self, item_id: str, config: UserConfig) -> None:
        item = self.get_item(item_id)
        if item is None:
            return
        with self._lock:
            item.status = QUEUE_STATE_UPLOADING
            for progress in item.service_progress.values():
                progress.status = PROGRESS_UPLOADING

        self._enter()
        try:
            history = self.orchestrator.upload_to_services(
                item.file_path, item.enabled_services, config, item_id=item_id,
            )
        except AllServicesFailedError as e:
            self._apply_results(item_id, e.results)
            with self._lock:
                item.history_id = e.history_id
            self.mark_item_failed(item_id, str(e))
            return
        except ValidationError as e:
            self.mark_item_failed(item_id, str(e))
            return
        except Exception as e:
            # Worker boundary: keep the rest of the batch running
            log(f"Unexpected error uploading {item.file_name}: {type(e).__name__}: {e}",
                level="error", category="queue")
            self.mark_item_failed(item_id, str(e) or type(e).__name__)
            return
        finally:
            self._leave()

        self._apply_results(item_id, history.results)
        primary = history.result_for(history.primary_service)
        with self._lock:
            item.history_id = history.id
        self.mark_item_complete(item_id, primary.result.url if primary and primary.result else None)

    def retry_service(self, item_id: str, service_id: str, config: UserConfig) -> Optional[ServiceUploadResult]:
        """Upload one service of an item again and patch its history record.

        Returns None when the item is unknown.
        """
        item = self.get_item(item_id)
        if item is None:
            return None
        self.reset_service_for_retry(item_id, service_id)

        result = self.orchestrator.retry_service_upload(
            item.file_path, service_id, config,
            on_progress=self.progress_bus.reporter(item_id, service_id),
        )
        self._apply_results(item_id, [result])
        with self._lock:
            progress = item.service_progress.get(service_id)
            if progress is not None:
                progress.is_retrying = False

        if item.history_id:
            self.orchestrator.patch_service_result(item.history_id, result, config)
        if result.succeeded and item.status == QUEUE_STATE_FAILED:
            self.mark_item_complete(item_id, result.result.url)
        return result
