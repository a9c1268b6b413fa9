"""
Upload orchestration: the single-backend path and history persistence.

handle_file_upload() runs one file through validation, the primary
backend, link generation, the optional object-storage backup and the
history write. Failures are classified: expired credentials trigger one
automatic relogin when the account allows it, retryable failures land in
the retry queue, everything else is reported as an error.

The multi-service path (upload_to_services) fans out through
MultiServiceUploader and records the outcome in the same history list.
"""

import os
import threading
from concurrent.futures import Future, TimeoutError as FuturesTimeout
from typing import Any, Callable, Dict, List, Optional

from picnexus.core.config import UserConfig
from picnexus.core.constants import (
    CONFIG_KEY, HISTORY_KEY, BACKUP_TIMEOUT,
    OUTCOME_SUCCESS, OUTCOME_FAILED, OUTCOME_ERROR,
)
from picnexus.core.error_classifier import classify
from picnexus.core.errors import AllServicesFailedError, ObjectStorageError, StoreError
from picnexus.core.link_generator import (
    generate_link, generate_service_link, hash_name_for, object_key,
)
from picnexus.core.models import (
    HistoryItem, MultiUploadResult, ServiceUploadResult, UploadOutcome, UploadResult,
    generate_item_id, now_ms,
)
from picnexus.network.object_storage import (
    ObjectStorageClient, S3ObjectStorageClient, guess_content_type,
)
from picnexus.network.uploaders import ProgressCallback, UploaderRegistry
from picnexus.processing.multi_service import MultiServiceUploader, ServiceProgressCallback
from picnexus.processing.retry_queue import RetryQueue
from picnexus.processing.webdav_sync import WebDAVSync
from picnexus.services.notifications import (
    Clipboard, LogNotifier, Notifier, PyperclipClipboard, safe_copy, safe_notify,
)
from picnexus.storage.stores import Stores
from picnexus.utils.image_meta import read_image_metadata
from picnexus.utils.logger import log

ObjectStorageFactory = Callable[[UserConfig], ObjectStorageClient]


def _default_object_storage(config: UserConfig) -> ObjectStorageClient:
    return S3ObjectStorageClient.for_r2(config.r2)


def build_history_item(file_path: str, primary_service: Optional[str],
                       results: List[ServiceUploadResult], generated_link: str = "",
                       backup_key: Optional[str] = None) -> HistoryItem:
    """New history record for file_path, with image metadata when readable."""
    meta = read_image_metadata(file_path)
    return HistoryItem(
        id=generate_item_id(),
        timestamp=now_ms(),
        local_file_name=os.path.basename(file_path),
        file_path=file_path,
        primary_service=primary_service,
        results=list(results),
        generated_link=generated_link,
        backup_key=backup_key,
        width=meta.width,
        height=meta.height,
        file_size=meta.file_size,
        format=meta.format,
    )


class UploadOrchestrator:
    """Drives uploads end to end and owns the history and retry documents."""

    def __init__(self, stores: Stores, registry: UploaderRegistry,
                 multi_uploader: Optional[MultiServiceUploader] = None,
                 webdav_sync: Optional[WebDAVSync] = None,
                 notifier: Optional[Notifier] = None,
                 clipboard: Optional[Clipboard] = None,
                 object_storage_factory: Optional[ObjectStorageFactory] = None,
                 backup_timeout: float = BACKUP_TIMEOUT,
                 retry_queue: Optional[RetryQueue] = None):
        self.stores = stores
        self.registry = registry
        self.multi_uploader = multi_uploader or MultiServiceUploader(registry)
        self.webdav_sync = webdav_sync or WebDAVSync()
        self.notifier = notifier or LogNotifier()
        self.clipboard = clipboard or PyperclipClipboard()
        self.object_storage_factory = object_storage_factory or _default_object_storage
        self.backup_timeout = backup_timeout

        self.retry_queue = retry_queue or RetryQueue(stores.retry)
        # Retried uploads must not enqueue a second entry for the same file
        self.retry_queue.upload_handler = lambda path, cfg: self.process_upload(path, cfg, queue_retry=False)

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------

    def load_config(self) -> UserConfig:
        """Read the persisted user configuration (empty config when unset)."""
        return UserConfig.from_dict(self.stores.settings.get(CONFIG_KEY, {}))

    def save_config(self, config: UserConfig) -> None:
        self.stores.settings.set(CONFIG_KEY, config.to_dict())

    def _persist_credential(self, service_id: str, field_name: str, value: str) -> None:
        def apply(current):
            stored = UserConfig.from_dict(current if isinstance(current, dict) else {})
            stored.set_service_option(service_id, field_name, value)
            return stored.to_dict()

        try:
            self.stores.settings.update(CONFIG_KEY, apply, default={})
            log(f"Saved refreshed {field_name} for {service_id}", level="info", category="auth")
        except StoreError as e:
            log(f"Could not persist refreshed {field_name} for {service_id}: {e}",
                level="warning", category="auth")

    # ------------------------------------------------------------------
    # Single-backend path
    # ------------------------------------------------------------------

    def handle_file_upload(self, file_path: str, config: UserConfig) -> UploadOutcome:
        """Upload one file through the primary backend, with backup enabled."""
        return self.process_upload(file_path, config, upload_to_r2=True)

    def _validate(self, file_path: str, config: UserConfig) -> Optional[str]:
        if not file_path or not os.path.exists(file_path):
            return f"File not found: {file_path}"
        if not os.path.isfile(file_path):
            return f"Not a file: {file_path}"
        if not os.access(file_path, os.R_OK):
            return f"File is not readable: {file_path}"

        service_id = config.effective_primary_service
        if not service_id:
            return "No upload service configured"
        uploader = self.registry.get(service_id)
        if uploader is None:
            available = ", ".join(self.registry.service_ids()) or "none"
            return f"Unknown upload service: {service_id} (available: {available})"
        return uploader.validate_config(config.service_options(service_id))

    def process_upload(self, file_path: str, config: UserConfig, upload_to_r2: bool = True,
                       on_progress: Optional[ProgressCallback] = None,
                       queue_retry: bool = True, _relogin_attempted: bool = False) -> UploadOutcome:
        """Run the single-backend pipeline for one file.

        Args:
            file_path: Local file to upload
            config: User configuration (updated in place when a relogin refreshes credentials)
            upload_to_r2: Back the file up to object storage when R2 is configured
            on_progress: Optional progress callback (percent)
            queue_retry: Add retryable failures to the retry queue

        Returns:
            UploadOutcome with status success, failed (queued for retry) or error
        """
        file_name = os.path.basename(file_path or "")
        problem = self._validate(file_path, config)
        if problem:
            log(f"Upload of {file_name} rejected: {problem}", level="warning", category="uploads")
            safe_notify(self.notifier, "Upload failed", problem, level="error")
            return UploadOutcome(OUTCOME_ERROR, message=problem)

        service_id = config.effective_primary_service
        uploader = self.registry.get(service_id)
        log(f"Uploading {file_name} to {service_id}", level="info", category="uploads")
        try:
            result = uploader.upload(file_path, config.service_options(service_id), on_progress)
        except Exception as e:
            return self._handle_failure(e, file_path, config, service_id, upload_to_r2,
                                        on_progress, queue_retry, _relogin_attempted)

        hash_name = hash_name_for(result)
        link = generate_link(
            result.url, hash_name, config,
            on_warning=lambda title, body: safe_notify(self.notifier, title, body, level="warning"),
        )
        if safe_copy(self.clipboard, link):
            safe_notify(self.notifier, "Upload succeeded", "Link copied to clipboard")
        else:
            safe_notify(self.notifier, "Upload succeeded", link)

        backup_key = None
        if upload_to_r2 and config.r2.is_configured:
            backup_key = self._backup(file_path, hash_name, config)

        item = build_history_item(
            file_path, service_id, [ServiceUploadResult.success(service_id, result)],
            generated_link=link, backup_key=backup_key,
        )
        self.save_history_item(item, config)
        log(f"Uploaded {file_name}: {link}", level="info", category="uploads")
        return UploadOutcome(OUTCOME_SUCCESS, link=link, history_item=item)

    def _handle_failure(self, error: Exception, file_path: str, config: UserConfig,
                        service_id: str, upload_to_r2: bool,
                        on_progress: Optional[ProgressCallback],
                        queue_retry: bool, relogin_attempted: bool) -> UploadOutcome:
        classification = classify(error)
        message = str(error) or type(error).__name__
        file_name = os.path.basename(file_path)
        log(f"Upload of {file_name} to {service_id} failed ({classification.kind.value}): {message}",
            level="warning", category="uploads")

        if classification.is_cookie_expired:
            uploader = self.registry.get(service_id)
            if config.account.can_relogin and uploader.supports_relogin and not relogin_attempted:
                log(f"{service_id} credentials expired, logging in again", level="info", category="auth")
                try:
                    credential = uploader.refresh_credentials(config.account)
                except Exception as login_error:
                    detail = f"Credentials expired and automatic login failed: {login_error}"
                    log(detail, level="error", category="auth")
                    safe_notify(self.notifier, "Upload failed", detail, level="error")
                    return UploadOutcome(OUTCOME_ERROR, message=detail)
                config.set_service_option(service_id, uploader.credential_field, credential)
                self._persist_credential(service_id, uploader.credential_field, credential)
                return self.process_upload(file_path, config, upload_to_r2, on_progress,
                                           queue_retry=queue_retry, _relogin_attempted=True)
            detail = f"{service_id} credentials expired, update them in settings"
            safe_notify(self.notifier, "Upload failed", detail, level="error")
            return UploadOutcome(OUTCOME_ERROR, message=detail)

        if classification.retryable:
            if queue_retry:
                try:
                    self.retry_queue.add(file_path, config.snapshot(), message,
                                         error_kind=classification.kind.value)
                except StoreError as e:
                    log(f"Could not queue {file_name} for retry: {e}", level="error", category="retry")
                    safe_notify(self.notifier, "Upload failed", message, level="error")
                    return UploadOutcome(OUTCOME_ERROR, message=message)
                safe_notify(self.notifier, "Upload failed", f"{message} (added to retry queue)",
                            level="warning")
            return UploadOutcome(OUTCOME_FAILED, message=message)

        safe_notify(self.notifier, "Upload failed", message, level="error")
        return UploadOutcome(OUTCOME_ERROR, message=message)

    def _backup(self, file_path: str, hash_name: str, config: UserConfig) -> Optional[str]:
        """Copy the file to object storage, waiting at most backup_timeout seconds.

        Each backup runs on its own daemon thread; a put still running at
        the timeout is abandoned.
        """
        key = object_key(config.r2.path, hash_name)
        future: Future = Future()

        def put(client: ObjectStorageClient, data: bytes) -> None:
            if not future.set_running_or_notify_cancel():
                return
            try:
                client.put(config.r2.bucket_name, key, data, guess_content_type(hash_name))
            except Exception as e:
                future.set_exception(e)
            else:
                future.set_result(key)

        try:
            with open(file_path, 'rb') as f:
                data = f.read()
            client = self.object_storage_factory(config)
            threading.Thread(target=put, args=(client, data), daemon=True,
                             name=f"Backup-{hash_name}").start()
            future.result(timeout=self.backup_timeout)
        except FuturesTimeout:
            future.cancel()
            log(f"Backup of {hash_name} timed out after {self.backup_timeout:.0f}s",
                level="warning", category="uploads")
            safe_notify(self.notifier, "Backup failed", "Object storage backup timed out", level="warning")
            return None
        except (ObjectStorageError, OSError) as e:
            log(f"Backup of {hash_name} failed: {e}", level="warning", category="uploads")
            safe_notify(self.notifier, "Backup failed", str(e), level="warning")
            return None
        log(f"Backed up {hash_name} to {config.r2.bucket_name}/{key}", level="debug", category="uploads")
        return key

    # ------------------------------------------------------------------
    # Multi-service path
    # ------------------------------------------------------------------

    def upload_to_services(self, file_path: str, services: List[str], config: UserConfig,
                           item_id: Optional[str] = None,
                           on_progress: Optional[ServiceProgressCallback] = None,
                           copy_link: bool = True) -> HistoryItem:
        """Fan file_path out to services and record the outcome in history.

        Raises:
            ValidationError: nothing enabled or configured
            AllServicesFailedError: every service failed; history_id is set on it
        """
        try:
            multi: MultiUploadResult = self.multi_uploader.upload_to_multiple_services(
                file_path, services, config, on_progress=on_progress, item_id=item_id,
            )
        except AllServicesFailedError as e:
            item = build_history_item(file_path, None, e.results)
            self.save_history_item(item, config)
            e.history_id = item.id
            safe_notify(self.notifier, "Upload failed", str(e), level="error")
            raise

        primary = multi.result_for(multi.primary_service)
        link = generate_service_link(primary.result, config)
        item = build_history_item(file_path, multi.primary_service, multi.results, generated_link=link)
        self.save_history_item(item, config)
        if copy_link:
            safe_copy(self.clipboard, link)
        return item

    # ------------------------------------------------------------------
    # History
    # ------------------------------------------------------------------

    def get_history(self, limit: Optional[int] = None) -> List[HistoryItem]:
        raw = self.stores.history.get(HISTORY_KEY, [])
        items = [HistoryItem.from_dict(r) for r in raw if isinstance(r, dict)] if isinstance(raw, list) else []
        return items[:limit] if limit is not None else items

    def _sync(self, items: List[Dict[str, Any]], config: Optional[UserConfig]) -> None:
        if config is not None and config.webdav.is_configured:
            self.webdav_sync.sync_detached(items, config.webdav)

    def save_history_item(self, item: HistoryItem, config: Optional[UserConfig] = None) -> bool:
        """Prepend item to the history list and start a detached sync.

        A failed write is logged, never raised.
        """
        try:
            items = self.stores.history.update(
                HISTORY_KEY, lambda current: [item.to_dict()] + list(current or []), default=[],
            )
        except StoreError as e:
            log(f"Failed to save history item {item.id}: {e}", level="error", category="store")
            return False
        self._sync(items, config)
        return True

    def patch_service_result(self, history_id: str, service_result: ServiceUploadResult,
                             config: UserConfig) -> Optional[HistoryItem]:
        """Replace one service's result inside a history item.

        The first success an item ever gets promotes that service to primary
        and regenerates the link. Returns the patched item, or None when the
        id is unknown.
        """
        patched: List[HistoryItem] = []

        def apply(current):
            items = list(current or [])
            for index, raw in enumerate(items):
                if not isinstance(raw, dict) or raw.get('id') != history_id:
                    continue
                item = HistoryItem.from_dict(raw)
                had_success = item.has_success
                item.results = [r for r in item.results if r.service_id != service_result.service_id]
                item.results.append(service_result)
                if service_result.succeeded and not had_success:
                    item.primary_service = service_result.service_id
                    item.generated_link = generate_service_link(service_result.result, config)
                items[index] = item.to_dict()
                patched.append(item)
                break
            return items

        try:
            items = self.stores.history.update(HISTORY_KEY, apply, default=[])
        except StoreError as e:
            log(f"Failed to patch history item {history_id}: {e}", level="error", category="store")
            return None
        if not patched:
            log(f"History item {history_id} not found", level="warning", category="store")
            return None
        self._sync(items, config)
        return patched[0]

    def delete_history_items(self, ids: List[str], config: Optional[UserConfig] = None) -> int:
        """Remove the given ids from history. Returns how many were removed."""
        targets = set(ids)
        removed: List[int] = []

        def apply(current):
            items = list(current or [])
            kept = [r for r in items if not (isinstance(r, dict) and r.get('id') in targets)]
            removed.append(len(items) - len(kept))
            return kept

        items = self.stores.history.update(HISTORY_KEY, apply, default=[])
        count = removed[0] if removed else 0
        log(f"Deleted {count} history item(s)", level="info", category="store")
        if count:
            self._sync(items, config)
        return count

    def retry_service_upload(self, file_path: str, service_id: str, config: UserConfig,
                             on_progress: Optional[ProgressCallback] = None) -> ServiceUploadResult:
        """Run one backend again and wrap the outcome as a ServiceUploadResult."""
        try:
            result: UploadResult = self.multi_uploader.retry_upload(file_path, service_id, config, on_progress)
        except Exception as e:
            log(f"Retry of {service_id} failed: {e}", level="warning", category="uploads")
            return ServiceUploadResult.failure(service_id, str(e) or type(e).__name__)
        return ServiceUploadResult.success(service_id, result)
