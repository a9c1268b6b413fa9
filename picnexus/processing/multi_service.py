"""
Concurrent fan-out of one file to several image hosts.

Every configured service gets its own worker thread; services never wait
on each other. The primary service is the first success in the order the
user enabled the services.
"""

from concurrent.futures import ThreadPoolExecutor, Future
from typing import Callable, Dict, List, Optional

from picnexus.core.config import UserConfig
from picnexus.core.errors import ValidationError, AllServicesFailedError, UploadError
from picnexus.core.events import ProgressBus, get_progress_bus
from picnexus.core.models import UploadResult, ServiceUploadResult, MultiUploadResult
from picnexus.network.uploaders import UploaderRegistry, ProgressCallback
from picnexus.utils.logger import log

# on_progress(service_id, percent)
ServiceProgressCallback = Callable[[str, float], None]


class MultiServiceUploader:
    """Uploads one file to every configured service in parallel."""

    def __init__(self, registry: UploaderRegistry, progress_bus: Optional[ProgressBus] = None):
        self.registry = registry
        self.progress_bus = progress_bus or get_progress_bus()

    def filter_configured_services(self, enabled_services: List[str], config: UserConfig) -> List[str]:
        """Keep the enabled services that have an uploader and a usable configuration."""
        valid = []
        for service_id in enabled_services:
            uploader = self.registry.get(service_id)
            if uploader is None:
                log(f"{service_id}: no uploader registered, skipping", level="warning", category="uploads")
                continue
            if not uploader.is_configured(config.service_options(service_id)):
                log(f"{service_id}: not configured, skipping", level="warning", category="uploads")
                continue
            valid.append(service_id)
        return valid

    def _progress_for(self, service_id: str, item_id: Optional[str],
                      on_progress: Optional[ServiceProgressCallback]) -> Optional[ProgressCallback]:
        if item_id is None and on_progress is None:
            return None
        bus_report = self.progress_bus.reporter(item_id, service_id) if item_id is not None else None

        def report(percent: float) -> None:
            if bus_report:
                bus_report(percent)
            if on_progress:
                on_progress(service_id, percent)
        return report

    def _upload_one(self, file_path: str, service_id: str, config: UserConfig,
                    progress: Optional[ProgressCallback]) -> ServiceUploadResult:
        try:
            result = self.retry_upload(file_path, service_id, config, progress)
        except UploadError as e:
            log(f"{service_id} upload failed: {e}", level="warning", category="uploads")
            return ServiceUploadResult.failure(service_id, str(e))
        except Exception as e:
            # Foreign exception from a third-party uploader; keep the others running
            log(f"{service_id} upload failed: {type(e).__name__}: {e}", level="warning", category="uploads")
            return ServiceUploadResult.failure(service_id, str(e) or type(e).__name__)
        log(f"{service_id} upload succeeded", level="debug", category="uploads")
        return ServiceUploadResult.success(service_id, result)

    def upload_to_multiple_services(self, file_path: str, enabled_services: List[str],
                                    config: UserConfig,
                                    on_progress: Optional[ServiceProgressCallback] = None,
                                    item_id: Optional[str] = None) -> MultiUploadResult:
        """Upload file_path to all configured services concurrently.

        Args:
            file_path: Local file to upload
            enabled_services: Services in priority order
            config: User configuration
            on_progress: Optional (service_id, percent) callback
            item_id: Queue item id; when given, progress is also published to the bus

        Returns:
            MultiUploadResult with one entry per attempted service

        Raises:
            ValidationError: no service enabled, or none of them configured
            AllServicesFailedError: every attempted service failed
        """
        if not enabled_services:
            raise ValidationError("No upload service enabled; select at least one service")

        services = self.filter_configured_services(enabled_services, config)
        if not services:
            raise ValidationError(
                f"Enabled services are not configured: {', '.join(enabled_services)}"
            )

        log(f"Uploading to {', '.join(services)}", level="debug", category="uploads")
        with ThreadPoolExecutor(max_workers=len(services), thread_name_prefix="picnexus-svc") as executor:
            futures: Dict[str, Future] = {
                service_id: executor.submit(
                    self._upload_one, file_path, service_id, config,
                    self._progress_for(service_id, item_id, on_progress),
                )
                for service_id in services
            }
            results = [futures[service_id].result() for service_id in services]

        primary = next((r for r in results if r.succeeded), None)
        if primary is None:
            raise AllServicesFailedError(results)

        succeeded = sum(1 for r in results if r.succeeded)
        log(f"Primary service: {primary.service_id} ({succeeded}/{len(results)} succeeded)",
            level="debug", category="uploads")
        return MultiUploadResult(
            primary_service=primary.service_id,
            primary_url=primary.result.url,
            results=results,
        )

    def retry_upload(self, file_path: str, service_id: str, config: UserConfig,
                     on_progress: Optional[ProgressCallback] = None) -> UploadResult:
        """Run exactly one backend. Raises on failure."""
        uploader = self.registry.get(service_id)
        if uploader is None:
            raise ValidationError(f"Unknown upload service: {service_id}")
        options = config.service_options(service_id)
        problem = uploader.validate_config(options)
        if problem:
            raise ValidationError(f"Configuration invalid: {problem}")
        return uploader.upload(file_path, options, on_progress)
