"""
Backend uploader interface and registry.

A BackendUploader turns (file, credentials, on_progress) into an
UploadResult or raises a tagged UploadError. Anything backend specific
(wire format, auth scheme) stays behind this interface.
"""

import threading
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, List, Optional

from picnexus.core.config import AccountConfig
from picnexus.core.errors import InvalidCookieError
from picnexus.core.models import UploadResult

# on_progress(percent) with percent in 0..100
ProgressCallback = Callable[[float], None]


class BackendUploader(ABC):
    """One image-hosting backend."""

    service_id: str = ""
    display_name: str = ""
    requires_credentials: bool = True
    credential_field: str = "cookie"

    @abstractmethod
    def upload(self, file_path: str, credentials: Dict[str, Any],
               on_progress: Optional[ProgressCallback] = None) -> UploadResult:
        """Upload one file.

        Args:
            file_path: Local file to upload
            credentials: The service's option dict from UserConfig.services
            on_progress: Optional progress callback (percent)

        Returns:
            UploadResult with the public URL

        Raises:
            UploadError: tagged failure (see picnexus.core.errors)
        """

    def validate_config(self, options: Dict[str, Any]) -> Optional[str]:
        """Return a human readable problem with the options, or None if usable."""
        if self.requires_credentials and not str(options.get(self.credential_field) or "").strip():
            return f"{self.display_name or self.service_id}: {self.credential_field} is not configured"
        return None

    def is_configured(self, options: Dict[str, Any]) -> bool:
        """Credentialed services need their credential; the others honour 'enabled'."""
        if self.requires_credentials:
            return self.validate_config(options) is None
        return bool(options.get('enabled', True))

    @property
    def supports_relogin(self) -> bool:
        return False

    def refresh_credentials(self, account: AccountConfig) -> str:
        """Log in with account credentials and return a fresh credential string."""
        raise InvalidCookieError(
            f"{self.display_name or self.service_id} does not support automatic login",
            service_id=self.service_id,
        )


class UploaderRegistry:
    """Maps service ids to uploader instances."""

    def __init__(self, uploaders: Optional[List[BackendUploader]] = None):
        self._uploaders: Dict[str, BackendUploader] = {}
        self._lock = threading.Lock()
        for uploader in uploaders or []:
            self.register(uploader)

    def register(self, uploader: BackendUploader) -> None:
        if not uploader.service_id:
            raise ValueError("Uploader must define a service_id")
        with self._lock:
            self._uploaders[uploader.service_id] = uploader

    def get(self, service_id: str) -> Optional[BackendUploader]:
        with self._lock:
            return self._uploaders.get(service_id)

    def service_ids(self) -> List[str]:
        with self._lock:
            return list(self._uploaders.keys())

    def __contains__(self, service_id: object) -> bool:
        with self._lock:
            return service_id in self._uploaders

    def __len__(self) -> int:
        with self._lock:
            return len(self._uploaders)
