"""
Exception hierarchy for PicNexus.

Upload failures are raised as tagged ``UploadError`` subclasses at the
uploader boundary so the classifier can work on types instead of message
text. Store, object-storage and WebDAV failures have their own types.
"""

from enum import Enum
from typing import Any, List, Optional, TYPE_CHECKING

if TYPE_CHECKING:
    from picnexus.core.models import ServiceUploadResult


class ErrorKind(Enum):
    """Classified upload error kinds."""
    COOKIE_EXPIRED = "cookie_expired"
    INVALID_COOKIE = "invalid_cookie"
    NETWORK_ERROR = "network_error"
    TIMEOUT_ERROR = "timeout_error"
    SERVER_ERROR = "server_error"
    RATE_LIMITED = "rate_limited"
    FILE_NOT_FOUND = "file_not_found"
    FILE_TOO_LARGE = "file_too_large"
    PARSE_ERROR = "parse_error"
    UNKNOWN = "unknown"


class PicNexusError(Exception):
    """Base class for all PicNexus errors."""
    pass


class StoreError(PicNexusError):
    """Raised when an encrypted store operation fails.

    Attributes:
        operation: One of 'read', 'write', 'clear', 'init'
        key: Store key involved (if any)
        original_error: Underlying exception (if any)
    """

    OPERATIONS = ("read", "write", "clear", "init")

    def __init__(self, message: str, operation: str, key: Optional[str] = None,
                 original_error: Optional[BaseException] = None):
        super().__init__(message)
        if operation not in self.OPERATIONS:
            raise ValueError(f"Unknown store operation: {operation}")
        self.operation = operation
        self.key = key
        self.original_error = original_error


class UploadError(PicNexusError):
    """Base class for backend upload failures."""

    kind: ErrorKind = ErrorKind.UNKNOWN

    def __init__(self, message: str, service_id: Optional[str] = None):
        super().__init__(message)
        self.service_id = service_id


class CookieExpiredError(UploadError):
    kind = ErrorKind.COOKIE_EXPIRED


class InvalidCookieError(UploadError):
    kind = ErrorKind.INVALID_COOKIE


class NetworkError(UploadError):
    kind = ErrorKind.NETWORK_ERROR


class UploadTimeoutError(UploadError):
    kind = ErrorKind.TIMEOUT_ERROR


class ServerError(UploadError):
    kind = ErrorKind.SERVER_ERROR

    def __init__(self, message: str, status_code: int = 500, service_id: Optional[str] = None):
        super().__init__(message, service_id)
        self.status_code = status_code


class RateLimitedError(UploadError):
    kind = ErrorKind.RATE_LIMITED


class FileReadError(UploadError):
    kind = ErrorKind.FILE_NOT_FOUND


class FileTooLargeError(UploadError):
    kind = ErrorKind.FILE_TOO_LARGE


class ResponseParseError(UploadError):
    kind = ErrorKind.PARSE_ERROR


class ValidationError(PicNexusError):
    """Missing or invalid configuration detected before any upload starts."""
    pass


class AllServicesFailedError(PicNexusError):
    """Every enabled service failed for one file."""

    def __init__(self, results: List["ServiceUploadResult"], history_id: Optional[str] = None):
        details = "\n".join(
            f"  - {r.service_id}: {r.error or 'unknown error'}" for r in results
        )
        super().__init__(f"All services failed:\n{details}")
        self.results = results
        # Id of the history item recorded for the failed attempt (if any)
        self.history_id = history_id


class ObjectStorageError(PicNexusError):
    """Object storage (S3-compatible) backup failure.

    reason is one of: credentials, bucket, network, timeout, permission, unknown
    """

    def __init__(self, message: str, reason: str = "unknown", original_error: Any = None):
        super().__init__(message)
        self.reason = reason
        self.original_error = original_error


class WebDAVError(PicNexusError):
    """WebDAV request returned a non-success status."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code
