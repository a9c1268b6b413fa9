"""
S3-compatible object storage client (Cloudflare R2 backups).

Requests are signed with libcurl's built-in AWS SigV4 support, so no SDK
is needed for the single PUT the backup step performs.
"""

import hashlib
import mimetypes
import re
from abc import ABC, abstractmethod
from io import BytesIO
from typing import Optional
from urllib.parse import quote

import pycurl

from picnexus.core.config import R2Config
from picnexus.core.constants import HTTP_OK, HTTP_UNAUTHORIZED, HTTP_FORBIDDEN, HTTP_NOT_FOUND
from picnexus.core.errors import ObjectStorageError
from picnexus.utils.logger import log

_CURL_TIMEOUT = 28
_ERROR_CODE_RE = re.compile(r"<Code>([^<]+)</Code>")


class ObjectStorageClient(ABC):
    """Minimal object storage contract used by the backup step."""

    @abstractmethod
    def put(self, bucket: str, key: str, data: bytes, content_type: str) -> None:
        """Store data under bucket/key. Raises ObjectStorageError."""


def guess_content_type(file_name: str) -> str:
    return mimetypes.guess_type(file_name)[0] or "application/octet-stream"


class S3ObjectStorageClient(ObjectStorageClient):
    """PUT-only S3 client on pycurl."""

    def __init__(self, endpoint: str, access_key_id: str, secret_access_key: str,
                 region: str = "auto", timeout: int = 60):
        self.endpoint = endpoint.rstrip("/")
        self.access_key_id = access_key_id
        self.secret_access_key = secret_access_key
        self.region = region
        self.timeout = timeout

    @classmethod
    def for_r2(cls, config: R2Config, timeout: int = 60) -> 'S3ObjectStorageClient':
        return cls(
            endpoint=f"https://{config.account_id}.r2.cloudflarestorage.com",
            access_key_id=config.access_key_id,
            secret_access_key=config.secret_access_key,
            timeout=timeout,
        )

    def object_url(self, bucket: str, key: str) -> str:
        return f"{self.endpoint}/{quote(bucket)}/{quote(key, safe='/')}"

    def put(self, bucket: str, key: str, data: bytes, content_type: str) -> None:
        curl = pycurl.Curl()
        response_buffer = BytesIO()
        try:
            curl.setopt(pycurl.URL, self.object_url(bucket, key))
            curl.setopt(pycurl.CUSTOMREQUEST, "PUT")
            curl.setopt(pycurl.POSTFIELDS, data)
            curl.setopt(pycurl.POSTFIELDSIZE, len(data))
            curl.setopt(pycurl.WRITEDATA, response_buffer)
            curl.setopt(pycurl.TIMEOUT, self.timeout)
            curl.setopt(pycurl.USERPWD, f"{self.access_key_id}:{self.secret_access_key}")
            curl.setopt(pycurl.AWS_SIGV4, f"aws:amz:{self.region}:s3")
            curl.setopt(pycurl.HTTPHEADER, [
                f"Content-Type: {content_type}",
                f"x-amz-content-sha256: {hashlib.sha256(data).hexdigest()}",
            ])
            curl.perform()
            status = curl.getinfo(pycurl.RESPONSE_CODE)
        except pycurl.error as e:
            code = e.args[0] if e.args else None
            reason = "timeout" if code == _CURL_TIMEOUT else "network"
            raise ObjectStorageError(f"Object storage request failed: {e}", reason=reason,
                                     original_error=e) from e
        finally:
            curl.close()

        if status != HTTP_OK:
            body = response_buffer.getvalue().decode("utf-8", errors="replace")
            raise self._error_for(status, body)
        log(f"Stored object {bucket}/{key} ({len(data)} bytes)", level="debug", category="network")

    @staticmethod
    def _error_for(status: int, body: str) -> ObjectStorageError:
        match = _ERROR_CODE_RE.search(body)
        code: Optional[str] = match.group(1) if match else None

        if code in ("InvalidAccessKeyId", "SignatureDoesNotMatch") or status == HTTP_UNAUTHORIZED:
            reason = "credentials"
        elif code == "NoSuchBucket" or status == HTTP_NOT_FOUND:
            reason = "bucket"
        elif status == HTTP_FORBIDDEN:
            reason = "permission"
        else:
            reason = "unknown"
        return ObjectStorageError(f"Object storage PUT failed (HTTP {status}, {code or 'no error code'})",
                                  reason=reason)
