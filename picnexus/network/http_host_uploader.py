"""
Generic HTTP image-host uploader driven by a HostConfig.

Uploads with pycurl (multipart POST or raw PUT), reports progress through
XFERINFOFUNCTION, and maps every failure to a tagged UploadError before it
leaves this module.
"""

import json
import re
from io import BytesIO
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union

import pycurl

from picnexus.core.config import AccountConfig
from picnexus.core.constants import (
    USER_AGENT, HTTP_OK, HTTP_CREATED, HTTP_UNAUTHORIZED, HTTP_FORBIDDEN,
    HTTP_PAYLOAD_TOO_LARGE, HTTP_TOO_MANY_REQUESTS, HTTP_SERVER_ERROR,
)
from picnexus.core.errors import (
    UploadError, CookieExpiredError, InvalidCookieError, NetworkError, UploadTimeoutError,
    ServerError, RateLimitedError, FileReadError, FileTooLargeError, ResponseParseError,
)
from picnexus.core.host_config import HostConfig
from picnexus.core.models import UploadResult
from picnexus.network.uploaders import BackendUploader, ProgressCallback
from picnexus.utils.logger import log

_CURL_TIMEOUT = 28  # CURLE_OPERATION_TIMEDOUT


def extract_from_json(data: Any, path: Optional[List[Union[str, int]]]) -> Any:
    """Extract value from JSON using path (supports dict keys and array indices).

    Args:
        data: JSON data
        path: List of keys/indices to traverse (can be None)

    Returns:
        Extracted value or None
    """
    if path is None:
        return None
    result = data
    for key in path:
        if isinstance(result, dict):
            result = result.get(key)
        elif isinstance(result, list) and isinstance(key, int):
            result = result[key] if key < len(result) else None
        else:
            return None
        if result is None:
            return None
    return result


class HttpHostUploader(BackendUploader):
    """Uploader for any host described by a HostConfig JSON file."""

    def __init__(self, config: HostConfig):
        self.config = config
        self.service_id = config.service_id
        self.display_name = config.name
        self.requires_credentials = config.requires_auth
        self.credential_field = config.credential_field

    # ------------------------------------------------------------------
    # Upload
    # ------------------------------------------------------------------

    def upload(self, file_path: str, credentials: Dict[str, Any],
               on_progress: Optional[ProgressCallback] = None) -> UploadResult:
        path = self._check_file(file_path)
        log(f"Uploading {path.name} to {self.config.name}...", level="debug", category="uploads")
        try:
            status, body = self._send_file(path, credentials, on_progress)
        except pycurl.error as e:
            code = e.args[0] if e.args else None
            message = e.args[1] if len(e.args) > 1 else str(e)
            if code == _CURL_TIMEOUT:
                raise UploadTimeoutError(f"{self.config.name}: upload timed out ({message})",
                                         service_id=self.service_id) from e
            raise NetworkError(f"{self.config.name}: network error ({message})",
                               service_id=self.service_id) from e

        self._check_status(status, body)
        return self._parse_response(body)

    def _check_file(self, file_path: str) -> Path:
        path = Path(file_path)
        try:
            if not path.is_file():
                raise FileReadError(f"File not found: {file_path}", service_id=self.service_id)
            size = path.stat().st_size
        except OSError as e:
            raise FileReadError(f"Cannot read file {file_path}: {e}", service_id=self.service_id) from e

        if self.config.max_file_size_mb and size > self.config.max_file_size_mb * 1024 * 1024:
            raise FileTooLargeError(
                f"{path.name} is too large for {self.config.name} "
                f"({size / 1024 / 1024:.1f} MiB > {self.config.max_file_size_mb} MiB)",
                service_id=self.service_id,
            )
        return path

    def _prepare_headers(self, credentials: Dict[str, Any]) -> Dict[str, str]:
        headers = {"User-Agent": USER_AGENT, **self.config.headers}
        credential = str(credentials.get(self.credential_field) or "").strip()
        if credential:
            if self.config.auth_type == "bearer":
                headers["Authorization"] = f"Bearer {credential}"
            elif self.config.auth_type == "header":
                headers[self.config.auth_header] = credential
        return headers

    def _send_file(self, path: Path, credentials: Dict[str, Any],
                   on_progress: Optional[ProgressCallback]) -> Tuple[int, str]:
        """Perform the HTTP request. Returns (status code, body text)."""
        upload_url = self.config.upload_endpoint.replace("{filename}", path.name)

        def xferinfo(download_total, downloaded, upload_total, uploaded):
            if on_progress and upload_total > 0:
                on_progress(uploaded * 100.0 / upload_total)
            return 0

        curl = pycurl.Curl()
        response_buffer = BytesIO()
        try:
            curl.setopt(pycurl.URL, upload_url)
            curl.setopt(pycurl.WRITEDATA, response_buffer)
            curl.setopt(pycurl.TIMEOUT, self.config.upload_timeout)
            # Abort if <1KB/s for inactivity_timeout seconds
            curl.setopt(pycurl.LOW_SPEED_TIME, self.config.inactivity_timeout)
            curl.setopt(pycurl.LOW_SPEED_LIMIT, 1024)
            curl.setopt(pycurl.FOLLOWLOCATION, True)
            curl.setopt(pycurl.NOPROGRESS, False)
            curl.setopt(pycurl.XFERINFOFUNCTION, xferinfo)

            headers = self._prepare_headers(credentials)
            curl.setopt(pycurl.HTTPHEADER, [f"{k}: {v}" for k, v in headers.items()])

            if self.config.auth_type == "cookie":
                cookie = str(credentials.get(self.credential_field) or "").strip()
                if cookie:
                    curl.setopt(pycurl.COOKIE, cookie)

            if self.config.method == "PUT":
                with open(path, 'rb') as f:
                    curl.setopt(pycurl.UPLOAD, 1)
                    curl.setopt(pycurl.READDATA, f)
                    curl.setopt(pycurl.INFILESIZE, path.stat().st_size)
                    curl.perform()
            else:
                form_fields = [
                    (self.config.file_field, (
                        pycurl.FORM_FILE, str(path),
                        pycurl.FORM_FILENAME, path.name,
                    )),
                    *[(k, str(v)) for k, v in self.config.extra_fields.items()],
                ]
                curl.setopt(pycurl.HTTPPOST, form_fields)
                curl.perform()

            status = curl.getinfo(pycurl.RESPONSE_CODE)
            return status, response_buffer.getvalue().decode('utf-8', errors='replace')
        finally:
            curl.close()

    # ------------------------------------------------------------------
    # Response handling
    # ------------------------------------------------------------------

    def _is_expired(self, body: str) -> bool:
        return any(re.search(pattern, body, re.IGNORECASE) for pattern in self.config.expired_patterns)

    def _check_status(self, status: int, body: str) -> None:
        """Raise the tagged error matching a non-success HTTP status."""
        name = self.config.name
        if status in (HTTP_OK, HTTP_CREATED):
            if self.config.requires_auth and self._is_expired(body):
                raise CookieExpiredError(f"{name}: cookie expired", service_id=self.service_id)
            return
        if status in (HTTP_UNAUTHORIZED, HTTP_FORBIDDEN):
            if self.config.requires_auth:
                raise CookieExpiredError(f"{name}: credential expired or rejected (HTTP {status})",
                                         service_id=self.service_id)
            raise UploadError(f"{name}: access denied (HTTP {status})", service_id=self.service_id)
        if status == HTTP_PAYLOAD_TOO_LARGE:
            raise FileTooLargeError(f"{name}: file too large (HTTP 413)", service_id=self.service_id)
        if status == HTTP_TOO_MANY_REQUESTS:
            raise RateLimitedError(f"{name}: rate limited (HTTP 429)", service_id=self.service_id)
        if status >= HTTP_SERVER_ERROR:
            raise ServerError(f"{name}: server error (HTTP {status})", status_code=status,
                              service_id=self.service_id)
        raise UploadError(f"{name}: upload failed with status {status}", service_id=self.service_id)

    def _parse_response(self, body: str) -> UploadResult:
        """Extract the image URL (and file id) from a successful response body."""
        name = self.config.name
        file_id: Optional[str] = None
        url: Optional[str] = None

        if self.config.response_type == "json":
            try:
                data = json.loads(body)
            except json.JSONDecodeError as e:
                raise ResponseParseError(f"{name}: could not parse response: {e}",
                                         service_id=self.service_id) from e
            if isinstance(data, list) and data:
                data = data[0]

            if self.config.success_path is not None and not extract_from_json(data, self.config.success_path):
                message = extract_from_json(data, self.config.error_message_path) or "upload rejected"
                raise UploadError(f"{name}: {message}", service_id=self.service_id)

            link = extract_from_json(data, self.config.link_path)
            if link:
                url = str(link)
            found_id = extract_from_json(data, self.config.file_id_path)
            if found_id:
                file_id = str(found_id)
        else:
            if self.config.link_regex:
                match = re.search(self.config.link_regex, body)
                if match:
                    url = match.group(1) if match.groups() else match.group(0)
                    file_id = url
            else:
                url = body.strip() or None

        if url and self.config.link_regex and self.config.response_type == "json":
            match = re.search(self.config.link_regex, url)
            if match and match.groups():
                url = match.group(1)

        if not url:
            raise ResponseParseError(f"{name}: could not parse response (no link found)",
                                     service_id=self.service_id)

        return UploadResult(
            service_id=self.service_id,
            url=f"{self.config.link_prefix}{url}{self.config.link_suffix}",
            file_key=file_id,
        )

    # ------------------------------------------------------------------
    # Credential refresh
    # ------------------------------------------------------------------

    @property
    def supports_relogin(self) -> bool:
        return bool(self.config.login_url)

    def refresh_credentials(self, account: AccountConfig) -> str:
        """POST the login form and return the session cookies as a Cookie header value."""
        if not self.config.login_url:
            return super().refresh_credentials(account)

        fields = [
            (k, v.replace("{username}", account.username).replace("{password}", account.password))
            for k, v in self.config.login_fields.items()
        ]
        header_buffer = BytesIO()
        curl = pycurl.Curl()
        try:
            curl.setopt(pycurl.URL, self.config.login_url)
            curl.setopt(pycurl.WRITEDATA, BytesIO())
            curl.setopt(pycurl.HEADERFUNCTION, header_buffer.write)
            curl.setopt(pycurl.HTTPHEADER, [f"User-Agent: {USER_AGENT}"])
            curl.setopt(pycurl.TIMEOUT, 30)
            curl.setopt(pycurl.HTTPPOST, fields)
            curl.perform()
            status = curl.getinfo(pycurl.RESPONSE_CODE)
        except pycurl.error as e:
            raise NetworkError(f"{self.config.name}: login request failed: {e}",
                               service_id=self.service_id) from e
        finally:
            curl.close()

        cookie = self._cookies_from_headers(header_buffer.getvalue().decode('iso-8859-1'))
        if status not in (HTTP_OK, HTTP_CREATED) or not cookie:
            raise InvalidCookieError(f"{self.config.name}: login failed (HTTP {status})",
                                     service_id=self.service_id)
        log(f"Refreshed {self.config.name} cookie via account login", level="info", category="auth")
        return cookie

    @staticmethod
    def _cookies_from_headers(raw_headers: str) -> str:
        cookies: Dict[str, str] = {}
        for line in raw_headers.splitlines():
            if line.lower().startswith("set-cookie:"):
                pair = line.split(":", 1)[1].strip().split(";", 1)[0]
                if "=" in pair:
                    name, value = pair.split("=", 1)
                    cookies[name.strip()] = value.strip()
        return "; ".join(f"{k}={v}" for k, v in cookies.items())


def build_registry_uploaders(hosts: Dict[str, HostConfig]) -> List[HttpHostUploader]:
    """One HttpHostUploader per loaded host definition."""
    return [HttpHostUploader(config) for config in hosts.values()]
