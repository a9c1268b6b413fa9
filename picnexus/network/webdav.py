"""WebDAV client (overwrite PUT only)."""

from dataclasses import dataclass
from typing import Dict, Optional

import requests

from picnexus.core.constants import USER_AGENT, WEBDAV_TIMEOUT
from picnexus.core.errors import WebDAVError


@dataclass
class WebDAVResponse:
    ok: bool
    status: int

    def raise_for_status(self) -> None:
        if not self.ok:
            raise WebDAVError(f"WebDAV request failed with HTTP {self.status}", status_code=self.status)


class WebDAVClient:
    """Authenticated PUT against a WebDAV server.

    Network failures propagate as requests exceptions; HTTP statuses are
    returned, not raised (see WebDAVResponse.raise_for_status).
    """

    def __init__(self, username: str, password: str, timeout: float = WEBDAV_TIMEOUT,
                 session: Optional[requests.Session] = None):
        self._auth = (username, password)
        self._timeout = timeout
        self._session = session or requests.Session()

    def put(self, url: str, body: bytes, headers: Optional[Dict[str, str]] = None) -> WebDAVResponse:
        request_headers = {"User-Agent": USER_AGENT, **(headers or {})}
        response = self._session.put(
            url,
            data=body,
            headers=request_headers,
            auth=self._auth,
            timeout=self._timeout,
        )
        return WebDAVResponse(ok=response.ok, status=response.status_code)
