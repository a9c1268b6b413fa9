"""
Best-effort push of the upload history to a WebDAV server.

sync() tries once and reports nothing upward: every failure is logged and
turned into a False return value.
"""

import json
from concurrent.futures import Future
from typing import Any, Callable, Dict, List, Optional, Union

import requests

from picnexus.core.config import WebDAVConfig
from picnexus.core.constants import (
    WEBDAV_HISTORY_FILENAME, WEBDAV_TIMEOUT, HTTP_UNAUTHORIZED, HTTP_FORBIDDEN,
    HTTP_NOT_FOUND, HTTP_INSUFFICIENT_STORAGE, HTTP_SERVER_ERROR,
)
from picnexus.core.errors import WebDAVError
from picnexus.core.models import HistoryItem
from picnexus.network.webdav import WebDAVClient
from picnexus.processing.background import BackgroundTasks, get_background_tasks
from picnexus.utils.logger import log

ClientFactory = Callable[[str, str, float], WebDAVClient]


def _failure_reason(status: Optional[int]) -> str:
    if status in (HTTP_UNAUTHORIZED, HTTP_FORBIDDEN):
        return "authentication failed, check username/password"
    if status == HTTP_NOT_FOUND:
        return "remote path not found"
    if status == HTTP_INSUFFICIENT_STORAGE:
        return "server storage quota exceeded"
    if status is not None and status >= HTTP_SERVER_ERROR:
        return "server error"
    return "unexpected response"


def build_webdav_url(base_url: str, remote_path: str) -> str:
    """Join server URL and remote path, pointing at a JSON file.

    A remote path ending in "/" gets history.json appended; any other path
    not ending in ".json" is treated as a directory.
    """
    path = remote_path or "/"
    if path.endswith("/"):
        path = path + WEBDAV_HISTORY_FILENAME
    elif not path.lower().endswith(".json"):
        path = f"{path}/{WEBDAV_HISTORY_FILENAME}"
    return f"{base_url.rstrip('/')}/{path.lstrip('/')}"


class WebDAVSync:
    """Uploads the history snapshot as one JSON document."""

    def __init__(self, client_factory: Optional[ClientFactory] = None,
                 tasks: Optional[BackgroundTasks] = None, timeout: float = WEBDAV_TIMEOUT):
        self._client_factory = client_factory or (lambda user, password, t: WebDAVClient(user, password, t))
        self._tasks = tasks or get_background_tasks()
        self._timeout = timeout

    def sync(self, items: List[Union[HistoryItem, Dict[str, Any]]], config: WebDAVConfig) -> bool:
        """Overwrite the remote history file. Returns True on success, never raises."""
        if not config.is_configured:
            return False

        url = build_webdav_url(config.url, config.remote_path)
        try:
            payload = [i.to_dict() if isinstance(i, HistoryItem) else i for i in items]
            body = json.dumps(payload, ensure_ascii=False, indent=2).encode("utf-8")
            client = self._client_factory(config.username, config.password, self._timeout)
            response = client.put(url, body, {"Content-Type": "application/json"})
            response.raise_for_status()
        except WebDAVError as e:
            log(f"WebDAV sync failed: HTTP {e.status_code} ({_failure_reason(e.status_code)})",
                level="warning", category="sync")
            return False
        except requests.Timeout:
            log(f"WebDAV sync timed out after {self._timeout:.0f}s", level="warning", category="sync")
            return False
        except requests.RequestException as e:
            log(f"WebDAV sync network error: {e}", level="warning", category="sync")
            return False
        except Exception as e:
            log(f"WebDAV sync failed: {type(e).__name__}: {e}", level="error", category="sync")
            return False

        log(f"Synced {len(items)} history records to WebDAV", level="info", category="sync")
        return True

    def sync_detached(self, items: List[Union[HistoryItem, Dict[str, Any]]], config: WebDAVConfig) -> Future:
        """Run sync() as a background task. The Future is for tests only."""
        return self._tasks.submit(self.sync, list(items), config, description="webdav sync")
