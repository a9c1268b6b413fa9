"""
Tests for processing.webdav_sync (WebDAVSync, build_webdav_url).

The WebDAV client is replaced by a Mock through the client factory, so no
request leaves the test process.
"""

import json
from unittest.mock import Mock

import pytest
import requests

from picnexus.core.config import WebDAVConfig
from picnexus.core.models import HistoryItem
from picnexus.network.webdav import WebDAVResponse
from picnexus.processing.background import BackgroundTasks
from picnexus.processing.webdav_sync import WebDAVSync, build_webdav_url


@pytest.fixture
def dav_config():
    return WebDAVConfig(url="https://dav.example/remote.php/", username="me", password="pw",
                        remote_path="/PicNexus/history.json")


@pytest.fixture
def client():
    mock = Mock()
    mock.put.return_value = WebDAVResponse(ok=True, status=201)
    return mock


@pytest.fixture
def tasks():
    runner = BackgroundTasks(max_workers=1)
    yield runner
    runner.shutdown()


@pytest.fixture
def factory(client):
    return Mock(return_value=client)


@pytest.fixture
def sync(factory, tasks):
    return WebDAVSync(client_factory=factory, tasks=tasks, timeout=7)


# ============================================================================
# URL Building
# ============================================================================

class TestBuildWebdavUrl:
    """Test suite for build_webdav_url."""

    @pytest.mark.parametrize("base,path,expected", [
        ("https://dav.example/", "/PicNexus/history.json", "https://dav.example/PicNexus/history.json"),
        ("https://dav.example", "PicNexus/history.json", "https://dav.example/PicNexus/history.json"),
        ("https://dav.example", "/backup/", "https://dav.example/backup/history.json"),
        ("https://dav.example", "/backup", "https://dav.example/backup/history.json"),
        ("https://dav.example", "/a/uploads.JSON", "https://dav.example/a/uploads.JSON"),
        ("https://dav.example", "", "https://dav.example/history.json"),
    ])
    def test_normalization(self, base, path, expected):
        assert build_webdav_url(base, path) == expected


# ============================================================================
# Sync
# ============================================================================

class TestSync:
    """Test suite for the best-effort history push."""

    def test_success(self, sync, factory, client, dav_config):
        items = [{'id': '1', 'localFileName': 'a.png'}]

        assert sync.sync(items, dav_config) is True

        factory.assert_called_once_with("me", "pw", 7)
        url, body, headers = client.put.call_args[0]
        assert url == "https://dav.example/remote.php/PicNexus/history.json"
        assert json.loads(body.decode("utf-8")) == items
        assert headers["Content-Type"] == "application/json"

    def test_history_items_are_serialized(self, sync, client, dav_config):
        item = HistoryItem(id="1", timestamp=5, local_file_name="图片.png", primary_service="alpha")

        assert sync.sync([item], dav_config) is True

        body = client.put.call_args[0][1]
        assert "图片.png" in body.decode("utf-8")
        assert json.loads(body)[0]['primaryService'] == "alpha"

    def test_not_configured(self, sync, factory):
        assert sync.sync([], WebDAVConfig(url="https://dav.example")) is False
        factory.assert_not_called()

    @pytest.mark.parametrize("status", [401, 403, 404, 409, 500, 507])
    def test_error_status_returns_false(self, sync, client, dav_config, status):
        client.put.return_value = WebDAVResponse(ok=False, status=status)
        assert sync.sync([], dav_config) is False

    @pytest.mark.parametrize("error", [
        requests.Timeout("slow"),
        requests.ConnectionError("refused"),
        ValueError("unexpected"),
    ])
    def test_exceptions_never_raise(self, sync, client, dav_config, error):
        client.put.side_effect = error
        assert sync.sync([], dav_config) is False

    def test_sync_detached_returns_future(self, sync, client, dav_config):
        items = [{'id': '1'}]

        future = sync.sync_detached(items, dav_config)
        items.append({'id': '2'})

        assert future.result(timeout=5) is True
        body = client.put.call_args[0][1]
        assert json.loads(body) == [{'id': '1'}]

    def test_sync_detached_failure_resolves_false(self, sync, client, dav_config):
        client.put.side_effect = requests.ConnectionError("refused")
        assert sync.sync_detached([], dav_config).result(timeout=5) is False
