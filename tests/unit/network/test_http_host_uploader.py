"""
Tests for network.http_host_uploader.

The HTTP transfer (_send_file) is patched; these tests cover file checks,
status mapping, response parsing, headers and credential refresh parsing.
"""

import json
from unittest.mock import patch

import pycurl
import pytest

from picnexus.core.config import AccountConfig
from picnexus.core.errors import (
    UploadError, CookieExpiredError, InvalidCookieError, NetworkError, UploadTimeoutError,
    ServerError, RateLimitedError, FileReadError, FileTooLargeError, ResponseParseError,
)
from picnexus.core.host_config import HostConfig
from picnexus.network.http_host_uploader import HttpHostUploader, extract_from_json, build_registry_uploaders


@pytest.fixture
def host_config():
    return HostConfig.from_dict({
        "name": "Example",
        "requires_auth": True,
        "auth": {"type": "header", "header": "Authorization", "credential_field": "token"},
        "upload": {"endpoint": "https://example.com/upload", "file_field": "smfile"},
        "response": {
            "type": "json",
            "success_path": ["success"],
            "link_path": ["data", "url"],
            "file_id_path": ["data", "hash"],
            "error_message_path": ["message"],
            "expired_patterns": ["please log in"],
        },
        "limits": {"max_file_size_mb": 1},
    }, service_id="example")


@pytest.fixture
def uploader(host_config):
    return HttpHostUploader(host_config)


def _respond(uploader, status, body):
    return patch.object(uploader, '_send_file', return_value=(status, body))


# ============================================================================
# JSON Path Extraction
# ============================================================================

class TestExtractFromJson:
    """Test suite for extract_from_json."""

    def test_nested_keys_and_indices(self):
        data = {"data": {"items": [{"url": "u0"}, {"url": "u1"}]}}
        assert extract_from_json(data, ["data", "items", 1, "url"]) == "u1"

    def test_missing_paths(self):
        assert extract_from_json({"a": 1}, None) is None
        assert extract_from_json({"a": 1}, ["b"]) is None
        assert extract_from_json({"a": [1]}, ["a", 5]) is None
        assert extract_from_json({"a": "text"}, ["a", "b"]) is None


# ============================================================================
# Successful Uploads
# ============================================================================

class TestUploadSuccess:
    """Test suite for successful responses."""

    def test_parses_link_and_file_id(self, uploader, image_file):
        body = json.dumps({"success": True, "data": {"url": "https://i.example/a.png", "hash": "h1"}})
        with _respond(uploader, 200, body):
            result = uploader.upload(image_file, {"token": "t"})
        assert result.service_id == "example"
        assert result.url == "https://i.example/a.png"
        assert result.file_key == "h1"

    def test_link_prefix_and_suffix(self, host_config, image_file):
        host_config.link_prefix = "https://cdn/"
        host_config.link_suffix = "?x=1"
        host_config.link_path = ["name"]
        host_config.success_path = None
        uploader = HttpHostUploader(host_config)
        with _respond(uploader, 201, json.dumps({"name": "a.png"})):
            result = uploader.upload(image_file, {"token": "t"})
        assert result.url == "https://cdn/a.png?x=1"

    def test_text_response_with_regex(self, host_config, image_file):
        host_config.response_type = "text"
        host_config.link_regex = r'href="([^"]+)"'
        uploader = HttpHostUploader(host_config)
        with _respond(uploader, 200, '<a href="https://i.example/b.png">ok</a>'):
            result = uploader.upload(image_file, {"token": "t"})
        assert result.url == "https://i.example/b.png"


# ============================================================================
# Failure Mapping
# ============================================================================

class TestUploadFailures:
    """Test suite for tagged error mapping."""

    @pytest.mark.parametrize("status,error_type", [
        (401, CookieExpiredError),
        (403, CookieExpiredError),
        (413, FileTooLargeError),
        (429, RateLimitedError),
        (500, ServerError),
        (503, ServerError),
        (404, UploadError),
    ])
    def test_status_mapping(self, uploader, image_file, status, error_type):
        with _respond(uploader, status, "error"):
            with pytest.raises(error_type) as exc_info:
                uploader.upload(image_file, {"token": "t"})
        assert exc_info.value.service_id == "example"

    def test_server_error_keeps_status(self, uploader, image_file):
        with _respond(uploader, 502, ""):
            with pytest.raises(ServerError) as exc_info:
                uploader.upload(image_file, {"token": "t"})
        assert exc_info.value.status_code == 502

    def test_expired_pattern_in_ok_body(self, uploader, image_file):
        with _respond(uploader, 200, "Please log in again"):
            with pytest.raises(CookieExpiredError):
                uploader.upload(image_file, {"token": "t"})

    def test_unauthenticated_host_403_is_plain_upload_error(self, host_config, image_file):
        host_config.requires_auth = False
        uploader = HttpHostUploader(host_config)
        with _respond(uploader, 403, ""):
            with pytest.raises(UploadError) as exc_info:
                uploader.upload(image_file, {})
        assert not isinstance(exc_info.value, CookieExpiredError)

    def test_invalid_json(self, uploader, image_file):
        with _respond(uploader, 200, "<html>"):
            with pytest.raises(ResponseParseError):
                uploader.upload(image_file, {"token": "t"})

    def test_success_flag_false_uses_error_message(self, uploader, image_file):
        body = json.dumps({"success": False, "message": "Image upload repeated limit"})
        with _respond(uploader, 200, body):
            with pytest.raises(UploadError, match="Image upload repeated limit"):
                uploader.upload(image_file, {"token": "t"})

    def test_missing_link(self, uploader, image_file):
        with _respond(uploader, 200, json.dumps({"success": True, "data": {}})):
            with pytest.raises(ResponseParseError):
                uploader.upload(image_file, {"token": "t"})

    def test_missing_file(self, uploader, temp_dir):
        with pytest.raises(FileReadError):
            uploader.upload(f"{temp_dir}/missing.png", {"token": "t"})

    def test_file_too_large(self, uploader, temp_dir):
        path = f"{temp_dir}/big.bin"
        with open(path, "wb") as f:
            f.write(b"\0" * (1024 * 1024 + 1))
        with pytest.raises(FileTooLargeError):
            uploader.upload(path, {"token": "t"})

    def test_curl_timeout(self, uploader, image_file):
        with patch.object(uploader, '_send_file', side_effect=pycurl.error(28, "Operation timed out")):
            with pytest.raises(UploadTimeoutError):
                uploader.upload(image_file, {"token": "t"})

    def test_curl_network_error(self, uploader, image_file):
        with patch.object(uploader, '_send_file', side_effect=pycurl.error(7, "Couldn't connect")):
            with pytest.raises(NetworkError):
                uploader.upload(image_file, {"token": "t"})


# ============================================================================
# Configuration and Headers
# ============================================================================

class TestConfiguration:
    """Test suite for credential checks and request headers."""

    def test_validate_config(self, uploader):
        assert uploader.validate_config({"token": "t"}) is None
        assert "token" in uploader.validate_config({})
        assert uploader.is_configured({"token": " t "})
        assert not uploader.is_configured({"token": "  "})

    def test_header_auth(self, uploader):
        headers = uploader._prepare_headers({"token": "abc"})
        assert headers["Authorization"] == "abc"
        assert "User-Agent" in headers

    def test_bearer_auth(self, host_config):
        host_config.auth_type = "bearer"
        headers = HttpHostUploader(host_config)._prepare_headers({"token": "abc"})
        assert headers["Authorization"] == "Bearer abc"

    def test_build_registry_uploaders(self, host_config):
        uploaders = build_registry_uploaders({"example": host_config})
        assert [u.service_id for u in uploaders] == ["example"]
        assert uploaders[0].credential_field == "token"


# ============================================================================
# Credential Refresh
# ============================================================================

class TestCredentialRefresh:
    """Test suite for relogin support."""

    def test_no_login_url_means_no_relogin(self, uploader):
        assert uploader.supports_relogin is False
        with pytest.raises(InvalidCookieError):
            uploader.refresh_credentials(AccountConfig(True, "u", "p"))

    def test_supports_relogin_with_login_url(self, host_config):
        host_config.login_url = "https://example.com/login"
        assert HttpHostUploader(host_config).supports_relogin is True

    def test_cookies_from_headers(self):
        raw = (
            "HTTP/1.1 200 OK\r\n"
            "Set-Cookie: SUB=abc123; Path=/; HttpOnly\r\n"
            "set-cookie: SUBP=xyz; Domain=.example.com\r\n"
            "Content-Type: text/html\r\n"
        )
        assert HttpHostUploader._cookies_from_headers(raw) == "SUB=abc123; SUBP=xyz"
