"""
Tests for network.object_storage and network.webdav.
"""

from unittest.mock import Mock

import pytest

from picnexus.core.config import R2Config
from picnexus.core.errors import WebDAVError
from picnexus.network.object_storage import S3ObjectStorageClient, guess_content_type
from picnexus.network.webdav import WebDAVClient, WebDAVResponse


# ============================================================================
# S3 Client
# ============================================================================

class TestS3ObjectStorageClient:
    """Test suite for endpoint building and error mapping."""

    def test_for_r2_endpoint(self):
        client = S3ObjectStorageClient.for_r2(R2Config(account_id="acc123", access_key_id="k",
                                                       secret_access_key="s", bucket_name="b"))
        assert client.endpoint == "https://acc123.r2.cloudflarestorage.com"
        assert client.region == "auto"

    def test_object_url_quotes_key(self):
        client = S3ObjectStorageClient("https://s3.example/", "k", "s")
        assert client.object_url("bucket", "dir/a b.png") == "https://s3.example/bucket/dir/a%20b.png"

    @pytest.mark.parametrize("status,body,reason", [
        (403, "<Error><Code>SignatureDoesNotMatch</Code></Error>", "credentials"),
        (403, "<Error><Code>InvalidAccessKeyId</Code></Error>", "credentials"),
        (401, "", "credentials"),
        (404, "<Error><Code>NoSuchBucket</Code></Error>", "bucket"),
        (403, "<Error><Code>AccessDenied</Code></Error>", "permission"),
        (500, "", "unknown"),
    ])
    def test_error_mapping(self, status, body, reason):
        error = S3ObjectStorageClient._error_for(status, body)
        assert error.reason == reason
        assert str(status) in str(error)

    def test_guess_content_type(self):
        assert guess_content_type("a.png") == "image/png"
        assert guess_content_type("a.unknownext") == "application/octet-stream"


# ============================================================================
# WebDAV Client
# ============================================================================

class TestWebDAVClient:
    """Test suite for the authenticated PUT."""

    def test_put_sends_auth_and_timeout(self):
        session = Mock()
        session.put.return_value = Mock(ok=True, status_code=201)
        client = WebDAVClient("user", "pass", timeout=15, session=session)

        response = client.put("https://dav.example/h.json", b"[]", {"Content-Type": "application/json"})

        assert response.ok is True
        assert response.status == 201
        kwargs = session.put.call_args.kwargs
        assert kwargs["auth"] == ("user", "pass")
        assert kwargs["timeout"] == 15
        assert kwargs["data"] == b"[]"
        assert kwargs["headers"]["Content-Type"] == "application/json"
        assert "User-Agent" in kwargs["headers"]

    def test_put_returns_error_status(self):
        session = Mock()
        session.put.return_value = Mock(ok=False, status_code=507)
        response = WebDAVClient("u", "p", session=session).put("https://dav/x.json", b"[]")
        assert response.ok is False
        assert response.status == 507

    def test_raise_for_status(self):
        WebDAVResponse(ok=True, status=201).raise_for_status()
        with pytest.raises(WebDAVError) as exc_info:
            WebDAVResponse(ok=False, status=401).raise_for_status()
        assert exc_info.value.status_code == 401
