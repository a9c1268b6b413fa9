"""
Tests for core.host_config.

Tests cover:
- HostConfig defaults and from_dict conversion
- HostConfigManager loading built-in and custom definitions
- Custom definitions overriding built-ins
- Invalid definition files skipped
"""

import json
from pathlib import Path

import pytest

from picnexus.core.host_config import HostConfig, HostConfigManager


# ============================================================================
# HostConfig Tests
# ============================================================================

class TestHostConfig:
    """Test suite for HostConfig dataclass."""

    def test_minimal_initialization(self):
        """Test HostConfig with minimal required fields."""
        config = HostConfig(name="TestHost")

        assert config.requires_auth is False
        assert config.method == "POST"
        assert config.file_field == "file"
        assert config.response_type == "json"
        assert config.credential_field == "cookie"

    def test_from_dict_nested_sections(self):
        """Nested upload/response/auth/limits sections are flattened."""
        data = {
            "name": "TestHost",
            "requires_auth": True,
            "auth": {"type": "bearer", "credential_field": "token",
                     "login_url": "https://example.com/login",
                     "login_fields": {"user": "{username}"}},
            "upload": {"endpoint": "https://example.com/up", "method": "put", "file_field": "img"},
            "response": {"type": "json", "link_path": ["data", "url"], "expired_patterns": ["login"]},
            "limits": {"max_file_size_mb": 10, "upload_timeout": 30},
        }

        config = HostConfig.from_dict(data, service_id="test")

        assert config.service_id == "test"
        assert config.auth_type == "bearer"
        assert config.credential_field == "token"
        assert config.method == "PUT"
        assert config.file_field == "img"
        assert config.link_path == ["data", "url"]
        assert config.expired_patterns == ["login"]
        assert config.max_file_size_mb == 10
        assert config.upload_timeout == 30
        assert config.login_fields == {"user": "{username}"}

    def test_from_dict_defaults(self):
        config = HostConfig.from_dict({"name": "Bare"})
        assert config.upload_endpoint == ""
        assert config.link_path is None
        assert config.login_url is None


# ============================================================================
# HostConfigManager Tests
# ============================================================================

def _write(directory: Path, name: str, data) -> None:
    directory.mkdir(parents=True, exist_ok=True)
    (directory / f"{name}.json").write_text(json.dumps(data), encoding="utf-8")


class TestHostConfigManager:
    """Test suite for loading host definitions."""

    @pytest.fixture
    def dirs(self, temp_dir):
        return Path(temp_dir) / "builtin", Path(temp_dir) / "custom"

    def test_loads_builtin_and_custom(self, dirs):
        builtin, custom = dirs
        _write(builtin, "one", {"name": "One"})
        _write(custom, "two", {"name": "Two"})

        manager = HostConfigManager(builtin_dir=builtin, custom_dir=custom)
        manager.load_all_hosts()

        assert sorted(manager.get_all_host_ids()) == ["one", "two"]
        assert manager.hosts["one"].service_id == "one"

    def test_custom_overrides_builtin(self, dirs):
        builtin, custom = dirs
        _write(builtin, "one", {"name": "Builtin One"})
        _write(custom, "one", {"name": "Custom One"})

        manager = HostConfigManager(builtin_dir=builtin, custom_dir=custom)
        manager.load_all_hosts()

        assert manager.hosts["one"].name == "Custom One"

    def test_invalid_files_skipped(self, dirs):
        builtin, custom = dirs
        builtin.mkdir(parents=True)
        (builtin / "broken.json").write_text("{not json", encoding="utf-8")
        _write(builtin, "noname", {"upload": {}})
        _write(builtin, "array", [1, 2])
        _write(builtin, "good", {"name": "Good"})

        manager = HostConfigManager(builtin_dir=builtin, custom_dir=custom)
        manager.load_all_hosts()

        assert manager.get_all_host_ids() == ["good"]

    def test_missing_directories(self, dirs):
        manager = HostConfigManager(builtin_dir=dirs[0], custom_dir=dirs[1])
        manager.load_all_hosts()
        assert manager.get_all_host_ids() == []
        assert "anything" not in manager.hosts

    def test_shipped_smms_definition(self, dirs):
        """The packaged SM.MS definition parses."""
        manager = HostConfigManager(custom_dir=dirs[1])
        manager.load_all_hosts()
        smms = manager.hosts["smms"]
        assert smms is not None
        assert smms.requires_auth is True
        assert smms.credential_field == "token"
        assert smms.file_field == "smfile"
