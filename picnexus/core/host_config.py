"""
Image host configuration.

Host definitions are JSON files loaded from:
- Built-in: picnexus/assets/hosts/ (shipped with the package)
- Custom: ~/.picnexus/hosts/ (user-created, can override built-ins)

The file name (without .json) is the service id.
"""

import json
from dataclasses import dataclass, field
from pathlib import Path
from threading import Lock
from typing import Dict, List, Optional, Any, Union

from picnexus.core.constants import DEFAULT_UPLOAD_TIMEOUT, DEFAULT_INACTIVITY_TIMEOUT
from picnexus.utils.logger import log
from picnexus.utils.paths import get_hosts_dir


JsonPath = List[Union[str, int]]

_manager_lock = Lock()


@dataclass
class HostConfig:
    """Configuration for an image hosting service."""

    # Basic info
    name: str
    service_id: str = ""
    requires_auth: bool = False
    auth_type: Optional[str] = None  # "cookie", "bearer", "header"
    credential_field: str = "cookie"  # key in the service options holding the credential
    auth_header: str = "Authorization"  # used with auth_type "header"

    # Upload configuration
    upload_endpoint: str = ""
    method: str = "POST"  # "POST" (multipart) or "PUT" (raw body)
    file_field: str = "file"
    extra_fields: Dict[str, str] = field(default_factory=dict)
    headers: Dict[str, str] = field(default_factory=dict)
    max_file_size_mb: Optional[float] = None

    # Response parsing
    response_type: str = "json"  # "json" or "text"
    link_path: Optional[JsonPath] = None
    link_prefix: str = ""
    link_suffix: str = ""
    link_regex: Optional[str] = None
    file_id_path: Optional[JsonPath] = None
    success_path: Optional[JsonPath] = None  # boolean/ok flag in the JSON body
    error_message_path: Optional[JsonPath] = None
    expired_patterns: List[str] = field(default_factory=list)  # body text meaning "credential expired"

    # Credential refresh (account login)
    login_url: Optional[str] = None
    login_fields: Dict[str, str] = field(default_factory=dict)  # form field -> "{username}"/"{password}"

    # Timeouts
    upload_timeout: int = DEFAULT_UPLOAD_TIMEOUT
    inactivity_timeout: int = DEFAULT_INACTIVITY_TIMEOUT

    @classmethod
    def from_dict(cls, data: Dict[str, Any], service_id: str = "") -> 'HostConfig':
        """Create HostConfig from dictionary (loaded from JSON)."""
        upload_config = data.get('upload', {})
        response_config = data.get('response', {})
        auth_config = data.get('auth', {})
        limits_config = data.get('limits', {})

        return cls(
            name=data.get('name', ''),
            service_id=service_id or data.get('id', ''),
            requires_auth=data.get('requires_auth', False),
            auth_type=auth_config.get('type'),
            credential_field=auth_config.get('credential_field', 'cookie'),
            auth_header=auth_config.get('header', 'Authorization'),

            upload_endpoint=upload_config.get('endpoint', ''),
            method=upload_config.get('method', 'POST').upper(),
            file_field=upload_config.get('file_field', 'file'),
            extra_fields=upload_config.get('extra_fields', {}),
            headers=upload_config.get('headers', {}),
            max_file_size_mb=limits_config.get('max_file_size_mb'),

            response_type=response_config.get('type', 'json'),
            link_path=response_config.get('link_path'),
            link_prefix=response_config.get('link_prefix', ''),
            link_suffix=response_config.get('link_suffix', ''),
            link_regex=response_config.get('link_regex'),
            file_id_path=response_config.get('file_id_path'),
            success_path=response_config.get('success_path'),
            error_message_path=response_config.get('error_message_path'),
            expired_patterns=response_config.get('expired_patterns', []),

            login_url=auth_config.get('login_url'),
            login_fields=auth_config.get('login_fields', {}),

            upload_timeout=limits_config.get('upload_timeout', DEFAULT_UPLOAD_TIMEOUT),
            inactivity_timeout=limits_config.get('inactivity_timeout', DEFAULT_INACTIVITY_TIMEOUT),
        )


class HostConfigManager:
    """Loads and serves host configurations."""

    def __init__(self, builtin_dir: Optional[Path] = None, custom_dir: Optional[Path] = None):
        self.hosts: Dict[str, HostConfig] = {}
        self.builtin_dir = builtin_dir or Path(__file__).resolve().parent.parent / "assets" / "hosts"
        self.custom_dir = custom_dir or Path(get_hosts_dir())

    def load_all_hosts(self) -> None:
        """Load built-in hosts, then custom hosts (which may override built-ins)."""
        self.hosts.clear()
        self._load_hosts_from_dir(self.builtin_dir, is_builtin=True)
        self._load_hosts_from_dir(self.custom_dir, is_builtin=False)

    def _load_hosts_from_dir(self, directory: Path, is_builtin: bool) -> None:
        if not directory.exists():
            return

        for json_file in sorted(directory.glob("*.json")):
            try:
                with open(json_file, 'r', encoding='utf-8') as f:
                    data = json.load(f)

                if not isinstance(data, dict):
                    raise ValueError(f"Config must be a dictionary, got {type(data)}")
                if 'name' not in data:
                    raise ValueError("Config missing required field: 'name'")

                host_id = json_file.stem
                self.hosts[host_id] = HostConfig.from_dict(data, service_id=host_id)

                source = "built-in" if is_builtin else "custom"
                log(f"Loaded {source} host config {host_id} ({json_file})", level="debug", category="uploads")

            except (OSError, ValueError) as e:
                log(f"Error loading host config {json_file}: {e}", level="error", category="uploads")

    def get_all_host_ids(self) -> List[str]:
        return list(self.hosts.keys())


_config_manager: Optional[HostConfigManager] = None


def get_host_config_manager() -> HostConfigManager:
    """Get or create the global HostConfigManager instance (thread-safe)."""
    global _config_manager
    if _config_manager is None:
        with _manager_lock:
            if _config_manager is None:
                manager = HostConfigManager()
                manager.load_all_hosts()
                _config_manager = manager
    return _config_manager
