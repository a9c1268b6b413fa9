"""
User configuration model.

UserConfig is stored under the ``config`` key of the encrypted settings
document. Keys on disk are camelCase; ``from_dict`` also accepts the flat
pre-multi-service layout (``weiboCookie``) and folds it into ``services``.
"""

import copy
from dataclasses import dataclass, field
from typing import Optional, List, Dict, Any

from picnexus.core.constants import (
    OUTPUT_FORMAT_BAIDU, OUTPUT_FORMAT_WEIBO, OUTPUT_FORMAT_R2,
    DEFAULT_BAIDU_PREFIX, DEFAULT_WEBDAV_REMOTE_PATH,
)

OUTPUT_FORMATS = (OUTPUT_FORMAT_WEIBO, OUTPUT_FORMAT_R2, OUTPUT_FORMAT_BAIDU)


@dataclass
class R2Config:
    """S3-compatible (Cloudflare R2) backup target."""
    account_id: str = ""
    access_key_id: str = ""
    secret_access_key: str = ""
    bucket_name: str = ""
    path: str = ""
    public_domain: str = ""

    @property
    def is_configured(self) -> bool:
        return all([self.account_id, self.access_key_id, self.secret_access_key, self.bucket_name])

    def to_dict(self) -> Dict[str, Any]:
        return {
            'accountId': self.account_id,
            'accessKeyId': self.access_key_id,
            'secretAccessKey': self.secret_access_key,
            'bucketName': self.bucket_name,
            'path': self.path,
            'publicDomain': self.public_domain,
        }

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> 'R2Config':
        data = data or {}
        return cls(
            account_id=data.get('accountId', ''),
            access_key_id=data.get('accessKeyId', ''),
            secret_access_key=data.get('secretAccessKey', ''),
            bucket_name=data.get('bucketName', ''),
            path=data.get('path', ''),
            public_domain=data.get('publicDomain', ''),
        )


@dataclass
class WebDAVConfig:
    url: str = ""
    username: str = ""
    password: str = ""
    remote_path: str = DEFAULT_WEBDAV_REMOTE_PATH

    @property
    def is_configured(self) -> bool:
        return all([self.url, self.username, self.password, self.remote_path])

    def to_dict(self) -> Dict[str, Any]:
        return {
            'url': self.url,
            'username': self.username,
            'password': self.password,
            'remotePath': self.remote_path,
        }

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> 'WebDAVConfig':
        data = data or {}
        return cls(
            url=data.get('url', ''),
            username=data.get('username', ''),
            password=data.get('password', ''),
            remote_path=data.get('remotePath', DEFAULT_WEBDAV_REMOTE_PATH),
        )


@dataclass
class AccountConfig:
    """Account credentials used to refresh an expired cookie."""
    allow_user_account: bool = False
    username: str = ""
    password: str = ""

    @property
    def can_relogin(self) -> bool:
        return bool(self.allow_user_account and self.username and self.password)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'allowUserAccount': self.allow_user_account,
            'username': self.username,
            'password': self.password,
        }

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> 'AccountConfig':
        data = data or {}
        return cls(
            allow_user_account=bool(data.get('allowUserAccount', False)),
            username=data.get('username', ''),
            password=data.get('password', ''),
        )


@dataclass
class LinkPrefixConfig:
    """Proxy prefixes that can be put in front of a backend URL."""
    enabled: bool = False
    prefix_list: List[str] = field(default_factory=lambda: [DEFAULT_BAIDU_PREFIX])
    selected_index: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            'enabled': self.enabled,
            'prefixList': list(self.prefix_list),
            'selectedIndex': self.selected_index,
        }

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> 'LinkPrefixConfig':
        data = data or {}
        prefixes = list(data.get('prefixList') or [DEFAULT_BAIDU_PREFIX])
        index = int(data.get('selectedIndex', 0) or 0)
        if index < 0 or index >= len(prefixes):
            index = 0
        return cls(enabled=bool(data.get('enabled', False)), prefix_list=prefixes, selected_index=index)


@dataclass
class UserConfig:
    """Everything an upload needs to know about the user's setup."""
    enabled_services: List[str] = field(default_factory=list)
    services: Dict[str, Dict[str, Any]] = field(default_factory=dict)

    # Single-backend path
    primary_service: Optional[str] = None
    output_format: str = OUTPUT_FORMAT_BAIDU
    baidu_prefix: str = DEFAULT_BAIDU_PREFIX
    r2: R2Config = field(default_factory=R2Config)

    link_prefix: LinkPrefixConfig = field(default_factory=LinkPrefixConfig)
    webdav: WebDAVConfig = field(default_factory=WebDAVConfig)
    account: AccountConfig = field(default_factory=AccountConfig)

    @property
    def effective_primary_service(self) -> Optional[str]:
        """Backend used by the single-backend path."""
        if self.primary_service:
            return self.primary_service
        return self.enabled_services[0] if self.enabled_services else None

    def service_options(self, service_id: str) -> Dict[str, Any]:
        return self.services.get(service_id) or {}

    def set_service_option(self, service_id: str, key: str, value: Any) -> None:
        self.services.setdefault(service_id, {})[key] = value

    def copy(self) -> 'UserConfig':
        return UserConfig.from_dict(self.to_dict())

    def snapshot(self) -> Dict[str, Any]:
        """Deep copy suitable for persisting next to a failed upload."""
        return copy.deepcopy(self.to_dict())

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            'enabledServices': list(self.enabled_services),
            'services': copy.deepcopy(self.services),
            'outputFormat': self.output_format,
            'baiduPrefix': self.baidu_prefix,
            'r2': self.r2.to_dict(),
            'linkPrefixConfig': self.link_prefix.to_dict(),
            'webdav': self.webdav.to_dict(),
            'account': self.account.to_dict(),
        }
        if self.primary_service:
            data['primaryService'] = self.primary_service
        return data

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> 'UserConfig':
        data = data or {}
        services = copy.deepcopy(data.get('services') or {})

        # Flat layout from before multi-service uploads
        legacy_cookie = data.get('weiboCookie')
        if legacy_cookie and not services.get('weibo', {}).get('cookie'):
            services.setdefault('weibo', {'enabled': True})['cookie'] = legacy_cookie

        enabled = list(data.get('enabledServices') or [])
        if not enabled and legacy_cookie:
            enabled = ['weibo']

        output_format = data.get('outputFormat', OUTPUT_FORMAT_BAIDU)
        if output_format not in OUTPUT_FORMATS:
            output_format = OUTPUT_FORMAT_BAIDU

        r2_data = data.get('r2') or services.get('r2')
        return cls(
            enabled_services=enabled,
            services=services,
            primary_service=data.get('primaryService'),
            output_format=output_format,
            baidu_prefix=data.get('baiduPrefix') or DEFAULT_BAIDU_PREFIX,
            r2=R2Config.from_dict(r2_data),
            link_prefix=LinkPrefixConfig.from_dict(data.get('linkPrefixConfig')),
            webdav=WebDAVConfig.from_dict(data.get('webdav')),
            account=AccountConfig.from_dict(data.get('account')),
        )


def get_active_prefix(config: UserConfig) -> Optional[str]:
    """Return the selected link prefix, or None when prefixing is disabled."""
    prefix_config = config.link_prefix
    if not prefix_config.enabled:
        return None
    prefixes = prefix_config.prefix_list
    if 0 <= prefix_config.selected_index < len(prefixes):
        return prefixes[prefix_config.selected_index]
    return prefixes[0] if prefixes else None


def mask_secret(value: Optional[str], prefix_len: int = 0, suffix_len: int = 0) -> str:
    """Replace the middle of a secret with ******, keeping prefix/suffix chars."""
    if not value or not value.strip():
        return ""
    trimmed = value.strip()
    if len(trimmed) <= prefix_len + suffix_len:
        return "******"
    prefix = trimmed[:prefix_len] if prefix_len > 0 else ""
    suffix = trimmed[-suffix_len:] if suffix_len > 0 else ""
    return f"{prefix}******{suffix}"


_SECRET_OPTION_KEYS = ("cookie", "token", "password", "secretAccessKey", "apiKey")


def sanitize_config(config: UserConfig) -> Dict[str, Any]:
    """Return a copy of the config dict with credentials masked, for logging."""
    data = config.to_dict()
    for options in data['services'].values():
        if not isinstance(options, dict):
            continue
        for key in _SECRET_OPTION_KEYS:
            if options.get(key):
                keep = (8, 4) if key == "cookie" else (0, 0)
                options[key] = mask_secret(str(options[key]), *keep)
        if options.get('accessKeyId'):
            options['accessKeyId'] = mask_secret(options['accessKeyId'], 4, 4)
    data['r2']['accessKeyId'] = mask_secret(config.r2.access_key_id, 4, 4)
    data['r2']['secretAccessKey'] = mask_secret(config.r2.secret_access_key)
    data['webdav']['password'] = mask_secret(config.webdav.password)
    data['account']['password'] = mask_secret(config.account.password)
    return data
