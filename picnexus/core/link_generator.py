"""Output link derivation."""

import posixpath
from typing import Optional, Callable
from urllib.parse import urlparse

from picnexus.core.config import UserConfig, get_active_prefix
from picnexus.core.constants import OUTPUT_FORMAT_WEIBO, OUTPUT_FORMAT_R2, PREFIXED_SERVICE
from picnexus.core.models import UploadResult
from picnexus.utils.logger import log


def object_key(path: str, hash_name: str) -> str:
    """Join the configured object-storage path prefix and a file name."""
    path = path or ""
    if path and not path.endswith("/"):
        path += "/"
    return path + hash_name


def hash_name_for(result: UploadResult) -> str:
    """Backend file name: the file key when there is one, else the URL's basename."""
    if result.file_key:
        return posixpath.basename(result.file_key) or result.file_key
    return posixpath.basename(urlparse(result.url).path)


def generate_link(url: str, hash_name: str, config: UserConfig,
                  on_warning: Optional[Callable[[str, str], None]] = None) -> str:
    """Derive the single-backend output link from config.output_format.

    weibo  -> raw backend URL
    r2     -> {publicDomain}/{path}/{hashName}, raw URL if the domain is unusable
    baidu  -> {baiduPrefix}{url} (also the default)
    """
    if config.output_format == OUTPUT_FORMAT_WEIBO:
        return url

    if config.output_format == OUTPUT_FORMAT_R2:
        domain = (config.r2.public_domain or "").strip()
        if not domain.startswith(("http://", "https://")):
            log("R2 public domain missing or malformed, falling back to the backend URL",
                level="warning", category="uploads")
            if on_warning:
                on_warning("R2 link generation failed", "Configure the R2 public domain in settings.")
            return url
        return f"{domain.rstrip('/')}/{object_key(config.r2.path, hash_name)}"

    return f"{config.baidu_prefix}{url}"


def generate_service_link(result: UploadResult, config: UserConfig) -> str:
    """Link for a multi-service history item.

    The primary URL, behind the active link prefix when the primary is weibo.
    """
    prefix = get_active_prefix(config)
    if not prefix or result.service_id != PREFIXED_SERVICE:
        return result.url
    return f"{prefix}{result.url}"
