"""
Upload error classification.

classify() maps any exception raised on the upload path to an ErrorKind and
a retryable flag. Tagged UploadError subclasses and well-known library
exceptions are mapped by type; message sniffing is only the last resort for
foreign exceptions that carry nothing else.
"""

import json
import re
from dataclasses import dataclass
from typing import Union

import pycurl
import requests

from picnexus.core.errors import (
    ErrorKind, UploadError, ObjectStorageError, ValidationError,
)


RETRYABLE_KINDS = frozenset({
    ErrorKind.NETWORK_ERROR,
    ErrorKind.TIMEOUT_ERROR,
    ErrorKind.SERVER_ERROR,
    ErrorKind.RATE_LIMITED,
})

# libcurl error codes
_CURL_TIMEOUT_CODES = {28}  # CURLE_OPERATION_TIMEDOUT
_CURL_NETWORK_CODES = {5, 6, 7, 35, 52, 55, 56}  # proxy/host resolve, connect, SSL, empty reply, send/recv

_SERVER_STATUS_RE = re.compile(r"(?:http|status)[^0-9]{0,20}5\d\d", re.IGNORECASE)


@dataclass(frozen=True)
class Classification:
    """Result of classifying an upload error."""
    kind: ErrorKind
    retryable: bool

    @property
    def is_cookie_expired(self) -> bool:
        return self.kind is ErrorKind.COOKIE_EXPIRED


def _result(kind: ErrorKind) -> Classification:
    return Classification(kind=kind, retryable=kind in RETRYABLE_KINDS)


def _classify_status(status: int) -> ErrorKind:
    if status == 429:
        return ErrorKind.RATE_LIMITED
    if status == 413:
        return ErrorKind.FILE_TOO_LARGE
    if status >= 500:
        return ErrorKind.SERVER_ERROR
    return ErrorKind.UNKNOWN


def _classify_message(message: str) -> ErrorKind:
    msg = message.lower()

    if "cookie" in msg and ("expired" in msg or "过期" in msg):
        return ErrorKind.COOKIE_EXPIRED
    if "cookie" in msg and "invalid" in msg:
        return ErrorKind.INVALID_COOKIE
    if "文件读取失败" in msg or "no such file" in msg or "file not found" in msg:
        return ErrorKind.FILE_NOT_FOUND
    if "无法解析响应" in msg or "parse" in msg:
        return ErrorKind.PARSE_ERROR
    if "too large" in msg:
        return ErrorKind.FILE_TOO_LARGE
    if "timeout" in msg or "timed out" in msg or "超时" in msg:
        return ErrorKind.TIMEOUT_ERROR
    if "rate limit" in msg or "too many requests" in msg:
        return ErrorKind.RATE_LIMITED
    if _SERVER_STATUS_RE.search(msg) or "http 状态码: 5" in msg:
        return ErrorKind.SERVER_ERROR
    if "network" in msg or "网络错误" in msg or "failed to fetch" in msg or "connection" in msg:
        return ErrorKind.NETWORK_ERROR
    return ErrorKind.UNKNOWN


def classify(error: Union[BaseException, str]) -> Classification:
    """Classify an upload error.

    Args:
        error: Exception raised on the upload path (or a bare message)

    Returns:
        Classification with kind and retryable flag
    """
    if isinstance(error, str):
        return _result(_classify_message(error))

    if isinstance(error, UploadError):
        return _result(error.kind)

    if isinstance(error, ValidationError):
        return _result(ErrorKind.UNKNOWN)

    if isinstance(error, ObjectStorageError):
        if error.reason == "timeout":
            return _result(ErrorKind.TIMEOUT_ERROR)
        if error.reason == "network":
            return _result(ErrorKind.NETWORK_ERROR)
        return _result(ErrorKind.UNKNOWN)

    if isinstance(error, pycurl.error):
        code = error.args[0] if error.args else None
        if code in _CURL_TIMEOUT_CODES:
            return _result(ErrorKind.TIMEOUT_ERROR)
        if code in _CURL_NETWORK_CODES:
            return _result(ErrorKind.NETWORK_ERROR)
        return _result(ErrorKind.UNKNOWN)

    if isinstance(error, requests.exceptions.Timeout):
        return _result(ErrorKind.TIMEOUT_ERROR)
    if isinstance(error, requests.exceptions.ConnectionError):
        return _result(ErrorKind.NETWORK_ERROR)
    if isinstance(error, requests.exceptions.HTTPError) and error.response is not None:
        return _result(_classify_status(error.response.status_code))

    # TimeoutError and ConnectionError are OSError subclasses: check them first
    if isinstance(error, TimeoutError):
        return _result(ErrorKind.TIMEOUT_ERROR)
    if isinstance(error, ConnectionError):
        return _result(ErrorKind.NETWORK_ERROR)
    if isinstance(error, (FileNotFoundError, IsADirectoryError, PermissionError)):
        return _result(ErrorKind.FILE_NOT_FOUND)
    if isinstance(error, json.JSONDecodeError):
        return _result(ErrorKind.PARSE_ERROR)

    return _result(_classify_message(str(error)))


def is_retryable(error: Union[BaseException, str]) -> bool:
    """Shortcut for classify(error).retryable."""
    return classify(error).retryable
