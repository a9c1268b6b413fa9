"""
File logging for PicNexus.

- Writes rolling log files under <app dir>/logs
- Daily or size-based rotation with gzip compression and backup retention
- Settings live in the [LOGGING] section of picnexus.ini

Public API:
- get_logger(): AppLogger singleton
- AppLogger.log_to_file(message, level, category)
- AppLogger.read_current_log(tail_bytes=None) -> str
- AppLogger.get_current_log_path() -> str
- AppLogger.update_settings(**kwargs)
- AppLogger.get_settings() -> dict
"""

from __future__ import annotations

import os
import re
import gzip
import shutil
import logging
import configparser
from logging.handlers import TimedRotatingFileHandler, RotatingFileHandler
from typing import Optional, Dict, Any

from picnexus.utils.paths import get_config_path, get_logs_dir


_SINGLETON: Optional["AppLogger"] = None

CATEGORIES = ("store", "uploads", "queue", "retry", "sync", "auth", "network", "general")


def get_logger() -> "AppLogger":
    global _SINGLETON
    if _SINGLETON is None:
        _SINGLETON = AppLogger()
    return _SINGLETON


def _gzip_rotate(source: str, dest: str, compress: bool) -> None:
    """Rename source to dest and gzip it when compress is set (best-effort)."""
    try:
        if os.path.exists(dest):
            os.remove(dest)
        os.replace(source, dest)
        if compress and os.path.exists(dest):
            with open(dest, "rb") as f_in, gzip.open(dest + ".gz", "wb") as f_out:
                shutil.copyfileobj(f_in, f_out)
            os.remove(dest)
    except OSError:
        # Rotation problems must not crash the uploader
        pass


class _GzipTimedRotatingFileHandler(TimedRotatingFileHandler):
    """Timed rotating handler that gzips rotated files when compress=True."""

    def __init__(self, filename: str, when: str, backupCount: int, encoding: str, compress: bool):
        super().__init__(filename, when=when, backupCount=backupCount, encoding=encoding, utc=False)
        self.compress = compress

    def rotate(self, source: str, dest: str) -> None:
        _gzip_rotate(source, dest, self.compress)


class _GzipRotatingFileHandler(RotatingFileHandler):
    """Size-based rotating handler that gzips rotated files when compress=True."""

    def __init__(self, filename: str, maxBytes: int, backupCount: int, encoding: str, compress: bool):
        super().__init__(filename, maxBytes=maxBytes, backupCount=backupCount, encoding=encoding)
        self.compress = compress

    def rotate(self, source: str, dest: str) -> None:
        _gzip_rotate(source, dest, self.compress)


class AppLogger:
    """Application-wide file logger.

    Settings persisted in picnexus.ini under section [LOGGING].
    """

    DEFAULTS = {
        "enabled": "true",
        "rotation": "daily",  # daily | size
        "backup_count": "7",
        "compress": "true",
        "max_bytes": "10485760",  # 10 MiB for size-based rotation
        "level_file": "INFO",
        "filename": "picnexus.log",
        **{f"cats_file_{cat}": "true" for cat in CATEGORIES},
    }

    TIME_ONLY_RE = re.compile(r"^(\d{2}:\d{2}:\d{2})\s+")

    LEVEL_MAP = {
        "DEBUG": logging.DEBUG,
        "INFO": logging.INFO,
        "WARNING": logging.WARNING,
        "ERROR": logging.ERROR,
        "CRITICAL": logging.CRITICAL,
    }

    def __init__(self) -> None:
        self._logger = logging.getLogger("picnexus")
        self._logger.setLevel(logging.DEBUG)
        self._logger.propagate = False

        self._file_handler: Optional[logging.Handler] = None
        self._file_formatter = logging.Formatter("%(asctime)s %(message)s", datefmt="%Y-%m-%d %H:%M:%S")
        self._file_level = logging.INFO

        self._settings = self._load_settings()
        self._apply_settings()

    def _read_config(self) -> configparser.ConfigParser:
        cfg = configparser.ConfigParser()
        path = get_config_path()
        if os.path.exists(path):
            try:
                cfg.read(path, encoding="utf-8")
            except configparser.Error:
                pass
        return cfg

    def _load_settings(self) -> Dict[str, str]:
        cfg = self._read_config()
        data = dict(self.DEFAULTS)
        if "LOGGING" in cfg:
            for k in self.DEFAULTS:
                if k in cfg["LOGGING"]:
                    data[k] = cfg["LOGGING"][k]
        return data

    def _save_settings(self) -> None:
        cfg = self._read_config()
        if "LOGGING" not in cfg:
            cfg["LOGGING"] = {}
        for k, v in self._settings.items():
            cfg["LOGGING"][k] = str(v)
        with open(get_config_path(), "w", encoding="utf-8") as f:
            cfg.write(f)

    def _enabled(self) -> bool:
        return str(self._settings.get("enabled", "true")).lower() == "true"

    def get_current_log_path(self) -> str:
        return os.path.join(get_logs_dir(), self._settings.get("filename", self.DEFAULTS["filename"]))

    def _ensure_file_handler(self) -> None:
        # Always rebuild: settings may have changed
        if self._file_handler is not None:
            self._logger.removeHandler(self._file_handler)
            self._file_handler.close()
            self._file_handler = None

        if not self._enabled():
            return

        rotation = (self._settings.get("rotation") or "daily").lower()
        backup_count = int(self._settings.get("backup_count", "7") or "7")
        compress = str(self._settings.get("compress", "true")).lower() == "true"
        max_bytes = int(self._settings.get("max_bytes", "10485760") or "10485760")

        try:
            if rotation == "size":
                handler: logging.Handler = _GzipRotatingFileHandler(
                    filename=self.get_current_log_path(),
                    maxBytes=max_bytes,
                    backupCount=backup_count,
                    encoding="utf-8",
                    compress=compress,
                )
            else:
                handler = _GzipTimedRotatingFileHandler(
                    filename=self.get_current_log_path(),
                    when="midnight",
                    backupCount=backup_count,
                    encoding="utf-8",
                    compress=compress,
                )
        except OSError:
            # Unwritable log dir: run without a file sink
            return
        handler.setLevel(self._file_level)
        handler.setFormatter(self._file_formatter)
        self._logger.addHandler(handler)
        self._file_handler = handler

    def _apply_settings(self) -> None:
        self._file_level = self.LEVEL_MAP.get(str(self._settings.get("level_file", "INFO")).upper(), logging.INFO)
        self._ensure_file_handler()

    def update_settings(self, **kwargs: Any) -> None:
        for k, v in kwargs.items():
            if k in self.DEFAULTS:
                self._settings[k] = str(v).lower() if isinstance(v, bool) else str(v)
        self._save_settings()
        self._apply_settings()

    def get_settings(self) -> Dict[str, Any]:
        """Return a copy of the settings with normalized types."""
        s: Dict[str, Any] = dict(self._settings)
        s["enabled"] = self._enabled()
        s["compress"] = str(s.get("compress", "true")).lower() == "true"
        for key, fallback in (("backup_count", 7), ("max_bytes", 10485760)):
            try:
                s[key] = int(s.get(key, fallback))
            except (TypeError, ValueError):
                s[key] = fallback
        for cat in CATEGORIES:
            key = f"cats_file_{cat}"
            s[key] = str(s.get(key, "true")).lower() == "true"
        return s

    @classmethod
    def _strip_leading_time(cls, message: str) -> str:
        # The file formatter adds date+time itself
        return cls.TIME_ONLY_RE.sub("", message, count=1)

    def should_emit_file(self, category: str, level: int) -> bool:
        if not self._enabled() or level < self._file_level:
            return False
        value = self._settings.get(f"cats_file_{category.lower()}", "true")
        return str(value).lower() == "true"

    def log_to_file(self, message: str, level: int = logging.INFO, category: str = "general") -> None:
        if self._file_handler is None or not self.should_emit_file(category, level):
            return
        self._logger.log(level, self._strip_leading_time(message))

    def read_current_log(self, tail_bytes: Optional[int] = None) -> str:
        path = self.get_current_log_path()
        if not os.path.exists(path):
            return ""
        if tail_bytes and tail_bytes > 0:
            size = os.path.getsize(path)
            with open(path, "rb") as f:
                if size > tail_bytes:
                    f.seek(-tail_bytes, os.SEEK_END)
                data = f.read()
            return data.decode("utf-8", errors="replace")
        with open(path, "r", encoding="utf-8", errors="replace") as f:
            return f.read()
