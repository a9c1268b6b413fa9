"""
Encrypted single-file JSON key-value store.

One EncryptedStore wraps one document (settings.dat, history.dat, retry.dat).
The document is a JSON object encrypted with SecureStorage and rewritten in
full on every change.

Concurrency:
- writes to one key are serialized by a per-key lock
- the whole-document read-modify-write is additionally guarded by a
  document lock, so writers on different keys cannot lose each other's
  updates
- files are written to a temp file, fsynced and moved into place with
  os.replace, so a crash leaves either the old or the new document

Reading accepts three layouts: marked ciphertext (``PNX1:...``), plaintext
JSON written before encryption existed, and unmarked ciphertext from
before the marker was introduced.
"""

import json
import os
import threading
import time
from typing import Any, Callable, Dict, List, Optional

from picnexus.core.constants import STORE_FORMAT_MARKER, HISTORY_KEY, MAX_HISTORY_ITEMS
from picnexus.core.errors import StoreError
from picnexus.storage.secure_storage import SecureStorage, DecryptionError
from picnexus.utils.logger import log

_MISSING = object()


class _CorruptDocument(Exception):
    def __init__(self, raw: bytes, reason: str):
        super().__init__(reason)
        self.raw = raw


class EncryptedStore:
    """Per-document encrypted JSON key-space."""

    def __init__(self, path: str, cipher: SecureStorage,
                 capped_keys: Optional[Dict[str, int]] = None):
        """
        Args:
            path: Document file path
            cipher: SecureStorage used for every read and write
            capped_keys: Array keys whose persisted length is capped
                         (defaults to the 500-entry upload history)
        """
        self._path = path
        self._cipher = cipher
        self._capped_keys = capped_keys if capped_keys is not None else {HISTORY_KEY: MAX_HISTORY_ITEMS}
        self._doc_lock = threading.RLock()
        self._key_locks: Dict[str, threading.Lock] = {}
        self._key_locks_guard = threading.Lock()

    @property
    def path(self) -> str:
        return self._path

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def get(self, key: str, default: Any = _MISSING) -> Any:
        """Return the value stored under key.

        A missing key or missing file returns ``default`` (None when not
        given). If the document cannot be decrypted or parsed and a default
        was supplied, the bad file is backed up, the default is persisted
        and returned; without a default StoreError(read) is raised.
        """
        if not self._valid_key(key):
            log(f"Ignoring store read with invalid key {key!r}", level="warning", category="store")
            return None
        fallback = None if default is _MISSING else default

        with self._doc_lock:
            try:
                data = self._load_document(key)
            except _CorruptDocument as e:
                corrupt_reason = str(e)
            else:
                return data.get(key, fallback)

        if default is _MISSING:
            raise StoreError(f"Store document {self._path} is corrupted: {corrupt_reason}",
                             "read", key=key)
        return self._recover(key, default)

    def set(self, key: str, value: Any) -> None:
        """Persist value under key (read-modify-write of the whole document)."""
        if not self._valid_key(key):
            raise StoreError(f"Invalid store key: {key!r}", "write", key=key)
        value = self._apply_cap(key, value)

        def mutate(data: Dict[str, Any]) -> None:
            data[key] = value

        self._write(key, mutate)

    def update(self, key: str, func: Callable[[Any], Any], default: Any = None) -> Any:
        """Atomically replace the value under key with func(current).

        func runs while the key is locked, so concurrent update() calls on
        the same key never lose each other's changes.
        """
        if not self._valid_key(key):
            raise StoreError(f"Invalid store key: {key!r}", "write", key=key)
        result: List[Any] = []

        def mutate(data: Dict[str, Any]) -> None:
            new_value = self._apply_cap(key, func(data.get(key, default)))
            data[key] = new_value
            result.append(new_value)

        self._write(key, mutate)
        return result[0]

    def delete(self, key: str) -> None:
        if not self._valid_key(key):
            raise StoreError(f"Invalid store key: {key!r}", "write", key=key)
        self._write(key, lambda data: data.pop(key, None))

    def keys(self) -> List[str]:
        with self._doc_lock:
            try:
                return list(self._load_document(None).keys())
            except _CorruptDocument:
                return []

    def clear(self) -> None:
        """Remove every key from the document."""
        with self._doc_lock:
            try:
                self._write_document({}, None)
            except StoreError as e:
                raise StoreError(f"Failed to clear store: {e}", "clear",
                                 original_error=e.original_error) from e
        log(f"Cleared store {os.path.basename(self._path)}", level="debug", category="store")

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    @staticmethod
    def _valid_key(key: Any) -> bool:
        return isinstance(key, str) and bool(key.strip())

    def _apply_cap(self, key: str, value: Any) -> Any:
        cap = self._capped_keys.get(key)
        if cap is not None and isinstance(value, list) and len(value) > cap:
            log(f"Trimming '{key}' from {len(value)} to {cap} entries", level="debug", category="store")
            return value[:cap]
        return value

    def _key_lock(self, key: str) -> threading.Lock:
        with self._key_locks_guard:
            lock = self._key_locks.get(key)
            if lock is None:
                lock = threading.Lock()
                self._key_locks[key] = lock
            return lock

    def _write(self, key: str, mutate: Callable[[Dict[str, Any]], Any]) -> None:
        # Lock order is always key lock, then document lock
        with self._key_lock(key):
            with self._doc_lock:
                try:
                    data = self._load_document(key)
                except _CorruptDocument as e:
                    backup_path = self._backup_corrupted(e.raw, key)
                    log(f"Overwriting unreadable store document {self._path} ({e}); "
                        f"backup saved to {backup_path}", level="warning", category="store")
                    data = {}
                mutate(data)
                self._write_document(data, key)

    def _recover(self, key: str, default: Any) -> Any:
        with self._key_lock(key):
            with self._doc_lock:
                # Another thread may have recovered already
                try:
                    return self._load_document(key).get(key, default)
                except _CorruptDocument as e:
                    backup_path = self._backup_corrupted(e.raw, key)
                    log(f"Store document {os.path.basename(self._path)} was corrupted ({e}); "
                        f"backup saved to {backup_path}, restoring default for '{key}'",
                        level="warning", category="store")
                    self._write_document({key: self._apply_cap(key, default)}, key)
                    return default

    def _backup_corrupted(self, raw: bytes, key: str) -> str:
        backup_path = f"{self._path}.corrupted.{int(time.time() * 1000)}"
        try:
            with open(backup_path, "wb") as f:
                f.write(raw)
        except OSError as e:
            raise StoreError(f"Failed to back up corrupted store: {e}", "write",
                             key=key, original_error=e) from e
        return backup_path

    def _read_raw(self, key: Optional[str]) -> Optional[bytes]:
        try:
            with open(self._path, "rb") as f:
                return f.read()
        except FileNotFoundError:
            return None
        except OSError as e:
            raise StoreError(f"Failed to read store {self._path}: {e}", "read",
                             key=key, original_error=e) from e

    def _decode(self, text: str) -> Any:
        if text.startswith(STORE_FORMAT_MARKER):
            return json.loads(self._cipher.decrypt(text))
        if text.startswith(("{", "[")):
            # Plaintext document from before encryption
            return json.loads(text)
        # Unmarked ciphertext, or plaintext that merely looks odd
        try:
            plaintext = self._cipher.decrypt(text)
        except DecryptionError:
            plaintext = text
        return json.loads(plaintext)

    def _load_document(self, key: Optional[str]) -> Dict[str, Any]:
        raw = self._read_raw(key)
        if raw is None:
            return {}
        try:
            text = raw.decode("utf-8").strip()
        except UnicodeDecodeError as e:
            raise _CorruptDocument(raw, f"not UTF-8: {e}") from e
        if not text:
            return {}
        try:
            data = self._decode(text)
        except (DecryptionError, json.JSONDecodeError) as e:
            raise _CorruptDocument(raw, str(e)) from e
        if not isinstance(data, dict):
            log(f"Store document {os.path.basename(self._path)} is not an object, treating as empty",
                level="warning", category="store")
            return {}
        return data

    def _write_document(self, data: Dict[str, Any], key: Optional[str]) -> None:
        directory = os.path.dirname(self._path) or "."
        try:
            os.makedirs(directory, exist_ok=True)
        except OSError as e:
            raise StoreError(f"Failed to create store directory {directory}: {e}", "init",
                             key=key, original_error=e) from e

        try:
            payload = self._cipher.encrypt(json.dumps(data, ensure_ascii=False))
        except (TypeError, ValueError) as e:
            raise StoreError(f"Value is not JSON serializable: {e}", "write",
                             key=key, original_error=e) from e

        tmp_path = f"{self._path}.tmp.{os.getpid()}.{threading.get_ident()}"
        try:
            with open(tmp_path, "w", encoding="utf-8") as f:
                f.write(payload)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, self._path)
        except OSError as e:
            if os.path.exists(tmp_path):
                os.remove(tmp_path)
            raise StoreError(f"Failed to write store {self._path}: {e}", "write",
                             key=key, original_error=e) from e
