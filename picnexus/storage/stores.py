"""The three documents the uploader persists."""

import os
from dataclasses import dataclass
from typing import Optional

from picnexus.core.constants import SETTINGS_DOCUMENT, HISTORY_DOCUMENT, RETRY_DOCUMENT
from picnexus.storage.encrypted_store import EncryptedStore
from picnexus.storage.secure_storage import SecureStorage
from picnexus.utils.paths import get_data_dir


@dataclass
class Stores:
    settings: EncryptedStore
    history: EncryptedStore
    retry: EncryptedStore


def open_stores(data_dir: Optional[str] = None, cipher: Optional[SecureStorage] = None) -> Stores:
    """Open settings/history/retry documents sharing one cipher."""
    data_dir = data_dir or get_data_dir()
    cipher = cipher or SecureStorage()
    return Stores(
        settings=EncryptedStore(os.path.join(data_dir, SETTINGS_DOCUMENT), cipher),
        history=EncryptedStore(os.path.join(data_dir, HISTORY_DOCUMENT), cipher),
        retry=EncryptedStore(os.path.join(data_dir, RETRY_DOCUMENT), cipher),
    )
