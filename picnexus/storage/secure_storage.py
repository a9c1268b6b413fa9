"""
Document encryption for the local stores.

Documents are encrypted with AES-256-GCM. The key is generated once and
kept in the OS keyring (service "picnexus"); when no keyring backend is
usable the key is derived from the user and host names instead, like the
old credential encryption did.

Encrypted payload format: ``PNX1:`` + base64(nonce(12) + ciphertext+tag).
"""

import base64
import binascii
import getpass
import hashlib
import os
import platform
from typing import Optional

import keyring
from keyring.errors import KeyringError
from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from picnexus.core.constants import (
    KEYRING_SERVICE, KEYRING_STORE_KEY_USER, STORE_FORMAT_MARKER, AES_GCM_NONCE_SIZE,
)
from picnexus.core.errors import PicNexusError
from picnexus.utils.logger import log


class DecryptionError(PicNexusError):
    """Payload is not valid ciphertext for this key."""
    pass


def get_machine_key() -> bytes:
    """Derive a stable 256-bit key from system info."""
    system_info = f"{getpass.getuser()}{platform.node()}{KEYRING_SERVICE}"
    return hashlib.sha256(system_info.encode()).digest()


def load_or_create_key() -> bytes:
    """Fetch the store key from the OS keyring, generating it on first use."""
    try:
        stored = keyring.get_password(KEYRING_SERVICE, KEYRING_STORE_KEY_USER)
        if stored:
            key = base64.b64decode(stored)
            if len(key) == 32:
                return key
            log("Store key in keyring has the wrong size, using machine key", level="warning", category="store")
            return get_machine_key()
        key = AESGCM.generate_key(bit_length=256)
        keyring.set_password(KEYRING_SERVICE, KEYRING_STORE_KEY_USER, base64.b64encode(key).decode("ascii"))
        log("Generated new store key in OS keyring", level="debug", category="store")
        return key
    except (KeyringError, binascii.Error, ValueError) as e:
        log(f"Keyring unavailable ({e}), using machine-derived store key", level="debug", category="store")
        return get_machine_key()


class SecureStorage:
    """AES-GCM cipher for store documents."""

    def __init__(self, key: Optional[bytes] = None):
        self._key = key if key is not None else load_or_create_key()
        if len(self._key) not in (16, 24, 32):
            raise ValueError("AES key must be 128, 192 or 256 bits")
        self._aesgcm = AESGCM(self._key)

    def encrypt(self, plaintext: str) -> str:
        """Encrypt text and return the marked, base64 encoded payload."""
        nonce = os.urandom(AES_GCM_NONCE_SIZE)
        ciphertext = self._aesgcm.encrypt(nonce, plaintext.encode("utf-8"), None)
        return STORE_FORMAT_MARKER + base64.b64encode(nonce + ciphertext).decode("ascii")

    def decrypt(self, payload: str) -> str:
        """Decrypt a payload produced by encrypt(); the marker is optional.

        Raises:
            DecryptionError: payload is not valid base64 ciphertext for this key
        """
        text = payload.strip()
        if text.startswith(STORE_FORMAT_MARKER):
            text = text[len(STORE_FORMAT_MARKER):]
        try:
            raw = base64.b64decode(text, validate=True)
        except (binascii.Error, ValueError) as e:
            raise DecryptionError(f"Payload is not base64: {e}") from e
        if len(raw) <= AES_GCM_NONCE_SIZE:
            raise DecryptionError("Payload too short")
        nonce, ciphertext = raw[:AES_GCM_NONCE_SIZE], raw[AES_GCM_NONCE_SIZE:]
        try:
            return self._aesgcm.decrypt(nonce, ciphertext, None).decode("utf-8")
        except (InvalidTag, UnicodeDecodeError) as e:
            raise DecryptionError("Payload failed authentication") from e
