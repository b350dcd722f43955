"""Key Vault - AES-256-GCM encryption for provider API keys at rest

Stored records use the form ``<iv hex>:<ciphertext+tag hex>`` with a fresh
96-bit nonce per encryption.
"""
import binascii
import logging
import os
from typing import Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from tokenguard.core.config import settings

logger = logging.getLogger(__name__)

NONCE_SIZE = 12  # 96-bit nonce
KEY_SIZE = 32  # AES-256


class VaultConfigurationError(RuntimeError):
    """Master key missing - every encrypt/decrypt call is refused"""


class DecryptionError(Exception):
    """Stored record could not be decrypted (tampered, wrong key or malformed)"""


def _derive_key(master_key: str) -> bytes:
    """Right-pad the master key with '0' and truncate to 32 bytes.

    Records written by earlier deployments were keyed this way, so the
    derivation has to stay byte-for-byte identical.
    """
    if not master_key:
        raise VaultConfigurationError("ENCRYPTION_KEY is not configured")
    raw = master_key.encode("utf-8")
    return raw.ljust(KEY_SIZE, b"0")[:KEY_SIZE]


def encrypt_api_key(plaintext: str, master_key: str) -> str:
    """Encrypt a plaintext API key into a self-describing record"""
    cipher = AESGCM(_derive_key(master_key))
    iv = os.urandom(NONCE_SIZE)
    ciphertext = cipher.encrypt(iv, plaintext.encode("utf-8"), None)
    return f"{iv.hex()}:{ciphertext.hex()}"


def decrypt_api_key(record: str, master_key: str) -> str:
    """Decrypt a stored record.

    Raises:
        VaultConfigurationError: If the master key is missing
        DecryptionError: On tampered ciphertext, wrong key or malformed record
    """
    key = _derive_key(master_key)

    try:
        iv_hex, ciphertext_hex = record.split(":")
        iv = bytes.fromhex(iv_hex)
        ciphertext = bytes.fromhex(ciphertext_hex)
    except (AttributeError, ValueError) as e:
        logger.error(f"Malformed encrypted key record: {type(e).__name__}")
        raise DecryptionError("Malformed encrypted key record") from None

    if len(iv) != NONCE_SIZE:
        logger.error(f"Malformed encrypted key record: nonce is {len(iv)} bytes")
        raise DecryptionError("Malformed encrypted key record")

    try:
        plaintext = AESGCM(key).decrypt(iv, ciphertext, None)
        return plaintext.decode("utf-8")
    except (InvalidTag, UnicodeDecodeError, binascii.Error, ValueError) as e:
        logger.error(f"Decryption failed: {type(e).__name__}")
        raise DecryptionError("Unable to decrypt key record") from None


class KeyVault:
    """Process-wide vault bound to a master key.

    Constructed once at startup and injected; tests build their own with a
    throwaway key.
    """

    def __init__(self, master_key: Optional[str] = None):
        self._master_key = settings.ENCRYPTION_KEY if master_key is None else master_key

    @property
    def configured(self) -> bool:
        return bool(self._master_key)

    def encrypt(self, plaintext: str) -> str:
        return encrypt_api_key(plaintext, self._master_key)

    def decrypt(self, record: str) -> str:
        return decrypt_api_key(record, self._master_key)


def key_hint(plaintext: str) -> str:
    """Last four characters, safe to show in the UI"""
    return plaintext[-4:]
