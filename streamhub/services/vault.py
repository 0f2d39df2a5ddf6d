from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
import logging
import os

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from streamhub.core.config import get_settings
from streamhub.core.errors import VaultError


logger = logging.getLogger(__name__)

_KEY_LABEL = b"streamhub_encryption"
_IV_LABEL = b"streamhub_iv"
_BLOB_LABEL = b"streamhub_blob"
_NONCE_BYTES = 12


def mask_secret(value: str, visible: int = 4) -> str:
    """Hide all but the last ``visible`` characters.

    Secrets no longer than ``visible`` are fully starred (``visible`` stars), so
    the output never reveals a short secret. ``visible`` of 0 stars every
    character.
    """
    if not value:
        return ""
    visible = max(int(visible), 0)
    if visible == 0:
        return "*" * len(value)
    if len(value) > visible:
        return "*" * (len(value) - visible) + value[-visible:]
    return "*" * visible


class CredentialVault:
    """Symmetric encryption for provider secrets and the license cache.

    ``encrypt``/``decrypt`` are deterministic (AES-256-CBC, fixed derived IV) so a
    stored secret decrypts with nothing but the host secret. ``seal_blob`` uses
    AES-256-GCM with a random nonce per record for data that is never compared
    by ciphertext.
    """

    def __init__(self, secret: bytes | str | None = None) -> None:
        master = _load_master_secret(secret)
        self._key = hmac.new(master, _KEY_LABEL, hashlib.sha256).digest()
        self._iv = hmac.new(master, _IV_LABEL, hashlib.sha256).digest()[:16]
        self._blob_key = hmac.new(master, _BLOB_LABEL, hashlib.sha256).digest()

    def encrypt(self, plaintext: str) -> str:
        if plaintext == "":
            return ""
        try:
            padder = padding.PKCS7(algorithms.AES.block_size).padder()
            padded = padder.update(plaintext.encode("utf-8")) + padder.finalize()
            encryptor = Cipher(algorithms.AES(self._key), modes.CBC(self._iv)).encryptor()
            ciphertext = encryptor.update(padded) + encryptor.finalize()
        except (ValueError, TypeError, UnicodeEncodeError) as exc:
            logger.error("vault_encrypt_failed")
            raise VaultError("encryption failed") from exc
        return base64.b64encode(ciphertext).decode("ascii")

    def decrypt(self, ciphertext: str) -> str:
        if ciphertext == "":
            return ""
        try:
            raw = base64.b64decode(ciphertext.encode("ascii"), validate=True)
            if not raw or len(raw) % 16:
                raise ValueError("ciphertext length is not a multiple of the block size")
            decryptor = Cipher(algorithms.AES(self._key), modes.CBC(self._iv)).decryptor()
            padded = decryptor.update(raw) + decryptor.finalize()
            unpadder = padding.PKCS7(algorithms.AES.block_size).unpadder()
            plaintext = unpadder.update(padded) + unpadder.finalize()
            return plaintext.decode("utf-8")
        except (binascii.Error, ValueError, UnicodeError) as exc:
            logger.warning("vault_decrypt_failed")
            raise VaultError("decryption failed") from exc

    def mask(self, plaintext: str, visible: int = 4) -> str:
        return mask_secret(plaintext, visible)

    def seal_blob(self, plaintext: str) -> str:
        nonce = os.urandom(_NONCE_BYTES)
        try:
            ciphertext = AESGCM(self._blob_key).encrypt(nonce, plaintext.encode("utf-8"), _BLOB_LABEL)
        except (ValueError, TypeError, UnicodeEncodeError) as exc:
            logger.error("vault_seal_failed")
            raise VaultError("encryption failed") from exc
        return base64.b64encode(nonce + ciphertext).decode("ascii")

    def open_blob(self, token: str) -> str:
        try:
            payload = base64.b64decode(token.encode("ascii"), validate=True)
            if len(payload) <= _NONCE_BYTES:
                raise ValueError("sealed payload too short")
            nonce, ciphertext = payload[:_NONCE_BYTES], payload[_NONCE_BYTES:]
            plaintext = AESGCM(self._blob_key).decrypt(nonce, ciphertext, _BLOB_LABEL)
            return plaintext.decode("utf-8")
        except (binascii.Error, ValueError, UnicodeError, InvalidTag) as exc:
            logger.warning("vault_open_failed")
            raise VaultError("decryption failed") from exc


def _load_master_secret(secret: bytes | str | None) -> bytes:
    if secret is None:
        secret = get_settings().vault_secret
    if isinstance(secret, str):
        secret = secret.encode("utf-8")
    if secret:
        return hashlib.sha256(secret).digest()
    # Dev/test fallback; production deployments must set VAULT_SECRET.
    app_name = get_settings().app_name
    logger.warning("vault_secret_missing using_dev_key app=%s", app_name)
    return hashlib.sha256(f"{app_name}-dev-vault".encode("utf-8")).digest()
