from __future__ import annotations

import base64
import binascii
import hashlib
import logging
import os
from functools import lru_cache

from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from peopleflow.errors import CiphertextError, KeyUnavailableError
from peopleflow.settings import Settings, get_settings

logger = logging.getLogger("peopleflow.secrets")

# Local development fallback; refused in production.
DEFAULT_ENCRYPTION_KEY = "PeopleFlow-Default-Secret-Key-Do-Not-Use-In-Production"
IV_SIZE = 16


class SecretCodec:
    """AES-256-CFB codec for integration secrets.

    The wire format is ``base64(iv || ciphertext)`` with a fresh 16 byte IV per
    call. The AES key is the SHA-256 digest of the configured master key.
    """

    def __init__(self, raw_key: str):
        if not raw_key:
            raise KeyUnavailableError()
        self._key = hashlib.sha256(raw_key.encode("utf-8")).digest()

    def encrypt(self, plaintext: str) -> str:
        iv = os.urandom(IV_SIZE)
        encryptor = Cipher(algorithms.AES(self._key), modes.CFB(iv)).encryptor()
        body = encryptor.update(plaintext.encode("utf-8")) + encryptor.finalize()
        return base64.b64encode(iv + body).decode("ascii")

    def decrypt(self, token: str) -> str:
        try:
            raw = base64.b64decode(token.encode("ascii"), validate=True)
        except (binascii.Error, UnicodeEncodeError, ValueError) as exc:
            raise CiphertextError("Ciphertext is not valid base64.") from exc
        if len(raw) < IV_SIZE:
            raise CiphertextError("Ciphertext is shorter than the IV.")

        iv, body = raw[:IV_SIZE], raw[IV_SIZE:]
        decryptor = Cipher(algorithms.AES(self._key), modes.CFB(iv)).decryptor()
        plain = decryptor.update(body) + decryptor.finalize()
        try:
            return plain.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise CiphertextError("Decrypted secret is not valid UTF-8.") from exc


def build_secret_codec(settings: Settings) -> SecretCodec:
    raw_key = (settings.encryption_key or "").strip()
    if raw_key and raw_key != DEFAULT_ENCRYPTION_KEY:
        return SecretCodec(raw_key)

    if (settings.environment or "").strip().lower() == "production":
        logger.critical("encryption_key_default_refused", extra={"environment": settings.environment})
        raise KeyUnavailableError(
            "PEOPLEFLOW_ENCRYPTION_KEY must be set to a non-default value in production."
        )

    logger.warning(
        "encryption_key_default_in_use",
        extra={
            "environment": settings.environment,
            "hint": "Set PEOPLEFLOW_ENCRYPTION_KEY. Secrets encrypted now are readable by anyone with the source.",
        },
    )
    return SecretCodec(DEFAULT_ENCRYPTION_KEY)


@lru_cache
def get_secret_codec() -> SecretCodec:
    return build_secret_codec(get_settings())
