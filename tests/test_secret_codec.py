from __future__ import annotations

import base64
import unittest

from peopleflow.errors import CiphertextError, KeyUnavailableError
from peopleflow.services.secret_codec import (
    DEFAULT_ENCRYPTION_KEY,
    IV_SIZE,
    SecretCodec,
    build_secret_codec,
)
from peopleflow.settings import Settings


class SecretCodecTests(unittest.TestCase):
    def setUp(self) -> None:
        self.codec = SecretCodec("unit-test-master-key")

    def test_round_trip_preserves_utf8_text(self) -> None:
        for plaintext in ("k1", "", "Grüße aus Köln ✓", "x" * 1000):
            with self.subTest(plaintext=plaintext[:20]):
                self.assertEqual(self.codec.decrypt(self.codec.encrypt(plaintext)), plaintext)

    def test_encrypt_uses_fresh_iv_per_call(self) -> None:
        first = self.codec.encrypt("same-secret")
        second = self.codec.encrypt("same-secret")

        self.assertNotEqual(first, second)
        self.assertNotEqual(base64.b64decode(first)[:IV_SIZE], base64.b64decode(second)[:IV_SIZE])

    def test_wire_format_is_iv_followed_by_stream_ciphertext(self) -> None:
        token = self.codec.encrypt("api-key-123")
        raw = base64.b64decode(token)

        self.assertEqual(len(raw), IV_SIZE + len("api-key-123".encode("utf-8")))
        self.assertNotIn(b"api-key-123", raw)

    def test_codecs_sharing_a_key_are_interchangeable(self) -> None:
        token = self.codec.encrypt("shared")
        self.assertEqual(SecretCodec("unit-test-master-key").decrypt(token), "shared")

    def test_decrypt_rejects_invalid_base64(self) -> None:
        with self.assertRaises(CiphertextError):
            self.codec.decrypt("not base64 !!")

    def test_decrypt_rejects_payload_shorter_than_iv(self) -> None:
        token = base64.b64encode(b"short").decode("ascii")
        with self.assertRaises(CiphertextError) as ctx:
            self.codec.decrypt(token)
        self.assertEqual(ctx.exception.kind, "invalidCiphertext")

    def test_empty_master_key_is_unavailable(self) -> None:
        with self.assertRaises(KeyUnavailableError):
            SecretCodec("")


class BuildSecretCodecTests(unittest.TestCase):
    def test_configured_key_is_used(self) -> None:
        settings = Settings(environment="development", encryption_key="configured-key")
        codec = build_secret_codec(settings)

        token = codec.encrypt("value")
        self.assertEqual(SecretCodec("configured-key").decrypt(token), "value")

    def test_default_key_logs_warning_outside_production(self) -> None:
        settings = Settings(environment="development", encryption_key="")

        with self.assertLogs("peopleflow.secrets", level="WARNING") as logs:
            codec = build_secret_codec(settings)

        self.assertIn("encryption_key_default_in_use", logs.output[0])
        token = codec.encrypt("value")
        self.assertEqual(SecretCodec(DEFAULT_ENCRYPTION_KEY).decrypt(token), "value")

    def test_default_key_is_refused_in_production(self) -> None:
        settings = Settings(environment="production", encryption_key=DEFAULT_ENCRYPTION_KEY)

        with self.assertLogs("peopleflow.secrets", level="CRITICAL"):
            with self.assertRaises(KeyUnavailableError) as ctx:
                build_secret_codec(settings)

        self.assertEqual(ctx.exception.kind, "keyUnavailable")


if __name__ == "__main__":
    unittest.main()
