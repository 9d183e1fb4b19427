from __future__ import annotations

from datetime import datetime, timezone
import unittest

from _support import FakeClock, build_memory_session_factory
from peopleflow.errors import (
    ApiKeyMissingError,
    IntegrationInactiveError,
    IntegrationNotFoundError,
    InvalidApiKeyError,
    InvalidIntegrationTypeError,
    InvalidMetadataError,
)
from peopleflow.models import Integration, IntegrationType
from peopleflow.services.integrations import IntegrationStore, normalize_integration_type
from peopleflow.services.secret_codec import SecretCodec


class IntegrationStoreTests(unittest.TestCase):
    def setUp(self) -> None:
        self.clock = FakeClock()
        self.codec = SecretCodec("integration-test-key")
        self.store = IntegrationStore(
            build_memory_session_factory(),
            self.codec,
            deadline_seconds=5,
            clock=self.clock,
        )
        self.store.ensure_indexes()

    def test_normalize_integration_type(self) -> None:
        self.assertIs(normalize_integration_type(" TimeButler "), IntegrationType.TIMEBUTLER)
        self.assertIs(normalize_integration_type("123ERFASST"), IntegrationType.ERFASST_123)
        for value in ("", "personio", None):
            with self.subTest(value=value):
                with self.assertRaises(InvalidIntegrationTypeError):
                    normalize_integration_type(value)  # type: ignore[arg-type]

    def test_save_api_key_is_case_insensitive_and_encrypted(self) -> None:
        self.store.save_api_key("TIMEBUTLER", "k1")

        self.assertEqual(self.store.get_api_key("timebutler"), "k1")
        self.assertTrue(self.store.get_status("Timebutler"))
        self.assertEqual(self.store.store.count(), 1)

        record = self.store.store.find_one(Integration.type == "timebutler")
        assert record is not None
        self.assertNotEqual(record.api_key, "k1")
        self.assertEqual(self.codec.decrypt(record.api_key), "k1")
        self.assertEqual(record.name, "Timebutler")

    def test_save_api_key_overwrites_existing_record(self) -> None:
        self.store.save_api_key("awork", "first")
        self.store.set_status("awork", False)
        self.store.save_api_key("AWORK", "second")

        self.assertEqual(self.store.store.count(), 1)
        self.assertEqual(self.store.get_api_key("awork"), "second")

    def test_save_api_key_rejects_blank_key(self) -> None:
        with self.assertRaises(InvalidApiKeyError):
            self.store.save_api_key("awork", "   ")
        self.assertEqual(self.store.store.count(), 0)

    def test_unknown_type_is_rejected(self) -> None:
        with self.assertRaises(InvalidIntegrationTypeError):
            self.store.save_api_key("personio", "k1")

    def test_get_api_key_errors(self) -> None:
        with self.assertRaises(IntegrationNotFoundError):
            self.store.get_api_key("awork")

        self.store.save_api_key("awork", "k1")
        self.store.set_status("awork", False)
        with self.assertRaises(IntegrationInactiveError):
            self.store.get_api_key("awork")

        self.store.set_metadata("timebutler", "account", "acme")
        self.store.set_status("timebutler", True)
        with self.assertRaises(ApiKeyMissingError):
            self.store.get_api_key("timebutler")

    def test_status_of_unknown_integration_is_false(self) -> None:
        self.assertFalse(self.store.get_status("awork"))
        with self.assertRaises(IntegrationNotFoundError):
            self.store.set_status("awork", True)

    def test_metadata_creates_inactive_record_and_round_trips(self) -> None:
        self.store.set_metadata("123erfasst", "account", "acme")
        self.store.set_metadata("123erfasst", "region", "eu")
        self.store.set_metadata("123erfasst", "account", "globex")

        integration = self.store.get_integration("123erfasst")
        self.assertFalse(integration.active)
        self.assertFalse(integration.has_api_key)
        self.assertEqual(self.store.get_metadata("123erfasst", "account"), "globex")
        self.assertEqual(self.store.get_metadata("123erfasst", "missing"), "")
        self.assertEqual(self.store.get_all_metadata("123erfasst"), {"account": "globex", "region": "eu"})

        self.store.delete_metadata("123erfasst", "region")
        self.assertEqual(self.store.get_all_metadata("123erfasst"), {"account": "globex"})

    def test_metadata_validation(self) -> None:
        for key in ("", "a.b", "$where"):
            with self.subTest(key=key):
                with self.assertRaises(InvalidMetadataError):
                    self.store.set_metadata("awork", key, "value")
        with self.assertRaises(InvalidMetadataError):
            self.store.set_metadata("awork", "account", "")
        with self.assertRaises(IntegrationNotFoundError):
            self.store.get_metadata("awork", "account")
        with self.assertRaises(IntegrationNotFoundError):
            self.store.delete_metadata("awork", "account")

    def test_last_sync_defaults_to_clock(self) -> None:
        self.store.save_api_key("awork", "k1")

        stamp = self.store.set_last_sync("awork")
        self.assertEqual(stamp, self.clock.now)
        self.assertEqual(self.store.get_last_sync("awork"), self.clock.now)

        explicit = datetime(2026, 1, 15, 6, 30, tzinfo=timezone.utc)
        self.store.set_last_sync("awork", explicit)
        self.assertEqual(self.store.get_last_sync("awork"), explicit)

        with self.assertRaises(IntegrationNotFoundError):
            self.store.set_last_sync("timebutler")

    def test_listing_is_sorted_by_name_and_filters_active(self) -> None:
        self.store.save_api_key("timebutler", "k1")
        self.store.save_api_key("awork", "k2")
        self.store.set_metadata("123erfasst", "account", "acme")

        self.assertEqual([item.name for item in self.store.get_all()], ["123erfasst", "AWork", "Timebutler"])
        self.assertEqual([item.type for item in self.store.get_active()], ["awork", "timebutler"])

    def test_auto_sync_and_delete(self) -> None:
        self.store.save_api_key("awork", "k1")
        self.store.set_auto_sync("awork", True)
        self.assertTrue(self.store.get_integration("awork").auto_sync)

        self.store.delete_integration("AWork")
        with self.assertRaises(IntegrationNotFoundError):
            self.store.get_integration("awork")
        with self.assertRaises(IntegrationNotFoundError):
            self.store.delete_integration("awork")
        with self.assertRaises(IntegrationNotFoundError):
            self.store.set_auto_sync("awork", False)


if __name__ == "__main__":
    unittest.main()
