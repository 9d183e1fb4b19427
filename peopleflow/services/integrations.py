from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime

from sqlalchemy.orm import Session, sessionmaker

from peopleflow.db import utc_now
from peopleflow.errors import (
    ApiKeyMissingError,
    DuplicateKeyError,
    IntegrationExistsError,
    IntegrationInactiveError,
    IntegrationNotFoundError,
    InvalidApiKeyError,
    InvalidIntegrationTypeError,
    InvalidMetadataError,
)
from peopleflow.models import INTEGRATION_DISPLAY_NAMES, Integration, IntegrationType
from peopleflow.schemas import IntegrationRead
from peopleflow.services.secret_codec import SecretCodec
from peopleflow.services.store import DESCENDING, CollectionGateway

logger = logging.getLogger("peopleflow.integrations")


def normalize_integration_type(value: IntegrationType | str) -> IntegrationType:
    if isinstance(value, IntegrationType):
        return value
    try:
        return IntegrationType(str(value or "").strip().lower())
    except ValueError as exc:
        raise InvalidIntegrationTypeError(value) from exc


def _normalize_metadata_key(key: str) -> str:
    normalized = (key or "").strip()
    if not normalized:
        raise InvalidMetadataError("metadata key must not be empty", field="key")
    if "." in normalized or normalized.startswith("$"):
        raise InvalidMetadataError(f"invalid metadata key: {normalized}", field="key")
    return normalized


def to_integration_read(record: Integration) -> IntegrationRead:
    return IntegrationRead(
        id=record.id,
        type=record.type,
        name=record.name,
        active=record.active,
        auto_sync=record.auto_sync,
        has_api_key=bool(record.api_key),
        last_sync=record.last_sync,
        metadata=dict(record.meta or {}),
        created_at=record.created_at,
        updated_at=record.updated_at,
    )


class IntegrationStore:
    """Per-integration credentials, status and metadata.

    Records are keyed by the lowercase integration type. API keys are stored
    as :class:`SecretCodec` ciphertext only.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        codec: SecretCodec,
        *,
        deadline_seconds: float | None = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.store: CollectionGateway[Integration] = CollectionGateway(
            session_factory,
            Integration,
            deadline_seconds=deadline_seconds,
        )
        self._codec = codec
        self._clock = clock

    def ensure_indexes(self) -> list[str]:
        return [
            self.store.create_index(["type"], unique=True),
            self.store.create_index(["active"]),
            self.store.create_index([("last_sync", DESCENDING)]),
        ]

    @staticmethod
    def validate_type(integration_type: IntegrationType | str) -> IntegrationType:
        return normalize_integration_type(integration_type)

    def _new_record_values(self, integration_type: IntegrationType, now: datetime) -> dict[str, object]:
        return {
            "type": integration_type.value,
            "name": INTEGRATION_DISPLAY_NAMES[integration_type],
            "meta": {},
            "auto_sync": False,
            "created_at": now,
        }

    def _get_record(self, integration_type: IntegrationType, *, db: Session | None = None) -> Integration:
        record = self.store.find_one(Integration.type == integration_type.value, db=db)
        if record is None:
            raise IntegrationNotFoundError(integration_type.value)
        return record

    def save_api_key(self, integration_type: IntegrationType | str, api_key: str) -> None:
        parsed = normalize_integration_type(integration_type)
        plaintext = api_key or ""
        if not plaintext.strip():
            raise InvalidApiKeyError()

        ciphertext = self._codec.encrypt(plaintext)
        now = self._clock()
        try:
            self.store.update_one(
                Integration.type == parsed.value,
                values={"api_key": ciphertext, "active": True, "updated_at": now},
                upsert=True,
                insert_values=self._new_record_values(parsed, now),
            )
        except DuplicateKeyError as exc:
            raise IntegrationExistsError(parsed.value) from exc
        logger.info("integration_api_key_saved", extra={"integration_type": parsed.value})

    def get_api_key(self, integration_type: IntegrationType | str) -> str:
        parsed = normalize_integration_type(integration_type)
        record = self._get_record(parsed)
        if not record.active:
            raise IntegrationInactiveError(parsed.value)
        if not record.api_key:
            raise ApiKeyMissingError(parsed.value)
        return self._codec.decrypt(record.api_key)

    def get_status(self, integration_type: IntegrationType | str) -> bool:
        parsed = normalize_integration_type(integration_type)
        record = self.store.find_one(Integration.type == parsed.value)
        if record is None:
            return False
        return record.active

    def set_status(self, integration_type: IntegrationType | str, active: bool) -> None:
        parsed = normalize_integration_type(integration_type)
        result = self.store.update_one(
            Integration.type == parsed.value,
            values={"active": bool(active), "updated_at": self._clock()},
        )
        if result.matched_count == 0:
            raise IntegrationNotFoundError(parsed.value)
        logger.info(
            "integration_status_changed",
            extra={"integration_type": parsed.value, "active": bool(active)},
        )

    def set_auto_sync(self, integration_type: IntegrationType | str, enabled: bool) -> None:
        parsed = normalize_integration_type(integration_type)
        result = self.store.update_one(
            Integration.type == parsed.value,
            values={"auto_sync": bool(enabled), "updated_at": self._clock()},
        )
        if result.matched_count == 0:
            raise IntegrationNotFoundError(parsed.value)

    def get_integration(self, integration_type: IntegrationType | str) -> IntegrationRead:
        parsed = normalize_integration_type(integration_type)
        return to_integration_read(self._get_record(parsed))

    def get_all(self) -> list[IntegrationRead]:
        records = self.store.find_all(order_by=(Integration.name.asc(),))
        return [to_integration_read(item) for item in records]

    def get_active(self) -> list[IntegrationRead]:
        records = self.store.find_all(Integration.active.is_(True), order_by=(Integration.name.asc(),))
        return [to_integration_read(item) for item in records]

    def set_metadata(self, integration_type: IntegrationType | str, key: str, value: str) -> None:
        """Set ``metadata[key]``, creating an inactive keyless record if needed."""
        parsed = normalize_integration_type(integration_type)
        normalized_key = _normalize_metadata_key(key)
        if not (value or "").strip():
            raise InvalidMetadataError("metadata value must not be empty", field="value")

        def body(session: Session) -> None:
            now = self._clock()
            record = self.store.find_one(Integration.type == parsed.value, for_update=True, db=session)
            if record is None:
                document = self._new_record_values(parsed, now)
                document.update(
                    {
                        "active": False,
                        "api_key": "",
                        "meta": {normalized_key: value},
                        "updated_at": now,
                    }
                )
                self.store.insert_one(document, db=session)
                return
            metadata = dict(record.meta or {})
            metadata[normalized_key] = value
            self.store.update_by_id(record.id, {"meta": metadata, "updated_at": now}, db=session)

        try:
            self.store.transaction(body, operation="set_metadata")
        except DuplicateKeyError as exc:
            raise IntegrationExistsError(parsed.value) from exc

    def get_metadata(self, integration_type: IntegrationType | str, key: str) -> str:
        parsed = normalize_integration_type(integration_type)
        normalized_key = _normalize_metadata_key(key)
        record = self._get_record(parsed)
        return str((record.meta or {}).get(normalized_key, ""))

    def get_all_metadata(self, integration_type: IntegrationType | str) -> dict[str, str]:
        parsed = normalize_integration_type(integration_type)
        record = self._get_record(parsed)
        return {str(k): str(v) for k, v in (record.meta or {}).items()}

    def delete_metadata(self, integration_type: IntegrationType | str, key: str) -> None:
        parsed = normalize_integration_type(integration_type)
        normalized_key = _normalize_metadata_key(key)

        def body(session: Session) -> None:
            record = self.store.find_one(Integration.type == parsed.value, for_update=True, db=session)
            if record is None:
                raise IntegrationNotFoundError(parsed.value)
            metadata = dict(record.meta or {})
            metadata.pop(normalized_key, None)
            self.store.update_by_id(record.id, {"meta": metadata, "updated_at": self._clock()}, db=session)

        self.store.transaction(body, operation="delete_metadata")

    def set_last_sync(self, integration_type: IntegrationType | str, last_sync: datetime | None = None) -> datetime:
        parsed = normalize_integration_type(integration_type)
        now = self._clock()
        stamp = last_sync or now
        result = self.store.update_one(
            Integration.type == parsed.value,
            values={"last_sync": stamp, "updated_at": now},
        )
        if result.matched_count == 0:
            raise IntegrationNotFoundError(parsed.value)
        return stamp

    def get_last_sync(self, integration_type: IntegrationType | str) -> datetime | None:
        parsed = normalize_integration_type(integration_type)
        return self._get_record(parsed).last_sync

    def delete_integration(self, integration_type: IntegrationType | str) -> None:
        parsed = normalize_integration_type(integration_type)
        if self.store.delete_one(Integration.type == parsed.value).deleted_count == 0:
            raise IntegrationNotFoundError(parsed.value)
        logger.info("integration_deleted", extra={"integration_type": parsed.value})
