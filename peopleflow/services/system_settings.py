from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from datetime import datetime
from typing import Any

from sqlalchemy.orm import Session, sessionmaker

from peopleflow.db import is_zero_id, new_object_id, utc_now
from peopleflow.errors import (
    EmailNotificationsDisabledError,
    InvalidSettingsError,
    NotFoundError,
    SettingsAlreadyExistError,
)
from peopleflow.models import GERMAN_STATE_LABELS, GermanState, SystemSettings
from peopleflow.schemas import EmailNotificationSettings, SystemSettingsData
from peopleflow.services.store import DESCENDING, CollectionGateway, validate_object_id
from peopleflow.settings import get_settings_cache_ttl_seconds

logger = logging.getLogger("peopleflow.settings_store")

DEFAULT_COMPANY_NAME = "PeopleFlow GmbH"
DEFAULT_STATE = GermanState.NORDRHEIN_WESTFALEN
DEFAULT_LANGUAGE = "de"
DEFAULT_TIMEZONE = "Europe/Berlin"
DEFAULT_WORKING_HOURS = 40.0
DEFAULT_VACATION_DAYS = 30

MAX_WORKING_HOURS = 60.0
MAX_VACATION_DAYS = 365

_STATE_BY_LABEL = {label.casefold(): state for state, label in GERMAN_STATE_LABELS.items()}


def parse_german_state(value: GermanState | str) -> GermanState:
    """Accept a state code (``BY``) or its German name (``Bayern``)."""
    if isinstance(value, GermanState):
        return value
    raw = str(value or "").strip()
    try:
        return GermanState(raw.upper())
    except ValueError:
        pass
    state = _STATE_BY_LABEL.get(raw.casefold())
    if state is None:
        raise InvalidSettingsError(f"invalid German state: {value}", field="state")
    return state


def default_settings_data() -> SystemSettingsData:
    return SystemSettingsData(
        company_name=DEFAULT_COMPANY_NAME,
        company_address="",
        state=DEFAULT_STATE.value,
        language=DEFAULT_LANGUAGE,
        timezone=DEFAULT_TIMEZONE,
        default_working_hours=DEFAULT_WORKING_HOURS,
        default_vacation_days=DEFAULT_VACATION_DAYS,
        email_notifications=None,
    )


def validate_settings(data: SystemSettingsData | None) -> SystemSettingsData:
    """Return a validated copy with the state normalized to its code."""
    if data is None:
        raise InvalidSettingsError("settings cannot be nil")

    state = parse_german_state(data.state)
    if not 0 <= data.default_working_hours <= MAX_WORKING_HOURS:
        raise InvalidSettingsError(
            f"default working hours must be between 0 and {MAX_WORKING_HOURS:g}",
            field="default_working_hours",
        )
    if not 0 <= data.default_vacation_days <= MAX_VACATION_DAYS:
        raise InvalidSettingsError(
            f"default vacation days must be between 0 and {MAX_VACATION_DAYS}",
            field="default_vacation_days",
        )
    email = data.email_notifications
    if email is not None and email.smtp_host.strip() and email.smtp_port <= 0:
        raise InvalidSettingsError("SMTP port must be positive", field="email_notifications.smtp_port")

    return data.model_copy(update={"state": state.value}, deep=True)


def _record_values(data: SystemSettingsData) -> dict[str, Any]:
    email = data.email_notifications
    return {
        "company_name": data.company_name,
        "company_address": data.company_address,
        "state": data.state,
        "language": data.language,
        "timezone": data.timezone,
        "default_working_hours": float(data.default_working_hours),
        "default_vacation_days": int(data.default_vacation_days),
        "email_notifications": email.model_dump() if email is not None else None,
    }


class _ReadWriteLock:
    """Many readers or one writer. Waiting writers block new readers."""

    def __init__(self) -> None:
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer = False
        self._waiting_writers = 0

    @contextmanager
    def read_locked(self) -> Iterator[None]:
        with self._cond:
            while self._writer or self._waiting_writers:
                self._cond.wait()
            self._readers += 1
        try:
            yield
        finally:
            with self._cond:
                self._readers -= 1
                if self._readers == 0:
                    self._cond.notify_all()

    @contextmanager
    def write_locked(self) -> Iterator[None]:
        with self._cond:
            self._waiting_writers += 1
            try:
                while self._writer or self._readers:
                    self._cond.wait()
            finally:
                self._waiting_writers -= 1
            self._writer = True
        try:
            yield
        finally:
            with self._cond:
                self._writer = False
                self._cond.notify_all()


class SystemSettingsStore:
    """Singleton system settings with an in-process read-through cache.

    Snapshots handed out are deep copies; mutating them never touches the
    cache. Writes made behind the store's back become visible after the TTL
    expires or :meth:`invalidate_cache` is called.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        *,
        cache_ttl_seconds: float | None = None,
        deadline_seconds: float | None = None,
        create_defaults_on_read: bool = True,
        clock: Callable[[], datetime] = utc_now,
        monotonic: Callable[[], float] = time.monotonic,
    ):
        self.store: CollectionGateway[SystemSettings] = CollectionGateway(
            session_factory,
            SystemSettings,
            deadline_seconds=deadline_seconds,
        )
        self.cache_ttl_seconds = (
            float(cache_ttl_seconds) if cache_ttl_seconds is not None else float(get_settings_cache_ttl_seconds())
        )
        self._create_defaults_on_read = create_defaults_on_read
        self._clock = clock
        self._monotonic = monotonic
        self._lock = _ReadWriteLock()
        self._cache: SystemSettingsData | None = None
        self._cached_at = 0.0

    def ensure_indexes(self) -> list[str]:
        return [self.store.create_index([("updated_at", DESCENDING)])]

    # -- cache ------------------------------------------------------------

    def _cache_valid(self) -> bool:
        if self._cache is None or self.cache_ttl_seconds <= 0:
            return False
        return self._monotonic() - self._cached_at < self.cache_ttl_seconds

    def _set_cache(self, snapshot: SystemSettingsData) -> None:
        self._cache = snapshot.model_copy(deep=True)
        self._cached_at = self._monotonic()

    def invalidate_cache(self) -> None:
        with self._lock.write_locked():
            self._cache = None
            self._cached_at = 0.0

    # -- persistence (callers hold the write lock) ------------------------

    def _load_or_create(self) -> SystemSettingsData:
        def body(session: Session) -> SystemSettings:
            record = self.store.find_one(
                order_by=(SystemSettings.updated_at.desc(), SystemSettings.id.desc()),
                db=session,
            )
            if record is not None:
                return record
            if not self._create_defaults_on_read:
                raise NotFoundError("system settings not found")
            now = self._clock()
            document = _record_values(default_settings_data())
            document.update({"id": new_object_id(), "created_at": now, "updated_at": now})
            record_id = self.store.insert_one(document, db=session)
            logger.info("system_settings_defaults_created", extra={"settings_id": record_id})
            return self.store.find_by_id(record_id, db=session)  # type: ignore[return-value]

        record = self.store.transaction(body, operation="load_settings")
        return SystemSettingsData.model_validate(record)

    def _current(self) -> SystemSettingsData:
        if self._cache_valid():
            return self._cache.model_copy(deep=True)  # type: ignore[union-attr]
        snapshot = self._load_or_create()
        self._set_cache(snapshot)
        return snapshot

    def _write(self, settings_id: str, values: dict[str, Any], *, created_at: datetime | None = None) -> SystemSettingsData:
        now = self._clock()

        def body(session: Session) -> SystemSettings:
            # The stored record is the singleton; a caller-supplied id only names a new one.
            existing = self.store.find_one(
                order_by=(SystemSettings.updated_at.desc(), SystemSettings.id.desc()),
                for_update=True,
                db=session,
            )
            if existing is not None:
                target_id = existing.id
                self.store.update_one(SystemSettings.id == target_id, values={**values, "updated_at": now}, db=session)
            else:
                target_id = validate_object_id(settings_id) if not is_zero_id(settings_id) else new_object_id()
                document = {**values, "id": target_id, "created_at": created_at or now, "updated_at": now}
                self.store.insert_one(document, db=session)
            return self.store.find_by_id(target_id, db=session)  # type: ignore[return-value]

        record = self.store.transaction(body, operation="save_settings")
        snapshot = SystemSettingsData.model_validate(record)
        self._set_cache(snapshot)
        return snapshot

    def _apply(self, changes: dict[str, Any]) -> SystemSettingsData:
        with self._lock.write_locked():
            current = self._current()
            candidate = validate_settings(current.model_copy(update=changes, deep=True))
            values = {key: _record_values(candidate)[key] for key in changes}
            return self._write(current.id, values).model_copy(deep=True)

    # -- public API -------------------------------------------------------

    def get(self) -> SystemSettingsData:
        with self._lock.read_locked():
            if self._cache_valid():
                return self._cache.model_copy(deep=True)  # type: ignore[union-attr]
        with self._lock.write_locked():
            return self._current().model_copy(deep=True)

    def create(self, data: SystemSettingsData) -> SystemSettingsData:
        validated = validate_settings(data)
        now = self._clock()

        def body(session: Session) -> SystemSettings:
            if self.store.exists(db=session):
                raise SettingsAlreadyExistError()
            document = _record_values(validated)
            settings_id = validated.id.lower() if not is_zero_id(validated.id) else new_object_id()
            document.update({"id": settings_id, "created_at": now, "updated_at": now})
            record_id = self.store.insert_one(document, db=session)
            return self.store.find_by_id(record_id, db=session)  # type: ignore[return-value]

        with self._lock.write_locked():
            record = self.store.transaction(body, operation="create_settings")
            snapshot = SystemSettingsData.model_validate(record)
            self._set_cache(snapshot)
            return snapshot.model_copy(deep=True)

    def update(self, data: SystemSettingsData) -> SystemSettingsData:
        validated = validate_settings(data)
        with self._lock.write_locked():
            return self._write(
                validated.id.lower(), _record_values(validated), created_at=validated.created_at
            ).model_copy(deep=True)

    def update_company_info(self, company_name: str = "", company_address: str = "", state: str = "") -> SystemSettingsData:
        changes: dict[str, Any] = {}
        if company_name:
            changes["company_name"] = company_name
        if company_address:
            changes["company_address"] = company_address
        if state:
            changes["state"] = parse_german_state(state).value
        if not changes:
            return self.get()
        return self._apply(changes)

    def update_email_notifications(self, config: EmailNotificationSettings | None) -> SystemSettingsData:
        if config is None:
            raise InvalidSettingsError("email notification settings cannot be nil", field="email_notifications")
        return self._apply({"email_notifications": config.model_copy(deep=True)})

    def update_work_defaults(self, working_hours: float, vacation_days: int) -> SystemSettingsData:
        return self._apply(
            {
                "default_working_hours": float(working_hours),
                "default_vacation_days": int(vacation_days),
            }
        )

    def reset_to_defaults(self) -> SystemSettingsData:
        with self._lock.write_locked():
            current = self._current()
            defaults = default_settings_data()
            snapshot = self._write(current.id, _record_values(defaults), created_at=current.created_at)
            logger.info("system_settings_reset", extra={"settings_id": current.id})
            return snapshot.model_copy(deep=True)

    def get_company_state(self) -> GermanState:
        return parse_german_state(self.get().state)

    def is_email_notification_enabled(self) -> bool:
        email = self.get().email_notifications
        return bool(email is not None and email.enabled)

    def get_smtp_config(self) -> EmailNotificationSettings:
        email = self.get().email_notifications
        if email is None or not email.enabled:
            raise EmailNotificationsDisabledError()
        return email

    def ensure_single_document(self) -> int:
        """Keep the most recently updated record and delete the rest."""

        def body(session: Session) -> int:
            records = self.store.find_all(
                order_by=(SystemSettings.updated_at.desc(), SystemSettings.id.desc()),
                db=session,
            )
            if len(records) <= 1:
                return 0
            keep = records[0]
            return self.store.delete_many(SystemSettings.id != keep.id, db=session).deleted_count

        with self._lock.write_locked():
            deleted = self.store.transaction(body, operation="ensure_single_document")
            self._cache = None
            self._cached_at = 0.0
        if deleted:
            logger.warning("system_settings_duplicates_removed", extra={"deleted_count": deleted})
        return deleted
