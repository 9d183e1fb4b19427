from __future__ import annotations

from functools import lru_cache

from peopleflow.db import get_session_factory
from peopleflow.services.activity_log import ActivityLog
from peopleflow.services.integrations import IntegrationStore
from peopleflow.services.overtime_adjustments import OvertimeAdjustmentEngine
from peopleflow.services.secret_codec import get_secret_codec
from peopleflow.services.system_settings import SystemSettingsStore


@lru_cache
def get_activity_log() -> ActivityLog:
    return ActivityLog(get_session_factory())


@lru_cache
def get_integration_store() -> IntegrationStore:
    return IntegrationStore(get_session_factory(), get_secret_codec())


@lru_cache
def get_settings_store() -> SystemSettingsStore:
    return SystemSettingsStore(get_session_factory())


@lru_cache
def get_overtime_engine() -> OvertimeAdjustmentEngine:
    return OvertimeAdjustmentEngine(get_session_factory(), get_activity_log())
