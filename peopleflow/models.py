from __future__ import annotations

import enum
from datetime import datetime
from typing import Any

from sqlalchemy import JSON, Boolean, Float, Integer, String, Text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from peopleflow.db import Base, UTCDateTime, new_object_id, utc_now

JSONDocument = JSON().with_variant(JSONB(), "postgresql")


class AdjustmentType(str, enum.Enum):
    MANUAL = "manual"
    CORRECTION = "correction"
    CARRY_OVER = "carryOver"
    PAYOUT = "payout"


class AdjustmentStatus(str, enum.Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class ActivityType(str, enum.Enum):
    EMPLOYEE_ADDED = "employee_added"
    EMPLOYEE_UPDATED = "employee_updated"
    EMPLOYEE_DELETED = "employee_deleted"
    VACATION_REQUESTED = "vacation_requested"
    VACATION_APPROVED = "vacation_approved"
    VACATION_REJECTED = "vacation_rejected"
    OVERTIME_ADJUSTED = "overtime_adjusted"
    DOCUMENT_UPLOADED = "document_uploaded"
    SYSTEM_SETTING_CHANGED = "system_setting_changed"
    CONVERSATION_ADDED = "conversation_added"
    CONVERSATION_COMPLETED = "conversation_completed"
    CONVERSATION_UPDATED = "conversation_updated"
    USER_ADDED = "user_added"
    USER_UPDATED = "user_updated"
    USER_DELETED = "user_deleted"


TARGET_REQUIRED_ACTIVITY_TYPES: frozenset[ActivityType] = frozenset(
    {
        ActivityType.EMPLOYEE_ADDED,
        ActivityType.EMPLOYEE_UPDATED,
        ActivityType.EMPLOYEE_DELETED,
        ActivityType.VACATION_REQUESTED,
        ActivityType.VACATION_APPROVED,
        ActivityType.VACATION_REJECTED,
        ActivityType.OVERTIME_ADJUSTED,
        ActivityType.DOCUMENT_UPLOADED,
    }
)


class IntegrationType(str, enum.Enum):
    TIMEBUTLER = "timebutler"
    ERFASST_123 = "123erfasst"
    AWORK = "awork"


INTEGRATION_DISPLAY_NAMES: dict[IntegrationType, str] = {
    IntegrationType.TIMEBUTLER: "Timebutler",
    IntegrationType.ERFASST_123: "123erfasst",
    IntegrationType.AWORK: "AWork",
}


class GermanState(str, enum.Enum):
    BADEN_WUERTTEMBERG = "BW"
    BAYERN = "BY"
    BERLIN = "BE"
    BRANDENBURG = "BB"
    BREMEN = "HB"
    HAMBURG = "HH"
    HESSEN = "HE"
    MECKLENBURG_VORPOMMERN = "MV"
    NIEDERSACHSEN = "NI"
    NORDRHEIN_WESTFALEN = "NW"
    RHEINLAND_PFALZ = "RP"
    SAARLAND = "SL"
    SACHSEN = "SN"
    SACHSEN_ANHALT = "ST"
    SCHLESWIG_HOLSTEIN = "SH"
    THUERINGEN = "TH"

    @property
    def label(self) -> str:
        return GERMAN_STATE_LABELS[self]


GERMAN_STATE_LABELS: dict[GermanState, str] = {
    GermanState.BADEN_WUERTTEMBERG: "Baden-Württemberg",
    GermanState.BAYERN: "Bayern",
    GermanState.BERLIN: "Berlin",
    GermanState.BRANDENBURG: "Brandenburg",
    GermanState.BREMEN: "Bremen",
    GermanState.HAMBURG: "Hamburg",
    GermanState.HESSEN: "Hessen",
    GermanState.MECKLENBURG_VORPOMMERN: "Mecklenburg-Vorpommern",
    GermanState.NIEDERSACHSEN: "Niedersachsen",
    GermanState.NORDRHEIN_WESTFALEN: "Nordrhein-Westfalen",
    GermanState.RHEINLAND_PFALZ: "Rheinland-Pfalz",
    GermanState.SAARLAND: "Saarland",
    GermanState.SACHSEN: "Sachsen",
    GermanState.SACHSEN_ANHALT: "Sachsen-Anhalt",
    GermanState.SCHLESWIG_HOLSTEIN: "Schleswig-Holstein",
    GermanState.THUERINGEN: "Thüringen",
}


class OvertimeAdjustment(Base):
    __tablename__ = "overtime_adjustments"

    id: Mapped[str] = mapped_column(String(24), primary_key=True, default=new_object_id)
    employee_id: Mapped[str] = mapped_column(String(24), nullable=False)
    type: Mapped[str] = mapped_column(String(32), nullable=False)
    hours: Mapped[float] = mapped_column(Float, nullable=False)
    reason: Mapped[str] = mapped_column(String(1000), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    adjusted_by: Mapped[str] = mapped_column(String(24), nullable=False)
    adjuster_name: Mapped[str] = mapped_column(String(255), nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default=AdjustmentStatus.PENDING.value)
    approved_by: Mapped[str | None] = mapped_column(String(24), nullable=True)
    approver_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    approved_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utc_now)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utc_now)


class Activity(Base):
    __tablename__ = "activities"

    id: Mapped[str] = mapped_column(String(24), primary_key=True, default=new_object_id)
    type: Mapped[str] = mapped_column(String(64), nullable=False)
    user_id: Mapped[str] = mapped_column(String(24), nullable=False)
    user_name: Mapped[str] = mapped_column(String(255), nullable=False)
    target_id: Mapped[str | None] = mapped_column(String(24), nullable=True)
    target_type: Mapped[str | None] = mapped_column(String(64), nullable=True)
    target_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    timestamp: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utc_now)
    meta: Mapped[dict[str, Any] | None] = mapped_column("metadata", JSONDocument, nullable=True)


class Integration(Base):
    __tablename__ = "integrations"

    id: Mapped[str] = mapped_column(String(24), primary_key=True, default=new_object_id)
    type: Mapped[str] = mapped_column(String(32), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    api_key: Mapped[str] = mapped_column(Text, nullable=False, default="")
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    auto_sync: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    last_sync: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    meta: Mapped[dict[str, Any]] = mapped_column("metadata", JSONDocument, nullable=False, default=dict)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utc_now)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utc_now)


class SystemSettings(Base):
    __tablename__ = "system_settings"

    id: Mapped[str] = mapped_column(String(24), primary_key=True, default=new_object_id)
    company_name: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    company_address: Mapped[str] = mapped_column(String(1000), nullable=False, default="")
    state: Mapped[str] = mapped_column(String(2), nullable=False)
    language: Mapped[str] = mapped_column(String(8), nullable=False, default="de")
    timezone: Mapped[str] = mapped_column(String(64), nullable=False, default="Europe/Berlin")
    default_working_hours: Mapped[float] = mapped_column(Float, nullable=False, default=40.0)
    default_vacation_days: Mapped[int] = mapped_column(Integer, nullable=False, default=30)
    email_notifications: Mapped[dict[str, Any] | None] = mapped_column(JSONDocument, nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utc_now)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utc_now)
