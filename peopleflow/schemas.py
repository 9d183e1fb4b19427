from datetime import datetime
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field


class Actor(BaseModel):
    id: str
    name: str


class OvertimeAdjustmentCreate(BaseModel):
    employee_id: str
    type: str
    hours: float
    reason: str = ""
    description: str = ""


class OvertimeAdjustmentInput(OvertimeAdjustmentCreate):
    adjusted_by: str = ""
    adjuster_name: str = ""
    status: str | None = None


class OvertimeAdjustmentRead(BaseModel):
    id: str
    employee_id: str
    type: str
    hours: float
    reason: str
    description: str
    adjusted_by: str
    adjuster_name: str
    status: str
    approved_by: str | None = None
    approver_name: str | None = None
    approved_at: datetime | None = None
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class OvertimeAdjustmentPage(BaseModel):
    items: list[OvertimeAdjustmentRead]
    total: int
    skip: int
    limit: int


class StatusUpdateRequest(BaseModel):
    status: str


class BulkStatusUpdateRequest(BaseModel):
    ids: list[str] = Field(min_length=1)
    status: str


class BulkStatusUpdateResponse(BaseModel):
    status: str
    requested_count: int
    updated_count: int


class AdjustmentSummary(BaseModel):
    employee_id: str
    total_pending: int = 0
    total_approved: int = 0
    total_rejected: int = 0
    hours_pending: float = 0.0
    hours_approved: float = 0.0
    hours_rejected: float = 0.0


class ActivityRead(BaseModel):
    id: str
    type: str
    user_id: str
    user_name: str
    target_id: str | None = None
    target_type: str | None = None
    target_name: str | None = None
    description: str
    timestamp: datetime
    metadata: dict[str, Any] | None = Field(default=None, validation_alias=AliasChoices("meta", "metadata"))

    model_config = ConfigDict(from_attributes=True)


class ActivityPage(BaseModel):
    items: list[ActivityRead]
    total: int
    skip: int
    limit: int


class ActivityStats(BaseModel):
    period_days: int
    start_date: datetime
    total_activities: int
    by_type: dict[str, int]


class IntegrationRead(BaseModel):
    id: str
    type: str
    name: str
    active: bool
    auto_sync: bool
    has_api_key: bool
    last_sync: datetime | None = None
    metadata: dict[str, str] = Field(default_factory=dict)
    created_at: datetime
    updated_at: datetime


class ApiKeyRequest(BaseModel):
    api_key: str


class IntegrationStatusRequest(BaseModel):
    active: bool


class IntegrationStatusResponse(BaseModel):
    type: str
    active: bool


class MetadataValueRequest(BaseModel):
    value: str


class LastSyncRequest(BaseModel):
    last_sync: datetime | None = None


class LastSyncResponse(BaseModel):
    type: str
    last_sync: datetime | None = None


class EmailNotificationSettings(BaseModel):
    enabled: bool = False
    smtp_host: str = ""
    smtp_port: int = 0
    smtp_user: str = ""
    smtp_pass: str = ""
    from_email: str = ""
    from_name: str = ""
    use_tls: bool = False


class SystemSettingsData(BaseModel):
    id: str = ""
    company_name: str = ""
    company_address: str = ""
    state: str = ""
    language: str = "de"
    timezone: str = "Europe/Berlin"
    default_working_hours: float = 40.0
    default_vacation_days: int = 30
    email_notifications: EmailNotificationSettings | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    model_config = ConfigDict(from_attributes=True)


class SystemSettingsUpdateRequest(BaseModel):
    company_name: str = ""
    company_address: str = ""
    state: str
    language: str = "de"
    timezone: str = "Europe/Berlin"
    default_working_hours: float
    default_vacation_days: int
    email_notifications: EmailNotificationSettings | None = None


class CompanyInfoUpdateRequest(BaseModel):
    company_name: str = ""
    company_address: str = ""
    state: str = ""


class WorkDefaultsUpdateRequest(BaseModel):
    default_working_hours: float
    default_vacation_days: int


class GermanStateRead(BaseModel):
    code: str
    name: str
