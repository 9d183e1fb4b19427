from fastapi import APIRouter, Depends

from peopleflow.dependencies import get_activity_log, get_settings_store
from peopleflow.models import GERMAN_STATE_LABELS, ActivityType
from peopleflow.schemas import (
    Actor,
    CompanyInfoUpdateRequest,
    EmailNotificationSettings,
    GermanStateRead,
    SystemSettingsData,
    SystemSettingsUpdateRequest,
    WorkDefaultsUpdateRequest,
)
from peopleflow.security import require_actor
from peopleflow.services.activity_log import ActivityLog
from peopleflow.services.system_settings import SystemSettingsStore

router = APIRouter(tags=["settings"])

SECRET_MASK = "********"


def _public_settings(snapshot: SystemSettingsData) -> SystemSettingsData:
    email = snapshot.email_notifications
    if email is None or not email.smtp_pass:
        return snapshot
    return snapshot.model_copy(
        update={"email_notifications": email.model_copy(update={"smtp_pass": SECRET_MASK})}
    )


def _log_change(activity_log: ActivityLog, actor: Actor, description: str) -> None:
    activity_log.log(ActivityType.SYSTEM_SETTING_CHANGED, actor.id, actor.name, description=description)


@router.get("/api/settings", response_model=SystemSettingsData)
def get_system_settings(store: SystemSettingsStore = Depends(get_settings_store)) -> SystemSettingsData:
    return _public_settings(store.get())


@router.get("/api/settings/states", response_model=list[GermanStateRead])
def list_german_states() -> list[GermanStateRead]:
    return [GermanStateRead(code=state.value, name=label) for state, label in GERMAN_STATE_LABELS.items()]


@router.put("/api/settings", response_model=SystemSettingsData)
def update_system_settings(
    payload: SystemSettingsUpdateRequest,
    actor: Actor = Depends(require_actor),
    store: SystemSettingsStore = Depends(get_settings_store),
    activity_log: ActivityLog = Depends(get_activity_log),
) -> SystemSettingsData:
    data = SystemSettingsData(**payload.model_dump())
    email = payload.email_notifications
    if email is not None and email.smtp_pass == SECRET_MASK:
        current = store.get().email_notifications
        data.email_notifications = email.model_copy(
            update={"smtp_pass": current.smtp_pass if current is not None else ""}
        )
    snapshot = store.update(data)
    _log_change(activity_log, actor, "System settings updated")
    return _public_settings(snapshot)


@router.put("/api/settings/company", response_model=SystemSettingsData)
def update_company_info(
    payload: CompanyInfoUpdateRequest,
    actor: Actor = Depends(require_actor),
    store: SystemSettingsStore = Depends(get_settings_store),
    activity_log: ActivityLog = Depends(get_activity_log),
) -> SystemSettingsData:
    snapshot = store.update_company_info(payload.company_name, payload.company_address, payload.state)
    _log_change(activity_log, actor, "Company information updated")
    return _public_settings(snapshot)


@router.put("/api/settings/email-notifications", response_model=SystemSettingsData)
def update_email_notifications(
    payload: EmailNotificationSettings,
    actor: Actor = Depends(require_actor),
    store: SystemSettingsStore = Depends(get_settings_store),
    activity_log: ActivityLog = Depends(get_activity_log),
) -> SystemSettingsData:
    snapshot = store.update_email_notifications(payload)
    _log_change(activity_log, actor, "Email notification settings updated")
    return _public_settings(snapshot)


@router.put("/api/settings/work-defaults", response_model=SystemSettingsData)
def update_work_defaults(
    payload: WorkDefaultsUpdateRequest,
    actor: Actor = Depends(require_actor),
    store: SystemSettingsStore = Depends(get_settings_store),
    activity_log: ActivityLog = Depends(get_activity_log),
) -> SystemSettingsData:
    snapshot = store.update_work_defaults(payload.default_working_hours, payload.default_vacation_days)
    _log_change(activity_log, actor, "Working time defaults updated")
    return _public_settings(snapshot)


@router.post("/api/settings/reset", response_model=SystemSettingsData)
def reset_system_settings(
    actor: Actor = Depends(require_actor),
    store: SystemSettingsStore = Depends(get_settings_store),
    activity_log: ActivityLog = Depends(get_activity_log),
) -> SystemSettingsData:
    snapshot = store.reset_to_defaults()
    _log_change(activity_log, actor, "System settings reset to defaults")
    return _public_settings(snapshot)
