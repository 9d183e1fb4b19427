from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import inspect, text
from sqlalchemy.engine import Engine


@dataclass(frozen=True, slots=True)
class SchemaGuardResult:
    ok: bool
    checked_at_utc: datetime
    issues: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "ok": self.ok,
            "checked_at_utc": self.checked_at_utc.isoformat(),
            "issues": list(self.issues),
            "warnings": list(self.warnings),
            "issue_count": len(self.issues),
            "warning_count": len(self.warnings),
        }


REQUIRED_TABLE_COLUMNS: dict[str, set[str]] = {
    "overtime_adjustments": {
        "id",
        "employee_id",
        "type",
        "hours",
        "reason",
        "status",
        "approved_by",
        "approved_at",
        "created_at",
        "updated_at",
    },
    "activities": {"id", "type", "user_id", "user_name", "target_id", "timestamp", "metadata"},
    "integrations": {"id", "type", "name", "api_key", "active", "last_sync", "metadata"},
    "system_settings": {
        "id",
        "company_name",
        "state",
        "default_working_hours",
        "default_vacation_days",
        "email_notifications",
        "updated_at",
    },
    "alembic_version": {"version_num"},
}

# Unique indexes whose absence breaks a store invariant.
REQUIRED_UNIQUE_INDEXES: dict[str, set[str]] = {
    "integrations": {"type"},
}


def verify_runtime_schema(engine: Engine) -> SchemaGuardResult:
    issues: list[str] = []
    warnings: list[str] = []
    checked_at_utc = datetime.now(timezone.utc)
    inspector = inspect(engine)

    for table_name, required_columns in REQUIRED_TABLE_COLUMNS.items():
        try:
            column_names = {str(item.get("name")) for item in inspector.get_columns(table_name)}
        except Exception as exc:  # pragma: no cover
            issues.append(f"TABLE_UNREADABLE:{table_name}:{exc.__class__.__name__}")
            continue

        missing_columns = sorted(item for item in required_columns if item not in column_names)
        if missing_columns:
            issues.append(f"MISSING_COLUMNS:{table_name}:{','.join(missing_columns)}")

    for table_name, unique_columns in REQUIRED_UNIQUE_INDEXES.items():
        try:
            indexes = inspector.get_indexes(table_name) or []
        except Exception as exc:  # pragma: no cover
            warnings.append(f"INDEX_INSPECTION_FAILED:{table_name}:{exc.__class__.__name__}")
            continue
        unique_sets = {
            frozenset(str(column) for column in item.get("column_names") or [] if column)
            for item in indexes
            if item.get("unique")
        }
        if frozenset(unique_columns) not in unique_sets:
            issues.append(f"MISSING_UNIQUE_INDEX:{table_name}:{','.join(sorted(unique_columns))}")

    try:
        with engine.connect() as connection:
            row = connection.execute(text("SELECT version_num FROM alembic_version LIMIT 1")).scalar()
            version = str(row).strip() if row is not None else ""
            if not version:
                issues.append("ALEMBIC_VERSION_EMPTY")
    except Exception as exc:  # pragma: no cover
        issues.append(f"ALEMBIC_VERSION_CHECK_FAILED:{exc.__class__.__name__}")

    return SchemaGuardResult(
        ok=len(issues) == 0,
        checked_at_utc=checked_at_utc,
        issues=issues,
        warnings=warnings,
    )
