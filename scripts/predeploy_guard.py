#!/usr/bin/env python
"""Fail the deploy when configuration or schema is not ready for this build."""

from __future__ import annotations

import json
import sys
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from alembic.config import Config
from alembic.script import ScriptDirectory
from sqlalchemy import text

ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from peopleflow.db import build_engine
from peopleflow.services.schema_guard import verify_runtime_schema
from peopleflow.services.secret_codec import DEFAULT_ENCRYPTION_KEY
from peopleflow.settings import Settings, get_settings

ALEMBIC_INI = ROOT_DIR / "alembic.ini"
MAX_REVISION_LENGTH = 32


@dataclass(slots=True)
class CheckResult:
    name: str
    status: str
    details: dict[str, Any] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.status == "ok"


def _migration_script() -> ScriptDirectory:
    config = Config(str(ALEMBIC_INI))
    config.set_main_option("script_location", str(ROOT_DIR / "peopleflow" / "migrations"))
    return ScriptDirectory.from_config(config)


def check_migration_revisions(script: ScriptDirectory | None = None) -> CheckResult:
    script = script or _migration_script()
    revisions = [item.revision for item in script.walk_revisions()]
    heads = sorted(script.get_heads())
    too_long = sorted(revision for revision in revisions if len(revision) > MAX_REVISION_LENGTH)
    status = "ok"
    if not revisions or too_long or len(heads) != 1:
        status = "fail"
    return CheckResult(
        name="migration_revisions",
        status=status,
        details={"heads": heads, "total": len(revisions), "too_long": too_long},
    )


def check_encryption_key(settings: Settings) -> CheckResult:
    raw_key = (settings.encryption_key or "").strip()
    uses_default = raw_key in {"", DEFAULT_ENCRYPTION_KEY}
    production = (settings.environment or "").strip().lower() == "production"
    if not uses_default:
        status = "ok"
    elif production:
        status = "fail"
    else:
        status = "warn"
    return CheckResult(
        name="encryption_key",
        status=status,
        details={"environment": settings.environment, "uses_default_key": uses_default},
    )


def check_runtime_settings(settings: Settings) -> CheckResult:
    problems: list[str] = []
    if settings.store_op_deadline_seconds <= 0:
        problems.append("STORE_OP_DEADLINE_NOT_POSITIVE")
    if settings.activity_retention_days <= 0:
        problems.append("ACTIVITY_RETENTION_NOT_POSITIVE")
    if settings.settings_cache_ttl_seconds < 0:
        problems.append("SETTINGS_CACHE_TTL_NEGATIVE")
    if settings.retention_worker_enabled and settings.retention_worker_interval_seconds < 60:
        problems.append("RETENTION_WORKER_INTERVAL_TOO_SHORT")
    return CheckResult(
        name="runtime_settings",
        status="fail" if problems else "ok",
        details={"problems": problems},
    )


def check_database(settings: Settings, heads: list[str]) -> CheckResult:
    database_url = (settings.database_url or "").strip()
    if not database_url:
        return CheckResult(name="database", status="warn", details={"reason": "DATABASE_URL_NOT_SET"})

    engine = build_engine(database_url)
    try:
        with engine.connect() as connection:
            applied = sorted(
                str(value).strip()
                for value in connection.execute(text("SELECT version_num FROM alembic_version")).scalars()
                if value is not None
            )
        guard = verify_runtime_schema(engine)
    finally:
        engine.dispose()

    missing_heads = [head for head in heads if head not in applied]
    return CheckResult(
        name="database",
        status="ok" if guard.ok and not missing_heads else "fail",
        details={
            "applied_versions": applied,
            "missing_heads": missing_heads,
            "schema_guard_issues": guard.issues,
            "schema_guard_warnings": guard.warnings,
        },
    )


def run_checks(settings: Settings) -> list[CheckResult]:
    revisions = check_migration_revisions()
    steps: list[Callable[[], CheckResult]] = [
        lambda: check_encryption_key(settings),
        lambda: check_runtime_settings(settings),
        lambda: check_database(settings, revisions.details["heads"]),
    ]
    return [revisions, *(step() for step in steps)]


def main() -> int:
    checks = run_checks(get_settings())
    ok = not any(check.status == "fail" for check in checks)
    report = {
        "generated_at_utc": datetime.now(timezone.utc).isoformat(),
        "ok": ok,
        "checks": [{"name": item.name, "status": item.status, "details": item.details} for item in checks],
    }
    print(json.dumps(report, ensure_ascii=False, indent=2))
    return 0 if ok else 1


if __name__ == "__main__":
    raise SystemExit(main())
