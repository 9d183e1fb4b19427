#!/usr/bin/env python
from __future__ import annotations

import json
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any

from sqlalchemy import inspect, text
from sqlalchemy.engine import make_url

ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from peopleflow.db import build_engine
from peopleflow.errors import ApiError
from peopleflow.services.secret_codec import build_secret_codec
from peopleflow.settings import get_activity_retention_days, get_settings

EXPECTED_HEAD = "0001_initial"
CORE_TABLES = ("overtime_adjustments", "activities", "integrations", "system_settings")


def run() -> dict[str, Any]:
    settings = get_settings()
    if not settings.database_url:
        raise RuntimeError("DATABASE_URL not found (.env or env vars).")

    engine = build_engine(settings.database_url)
    report: dict[str, Any] = {
        "generated_at_utc": datetime.now(timezone.utc).isoformat(),
        "database_url": make_url(settings.database_url).render_as_string(hide_password=True),
        "checks": [],
    }

    def add(name: str, status: str, details: dict[str, Any]) -> None:
        report["checks"].append(
            {
                "name": name,
                "status": status,
                "details": details,
            }
        )

    try:
        with engine.connect() as conn:
            tables = set(inspect(conn).get_table_names())

            current_versions: list[str] = []
            if "alembic_version" in tables:
                current_versions = [
                    row[0]
                    for row in conn.execute(text("select version_num from alembic_version")).fetchall()
                ]
            add("alembic_version", "ok" if current_versions else "fail", {"current": current_versions})
            add(
                "migration_up_to_date",
                "ok" if EXPECTED_HEAD in current_versions else "warn",
                {"expected_head": EXPECTED_HEAD, "current": current_versions},
            )

            missing_tables = [table for table in CORE_TABLES if table not in tables]
            add("missing_tables", "fail" if missing_tables else "ok", {"missing": missing_tables})

            counts = {
                table: int(conn.execute(text(f"select count(*) from {table}")).scalar() or 0)
                for table in CORE_TABLES
                if table in tables
            }
            add("table_counts", "ok", counts)

            if "system_settings" in tables:
                settings_count = counts.get("system_settings", 0)
                add(
                    "system_settings_singleton",
                    "fail" if settings_count > 1 else "ok",
                    {"records": settings_count},
                )

            if "activities" in tables:
                cutoff = datetime.now(timezone.utc) - timedelta(days=get_activity_retention_days())
                bound_cutoff = cutoff.replace(tzinfo=None) if engine.dialect.name == "sqlite" else cutoff
                expired = int(
                    conn.execute(
                        text("select count(*) from activities where timestamp < :cutoff"),
                        {"cutoff": bound_cutoff},
                    ).scalar()
                    or 0
                )
                add(
                    "expired_activities",
                    "warn" if expired else "ok",
                    {"cutoff": cutoff.isoformat(), "expired": expired},
                )

            if "integrations" in tables:
                rows = conn.execute(text("select type, api_key, active from integrations")).fetchall()
                undecryptable: list[str] = []
                keyless_active: list[str] = []
                try:
                    codec = build_secret_codec(settings)
                except ApiError as exc:
                    add("integration_api_keys", "fail", {"reason": exc.code})
                else:
                    for integration_type, api_key, active in rows:
                        if not api_key:
                            if active:
                                keyless_active.append(integration_type)
                            continue
                        try:
                            codec.decrypt(api_key)
                        except ApiError:
                            undecryptable.append(integration_type)
                    add(
                        "integration_api_keys",
                        "fail" if undecryptable else ("warn" if keyless_active else "ok"),
                        {"undecryptable": undecryptable, "active_without_key": keyless_active},
                    )
    finally:
        engine.dispose()

    return report


if __name__ == "__main__":
    print(json.dumps(run(), ensure_ascii=False, indent=2))
