"""Initial PeopleFlow core schema

Revision ID: 0001_initial
Revises:
Create Date: 2026-10-19 00:00:00
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "0001_initial"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

json_document = sa.JSON().with_variant(postgresql.JSONB(), "postgresql")


def upgrade() -> None:
    op.create_table(
        "overtime_adjustments",
        sa.Column("id", sa.String(length=24), primary_key=True, nullable=False),
        sa.Column("employee_id", sa.String(length=24), nullable=False),
        sa.Column("type", sa.String(length=32), nullable=False),
        sa.Column("hours", sa.Float(), nullable=False),
        sa.Column("reason", sa.String(length=1000), nullable=False),
        sa.Column("description", sa.Text(), nullable=False, server_default=""),
        sa.Column("adjusted_by", sa.String(length=24), nullable=False),
        sa.Column("adjuster_name", sa.String(length=255), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="pending"),
        sa.Column("approved_by", sa.String(length=24), nullable=True),
        sa.Column("approver_name", sa.String(length=255), nullable=True),
        sa.Column("approved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint("hours <> 0 AND hours >= -100 AND hours <= 100", name="ck_overtime_adjustments_hours"),
        sa.CheckConstraint(
            "status IN ('pending', 'approved', 'rejected')",
            name="ck_overtime_adjustments_status",
        ),
    )
    op.create_index("ix_overtime_adjustments_employee_id", "overtime_adjustments", ["employee_id"])
    op.create_index("ix_overtime_adjustments_status", "overtime_adjustments", ["status"])
    op.create_index(
        "ix_overtime_adjustments_employee_id_status",
        "overtime_adjustments",
        ["employee_id", "status"],
    )
    op.create_index(
        "ix_overtime_adjustments_created_at_desc",
        "overtime_adjustments",
        [sa.text("created_at DESC")],
    )
    op.create_index("ix_overtime_adjustments_approved_by", "overtime_adjustments", ["approved_by"])

    op.create_table(
        "activities",
        sa.Column("id", sa.String(length=24), primary_key=True, nullable=False),
        sa.Column("type", sa.String(length=64), nullable=False),
        sa.Column("user_id", sa.String(length=24), nullable=False),
        sa.Column("user_name", sa.String(length=255), nullable=False),
        sa.Column("target_id", sa.String(length=24), nullable=True),
        sa.Column("target_type", sa.String(length=64), nullable=True),
        sa.Column("target_name", sa.String(length=255), nullable=True),
        sa.Column("description", sa.Text(), nullable=False, server_default=""),
        sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False),
        sa.Column("metadata", json_document, nullable=True),
    )
    op.create_index("ix_activities_timestamp_desc", "activities", [sa.text('"timestamp" DESC')])
    op.create_index("ix_activities_user_id", "activities", ["user_id"])
    op.create_index("ix_activities_target_id", "activities", ["target_id"])
    op.create_index("ix_activities_type_timestamp_desc", "activities", ["type", sa.text('"timestamp" DESC')])
    op.create_index("ix_activities_timestamp_ttl", "activities", ["timestamp"])

    op.create_table(
        "integrations",
        sa.Column("id", sa.String(length=24), primary_key=True, nullable=False),
        sa.Column("type", sa.String(length=32), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("api_key", sa.Text(), nullable=False, server_default=""),
        sa.Column("active", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("auto_sync", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("last_sync", sa.DateTime(timezone=True), nullable=True),
        sa.Column("metadata", json_document, nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ux_integrations_type", "integrations", ["type"], unique=True)
    op.create_index("ix_integrations_active", "integrations", ["active"])
    op.create_index("ix_integrations_last_sync_desc", "integrations", [sa.text("last_sync DESC")])

    op.create_table(
        "system_settings",
        sa.Column("id", sa.String(length=24), primary_key=True, nullable=False),
        sa.Column("company_name", sa.String(length=255), nullable=False, server_default=""),
        sa.Column("company_address", sa.String(length=1000), nullable=False, server_default=""),
        sa.Column("state", sa.String(length=2), nullable=False),
        sa.Column("language", sa.String(length=8), nullable=False, server_default="de"),
        sa.Column("timezone", sa.String(length=64), nullable=False, server_default="Europe/Berlin"),
        sa.Column("default_working_hours", sa.Float(), nullable=False, server_default="40"),
        sa.Column("default_vacation_days", sa.Integer(), nullable=False, server_default="30"),
        sa.Column("email_notifications", json_document, nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_system_settings_updated_at_desc", "system_settings", [sa.text("updated_at DESC")])


def downgrade() -> None:
    op.drop_index("ix_system_settings_updated_at_desc", table_name="system_settings")
    op.drop_table("system_settings")

    op.drop_index("ix_integrations_last_sync_desc", table_name="integrations")
    op.drop_index("ix_integrations_active", table_name="integrations")
    op.drop_index("ux_integrations_type", table_name="integrations")
    op.drop_table("integrations")

    op.drop_index("ix_activities_timestamp_ttl", table_name="activities")
    op.drop_index("ix_activities_type_timestamp_desc", table_name="activities")
    op.drop_index("ix_activities_target_id", table_name="activities")
    op.drop_index("ix_activities_user_id", table_name="activities")
    op.drop_index("ix_activities_timestamp_desc", table_name="activities")
    op.drop_table("activities")

    op.drop_index("ix_overtime_adjustments_approved_by", table_name="overtime_adjustments")
    op.drop_index("ix_overtime_adjustments_created_at_desc", table_name="overtime_adjustments")
    op.drop_index("ix_overtime_adjustments_employee_id_status", table_name="overtime_adjustments")
    op.drop_index("ix_overtime_adjustments_status", table_name="overtime_adjustments")
    op.drop_index("ix_overtime_adjustments_employee_id", table_name="overtime_adjustments")
    op.drop_table("overtime_adjustments")
