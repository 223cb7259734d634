"""create reminder tables

Revision ID: 20261019_01
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = '20261019_01'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

TZ = sa.TIMESTAMP(timezone=True)


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", TZ, nullable=False),
        sa.Column("updated_at", TZ, nullable=False),
    ]


def upgrade() -> None:
    op.create_table(
        "tenants",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("subscription_state", sa.String(16), nullable=False, server_default="trial"),
        sa.Column("credits_remaining", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("plan", sa.String(32)),
        sa.Column("billing_renews_at", TZ),
        sa.Column("clinic_name", sa.String(200)),
        sa.Column("clinic_phone", sa.String(32)),
        sa.Column("calendar_credentials", sa.JSON()),
        sa.Column("last_calendar_sync_at", TZ),
        *_timestamps(),
        sa.CheckConstraint("credits_remaining >= 0", name="ck_tenants_credits_non_negative"),
    )

    op.create_table(
        "reminder_schedules",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("tenant_id", sa.String(64), nullable=False),
        sa.Column("timing", sa.String(16), nullable=False),
        sa.Column("template_id", sa.String(64), nullable=False),
        sa.Column("enabled", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
        sa.UniqueConstraint("tenant_id", "timing", name="uq_reminder_schedules_tenant_timing"),
    )
    op.create_index("ix_reminder_schedules_tenant_id", "reminder_schedules", ["tenant_id"])

    op.create_table(
        "message_templates",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("tenant_id", sa.String(64), nullable=False),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("body", sa.Text(), nullable=False),
        sa.Column("is_default", sa.Boolean(), nullable=False, server_default=sa.false()),
        *_timestamps(),
    )
    op.create_index("ix_message_templates_tenant_id", "message_templates", ["tenant_id"])

    op.create_table(
        "appointments",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("tenant_id", sa.String(64), nullable=False),
        sa.Column("calendar_event_id", sa.String(255), nullable=False),
        sa.Column("patient_name", sa.String(200), nullable=False),
        sa.Column("patient_phone", sa.String(32)),
        sa.Column("start_at", TZ, nullable=False),
        sa.Column("end_at", TZ, nullable=False),
        sa.Column("description", sa.Text()),
        sa.Column("location", sa.Text()),
        sa.Column("reminder_sent", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("reminder_sent_at", TZ),
        sa.Column("last_synced_at", TZ),
        *_timestamps(),
        sa.UniqueConstraint("tenant_id", "calendar_event_id", name="uq_appointments_tenant_event"),
    )
    op.create_index("ix_appointments_tenant_start", "appointments", ["tenant_id", "start_at"])

    op.create_table(
        "send_records",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("tenant_id", sa.String(64), nullable=False),
        sa.Column("appointment_id", sa.String(64), nullable=False),
        sa.Column("template_id", sa.String(64)),
        sa.Column("recipient", sa.String(32), nullable=False),
        sa.Column("body", sa.Text(), nullable=False),
        sa.Column("status", sa.String(16), nullable=False, server_default="pending"),
        sa.Column("carrier_message_id", sa.String(128), unique=True),
        sa.Column("error_code", sa.String(64)),
        sa.Column("error", sa.Text()),
        sa.Column("sent_at", TZ),
        sa.Column("delivered_at", TZ),
        *_timestamps(),
        sa.UniqueConstraint("appointment_id", "template_id", name="uq_send_records_appointment_template"),
    )
    op.create_index("ix_send_records_tenant_id", "send_records", ["tenant_id"])


def downgrade() -> None:
    op.drop_index("ix_send_records_tenant_id", table_name="send_records")
    op.drop_table("send_records")
    op.drop_index("ix_appointments_tenant_start", table_name="appointments")
    op.drop_table("appointments")
    op.drop_index("ix_message_templates_tenant_id", table_name="message_templates")
    op.drop_table("message_templates")
    op.drop_index("ix_reminder_schedules_tenant_id", table_name="reminder_schedules")
    op.drop_table("reminder_schedules")
    op.drop_table("tenants")
