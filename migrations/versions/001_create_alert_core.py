"""Create alert core tables.

Revision ID: 001_alert_core
Revises:
Create Date: 2026-10-18
"""

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

revision = "001_alert_core"
down_revision = None
branch_labels = None
depends_on = None


def _enum(name: str, *values: str) -> sa.Enum:
    # Stored as VARCHAR + CHECK so new values never need ALTER TYPE
    return sa.Enum(*values, name=name, native_enum=False, create_constraint=True, length=32)


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
    ]


def upgrade() -> None:
    op.create_table(
        "profiles",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("full_name", sa.String(255), nullable=False, server_default=""),
        sa.Column("phone", sa.String(32), nullable=True),
        sa.Column("telegram_username", sa.String(100), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_profiles_email", "profiles", ["email"], unique=True)
    op.create_index("ix_profiles_phone", "profiles", ["phone"])

    op.create_table(
        "care_relationships",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column(
            "patient_id",
            sa.Uuid(),
            sa.ForeignKey("profiles.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "caregiver_id",
            sa.Uuid(),
            sa.ForeignKey("profiles.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "relationship_type",
            _enum(
                "relationshiptype",
                "primary_caregiver",
                "family_member",
                "healthcare_provider",
                "friend",
                "other",
            ),
            nullable=False,
        ),
        sa.Column(
            "status",
            _enum("relationshipstatus", "active", "inactive", "pending"),
            nullable=False,
        ),
        sa.Column("can_receive_alerts", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("can_view_health_data", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("can_modify_settings", sa.Boolean(), nullable=False, server_default=sa.false()),
        *_timestamps(),
        sa.UniqueConstraint("patient_id", "caregiver_id", name="uq_patient_caregiver"),
        sa.CheckConstraint("caregiver_id != patient_id", name="ck_no_self_link"),
    )
    op.create_index("ix_care_relationships_patient_id", "care_relationships", ["patient_id"])
    op.create_index("ix_care_relationships_caregiver_id", "care_relationships", ["caregiver_id"])
    op.create_index("ix_care_relationships_status", "care_relationships", ["status"])

    op.create_table(
        "alerts",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column(
            "patient_id",
            sa.Uuid(),
            sa.ForeignKey("profiles.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "kind",
            _enum(
                "alertkind",
                "prolonged_inactivity",
                "fall_detected",
                "out_of_range_vital",
                "distress_signal",
                "missed_checkin",
                "manual_report",
            ),
            nullable=False,
        ),
        sa.Column(
            "severity",
            _enum("alertseverity", "low", "medium", "high", "critical"),
            nullable=False,
        ),
        sa.Column(
            "status",
            _enum("alertstatus", "active", "acknowledged", "resolved", "false_alarm"),
            nullable=False,
        ),
        sa.Column("context", postgresql.JSONB(), nullable=False, server_default="{}"),
        sa.Column("escalation_step", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_escalated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "acknowledged_by",
            sa.Uuid(),
            sa.ForeignKey("profiles.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("acknowledged_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "resolved_by",
            sa.Uuid(),
            sa.ForeignKey("profiles.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("resolved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("resolution_note", sa.Text(), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_alerts_patient_id", "alerts", ["patient_id"])
    op.create_index("ix_alerts_status", "alerts", ["status"])
    op.create_index("ix_alerts_resolved_at", "alerts", ["resolved_at"])

    op.create_table(
        "notification_attempts",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column(
            "alert_id",
            sa.Uuid(),
            sa.ForeignKey("alerts.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("recipient_id", sa.Uuid(), nullable=False),
        sa.Column(
            "channel",
            _enum("notificationchannel", "email", "telegram", "whatsapp", "push"),
            nullable=False,
        ),
        sa.Column("round_number", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("attempted_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column(
            "outcome",
            _enum("attemptoutcome", "sent", "failed", "skipped"),
            nullable=False,
        ),
        sa.Column("failure_reason", sa.Text(), nullable=True),
        sa.Column("error_detail", sa.Text(), nullable=True),
    )
    op.create_index("ix_notification_attempts_alert_id", "notification_attempts", ["alert_id"])
    op.create_index(
        "ix_notification_attempts_recipient_id", "notification_attempts", ["recipient_id"]
    )

    op.create_table(
        "escalation_timers",
        sa.Column(
            "alert_id",
            sa.Uuid(),
            sa.ForeignKey("alerts.id", ondelete="CASCADE"),
            primary_key=True,
        ),
        sa.Column("step_index", sa.Integer(), nullable=False),
        sa.Column("fire_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_escalation_timers_fire_at", "escalation_timers", ["fire_at"])

    op.create_table(
        "escalation_policies",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column(
            "patient_id",
            sa.Uuid(),
            sa.ForeignKey("profiles.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("steps", postgresql.JSONB(), nullable=False, server_default="[]"),
        *_timestamps(),
    )
    op.create_index(
        "ix_escalation_policies_patient_id", "escalation_policies", ["patient_id"], unique=True
    )

    op.create_table(
        "telegram_links",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("username", sa.String(100), nullable=False),
        sa.Column("chat_id", sa.BigInteger(), nullable=False, unique=True),
        sa.Column(
            "linked_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        *_timestamps(),
    )
    op.create_index("ix_telegram_links_username", "telegram_links", ["username"], unique=True)


def downgrade() -> None:
    op.drop_table("telegram_links")
    op.drop_table("escalation_policies")
    op.drop_table("escalation_timers")
    op.drop_table("notification_attempts")
    op.drop_table("alerts")
    op.drop_table("care_relationships")
    op.drop_table("profiles")
