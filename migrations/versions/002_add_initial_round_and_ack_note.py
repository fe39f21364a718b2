"""Add pending initial round marker and acknowledgment note.

Revision ID: 002_initial_round
Revises: 001_alert_core
Create Date: 2026-10-19

escalation_timers.initial_round marks an alert whose first dispatch round
has not gone out yet (care directory was unreachable at creation).
"""

import sqlalchemy as sa
from alembic import op

revision = "002_initial_round"
down_revision = "001_alert_core"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.add_column(
        "escalation_timers",
        sa.Column(
            "initial_round",
            sa.Boolean(),
            nullable=False,
            server_default=sa.false(),
        ),
    )
    op.add_column(
        "alerts",
        sa.Column("acknowledgment_note", sa.Text(), nullable=True),
    )


def downgrade() -> None:
    op.drop_column("alerts", "acknowledgment_note")
    op.drop_column("escalation_timers", "initial_round")
