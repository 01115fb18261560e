"""open_play_schema

Revision ID: 001
Revises:
Create Date: 2026-10-17 00:00:00.000000

Facilities, courts, reservations and the open play tables the capacity
engine reads and writes: rules, sessions, audit log and staff notifications.
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps(*, updated: bool = True):
    columns = [sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now())]
    if updated:
        columns.append(
            sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now())
        )
    return columns


def upgrade() -> None:
    """Create open play capacity tables and seed the OPEN_PLAY reservation type."""
    op.create_table(
        "facilities",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(), nullable=False),
        *_timestamps(updated=False),
    )

    op.create_table(
        "courts",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("facility_id", sa.Integer(), sa.ForeignKey("facilities.id"), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("court_number", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="active"),
        *_timestamps(),
        sa.UniqueConstraint("facility_id", "court_number", name="uq_courts_facility_number"),
    )

    reservation_types = op.create_table(
        "reservation_types",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(), nullable=False, unique=True),
        sa.Column("description", sa.Text(), nullable=True),
    )

    op.create_table(
        "open_play_rules",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("facility_id", sa.Integer(), sa.ForeignKey("facilities.id"), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("min_participants", sa.Integer(), nullable=False, server_default="4"),
        sa.Column("max_participants_per_court", sa.Integer(), nullable=False, server_default="8"),
        sa.Column("cancellation_cutoff_minutes", sa.Integer(), nullable=False, server_default="60"),
        sa.Column("auto_scale_enabled", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("min_courts", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("max_courts", sa.Integer(), nullable=False, server_default="4"),
        *_timestamps(),
        sa.CheckConstraint("min_participants > 0", name="ck_open_play_rules_min_participants"),
        sa.CheckConstraint("max_participants_per_court > 0", name="ck_open_play_rules_per_court"),
        sa.CheckConstraint("min_courts > 0", name="ck_open_play_rules_min_courts"),
        sa.CheckConstraint("min_courts <= max_courts", name="ck_open_play_rules_court_bounds"),
    )
    op.create_index("idx_open_play_rules_facility_id", "open_play_rules", ["facility_id"])

    op.create_table(
        "reservations",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("facility_id", sa.Integer(), sa.ForeignKey("facilities.id"), nullable=False),
        sa.Column(
            "reservation_type_id",
            sa.Integer(),
            sa.ForeignKey("reservation_types.id"),
            nullable=False,
        ),
        sa.Column(
            "open_play_rule_id", sa.Integer(), sa.ForeignKey("open_play_rules.id"), nullable=True
        ),
        sa.Column("primary_user_id", sa.Integer(), nullable=True),
        sa.Column("start_time", sa.DateTime(timezone=True), nullable=False),
        sa.Column("end_time", sa.DateTime(timezone=True), nullable=False),
        *_timestamps(),
    )
    op.create_index(
        "idx_reservations_facility_window",
        "reservations",
        ["facility_id", "start_time", "end_time"],
    )

    op.create_table(
        "reservation_courts",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "reservation_id", sa.Integer(), sa.ForeignKey("reservations.id"), nullable=False
        ),
        sa.Column("court_id", sa.Integer(), sa.ForeignKey("courts.id"), nullable=False),
        sa.UniqueConstraint("reservation_id", "court_id", name="uq_reservation_courts"),
    )

    op.create_table(
        "reservation_participants",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "reservation_id", sa.Integer(), sa.ForeignKey("reservations.id"), nullable=False
        ),
        sa.Column("user_id", sa.Integer(), nullable=False),
        *_timestamps(updated=False),
        sa.UniqueConstraint("reservation_id", "user_id", name="uq_reservation_participants"),
    )

    op.create_table(
        "open_play_sessions",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("facility_id", sa.Integer(), sa.ForeignKey("facilities.id"), nullable=False),
        sa.Column(
            "open_play_rule_id", sa.Integer(), sa.ForeignKey("open_play_rules.id"), nullable=False
        ),
        sa.Column("start_time", sa.DateTime(timezone=True), nullable=False),
        sa.Column("end_time", sa.DateTime(timezone=True), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="scheduled"),
        sa.Column("current_court_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("auto_scale_override", sa.Boolean(), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancellation_reason", sa.Text(), nullable=True),
        *_timestamps(),
        sa.CheckConstraint(
            "status IN ('scheduled', 'cancelled', 'completed')",
            name="ck_open_play_sessions_status",
        ),
        sa.CheckConstraint("current_court_count >= 0", name="ck_open_play_sessions_court_count"),
    )
    op.create_index(
        "idx_open_play_sessions_facility_status",
        "open_play_sessions",
        ["facility_id", "status", "start_time"],
    )

    op.create_table(
        "open_play_audit_log",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "session_id", sa.Integer(), sa.ForeignKey("open_play_sessions.id"), nullable=False
        ),
        sa.Column("action", sa.String(20), nullable=False),
        sa.Column("before_state", sa.Text(), nullable=True),
        sa.Column("after_state", sa.Text(), nullable=True),
        sa.Column("reason", sa.Text(), nullable=True),
        *_timestamps(updated=False),
        sa.CheckConstraint(
            "action IN ('scale_up', 'scale_down', 'cancelled')",
            name="ck_open_play_audit_log_action",
        ),
    )
    op.create_index("idx_open_play_audit_log_session_id", "open_play_audit_log", ["session_id"])

    op.create_table(
        "staff_notifications",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("facility_id", sa.Integer(), sa.ForeignKey("facilities.id"), nullable=False),
        sa.Column("notification_type", sa.String(20), nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column(
            "related_session_id",
            sa.Integer(),
            sa.ForeignKey("open_play_sessions.id"),
            nullable=True,
        ),
        sa.Column("read", sa.Boolean(), nullable=False, server_default=sa.false()),
        *_timestamps(),
        sa.CheckConstraint(
            "notification_type IN ('scale_up', 'scale_down', 'cancelled')",
            name="ck_staff_notifications_type",
        ),
    )
    op.create_index(
        "idx_staff_notifications_facility_read",
        "staff_notifications",
        ["facility_id", "read", "created_at"],
    )

    op.bulk_insert(
        reservation_types,
        [{"name": "OPEN_PLAY", "description": "Drop-in open play session"}],
    )


def downgrade() -> None:
    """Drop open play capacity tables."""
    op.drop_index("idx_staff_notifications_facility_read", table_name="staff_notifications")
    op.drop_table("staff_notifications")
    op.drop_index("idx_open_play_audit_log_session_id", table_name="open_play_audit_log")
    op.drop_table("open_play_audit_log")
    op.drop_index("idx_open_play_sessions_facility_status", table_name="open_play_sessions")
    op.drop_table("open_play_sessions")
    op.drop_table("reservation_participants")
    op.drop_table("reservation_courts")
    op.drop_index("idx_reservations_facility_window", table_name="reservations")
    op.drop_table("reservations")
    op.drop_index("idx_open_play_rules_facility_id", table_name="open_play_rules")
    op.drop_table("open_play_rules")
    op.drop_table("reservation_types")
    op.drop_table("courts")
    op.drop_table("facilities")
