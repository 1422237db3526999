"""init calendar schema

Revision ID: 20261018_000001
Revises:
Create Date: 2026-10-18 09:00:00
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

from fieldcal.models.calendar import GUID


# revision identifiers, used by Alembic.
revision = "20261018_000001"
down_revision = None
branch_labels = None
depends_on = None

JSON_TYPE = sa.JSON().with_variant(postgresql.JSONB(), "postgresql")


def _now():
    return sa.text("CURRENT_TIMESTAMP")


def upgrade() -> None:
    op.create_table(
        "organizations",
        sa.Column("id", GUID(), primary_key=True),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("calendar_timezone", sa.String(length=64), nullable=True),
        sa.Column("default_slot_minutes", sa.SmallInteger(), nullable=True),
        sa.Column("quiet_hours_start_minute", sa.SmallInteger(), nullable=True),
        sa.Column("quiet_hours_end_minute", sa.SmallInteger(), nullable=True),
        sa.Column("allow_overlaps", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=_now()),
        sa.CheckConstraint(
            "quiet_hours_start_minute IS NULL OR (quiet_hours_start_minute BETWEEN 0 AND 1439)",
            name="chk_org_quiet_start",
        ),
        sa.CheckConstraint(
            "quiet_hours_end_minute IS NULL OR (quiet_hours_end_minute BETWEEN 0 AND 1439)",
            name="chk_org_quiet_end",
        ),
    )

    op.create_table(
        "org_business_hours",
        sa.Column("id", GUID(), primary_key=True),
        sa.Column("org_id", GUID(), sa.ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False),
        sa.Column("day_of_week", sa.SmallInteger(), nullable=False),
        sa.Column("open_minute", sa.SmallInteger(), nullable=False),
        sa.Column("close_minute", sa.SmallInteger(), nullable=False),
        sa.Column("is_open", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.UniqueConstraint("org_id", "day_of_week", name="uniq_org_business_hours_day"),
        sa.CheckConstraint("day_of_week BETWEEN 0 AND 6", name="chk_business_hours_day"),
        sa.CheckConstraint(
            "open_minute BETWEEN 0 AND 1440 AND close_minute BETWEEN 0 AND 1440",
            name="chk_business_hours_minutes",
        ),
    )

    op.create_table(
        "users",
        sa.Column("id", GUID(), primary_key=True),
        sa.Column("org_id", GUID(), sa.ForeignKey("organizations.id", ondelete="SET NULL"), nullable=True),
        sa.Column("email", sa.String(length=255), nullable=False, unique=True),
        sa.Column("name", sa.String(length=255), nullable=True),
        sa.Column("role", sa.String(length=32), nullable=False, server_default=sa.text("'CLIENT'")),
        sa.Column(
            "calendar_access_role",
            sa.String(length=16),
            nullable=False,
            server_default=sa.text("'WORKER'"),
        ),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=_now()),
        sa.CheckConstraint(
            "calendar_access_role IN ('OWNER','ADMIN','WORKER','READ_ONLY')",
            name="chk_user_calendar_access_role",
        ),
    )
    op.create_index("idx_users_org", "users", ["org_id"])

    op.create_table(
        "scheduled_events",
        sa.Column("id", GUID(), primary_key=True),
        sa.Column("org_id", GUID(), sa.ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False),
        sa.Column("type", sa.String(length=32), nullable=False, server_default=sa.text("'JOB'")),
        sa.Column("status", sa.String(length=32), nullable=False, server_default=sa.text("'SCHEDULED'")),
        sa.Column("busy", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("all_day", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("title", sa.String(length=255), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("customer_name", sa.String(length=255), nullable=True),
        sa.Column("address_line", sa.String(length=512), nullable=True),
        sa.Column("lead_id", sa.String(length=64), nullable=True),
        sa.Column("start_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("end_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_by_user_id", GUID(), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=_now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=_now()),
        sa.CheckConstraint("end_at IS NULL OR end_at > start_at", name="chk_event_time"),
    )
    op.create_index("idx_events_org_start", "scheduled_events", ["org_id", "start_at"])

    op.create_table(
        "event_worker_assignments",
        sa.Column("id", GUID(), primary_key=True),
        sa.Column("org_id", GUID(), sa.ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False),
        sa.Column("event_id", GUID(), sa.ForeignKey("scheduled_events.id", ondelete="CASCADE"), nullable=False),
        sa.Column("worker_user_id", GUID(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.UniqueConstraint("event_id", "worker_user_id", name="uniq_event_worker"),
    )
    op.create_index(
        "idx_event_assignments_worker",
        "event_worker_assignments",
        ["org_id", "worker_user_id"],
    )

    op.create_table(
        "calendar_holds",
        sa.Column("id", GUID(), primary_key=True),
        sa.Column("org_id", GUID(), sa.ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False),
        sa.Column("worker_user_id", GUID(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("lead_id", sa.String(length=64), nullable=True),
        sa.Column("customer_name", sa.String(length=255), nullable=True),
        sa.Column("title", sa.String(length=255), nullable=True),
        sa.Column("address_line", sa.String(length=512), nullable=True),
        sa.Column("source", sa.String(length=16), nullable=False, server_default=sa.text("'MANUAL'")),
        sa.Column("start_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("end_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False, server_default=sa.text("'ACTIVE'")),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column(
            "confirmed_event_id",
            GUID(),
            sa.ForeignKey("scheduled_events.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("created_by_user_id", GUID(), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=_now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=_now()),
        sa.CheckConstraint("end_at > start_at", name="chk_hold_time"),
        sa.CheckConstraint("status IN ('ACTIVE','CONFIRMED','EXPIRED','CANCELLED')", name="chk_hold_status"),
        sa.CheckConstraint("source IN ('MANUAL','SMS_AGENT','GOOGLE_SYNC')", name="chk_hold_source"),
    )
    op.create_index(
        "idx_holds_worker_status",
        "calendar_holds",
        ["org_id", "worker_user_id", "status"],
    )
    op.create_index("idx_holds_expires", "calendar_holds", ["expires_at"])

    op.create_table(
        "busy_blocks",
        sa.Column("id", GUID(), primary_key=True),
        sa.Column("org_id", GUID(), sa.ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False),
        sa.Column("worker_user_id", GUID(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("provider", sa.String(length=32), nullable=False, server_default=sa.text("'GOOGLE'")),
        sa.Column("external_id", sa.String(length=255), nullable=True),
        sa.Column("start_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("end_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=_now()),
        sa.CheckConstraint("end_at > start_at", name="chk_busy_block_time"),
        sa.UniqueConstraint("provider", "external_id", name="uniq_busy_block_external"),
    )
    op.create_index(
        "idx_busy_blocks_worker",
        "busy_blocks",
        ["org_id", "worker_user_id", "start_at"],
    )

    op.create_table(
        "round_robin_cursors",
        sa.Column(
            "org_id",
            GUID(),
            sa.ForeignKey("organizations.id", ondelete="CASCADE"),
            primary_key=True,
        ),
        sa.Column(
            "last_assigned_worker_id",
            GUID(),
            sa.ForeignKey("users.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=_now()),
    )

    op.create_table(
        "audit_logs",
        sa.Column("id", GUID(), primary_key=True),
        sa.Column("org_id", GUID(), nullable=True),
        sa.Column("entity_type", sa.String(length=50), nullable=False),
        sa.Column("entity_id", GUID(), nullable=False),
        sa.Column("action", sa.String(length=64), nullable=False),
        sa.Column("old_value", JSON_TYPE, nullable=True),
        sa.Column("new_value", JSON_TYPE, nullable=True),
        sa.Column("actor_type", sa.String(length=50), nullable=False),
        sa.Column("actor_id", GUID(), nullable=True),
        sa.Column("metadata", JSON_TYPE, nullable=True),
        sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False, server_default=_now()),
    )
    op.create_index("idx_audit_entity", "audit_logs", ["entity_type", "entity_id"])


def downgrade() -> None:
    op.drop_index("idx_audit_entity", table_name="audit_logs")
    op.drop_table("audit_logs")
    op.drop_table("round_robin_cursors")
    op.drop_index("idx_busy_blocks_worker", table_name="busy_blocks")
    op.drop_table("busy_blocks")
    op.drop_index("idx_holds_expires", table_name="calendar_holds")
    op.drop_index("idx_holds_worker_status", table_name="calendar_holds")
    op.drop_table("calendar_holds")
    op.drop_index("idx_event_assignments_worker", table_name="event_worker_assignments")
    op.drop_table("event_worker_assignments")
    op.drop_index("idx_events_org_start", table_name="scheduled_events")
    op.drop_table("scheduled_events")
    op.drop_index("idx_users_org", table_name="users")
    op.drop_table("users")
    op.drop_table("org_business_hours")
    op.drop_table("organizations")
