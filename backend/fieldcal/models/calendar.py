import uuid

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Index,
    SmallInteger,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.dialects.postgresql import UUID as PGUUID
from sqlalchemy.orm import declarative_base
from sqlalchemy.sql import func
from sqlalchemy.types import CHAR, TypeDecorator

Base = declarative_base()


class GUID(TypeDecorator):
    """Native UUID on PostgreSQL, CHAR(36) everywhere else."""

    impl = CHAR
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == "postgresql":
            return dialect.type_descriptor(PGUUID(as_uuid=True))
        return dialect.type_descriptor(CHAR(36))

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if not isinstance(value, uuid.UUID):
            try:
                value = uuid.UUID(str(value))
            except ValueError:
                return str(value)
        return value if dialect.name == "postgresql" else str(value)

    def process_result_value(self, value, dialect):
        if value is None or isinstance(value, uuid.UUID):
            return value
        try:
            return uuid.UUID(value)
        except ValueError:
            return value


UUID_TYPE = GUID()
JSON_TYPE = JSON().with_variant(JSONB, "postgresql")


def _uuid_pk() -> Column:
    return Column(UUID_TYPE, primary_key=True, default=uuid.uuid4)


class Organization(Base):
    __tablename__ = "organizations"
    __table_args__ = (
        CheckConstraint(
            "quiet_hours_start_minute IS NULL OR (quiet_hours_start_minute BETWEEN 0 AND 1439)",
            name="chk_org_quiet_start",
        ),
        CheckConstraint(
            "quiet_hours_end_minute IS NULL OR (quiet_hours_end_minute BETWEEN 0 AND 1439)",
            name="chk_org_quiet_end",
        ),
    )

    id = _uuid_pk()
    name = Column(String(255), nullable=False)
    calendar_timezone = Column(String(64))
    default_slot_minutes = Column(SmallInteger)
    quiet_hours_start_minute = Column(SmallInteger)
    quiet_hours_end_minute = Column(SmallInteger)
    allow_overlaps = Column(Boolean, nullable=False, default=False, server_default=text("false"))
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)


class OrgBusinessHours(Base):
    __tablename__ = "org_business_hours"
    __table_args__ = (
        UniqueConstraint("org_id", "day_of_week", name="uniq_org_business_hours_day"),
        # 0 = Monday ... 6 = Sunday, same as date.weekday().
        CheckConstraint("day_of_week BETWEEN 0 AND 6", name="chk_business_hours_day"),
        CheckConstraint(
            "open_minute BETWEEN 0 AND 1440 AND close_minute BETWEEN 0 AND 1440",
            name="chk_business_hours_minutes",
        ),
    )

    id = _uuid_pk()
    org_id = Column(UUID_TYPE, ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False)
    day_of_week = Column(SmallInteger, nullable=False)
    open_minute = Column(SmallInteger, nullable=False)
    close_minute = Column(SmallInteger, nullable=False)
    is_open = Column(Boolean, nullable=False, default=True, server_default=text("true"))


class User(Base):
    __tablename__ = "users"
    __table_args__ = (
        CheckConstraint(
            "calendar_access_role IN ('OWNER','ADMIN','WORKER','READ_ONLY')",
            name="chk_user_calendar_access_role",
        ),
        Index("idx_users_org", "org_id"),
    )

    id = _uuid_pk()
    org_id = Column(UUID_TYPE, ForeignKey("organizations.id", ondelete="SET NULL"))
    email = Column(String(255), nullable=False, unique=True)
    name = Column(String(255))
    role = Column(String(32), nullable=False, default="CLIENT", server_default=text("'CLIENT'"))
    calendar_access_role = Column(
        String(16),
        nullable=False,
        default="WORKER",
        server_default=text("'WORKER'"),
    )
    is_active = Column(Boolean, nullable=False, default=True, server_default=text("true"))
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)


class ScheduledEvent(Base):
    __tablename__ = "scheduled_events"
    __table_args__ = (
        CheckConstraint("end_at IS NULL OR end_at > start_at", name="chk_event_time"),
        Index("idx_events_org_start", "org_id", "start_at"),
    )

    id = _uuid_pk()
    org_id = Column(UUID_TYPE, ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False)
    type = Column(String(32), nullable=False, default="JOB", server_default=text("'JOB'"))
    status = Column(String(32), nullable=False, default="SCHEDULED", server_default=text("'SCHEDULED'"))
    busy = Column(Boolean, nullable=False, default=True, server_default=text("true"))
    all_day = Column(Boolean, nullable=False, default=False, server_default=text("false"))
    title = Column(String(255))
    description = Column(Text)
    customer_name = Column(String(255))
    address_line = Column(String(512))
    lead_id = Column(String(64))
    start_at = Column(DateTime(timezone=True), nullable=False)
    # NULL means "org default slot length".
    end_at = Column(DateTime(timezone=True))
    created_by_user_id = Column(UUID_TYPE, ForeignKey("users.id", ondelete="SET NULL"))
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )


class EventWorkerAssignment(Base):
    __tablename__ = "event_worker_assignments"
    __table_args__ = (
        UniqueConstraint("event_id", "worker_user_id", name="uniq_event_worker"),
        Index("idx_event_assignments_worker", "org_id", "worker_user_id"),
    )

    id = _uuid_pk()
    org_id = Column(UUID_TYPE, ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False)
    event_id = Column(UUID_TYPE, ForeignKey("scheduled_events.id", ondelete="CASCADE"), nullable=False)
    worker_user_id = Column(UUID_TYPE, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)


class CalendarHold(Base):
    __tablename__ = "calendar_holds"
    __table_args__ = (
        CheckConstraint("end_at > start_at", name="chk_hold_time"),
        CheckConstraint(
            "status IN ('ACTIVE','CONFIRMED','EXPIRED','CANCELLED')",
            name="chk_hold_status",
        ),
        CheckConstraint(
            "source IN ('MANUAL','SMS_AGENT','GOOGLE_SYNC')",
            name="chk_hold_source",
        ),
        Index("idx_holds_worker_status", "org_id", "worker_user_id", "status"),
        Index("idx_holds_expires", "expires_at"),
    )

    id = _uuid_pk()
    org_id = Column(UUID_TYPE, ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False)
    worker_user_id = Column(UUID_TYPE, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    lead_id = Column(String(64))
    customer_name = Column(String(255))
    title = Column(String(255))
    address_line = Column(String(512))
    source = Column(String(16), nullable=False, default="MANUAL", server_default=text("'MANUAL'"))
    start_at = Column(DateTime(timezone=True), nullable=False)
    end_at = Column(DateTime(timezone=True), nullable=False)
    status = Column(String(16), nullable=False, default="ACTIVE", server_default=text("'ACTIVE'"))
    expires_at = Column(DateTime(timezone=True), nullable=False)
    confirmed_event_id = Column(UUID_TYPE, ForeignKey("scheduled_events.id", ondelete="SET NULL"))
    created_by_user_id = Column(UUID_TYPE, ForeignKey("users.id", ondelete="SET NULL"))
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )


class BusyBlock(Base):
    """Unavailability imported from an external calendar feed; never written by the engine."""

    __tablename__ = "busy_blocks"
    __table_args__ = (
        CheckConstraint("end_at > start_at", name="chk_busy_block_time"),
        UniqueConstraint("provider", "external_id", name="uniq_busy_block_external"),
        Index("idx_busy_blocks_worker", "org_id", "worker_user_id", "start_at"),
    )

    id = _uuid_pk()
    org_id = Column(UUID_TYPE, ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False)
    worker_user_id = Column(UUID_TYPE, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    provider = Column(String(32), nullable=False, default="GOOGLE", server_default=text("'GOOGLE'"))
    external_id = Column(String(255))
    start_at = Column(DateTime(timezone=True), nullable=False)
    end_at = Column(DateTime(timezone=True), nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)


class RoundRobinCursor(Base):
    __tablename__ = "round_robin_cursors"

    org_id = Column(UUID_TYPE, ForeignKey("organizations.id", ondelete="CASCADE"), primary_key=True)
    last_assigned_worker_id = Column(UUID_TYPE, ForeignKey("users.id", ondelete="SET NULL"))
    updated_at = Column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )


class AuditLog(Base):
    __tablename__ = "audit_logs"
    __table_args__ = (Index("idx_audit_entity", "entity_type", "entity_id"),)

    id = _uuid_pk()
    org_id = Column(UUID_TYPE)
    entity_type = Column(String(50), nullable=False)
    entity_id = Column(UUID_TYPE, nullable=False)
    action = Column(String(64), nullable=False)
    old_value = Column(JSON_TYPE)
    new_value = Column(JSON_TYPE)
    actor_type = Column(String(50), nullable=False)
    actor_id = Column(UUID_TYPE)
    audit_meta = Column("metadata", JSON_TYPE, nullable=True)
    timestamp = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
