"""
SQLAlchemy ORM models for facility courts, reservations and open play.
"""

import enum
from sqlalchemy import (
    Column,
    Integer,
    String,
    Text,
    Boolean,
    DateTime,
    ForeignKey,
    UniqueConstraint,
    CheckConstraint,
    Index,
)
from sqlalchemy.sql import func
from pickleclub.database.db import Base


class OpenPlaySessionStatus(str, enum.Enum):
    """Open play session status enum."""

    SCHEDULED = "scheduled"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class OpenPlayAction(str, enum.Enum):
    """Engine decision recorded in the audit log and staff notification feed."""

    CANCELLED = "cancelled"
    SCALE_UP = "scale_up"
    SCALE_DOWN = "scale_down"


class CourtStatus(str, enum.Enum):
    """Court status enum."""

    ACTIVE = "active"
    MAINTENANCE = "maintenance"
    CLOSED = "closed"


# Reservation type name backing every open play session
OPEN_PLAY_RESERVATION_TYPE = "OPEN_PLAY"


class Facility(Base):
    """A club location with its own courts and open play rules."""

    __tablename__ = "facilities"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class Court(Base):
    """A physical court at a facility."""

    __tablename__ = "courts"

    id = Column(Integer, primary_key=True, autoincrement=True)
    facility_id = Column(Integer, ForeignKey("facilities.id"), nullable=False)
    name = Column(String, nullable=False)
    court_number = Column(Integer, nullable=False)
    status = Column(String(20), default=CourtStatus.ACTIVE.value, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        UniqueConstraint("facility_id", "court_number", name="uq_courts_facility_number"),
    )


class ReservationType(Base):
    """Reservation categories (OPEN_PLAY, GAME, LESSON, ...)."""

    __tablename__ = "reservation_types"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String, nullable=False, unique=True)
    description = Column(Text, nullable=True)


class Reservation(Base):
    """A court hold for a time window."""

    __tablename__ = "reservations"

    id = Column(Integer, primary_key=True, autoincrement=True)
    facility_id = Column(Integer, ForeignKey("facilities.id"), nullable=False)
    reservation_type_id = Column(Integer, ForeignKey("reservation_types.id"), nullable=False)
    open_play_rule_id = Column(
        Integer, ForeignKey("open_play_rules.id"), nullable=True
    )  # Set for OPEN_PLAY reservations only
    primary_user_id = Column(Integer, nullable=True)
    start_time = Column(DateTime(timezone=True), nullable=False)
    end_time = Column(DateTime(timezone=True), nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        Index("idx_reservations_facility_window", "facility_id", "start_time", "end_time"),
    )


class ReservationCourt(Base):
    """Court assignment held by a reservation."""

    __tablename__ = "reservation_courts"

    id = Column(Integer, primary_key=True, autoincrement=True)
    reservation_id = Column(Integer, ForeignKey("reservations.id"), nullable=False)
    court_id = Column(Integer, ForeignKey("courts.id"), nullable=False)

    __table_args__ = (
        UniqueConstraint("reservation_id", "court_id", name="uq_reservation_courts"),
    )


class ReservationParticipant(Base):
    """A user signed up on a reservation (the primary booker included)."""

    __tablename__ = "reservation_participants"

    id = Column(Integer, primary_key=True, autoincrement=True)
    reservation_id = Column(Integer, ForeignKey("reservations.id"), nullable=False)
    user_id = Column(Integer, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        UniqueConstraint("reservation_id", "user_id", name="uq_reservation_participants"),
    )


class OpenPlayRule(Base):
    """Facility policy governing open play signups, court scaling and cutoff."""

    __tablename__ = "open_play_rules"

    id = Column(Integer, primary_key=True, autoincrement=True)
    facility_id = Column(Integer, ForeignKey("facilities.id"), nullable=False)
    name = Column(String, nullable=False)
    min_participants = Column(Integer, nullable=False, default=4)
    max_participants_per_court = Column(Integer, nullable=False, default=8)
    cancellation_cutoff_minutes = Column(Integer, nullable=False, default=60)
    auto_scale_enabled = Column(Boolean, nullable=False, default=True)
    min_courts = Column(Integer, nullable=False, default=1)
    max_courts = Column(Integer, nullable=False, default=4)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        CheckConstraint("min_participants > 0", name="ck_open_play_rules_min_participants"),
        CheckConstraint("max_participants_per_court > 0", name="ck_open_play_rules_per_court"),
        CheckConstraint("min_courts > 0", name="ck_open_play_rules_min_courts"),
        CheckConstraint("min_courts <= max_courts", name="ck_open_play_rules_court_bounds"),
        Index("idx_open_play_rules_facility_id", "facility_id"),
    )


class OpenPlaySession(Base):
    """One scheduled occurrence of an open play rule."""

    __tablename__ = "open_play_sessions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    facility_id = Column(Integer, ForeignKey("facilities.id"), nullable=False)
    open_play_rule_id = Column(Integer, ForeignKey("open_play_rules.id"), nullable=False)
    start_time = Column(DateTime(timezone=True), nullable=False)
    end_time = Column(DateTime(timezone=True), nullable=False)
    status = Column(String(20), nullable=False, default=OpenPlaySessionStatus.SCHEDULED.value)
    current_court_count = Column(Integer, nullable=False, default=0)
    auto_scale_override = Column(Boolean, nullable=True)  # None means "use the rule default"
    cancelled_at = Column(DateTime(timezone=True), nullable=True)
    cancellation_reason = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        CheckConstraint(
            "status IN ('scheduled', 'cancelled', 'completed')",
            name="ck_open_play_sessions_status",
        ),
        CheckConstraint("current_court_count >= 0", name="ck_open_play_sessions_court_count"),
        Index("idx_open_play_sessions_facility_status", "facility_id", "status", "start_time"),
    )


class OpenPlayAuditLog(Base):
    """Append-only record of every open play engine decision."""

    __tablename__ = "open_play_audit_log"

    id = Column(Integer, primary_key=True, autoincrement=True)
    session_id = Column(Integer, ForeignKey("open_play_sessions.id"), nullable=False)
    action = Column(String(20), nullable=False)  # OpenPlayAction value
    before_state = Column(Text, nullable=True)  # JSON snapshot
    after_state = Column(Text, nullable=True)  # JSON snapshot
    reason = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        CheckConstraint(
            "action IN ('scale_up', 'scale_down', 'cancelled')",
            name="ck_open_play_audit_log_action",
        ),
        Index("idx_open_play_audit_log_session_id", "session_id"),
    )


class StaffNotification(Base):
    """Facility-wide notification feed for staff."""

    __tablename__ = "staff_notifications"

    id = Column(Integer, primary_key=True, autoincrement=True)
    facility_id = Column(Integer, ForeignKey("facilities.id"), nullable=False)
    notification_type = Column(String(20), nullable=False)  # OpenPlayAction value
    message = Column(Text, nullable=False)
    related_session_id = Column(Integer, ForeignKey("open_play_sessions.id"), nullable=True)
    read = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        CheckConstraint(
            "notification_type IN ('scale_up', 'scale_down', 'cancelled')",
            name="ck_staff_notifications_type",
        ),
        Index("idx_staff_notifications_facility_read", "facility_id", "read", "created_at"),
    )
