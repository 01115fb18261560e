"""
Capacity store: the read/write surface the open play engine works through.

CapacityStore is the interface; SqlAlchemyCapacityStore implements it on an
AsyncSession that the caller owns (and therefore owns the transaction of).
Use sqlalchemy_transaction() to get a factory that opens a fresh session and
transaction per unit of work.
"""

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timedelta
from typing import AsyncContextManager, AsyncIterator, Callable, List, Optional, Protocol

from sqlalchemy import select, and_, func
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from pickleclub.database import db
from pickleclub.database.models import (
    Court,
    CourtStatus,
    OpenPlayAuditLog,
    OpenPlayRule,
    OpenPlaySession,
    OpenPlaySessionStatus,
    OPEN_PLAY_RESERVATION_TYPE,
    Reservation,
    ReservationCourt,
    ReservationParticipant,
    ReservationType,
    StaffNotification,
)
from pickleclub.models.schemas import (
    AuditState,
    CourtAssignment,
    OpenPlayRuleData,
    OpenPlaySessionData,
)
from pickleclub.utils.datetime_utils import as_utc

logger = logging.getLogger(__name__)


# --- Custom exceptions ---


class OpenPlayError(Exception):
    """Base class for open play capacity errors."""


class ReservationNotFoundError(OpenPlayError):
    """Raised when a scheduled session has no backing OPEN_PLAY reservation."""

    def __init__(self, session_id: int):
        super().__init__(f"open play reservation not found for session {session_id}")
        self.session_id = session_id


class OpenPlayRuleNotFoundError(OpenPlayError):
    """Raised when a session references a rule that does not exist for its facility."""

    def __init__(self, rule_id: int, facility_id: int):
        super().__init__(f"open play rule {rule_id} not found for facility {facility_id}")
        self.rule_id = rule_id
        self.facility_id = facility_id


class OpenPlaySessionNotFoundError(OpenPlayError):
    """Raised when an open play session cannot be found for a facility."""

    def __init__(self, session_id: int, facility_id: int):
        super().__init__(f"open play session {session_id} not found for facility {facility_id}")
        self.session_id = session_id
        self.facility_id = facility_id


class CapacityStore(Protocol):
    """Rules, sessions, reservations, courts, audit log and staff notifications."""

    async def list_sessions_approaching_cutoff(
        self, facility_id: int, comparison_time: datetime
    ) -> List[OpenPlaySessionData]:
        """Scheduled sessions whose cutoff window contains comparison_time, by start time."""
        ...

    async def list_facilities_with_scheduled_sessions(self, comparison_time: datetime) -> List[int]:
        ...

    async def get_session(self, session_id: int, facility_id: int) -> OpenPlaySessionData:
        ...

    async def get_rule(self, rule_id: int, facility_id: int) -> OpenPlayRuleData:
        ...

    async def find_reservation_id(self, session: OpenPlaySessionData) -> int:
        """Exact (facility, rule, start, end) match; raises ReservationNotFoundError."""
        ...

    async def count_participants(self, reservation_id: int) -> int:
        ...

    async def list_reservation_courts(self, reservation_id: int) -> List[CourtAssignment]:
        ...

    async def list_available_courts(
        self,
        facility_id: int,
        reservation_id: int,
        start_time: datetime,
        end_time: datetime,
    ) -> List[CourtAssignment]:
        """Active courts free for the window, excluding the reservation's own courts."""
        ...

    async def add_reservation_court(self, reservation_id: int, court_id: int) -> None:
        ...

    async def remove_reservation_court(self, reservation_id: int, court_id: int) -> None:
        ...

    async def update_session_status(
        self,
        session_id: int,
        facility_id: int,
        status: str,
        cancelled_at: Optional[datetime],
        cancellation_reason: Optional[str],
    ) -> OpenPlaySessionData:
        ...

    async def update_session_court_count(
        self, session_id: int, facility_id: int, current_court_count: int
    ) -> OpenPlaySessionData:
        ...

    async def create_audit_log(
        self,
        session_id: int,
        action: str,
        before_state: AuditState,
        after_state: AuditState,
        reason: Optional[str],
    ) -> int:
        ...

    async def create_staff_notification(
        self,
        facility_id: int,
        notification_type: str,
        message: str,
        related_session_id: Optional[int],
    ) -> int:
        ...


# Opens one transaction and yields a store bound to it; commit on clean exit,
# rollback on any exception (including cancellation).
StoreTransaction = Callable[[], AsyncContextManager[CapacityStore]]


class SqlAlchemyCapacityStore:
    """CapacityStore backed by an AsyncSession. Never commits; the caller does."""

    def __init__(self, session: AsyncSession):
        self._session = session

    async def list_sessions_approaching_cutoff(
        self, facility_id: int, comparison_time: datetime
    ) -> List[OpenPlaySessionData]:
        comparison_time = as_utc(comparison_time)
        scheduled = and_(
            OpenPlaySession.facility_id == facility_id,
            OpenPlaySession.status == OpenPlaySessionStatus.SCHEDULED.value,
            OpenPlaySession.start_time > comparison_time,
        )

        max_cutoff = await self._session.execute(
            select(func.max(OpenPlayRule.cancellation_cutoff_minutes))
            .join(OpenPlaySession, OpenPlaySession.open_play_rule_id == OpenPlayRule.id)
            .where(scheduled)
        )
        max_cutoff_minutes = max_cutoff.scalar_one_or_none()
        if max_cutoff_minutes is None:
            return []

        result = await self._session.execute(
            select(OpenPlaySession, OpenPlayRule.cancellation_cutoff_minutes)
            .join(OpenPlayRule, OpenPlaySession.open_play_rule_id == OpenPlayRule.id)
            .where(
                and_(
                    scheduled,
                    OpenPlaySession.start_time
                    <= comparison_time + timedelta(minutes=max_cutoff_minutes),
                )
            )
            .order_by(OpenPlaySession.start_time, OpenPlaySession.id)
        )

        # The SQL bound uses the widest cutoff of the facility; the exact
        # per-rule bound is applied here without dialect-specific interval
        # arithmetic.
        sessions = []
        for open_play_session, cutoff_minutes in result.all():
            window_end = comparison_time + timedelta(minutes=cutoff_minutes)
            if as_utc(open_play_session.start_time) <= window_end:
                sessions.append(OpenPlaySessionData.model_validate(open_play_session))
        return sessions

    async def list_facilities_with_scheduled_sessions(self, comparison_time: datetime) -> List[int]:
        result = await self._session.execute(
            select(OpenPlaySession.facility_id)
            .where(
                and_(
                    OpenPlaySession.status == OpenPlaySessionStatus.SCHEDULED.value,
                    OpenPlaySession.start_time > as_utc(comparison_time),
                )
            )
            .distinct()
            .order_by(OpenPlaySession.facility_id)
        )
        return list(result.scalars().all())

    async def get_session(self, session_id: int, facility_id: int) -> OpenPlaySessionData:
        return OpenPlaySessionData.model_validate(
            await self._load_session(session_id, facility_id)
        )

    async def get_rule(self, rule_id: int, facility_id: int) -> OpenPlayRuleData:
        result = await self._session.execute(
            select(OpenPlayRule).where(
                and_(OpenPlayRule.id == rule_id, OpenPlayRule.facility_id == facility_id)
            )
        )
        rule = result.scalar_one_or_none()
        if rule is None:
            raise OpenPlayRuleNotFoundError(rule_id, facility_id)
        return OpenPlayRuleData.model_validate(rule)

    async def find_reservation_id(self, session: OpenPlaySessionData) -> int:
        result = await self._session.execute(
            select(Reservation.id)
            .join(ReservationType, ReservationType.id == Reservation.reservation_type_id)
            .where(
                and_(
                    Reservation.facility_id == session.facility_id,
                    Reservation.open_play_rule_id == session.open_play_rule_id,
                    Reservation.start_time == session.start_time,
                    Reservation.end_time == session.end_time,
                    ReservationType.name == OPEN_PLAY_RESERVATION_TYPE,
                )
            )
            .order_by(Reservation.id)
            .limit(1)
        )
        reservation_id = result.scalar_one_or_none()
        if reservation_id is None:
            raise ReservationNotFoundError(session.id)
        return reservation_id

    async def count_participants(self, reservation_id: int) -> int:
        participants = await self._session.execute(
            select(ReservationParticipant.user_id).where(
                ReservationParticipant.reservation_id == reservation_id
            )
        )
        user_ids = set(participants.scalars().all())

        primary = await self._session.execute(
            select(Reservation.primary_user_id).where(Reservation.id == reservation_id)
        )
        primary_user_id = primary.scalar_one_or_none()
        if primary_user_id is not None:
            user_ids.add(primary_user_id)
        return len(user_ids)

    async def list_reservation_courts(self, reservation_id: int) -> List[CourtAssignment]:
        result = await self._session.execute(
            select(ReservationCourt.court_id, Court.court_number)
            .join(Court, Court.id == ReservationCourt.court_id)
            .where(ReservationCourt.reservation_id == reservation_id)
            .order_by(Court.court_number)
        )
        return [
            CourtAssignment(court_id=court_id, court_number=court_number)
            for court_id, court_number in result.all()
        ]

    async def list_available_courts(
        self,
        facility_id: int,
        reservation_id: int,
        start_time: datetime,
        end_time: datetime,
    ) -> List[CourtAssignment]:
        conflicting = (
            select(ReservationCourt.court_id)
            .join(Reservation, Reservation.id == ReservationCourt.reservation_id)
            .where(
                and_(
                    Reservation.facility_id == facility_id,
                    Reservation.id != reservation_id,
                    Reservation.start_time < end_time,
                    Reservation.end_time > start_time,
                )
            )
        )
        own = select(ReservationCourt.court_id).where(
            ReservationCourt.reservation_id == reservation_id
        )
        result = await self._session.execute(
            select(Court.id, Court.court_number)
            .where(
                and_(
                    Court.facility_id == facility_id,
                    Court.status == CourtStatus.ACTIVE.value,
                    Court.id.not_in(conflicting),
                    Court.id.not_in(own),
                )
            )
            .order_by(Court.court_number)
        )
        return [
            CourtAssignment(court_id=court_id, court_number=court_number)
            for court_id, court_number in result.all()
        ]

    async def add_reservation_court(self, reservation_id: int, court_id: int) -> None:
        self._session.add(ReservationCourt(reservation_id=reservation_id, court_id=court_id))
        await self._session.flush()

    async def remove_reservation_court(self, reservation_id: int, court_id: int) -> None:
        result = await self._session.execute(
            select(ReservationCourt).where(
                and_(
                    ReservationCourt.reservation_id == reservation_id,
                    ReservationCourt.court_id == court_id,
                )
            )
        )
        assignment = result.scalar_one_or_none()
        if assignment is None:
            logger.warning(
                f"Court {court_id} is not assigned to reservation {reservation_id}; nothing to release"
            )
            return
        await self._session.delete(assignment)
        await self._session.flush()

    async def update_session_status(
        self,
        session_id: int,
        facility_id: int,
        status: str,
        cancelled_at: Optional[datetime],
        cancellation_reason: Optional[str],
    ) -> OpenPlaySessionData:
        open_play_session = await self._load_session(session_id, facility_id)
        open_play_session.status = status
        open_play_session.cancelled_at = cancelled_at
        open_play_session.cancellation_reason = cancellation_reason
        await self._session.flush()
        return OpenPlaySessionData.model_validate(open_play_session)

    async def update_session_court_count(
        self, session_id: int, facility_id: int, current_court_count: int
    ) -> OpenPlaySessionData:
        open_play_session = await self._load_session(session_id, facility_id)
        open_play_session.current_court_count = current_court_count
        await self._session.flush()
        return OpenPlaySessionData.model_validate(open_play_session)

    async def create_audit_log(
        self,
        session_id: int,
        action: str,
        before_state: AuditState,
        after_state: AuditState,
        reason: Optional[str],
    ) -> int:
        entry = OpenPlayAuditLog(
            session_id=session_id,
            action=action,
            before_state=before_state.to_json(),
            after_state=after_state.to_json(),
            reason=reason,
        )
        self._session.add(entry)
        await self._session.flush()
        return entry.id

    async def create_staff_notification(
        self,
        facility_id: int,
        notification_type: str,
        message: str,
        related_session_id: Optional[int],
    ) -> int:
        notification = StaffNotification(
            facility_id=facility_id,
            notification_type=notification_type,
            message=message,
            related_session_id=related_session_id,
            read=False,
        )
        self._session.add(notification)
        await self._session.flush()
        return notification.id

    async def _load_session(self, session_id: int, facility_id: int) -> OpenPlaySession:
        result = await self._session.execute(
            select(OpenPlaySession).where(
                and_(
                    OpenPlaySession.id == session_id,
                    OpenPlaySession.facility_id == facility_id,
                )
            )
        )
        open_play_session = result.scalar_one_or_none()
        if open_play_session is None:
            raise OpenPlaySessionNotFoundError(session_id, facility_id)
        return open_play_session


def sqlalchemy_transaction(
    session_maker: Optional[async_sessionmaker] = None,
) -> StoreTransaction:
    """
    Build a StoreTransaction that opens a new AsyncSession per unit of work.

    Args:
        session_maker: Session factory to use. Defaults to db.AsyncSessionLocal,
            resolved on every call so a swapped factory (tests) is honoured.
    """

    @asynccontextmanager
    async def _transaction() -> AsyncIterator[CapacityStore]:
        maker = session_maker or db.AsyncSessionLocal
        async with maker() as session:
            async with session.begin():
                yield SqlAlchemyCapacityStore(session)

    return _transaction
