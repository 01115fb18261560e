"""
Open play capacity engine.

For every open play session that has entered its cancellation cutoff window
the engine either cancels it (too few signups) or rescales the courts it
holds to match signups, bounded by the rule and by live court availability.
Every state-changing decision writes one audit entry and one staff
notification.

Decisions are recomputed from current state on every pass, so re-running an
evaluation after a failure is safe.
"""

import enum
import logging
from datetime import datetime
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from pickleclub.database.models import OpenPlayAction, OpenPlaySessionStatus
from pickleclub.models.schemas import (
    AuditState,
    CourtAssignment,
    OpenPlayRuleData,
    OpenPlaySessionData,
)
from pickleclub.services import open_play_policy
from pickleclub.services.capacity_store import (
    CapacityStore,
    OpenPlayError,
    StoreTransaction,
    sqlalchemy_transaction,
)
from pickleclub.utils.datetime_utils import as_utc, utcnow

logger = logging.getLogger(__name__)


class TransactionScope(str, enum.Enum):
    """How much of a facility pass one transaction covers."""

    # Every session of the facility pass commits or rolls back together
    FACILITY_BATCH = "facility_batch"
    # Each session commits on its own; a failure only rolls back that session
    PER_SESSION = "per_session"


class OpenPlayEvaluationError(OpenPlayError):
    """Raised after a per-session pass in which one or more sessions failed."""

    def __init__(self, facility_id: int, failures: Dict[int, Exception]):
        session_ids = ", ".join(str(session_id) for session_id in failures)
        super().__init__(
            f"open play evaluation failed for facility {facility_id} sessions: {session_ids}"
        )
        self.facility_id = facility_id
        self.failures = failures


def _context(session: OpenPlaySessionData) -> str:
    return (
        f"session={session.id} facility={session.facility_id} "
        f"rule={session.open_play_rule_id}"
    )


class OpenPlayEngine:
    """Cancels or rescales open play sessions approaching their cutoff."""

    def __init__(
        self,
        transaction: Optional[StoreTransaction] = None,
        transaction_scope: TransactionScope = TransactionScope.FACILITY_BATCH,
        clock: Callable[[], datetime] = utcnow,
    ):
        """
        Args:
            transaction: Factory opening one store transaction. Defaults to a
                SQLAlchemy transaction on the application database.
            transaction_scope: Granularity of the evaluation pass transaction
            clock: Source of "now" for default comparison times and cancellation stamps
        """
        self._transaction = transaction or sqlalchemy_transaction()
        self._transaction_scope = TransactionScope(transaction_scope)
        self._clock = clock

    @property
    def transaction_scope(self) -> TransactionScope:
        return self._transaction_scope

    async def list_facilities_to_evaluate(
        self, comparison_time: Optional[datetime] = None
    ) -> List[int]:
        """Facility ids that have scheduled sessions starting after comparison_time."""
        comparison_time = as_utc(comparison_time) if comparison_time else self._clock()
        async with self._transaction() as store:
            return await store.list_facilities_with_scheduled_sessions(comparison_time)

    async def get_session_with_rule(
        self, session_id: int, facility_id: int
    ) -> Tuple[OpenPlaySessionData, OpenPlayRuleData]:
        """Load a session and its rule for a standalone check."""
        async with self._transaction() as store:
            session = await store.get_session(session_id, facility_id)
            rule = await store.get_rule(session.open_play_rule_id, facility_id)
        return session, rule

    async def evaluate_sessions_approaching_cutoff(
        self, facility_id: int, comparison_time: Optional[datetime] = None
    ) -> None:
        """
        Evaluate every scheduled session of a facility whose cutoff has arrived.

        Each session is checked for cancellation first; sessions that survive
        are checked for scaling. Errors are logged with context and re-raised.

        Args:
            facility_id: Facility to evaluate
            comparison_time: Reference time; defaults to now

        Raises:
            OpenPlayError: Integrity failures (missing reservation or rule)
            OpenPlayEvaluationError: One or more sessions failed (per-session scope)
            SQLAlchemyError: Store read/write failures
        """
        comparison_time = as_utc(comparison_time) if comparison_time else self._clock()
        logger.info(
            f"Evaluating open play sessions approaching cutoff for facility {facility_id} "
            f"at {comparison_time.isoformat()} ({self._transaction_scope.value})"
        )

        try:
            if self._transaction_scope == TransactionScope.PER_SESSION:
                await self._evaluate_per_session(facility_id, comparison_time)
            else:
                async with self._transaction() as store:
                    sessions = await store.list_sessions_approaching_cutoff(
                        facility_id, comparison_time
                    )
                    logger.info(
                        f"Found {len(sessions)} open play session(s) approaching cutoff "
                        f"for facility {facility_id}"
                    )
                    for open_play_session in sessions:
                        await self._evaluate_session(store, open_play_session)
        except Exception as e:
            logger.error(
                f"Failed to enforce open play sessions approaching cutoff for facility "
                f"{facility_id}: {e}",
                exc_info=True,
            )
            raise

    async def cancel_undersubscribed_session(
        self, session: OpenPlaySessionData, rule: OpenPlayRuleData
    ) -> bool:
        """Run the cancellation check for one session in its own transaction."""
        try:
            async with self._transaction() as store:
                return await self._cancel_undersubscribed_session(store, session, rule)
        except Exception as e:
            logger.error(
                f"Failed to evaluate cancellation in transaction ({_context(session)}): {e}",
                exc_info=True,
            )
            raise

    async def scale_session_courts(
        self, session: OpenPlaySessionData, rule: OpenPlayRuleData
    ) -> bool:
        """Run the scaling check for one session in its own transaction."""
        try:
            async with self._transaction() as store:
                return await self._scale_session_courts(store, session, rule)
        except Exception as e:
            logger.error(
                f"Failed to evaluate scaling in transaction ({_context(session)}): {e}",
                exc_info=True,
            )
            raise

    async def _evaluate_per_session(self, facility_id: int, comparison_time: datetime) -> None:
        async with self._transaction() as store:
            sessions = await store.list_sessions_approaching_cutoff(facility_id, comparison_time)
        logger.info(
            f"Found {len(sessions)} open play session(s) approaching cutoff "
            f"for facility {facility_id}"
        )

        failures: Dict[int, Exception] = {}
        for listed in sessions:
            try:
                async with self._transaction() as store:
                    # Reload inside the transaction; the listing may be stale
                    current = await store.get_session(listed.id, facility_id)
                    await self._evaluate_session(store, current)
            except Exception as e:
                logger.error(
                    f"Rolled back open play session ({_context(listed)}): {e}", exc_info=True
                )
                failures[listed.id] = e

        if failures:
            raise OpenPlayEvaluationError(facility_id, failures)

    async def _evaluate_session(
        self, store: CapacityStore, session: OpenPlaySessionData
    ) -> None:
        try:
            rule = await store.get_rule(session.open_play_rule_id, session.facility_id)
        except Exception as e:
            logger.error(f"Failed to load open play rule ({_context(session)}): {e}")
            raise

        logger.debug(
            f"Evaluating open play session ({_context(session)}) status={session.status} "
            f"current_court_count={session.current_court_count}"
        )

        try:
            cancelled = await self._cancel_undersubscribed_session(store, session, rule)
        except Exception as e:
            logger.error(f"Failed to evaluate cancellation ({_context(session)}): {e}")
            raise
        if cancelled:
            return

        try:
            await self._scale_session_courts(store, session, rule)
        except Exception as e:
            logger.error(f"Failed to scale open play courts ({_context(session)}): {e}")
            raise

    async def _cancel_undersubscribed_session(
        self,
        store: CapacityStore,
        session: OpenPlaySessionData,
        rule: OpenPlayRuleData,
    ) -> bool:
        if session.status != OpenPlaySessionStatus.SCHEDULED.value:
            logger.debug(
                f"Skipping cancellation check for non-scheduled session "
                f"({_context(session)}) status={session.status}"
            )
            return False

        reservation_id = await store.find_reservation_id(session)
        signups = await store.count_participants(reservation_id)

        if not open_play_policy.is_undersubscribed(signups, rule):
            logger.debug(
                f"Open play session meets minimum participants ({_context(session)}) "
                f"signups={signups} min_participants={rule.min_participants}"
            )
            return False

        existing_courts = await store.list_reservation_courts(reservation_id)
        await _remove_reservation_courts(store, reservation_id, existing_courts)

        reason = open_play_policy.cancellation_reason(signups, rule)
        cancelled = await store.update_session_status(
            session.id,
            session.facility_id,
            status=OpenPlaySessionStatus.CANCELLED.value,
            cancelled_at=self._clock(),
            cancellation_reason=reason,
        )
        updated = await store.update_session_court_count(session.id, session.facility_id, 0)

        await store.create_audit_log(
            session_id=session.id,
            action=OpenPlayAction.CANCELLED.value,
            before_state=AuditState(
                status=session.status,
                current_court_count=session.current_court_count,
                reserved_courts=len(existing_courts),
                signups=signups,
            ),
            after_state=AuditState(
                status=cancelled.status,
                current_court_count=updated.current_court_count,
                reserved_courts=0,
                signups=signups,
            ),
            reason=reason,
        )
        await store.create_staff_notification(
            facility_id=session.facility_id,
            notification_type=OpenPlayAction.CANCELLED.value,
            message=(
                f"{rule.name} cancelled - only {signups} signups "
                f"(minimum: {rule.min_participants})"
            ),
            related_session_id=session.id,
        )

        logger.info(
            f"Cancelled open play session ({_context(session)}) signups={signups} "
            f"min_participants={rule.min_participants} released_courts={len(existing_courts)}"
        )
        return True

    async def _scale_session_courts(
        self,
        store: CapacityStore,
        session: OpenPlaySessionData,
        rule: OpenPlayRuleData,
    ) -> bool:
        if session.status != OpenPlaySessionStatus.SCHEDULED.value:
            logger.debug(
                f"Skipping scaling for non-scheduled session ({_context(session)}) "
                f"status={session.status}"
            )
            return False

        if not open_play_policy.auto_scale_enabled(session, rule):
            logger.debug(f"Auto-scale disabled for open play session ({_context(session)})")
            return False

        reservation_id = await store.find_reservation_id(session)
        signups = await store.count_participants(reservation_id)
        existing_courts = await store.list_reservation_courts(reservation_id)

        plan = open_play_policy.plan_scaling(signups, rule, existing_courts)
        if not plan.needs_change:
            logger.debug(
                f"Open play session already at desired court count ({_context(session)}) "
                f"signups={signups} desired_courts={plan.desired}"
            )
            return False

        # Queried per session so courts freed earlier in the same pass are visible
        available_courts = await store.list_available_courts(
            session.facility_id, reservation_id, session.start_time, session.end_time
        )
        plan = open_play_policy.plan_scaling(signups, rule, existing_courts, available_courts)

        if plan.fully_capped:
            await _create_scale_audit(
                store, session, plan.existing, plan.existing, plan.reason, OpenPlayAction.SCALE_UP
            )
            await store.create_staff_notification(
                facility_id=session.facility_id,
                notification_type=OpenPlayAction.SCALE_UP.value,
                message=(
                    f"{rule.name} capped at {plan.existing_count} courts - "
                    f"{signups} participants"
                ),
                related_session_id=session.id,
            )
            logger.info(
                f"Open play session scaling capped by availability ({_context(session)}) "
                f"signups={signups} desired_courts={plan.desired} "
                f"available_courts={len(plan.available)} current_courts={plan.existing_count}"
            )
            return True

        for court in plan.courts_to_add:
            await store.add_reservation_court(reservation_id, court.court_id)
        await _remove_reservation_courts(store, reservation_id, plan.courts_to_release)

        updated = await store.update_session_court_count(
            session.id, session.facility_id, len(plan.resulting_courts)
        )
        await _create_scale_audit(
            store, session, plan.existing, plan.resulting_courts, plan.reason, plan.action
        )
        await store.create_staff_notification(
            facility_id=session.facility_id,
            notification_type=plan.action.value,
            message=(
                f"{rule.name} scaled from {plan.existing_count} to "
                f"{updated.current_court_count} courts - {signups} participants"
            ),
            related_session_id=session.id,
        )

        logger.info(
            f"Scaled open play session courts ({_context(session)}) signups={signups} "
            f"desired_courts={plan.desired} current_courts={plan.existing_count} "
            f"target_courts={updated.current_court_count} scale_action={plan.action.value}"
        )
        return True


async def _remove_reservation_courts(
    store: CapacityStore, reservation_id: int, courts: Sequence[CourtAssignment]
) -> None:
    for court in courts:
        await store.remove_reservation_court(reservation_id, court.court_id)


async def _create_scale_audit(
    store: CapacityStore,
    session: OpenPlaySessionData,
    before_courts: Tuple[CourtAssignment, ...],
    after_courts: Tuple[CourtAssignment, ...],
    reason: str,
    action: OpenPlayAction,
) -> None:
    await store.create_audit_log(
        session_id=session.id,
        action=action.value,
        before_state=AuditState(
            current_court_count=len(before_courts),
            reserved_courts=len(before_courts),
        ),
        after_state=AuditState(
            current_court_count=len(after_courts),
            reserved_courts=len(after_courts),
        ),
        reason=reason,
    )
