"""
Pure decision functions for open play capacity enforcement.

Nothing here touches the database: given signups, a rule and the court
lists, these functions decide whether a session is under-subscribed and how
many courts it should hold.
"""

from dataclasses import dataclass
from typing import Optional, Sequence, Tuple

from pickleclub.database.models import OpenPlayAction
from pickleclub.models.schemas import CourtAssignment, OpenPlayRuleData, OpenPlaySessionData


def ceil_div(value: int, divisor: int) -> int:
    """Ceiling division that returns 0 for non-positive inputs."""
    if divisor <= 0:
        return 0
    if value <= 0:
        return 0
    return (value + divisor - 1) // divisor


def clamp_court_count(value: int, min_courts: int, max_courts: int) -> int:
    """Saturate value to the closed interval [min_courts, max_courts]."""
    if value < min_courts:
        return min_courts
    if value > max_courts:
        return max_courts
    return value


def is_undersubscribed(signups: int, rule: OpenPlayRuleData) -> bool:
    return signups < rule.min_participants


def cancellation_reason(signups: int, rule: OpenPlayRuleData) -> str:
    return f"Only {signups} signups (minimum: {rule.min_participants})"


def auto_scale_enabled(session: OpenPlaySessionData, rule: OpenPlayRuleData) -> bool:
    """The session-level override shadows the rule default when set."""
    if session.auto_scale_override is not None:
        return session.auto_scale_override
    return rule.auto_scale_enabled


def desired_court_count(signups: int, rule: OpenPlayRuleData) -> int:
    """Courts needed for the signups, bounded by the rule's court range."""
    return clamp_court_count(
        ceil_div(signups, rule.max_participants_per_court),
        rule.min_courts,
        rule.max_courts,
    )


@dataclass(frozen=True)
class ScalingPlan:
    """
    Outcome of the scaling computation for one session.

    existing and available keep the order the store returned them in;
    courts_to_add is taken from the head of available and courts_to_release
    from the tail of existing.
    """

    signups: int
    per_court: int
    desired: int
    existing: Tuple[CourtAssignment, ...]
    available: Tuple[CourtAssignment, ...]

    @property
    def existing_count(self) -> int:
        return len(self.existing)

    @property
    def availability_limit(self) -> int:
        return self.existing_count + len(self.available)

    @property
    def availability_capped(self) -> bool:
        return self.desired > self.availability_limit

    @property
    def target(self) -> int:
        return min(self.desired, self.availability_limit)

    @property
    def needs_change(self) -> bool:
        return self.desired != self.existing_count

    @property
    def fully_capped(self) -> bool:
        """A desired change that availability reduced to nothing."""
        return self.needs_change and self.target == self.existing_count

    @property
    def action(self) -> Optional[OpenPlayAction]:
        if not self.needs_change:
            return None
        if self.target < self.existing_count:
            return OpenPlayAction.SCALE_DOWN
        # A fully capped increase is still recorded as an attempted scale up
        return OpenPlayAction.SCALE_UP

    @property
    def courts_to_add(self) -> Tuple[CourtAssignment, ...]:
        if self.target <= self.existing_count:
            return ()
        needed = min(self.target - self.existing_count, len(self.available))
        return self.available[:needed]

    @property
    def courts_to_release(self) -> Tuple[CourtAssignment, ...]:
        if self.target >= self.existing_count:
            return ()
        remove_count = self.existing_count - self.target
        return self.existing[self.existing_count - remove_count:]

    @property
    def resulting_courts(self) -> Tuple[CourtAssignment, ...]:
        if self.courts_to_add:
            return self.existing + self.courts_to_add
        if self.courts_to_release:
            return self.existing[: self.existing_count - len(self.courts_to_release)]
        return self.existing

    @property
    def reason(self) -> str:
        reason = f"{self.signups} participants, {self.per_court} per court"
        if self.availability_capped:
            reason = f"{reason}; availability capped at {self.availability_limit} courts"
        return reason


def plan_scaling(
    signups: int,
    rule: OpenPlayRuleData,
    existing: Sequence[CourtAssignment],
    available: Sequence[CourtAssignment] = (),
) -> ScalingPlan:
    """
    Build the scaling plan for a session.

    Args:
        signups: Number of participants on the session's reservation
        rule: The session's open play rule
        existing: Courts currently assigned to the reservation
        available: Free courts for the session window (only consulted when
            the desired count differs from the existing count)

    Returns:
        ScalingPlan describing desired, target and the courts to move
    """
    return ScalingPlan(
        signups=signups,
        per_court=rule.max_participants_per_court,
        desired=desired_court_count(signups, rule),
        existing=tuple(existing),
        available=tuple(available),
    )
