"""
Pydantic models for open play capacity data and API request/response validation.
"""

from datetime import datetime
from typing import Optional
from pydantic import BaseModel, ConfigDict, Field, field_validator

from pickleclub.utils.datetime_utils import as_utc


class OpenPlayRuleData(BaseModel):
    """Open play rule as seen by the capacity engine."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    facility_id: int
    name: str
    min_participants: int
    max_participants_per_court: int
    cancellation_cutoff_minutes: int
    auto_scale_enabled: bool
    min_courts: int
    max_courts: int


class OpenPlaySessionData(BaseModel):
    """Open play session as seen by the capacity engine."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    facility_id: int
    open_play_rule_id: int
    start_time: datetime
    end_time: datetime
    status: str
    current_court_count: int = 0
    auto_scale_override: Optional[bool] = None
    cancelled_at: Optional[datetime] = None
    cancellation_reason: Optional[str] = None

    @field_validator("start_time", "end_time", "cancelled_at")
    @classmethod
    def _normalize_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        return as_utc(value)


class CourtAssignment(BaseModel):
    """A court held by (or available to) a reservation."""

    model_config = ConfigDict(frozen=True)

    court_id: int
    court_number: int


class AuditState(BaseModel):
    """
    Before/after snapshot stored on an open play audit entry.

    Only the fields relevant to a decision are set; unset fields are left out
    of the serialized JSON.
    """

    status: Optional[str] = None
    current_court_count: Optional[int] = None
    reserved_courts: Optional[int] = None
    signups: Optional[int] = None

    def to_json(self) -> Optional[str]:
        """Serialize to JSON text, or None when no field is set."""
        data = self.model_dump(exclude_none=True)
        if not data:
            return None
        return self.model_dump_json(exclude_none=True)


class EvaluateFacilityRequest(BaseModel):
    """Manual evaluation of one facility's sessions approaching cutoff."""

    comparison_time: Optional[datetime] = Field(
        default=None, description="Reference time; defaults to now"
    )


class EvaluateFacilityResponse(BaseModel):
    """Result of a manual facility evaluation."""

    facility_id: int
    comparison_time: datetime
    status: str = "completed"


class SessionCheckResponse(BaseModel):
    """Result of a standalone cancellation or scaling check."""

    session_id: int
    facility_id: int
    check: str
    changed: bool
