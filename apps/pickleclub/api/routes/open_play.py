"""Administrative open play capacity route handlers."""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request

from pickleclub.api.auth_dependencies import require_staff_token
from pickleclub.models.schemas import (
    EvaluateFacilityRequest,
    EvaluateFacilityResponse,
    SessionCheckResponse,
)
from pickleclub.services.capacity_store import (
    OpenPlayError,
    OpenPlayRuleNotFoundError,
    OpenPlaySessionNotFoundError,
)
from pickleclub.services.open_play_engine import OpenPlayEngine, TransactionScope
from pickleclub.utils import constants
from pickleclub.utils.datetime_utils import as_utc, utcnow

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/admin/open-play", dependencies=[Depends(require_staff_token)])


def get_open_play_engine(request: Request) -> OpenPlayEngine:
    """The engine owned by the app (created on first use if the lifespan did not)."""
    engine = getattr(request.app.state, "open_play_engine", None)
    if engine is None:
        engine = OpenPlayEngine(
            transaction_scope=TransactionScope(constants.OPEN_PLAY_TRANSACTION_SCOPE)
        )
        request.app.state.open_play_engine = engine
    return engine


@router.post("/facilities/{facility_id}/evaluate", response_model=EvaluateFacilityResponse)
async def evaluate_facility(
    facility_id: int,
    payload: Optional[EvaluateFacilityRequest] = None,
    engine: OpenPlayEngine = Depends(get_open_play_engine),
):
    """Run a full open play evaluation pass for one facility."""
    comparison_time = utcnow()
    if payload and payload.comparison_time:
        comparison_time = as_utc(payload.comparison_time)
    try:
        await engine.evaluate_sessions_approaching_cutoff(facility_id, comparison_time)
    except OpenPlayError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except Exception as e:
        logger.error(f"Error evaluating open play for facility {facility_id}: {str(e)}")
        raise HTTPException(status_code=500, detail=f"Error evaluating open play: {str(e)}")
    return EvaluateFacilityResponse(facility_id=facility_id, comparison_time=comparison_time)


async def _run_session_check(
    engine: OpenPlayEngine, session_id: int, facility_id: int, check: str
) -> SessionCheckResponse:
    try:
        session, rule = await engine.get_session_with_rule(session_id, facility_id)
    except (OpenPlaySessionNotFoundError, OpenPlayRuleNotFoundError) as e:
        raise HTTPException(status_code=404, detail=str(e))

    try:
        if check == "cancellation":
            changed = await engine.cancel_undersubscribed_session(session, rule)
        else:
            changed = await engine.scale_session_courts(session, rule)
    except OpenPlayError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except Exception as e:
        logger.error(f"Error running {check} check for open play session {session_id}: {str(e)}")
        raise HTTPException(status_code=500, detail=f"Error running {check} check: {str(e)}")

    return SessionCheckResponse(
        session_id=session_id, facility_id=facility_id, check=check, changed=changed
    )


@router.post("/sessions/{session_id}/cancellation-check", response_model=SessionCheckResponse)
async def run_cancellation_check(
    session_id: int,
    facility_id: int,
    engine: OpenPlayEngine = Depends(get_open_play_engine),
):
    """Cancel the session now if it is under-subscribed."""
    return await _run_session_check(engine, session_id, facility_id, "cancellation")


@router.post("/sessions/{session_id}/scaling-check", response_model=SessionCheckResponse)
async def run_scaling_check(
    session_id: int,
    facility_id: int,
    engine: OpenPlayEngine = Depends(get_open_play_engine),
):
    """Rescale the session's courts now to match its signups."""
    return await _run_session_check(engine, session_id, facility_id, "scaling")
