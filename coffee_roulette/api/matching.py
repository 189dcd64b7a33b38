"""
Matching API Routes: administrative trigger surface for rounds.

1. POST /matching/rounds - Run a round now (or schedule it)
2. POST /matching/rounds/{id}/execute - Execute a scheduled round
3. POST /matching/preview - Dry run, nothing persisted
4. GET /matching/rounds/{id} - Round with its pairings
5. POST /matching/rounds/{id}/abandon - Fail a stuck in-progress round
6. GET|PUT /matching/schedule - Cadence of automatic rounds
"""

from uuid import UUID

from fastapi import APIRouter, HTTPException, status

from ..core import CoordinatorDep, ScheduleDep
from ..schemas import (
    AbandonRoundRequest,
    PreviewRequest,
    RoundCreateRequest,
    RoundOutcomeResponse,
    RoundResponse,
    SchedulePreset,
    ScheduleResponse,
    ScheduleUpdateRequest,
)
from ..services.exceptions import (
    InsufficientParticipantsError,
    InvalidRoundTransitionError,
    MatchingError,
    RoundInProgressError,
    RoundNotFoundError,
    ScheduleError,
)
from ..services.schedule import PRESET_DESCRIPTIONS, PRESETS


router = APIRouter(prefix="/matching", tags=["matching"])


def _to_http_error(e: MatchingError) -> HTTPException:
    """Business-rule rejections are user-actionable; the rest are server errors."""
    if isinstance(e, InsufficientParticipantsError):
        return HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail={
                "error": "insufficient_participants",
                "message": str(e),
                "eligible_count": e.eligible_count,
                "round_id": str(e.round_id) if e.round_id else None,
            },
        )
    if isinstance(e, RoundNotFoundError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=_detail("round_not_found", e))
    if isinstance(e, RoundInProgressError):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=_detail("round_in_progress", e))
    if isinstance(e, InvalidRoundTransitionError):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=_detail("invalid_transition", e))
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail=_detail("matching_failed", e),
    )


def _detail(error: str, e: MatchingError) -> dict:
    return {
        "error": error,
        "message": str(e),
        "round_id": str(e.round_id) if e.round_id else None,
    }


@router.post(
    "/rounds",
    response_model=RoundOutcomeResponse | RoundResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Trigger a matching round",
)
async def create_round(request: RoundCreateRequest, coordinator: CoordinatorDep):
    """
    Run a manual matching round synchronously.

    With `schedule_only`, the round is created in `scheduled` state and can be
    executed later through `/matching/rounds/{id}/execute`.
    """
    try:
        if request.schedule_only:
            matching_round = await coordinator.schedule_round(request.to_request())
            return RoundResponse.from_round(matching_round, include_pairings=False)

        outcome = await coordinator.run_round(request.to_request())
        return RoundOutcomeResponse.from_outcome(outcome)
    except MatchingError as e:
        raise _to_http_error(e)


@router.post(
    "/rounds/{round_id}/execute",
    response_model=RoundOutcomeResponse,
    summary="Execute a scheduled round",
)
async def execute_round(round_id: UUID, coordinator: CoordinatorDep):
    try:
        outcome = await coordinator.execute_round(round_id)
    except MatchingError as e:
        raise _to_http_error(e)
    return RoundOutcomeResponse.from_outcome(outcome)


@router.post(
    "/preview",
    response_model=RoundOutcomeResponse,
    summary="Preview a round without saving",
)
async def preview_round(request: PreviewRequest, coordinator: CoordinatorDep):
    try:
        outcome = await coordinator.preview(request.to_request())
    except MatchingError as e:
        raise _to_http_error(e)
    return RoundOutcomeResponse.from_outcome(outcome)


@router.delete(
    "/preview",
    summary="Remove leftover preview scaffolds",
)
async def cleanup_previews(coordinator: CoordinatorDep):
    removed = await coordinator.cleanup_preview_rounds()
    return {"removed": removed}


@router.get(
    "/rounds/{round_id}",
    response_model=RoundResponse,
    summary="Get a round with its pairings",
)
async def get_round(round_id: UUID, coordinator: CoordinatorDep):
    try:
        matching_round = await coordinator.get_round(round_id)
    except RoundNotFoundError as e:
        raise _to_http_error(e)
    return RoundResponse.from_round(matching_round)


@router.post(
    "/rounds/{round_id}/abandon",
    response_model=RoundResponse,
    summary="Mark a stuck in-progress round as failed",
)
async def abandon_round(round_id: UUID, request: AbandonRoundRequest, coordinator: CoordinatorDep):
    try:
        matching_round = await coordinator.abandon_round(round_id, request.reason)
    except MatchingError as e:
        raise _to_http_error(e)
    return RoundResponse.from_round(matching_round, include_pairings=False)


# =============================================================================
# AUTOMATIC SCHEDULE
# =============================================================================


def _schedule_response(config) -> ScheduleResponse:
    return ScheduleResponse(
        **config.to_dict(),
        presets=[
            SchedulePreset(type=name, cron_expression=expression, description=PRESET_DESCRIPTIONS[name])
            for name, expression in PRESETS.items()
        ],
    )


@router.get("/schedule", response_model=ScheduleResponse, summary="Automatic round schedule")
async def get_schedule(schedule: ScheduleDep):
    return _schedule_response(await schedule.get_config())


@router.put("/schedule", response_model=ScheduleResponse, summary="Change the automatic round schedule")
async def update_schedule(request: ScheduleUpdateRequest, schedule: ScheduleDep):
    try:
        config = await schedule.update_schedule(
            request.schedule_type, request.cron_expression, request.timezone,
        )
        if request.enabled is not None:
            config = await schedule.set_enabled(request.enabled)
    except ScheduleError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"error": "invalid_schedule", "message": str(e), "round_id": None},
        )
    return _schedule_response(config)
