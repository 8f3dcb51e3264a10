"""
Runtime: match results, manual court scheduling and the live timer.

Results go through the lifecycle state machine (remote write first, then the
store). Every change that moves a match in or out of the pending pool
recomputes the timer cohort.
"""
from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from tourney_staging.models.match import Match, MatchResultStatus
from tourney_staging.services.match_views import summarize_result
from tourney_staging.services.staging_service import StagingService, get_staging_service

router = APIRouter()


class GameInput(BaseModel):
    game_number: Optional[int] = None
    couple1_score: int = 0
    couple2_score: int = 0
    duration_minutes: Optional[int] = None


class MatchResultRequest(BaseModel):
    match_result_status: MatchResultStatus
    games: List[GameInput] = []
    winner_couple_id: Optional[int] = None


class ScheduleRequest(BaseModel):
    court_id: int
    start_time: datetime
    end_time: Optional[datetime] = None


class MatchState(BaseModel):
    id: int
    stage_id: int
    group_id: Optional[int] = None
    bracket_id: Optional[int] = None
    couple1_id: int
    couple2_id: int
    court_id: Optional[int] = None
    court_name: Optional[str] = None
    scheduled_start: Optional[datetime] = None
    scheduled_end: Optional[datetime] = None
    display_order: Optional[int] = None
    is_time_limited: bool = False
    time_limit_minutes: Optional[int] = None
    match_result_status: MatchResultStatus
    winner_couple_id: Optional[int] = None
    games: List[Dict[str, Any]] = []

    class Config:
        from_attributes = True


class MatchResultResponse(BaseModel):
    match: MatchState
    result: Dict[str, Any]
    timer: Dict[str, Any]


class TimerResponse(BaseModel):
    time_remaining: int
    status: str
    total_time: int
    active_match_ids: List[int]
    started_at: Optional[str] = None
    paused_at: Optional[str] = None
    display: str
    band: str
    restored: bool = False
    awaiting_time_expiry: List[int] = []


def match_state(m: Match) -> MatchState:
    return MatchState.model_validate(m)


def _timer_response(service: StagingService) -> TimerResponse:
    return TimerResponse(
        **service.timer.state.to_dict(),
        restored=service.timer.restored,
        awaiting_time_expiry=service.lifecycle.awaiting_time_expiry(),
    )


@router.put("/matches/{match_id}/result", response_model=MatchResultResponse)
async def submit_match_result(
    match_id: int,
    payload: MatchResultRequest,
    service: StagingService = Depends(get_staging_service),
) -> MatchResultResponse:
    """Enter or correct a result. Terminal matches can be re-submitted."""
    games = [g.model_dump(exclude_none=True) for g in payload.games]
    match = await service.submit_result(match_id, payload.match_result_status, games, payload.winner_couple_id)
    return MatchResultResponse(
        match=match_state(match),
        result=summarize_result(match).to_dict(),
        timer=service.timer.state.to_dict(),
    )


@router.put("/matches/{match_id}/schedule", response_model=MatchState)
async def schedule_match(
    match_id: int,
    payload: ScheduleRequest,
    service: StagingService = Depends(get_staging_service),
) -> MatchState:
    match = await service.schedule_match(match_id, payload.court_id, payload.start_time, payload.end_time)
    return match_state(match)


@router.delete("/matches/{match_id}/schedule", response_model=MatchState)
async def unschedule_match(
    match_id: int,
    service: StagingService = Depends(get_staging_service),
) -> MatchState:
    return match_state(await service.unschedule_match(match_id))


# ── Live timer ─────────────────────────────────────────────────────────


@router.get("/timer", response_model=TimerResponse)
async def get_timer(service: StagingService = Depends(get_staging_service)) -> TimerResponse:
    service.timer.tick()
    return _timer_response(service)


@router.post("/timer/start", response_model=TimerResponse)
async def start_timer(service: StagingService = Depends(get_staging_service)) -> TimerResponse:
    service.timer.start()
    return _timer_response(service)


@router.post("/timer/pause", response_model=TimerResponse)
async def pause_timer(service: StagingService = Depends(get_staging_service)) -> TimerResponse:
    service.timer.pause()
    return _timer_response(service)


@router.post("/timer/reset", response_model=TimerResponse)
async def reset_timer(service: StagingService = Depends(get_staging_service)) -> TimerResponse:
    service.timer.reset()
    return _timer_response(service)
