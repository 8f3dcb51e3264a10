"""
Staging: stage selection, stage/group/bracket editing, couple assignment,
match generation and the per-stage court board.
"""
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel

from tourney_staging.models.stage import StageType
from tourney_staging.models.standings import StandingsRow
from tourney_staging.routes.runtime import MatchState, match_state
from tourney_staging.services.assignment_engine import AssignmentMethod
from tourney_staging.services.court_scheduler import CourtBoardSlot
from tourney_staging.services.match_views import (
    ALL_STATUSES,
    MatchFilters,
    bracket_label,
    group_label,
    summarize_result,
)
from tourney_staging.services.staging_service import StagingService, get_staging_service

router = APIRouter()


class StageRead(BaseModel):
    id: int
    tournament_id: int
    name: str
    stage_type: StageType
    order: int = 0
    config: Dict[str, Any] = {}

    class Config:
        from_attributes = True


class GroupRead(BaseModel):
    id: int
    stage_id: int
    name: str
    has_matches: bool = False
    couple_ids: List[int] = []


class BracketRead(BaseModel):
    id: int
    stage_id: int
    bracket_type: str
    name: str
    has_matches: bool = False


class StageSelection(BaseModel):
    stage: StageRead
    groups: List[GroupRead]
    brackets: List[BracketRead]
    unassigned_couple_ids: List[int]
    match_count: int


class StageCreate(BaseModel):
    tournament_id: int
    name: str
    stage_type: StageType
    order: int = 0
    config: Optional[Dict[str, Any]] = None


class StageUpdate(BaseModel):
    name: Optional[str] = None
    order: Optional[int] = None
    stage_type: Optional[StageType] = None
    config: Optional[Dict[str, Any]] = None


class GroupCreate(BaseModel):
    name: str


class BracketCreate(BaseModel):
    bracket_type: str = "main"


class AutoAssignRequest(BaseModel):
    method: AssignmentMethod = AssignmentMethod.balanced


class AssignmentResponse(BaseModel):
    group_id: int
    couple_id: int
    changed: bool


class BracketSeeds(BaseModel):
    seed_order: Optional[List[int]] = None


class GenerateResponse(BaseModel):
    match_count: int
    matches: List[MatchState]


class BoardSlot(BaseModel):
    court_id: int
    court_name: str
    now_playing: Optional[MatchState] = None
    up_next: Optional[MatchState] = None
    on_deck: Optional[MatchState] = None
    queue_length: int = 0


class StageBoardResponse(BaseModel):
    stage_id: int
    live: List[MatchState]
    next: List[MatchState]
    upcoming: List[MatchState]
    completed: List[MatchState]
    board_by_court: List[BoardSlot]
    court_names: Dict[int, str]
    awaiting_time_expiry: List[int] = []


class MatchListItem(BaseModel):
    match: MatchState
    court_name: str
    group_name: str = ""
    bracket_name: str = ""
    result: Dict[str, Any]


def _selection(service: StagingService, stage_id: int) -> StageSelection:
    stage = service.store.require_stage(stage_id)
    groups = [
        GroupRead(
            id=g.id,
            stage_id=g.stage_id,
            name=g.name,
            has_matches=g.has_matches,
            couple_ids=[c.id for c in service.store.group_couples(g.id)],
        )
        for g in service.store.stage_groups(stage_id)
    ]
    brackets = [
        BracketRead(id=b.id, stage_id=b.stage_id, bracket_type=b.bracket_type, name=b.display_name,
                    has_matches=b.has_matches)
        for b in service.store.stage_brackets(stage_id)
    ]
    return StageSelection(
        stage=StageRead.model_validate(stage),
        groups=groups,
        brackets=brackets,
        unassigned_couple_ids=[c.id for c in service.store.unassigned_couples(stage_id, stage.tournament_id)],
        match_count=len(service.store.stage_matches(stage_id)),
    )


def _board_slot(slot: CourtBoardSlot) -> BoardSlot:
    return BoardSlot(
        court_id=slot.court_id,
        court_name=slot.court_name,
        now_playing=match_state(slot.now_playing) if slot.now_playing else None,
        up_next=match_state(slot.up_next) if slot.up_next else None,
        on_deck=match_state(slot.on_deck) if slot.on_deck else None,
        queue_length=slot.queue_length,
    )


# ── Stages ─────────────────────────────────────────────────────────────


@router.post("/stages/{stage_id}/select", response_model=StageSelection)
async def select_stage(stage_id: int, service: StagingService = Depends(get_staging_service)) -> StageSelection:
    """Load a stage from the staging service into the store."""
    stage = await service.select_stage(stage_id)
    if stage is None:
        # A newer selection replaced this one while it was loading
        raise HTTPException(status_code=409, detail="Stage selection superseded")
    return _selection(service, stage_id)


@router.get("/tournaments/{tournament_id}/stages", response_model=List[StageRead])
async def list_stages(tournament_id: int, service: StagingService = Depends(get_staging_service)) -> List[StageRead]:
    """Stages already loaded into the store, by order."""
    return [StageRead.model_validate(s) for s in service.store.tournament_stages(tournament_id)]


@router.get("/stages/{stage_id}", response_model=StageSelection)
async def get_stage(stage_id: int, service: StagingService = Depends(get_staging_service)) -> StageSelection:
    return _selection(service, stage_id)


@router.post("/stages", response_model=StageRead)
async def create_stage(payload: StageCreate, service: StagingService = Depends(get_staging_service)) -> StageRead:
    stage = await service.create_stage(
        payload.tournament_id, payload.name, payload.stage_type, payload.order, payload.config
    )
    return StageRead.model_validate(stage)


@router.patch("/stages/{stage_id}", response_model=StageRead)
async def update_stage(
    stage_id: int, payload: StageUpdate, service: StagingService = Depends(get_staging_service)
) -> StageRead:
    stage = await service.update_stage(stage_id, payload.model_dump(exclude_none=True))
    return StageRead.model_validate(stage)


@router.delete("/stages/{stage_id}")
async def delete_stage(stage_id: int, service: StagingService = Depends(get_staging_service)) -> Dict[str, Any]:
    await service.delete_stage(stage_id)
    return {"deleted": True, "stage_id": stage_id}


@router.get("/stages/{stage_id}/board", response_model=StageBoardResponse)
async def get_stage_board(stage_id: int, service: StagingService = Depends(get_staging_service)) -> StageBoardResponse:
    """Live / next / upcoming / completed buckets plus now playing and up next per court."""
    board = service.board(stage_id)
    return StageBoardResponse(
        stage_id=stage_id,
        live=[match_state(m) for m in board.buckets.live],
        next=[match_state(m) for m in board.buckets.next],
        upcoming=[match_state(m) for m in board.buckets.upcoming],
        completed=[match_state(m) for m in board.buckets.completed],
        board_by_court=[_board_slot(s) for s in board.courts],
        court_names=board.court_names,
        awaiting_time_expiry=board.awaiting_time_expiry,
    )


@router.get("/stages/{stage_id}/matches", response_model=List[MatchListItem])
async def list_matches(
    stage_id: int,
    status: Optional[List[str]] = Query(None),
    court: List[int] = Query([]),
    group: List[int] = Query([]),
    bracket: List[int] = Query([]),
    search: str = "",
    service: StagingService = Depends(get_staging_service),
) -> List[MatchListItem]:
    """Match list with status/court/group/bracket filters and free-text search."""
    filters = MatchFilters(
        status=status or list(ALL_STATUSES), courts=court, groups=group, brackets=bracket, search=search
    )
    matches = service.match_list(stage_id, filters)
    directory = service.court_directory(stage_id)
    groups = service.store.stage_groups(stage_id)
    brackets = service.store.stage_brackets(stage_id)
    return [
        MatchListItem(
            match=match_state(m),
            court_name=directory.court_name(m.court_id),
            group_name=group_label(m, groups),
            bracket_name=bracket_label(m, brackets),
            result=summarize_result(m).to_dict(),
        )
        for m in matches
    ]


# ── Groups and brackets ────────────────────────────────────────────────


@router.post("/stages/{stage_id}/groups", response_model=GroupRead)
async def create_group(
    stage_id: int, payload: GroupCreate, service: StagingService = Depends(get_staging_service)
) -> GroupRead:
    group = await service.create_group(stage_id, payload.name)
    return GroupRead(id=group.id, stage_id=group.stage_id, name=group.name, has_matches=group.has_matches)


@router.patch("/groups/{group_id}", response_model=GroupRead)
async def rename_group(
    group_id: int, payload: GroupCreate, service: StagingService = Depends(get_staging_service)
) -> GroupRead:
    group = await service.update_group(group_id, payload.name)
    return GroupRead(
        id=group.id,
        stage_id=group.stage_id,
        name=group.name,
        has_matches=group.has_matches,
        couple_ids=[c.id for c in service.store.group_couples(group_id)],
    )


@router.delete("/groups/{group_id}")
async def delete_group(group_id: int, service: StagingService = Depends(get_staging_service)) -> Dict[str, Any]:
    await service.delete_group(group_id)
    return {"deleted": True, "group_id": group_id}


@router.post("/stages/{stage_id}/brackets", response_model=BracketRead)
async def create_bracket(
    stage_id: int, payload: BracketCreate, service: StagingService = Depends(get_staging_service)
) -> BracketRead:
    bracket = await service.create_bracket(stage_id, payload.bracket_type)
    return BracketRead(
        id=bracket.id,
        stage_id=bracket.stage_id,
        bracket_type=bracket.bracket_type,
        name=bracket.display_name,
        has_matches=bracket.has_matches,
    )


@router.delete("/brackets/{bracket_id}")
async def delete_bracket(bracket_id: int, service: StagingService = Depends(get_staging_service)) -> Dict[str, Any]:
    await service.delete_bracket(bracket_id)
    return {"deleted": True, "bracket_id": bracket_id}


# ── Couple assignment ──────────────────────────────────────────────────


@router.post("/groups/{group_id}/couples/{couple_id}", response_model=AssignmentResponse)
async def assign_couple(
    group_id: int, couple_id: int, service: StagingService = Depends(get_staging_service)
) -> AssignmentResponse:
    changed = await service.assign_couple(group_id, couple_id)
    return AssignmentResponse(group_id=group_id, couple_id=couple_id, changed=changed)


@router.delete("/groups/{group_id}/couples/{couple_id}", response_model=AssignmentResponse)
async def unassign_couple(
    group_id: int, couple_id: int, service: StagingService = Depends(get_staging_service)
) -> AssignmentResponse:
    changed = await service.unassign_couple(group_id, couple_id)
    return AssignmentResponse(group_id=group_id, couple_id=couple_id, changed=changed)


@router.post("/stages/{stage_id}/auto-assign")
async def auto_assign(
    stage_id: int, payload: AutoAssignRequest, service: StagingService = Depends(get_staging_service)
) -> Dict[str, Any]:
    result = await service.auto_assign(stage_id, payload.method)
    return result.to_dict()


# ── Match generation ───────────────────────────────────────────────────


@router.get("/groups/{group_id}/matches/generate")
async def generation_status(group_id: int, service: StagingService = Depends(get_staging_service)) -> Dict[str, Any]:
    """Whether generating again needs confirmation."""
    return {
        "group_id": group_id,
        "requires_confirmation": service.generation.requires_confirmation(group_id=group_id),
    }


@router.post("/groups/{group_id}/matches/generate", response_model=GenerateResponse)
async def generate_group_matches(
    group_id: int,
    confirm: bool = Query(False),
    service: StagingService = Depends(get_staging_service),
) -> GenerateResponse:
    matches = await service.generate_group_matches(group_id, confirm=confirm)
    return GenerateResponse(match_count=len(matches), matches=[match_state(m) for m in matches])


@router.post("/brackets/{bracket_id}/matches/generate", response_model=GenerateResponse)
async def generate_bracket_matches(
    bracket_id: int,
    payload: Optional[BracketSeeds] = None,
    confirm: bool = Query(False),
    service: StagingService = Depends(get_staging_service),
) -> GenerateResponse:
    seeds = payload.seed_order if payload else None
    matches = await service.generate_bracket_matches(bracket_id, seeds, confirm=confirm)
    return GenerateResponse(match_count=len(matches), matches=[match_state(m) for m in matches])


# ── Standings ──────────────────────────────────────────────────────────


@router.get("/groups/{group_id}/standings", response_model=List[StandingsRow])
async def group_standings(
    group_id: int, service: StagingService = Depends(get_staging_service)
) -> List[StandingsRow]:
    return await service.group_standings(group_id)
