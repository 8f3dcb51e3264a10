from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field as PydanticField
from sqlalchemy import JSON, DateTime, String
from sqlmodel import Column, Field, SQLModel


class MatchResultStatus(str, Enum):
    pending = "pending"
    completed = "completed"
    time_expired = "time_expired"
    forfeited = "forfeited"


TERMINAL_STATUSES = (
    MatchResultStatus.completed,
    MatchResultStatus.time_expired,
    MatchResultStatus.forfeited,
)


class Game(BaseModel):
    """One game of a match. winner_id is derived from the scores, never entered."""

    game_number: int = PydanticField(ge=1)
    couple1_score: int = PydanticField(default=0, ge=0)
    couple2_score: int = PydanticField(default=0, ge=0)
    winner_id: Optional[int] = None
    duration_minutes: Optional[int] = PydanticField(default=None, ge=0)


class Match(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    stage_id: int = Field(foreign_key="stage.id", index=True)

    # Exactly one container when assigned (group for round-robin, bracket for elimination)
    group_id: Optional[int] = Field(default=None, foreign_key="stage_group.id", index=True)
    bracket_id: Optional[int] = Field(default=None, foreign_key="bracket.id", index=True)

    couple1_id: int
    couple2_id: int

    # Scheduler-owned fields
    court_id: Optional[int] = Field(default=None, index=True)
    court_name: Optional[str] = Field(default=None)  # stage-local court label when the service sends one
    scheduled_start: Optional[datetime] = Field(default=None, sa_column=Column(DateTime, nullable=True))
    scheduled_end: Optional[datetime] = Field(default=None, sa_column=Column(DateTime, nullable=True))
    display_order: Optional[int] = Field(default=None)

    is_time_limited: bool = Field(default=False)
    time_limit_minutes: Optional[int] = Field(default=None)

    # Lifecycle-owned fields
    match_result_status: MatchResultStatus = Field(
        default=MatchResultStatus.pending, sa_column=Column(String, nullable=False, default="pending")
    )
    winner_couple_id: Optional[int] = Field(default=None)
    games: List[Dict[str, Any]] = Field(default_factory=list, sa_column=Column(JSON, nullable=False))

    @property
    def is_pending(self) -> bool:
        return self.match_result_status == MatchResultStatus.pending

    @property
    def has_time_limit(self) -> bool:
        return bool(self.is_time_limited and self.time_limit_minutes and self.time_limit_minutes > 0)

    def game_list(self) -> List[Game]:
        return [Game.model_validate(g) for g in (self.games or [])]
