from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field as PydanticField
from sqlalchemy import JSON, String
from sqlmodel import Column, Field, SQLModel


class StageType(str, Enum):
    group = "group"
    elimination = "elimination"


class ScoringConfig(BaseModel):
    win_points: int = 3
    draw_points: int = 1
    loss_points: int = 0
    game_win_points: int = 0
    game_loss_points: int = 0


class MatchRulesConfig(BaseModel):
    games_per_match: int = PydanticField(default=3, ge=1)
    win_criteria: str = "best_of"  # "best_of" | "all_games" | "time_based"
    time_limited: bool = False
    time_limit_minutes: Optional[int] = PydanticField(default=None, ge=1)
    break_between_matches: int = 0  # minutes


class AdvancementRulesConfig(BaseModel):
    top_n: int = 2
    to_bracket: Optional[str] = "main"
    tiebreaker: List[str] = PydanticField(
        default_factory=lambda: ["wins", "head_to_head", "games_diff", "games_won"]
    )


class SchedulingConfig(BaseModel):
    auto_schedule: bool = False
    overlap_allowed: bool = False
    scheduling_priority: str = "sequential"  # "sequential" | "interleaved"


class StageConfig(BaseModel):
    """Per-stage configuration; the shape is fixed by the stage type."""

    scoring: ScoringConfig = PydanticField(default_factory=ScoringConfig)
    match_rules: MatchRulesConfig = PydanticField(default_factory=MatchRulesConfig)
    advancement_rules: AdvancementRulesConfig = PydanticField(default_factory=AdvancementRulesConfig)
    scheduling: SchedulingConfig = PydanticField(default_factory=SchedulingConfig)


class Stage(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    tournament_id: int = Field(index=True)
    name: str
    stage_type: StageType = Field(sa_column=Column(String, nullable=False))
    order: int = Field(default=0)
    config: Dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON, nullable=False))

    def parsed_config(self) -> StageConfig:
        return StageConfig.model_validate(self.config or {})
