from typing import Optional

from pydantic import BaseModel, ConfigDict


class StandingsRow(BaseModel):
    """Read-only standings row; the remote service computes it."""

    model_config = ConfigDict(extra="ignore")

    couple_id: int
    couple_name: Optional[str] = None
    position: Optional[int] = None
    matches_played: int = 0
    matches_won: int = 0
    matches_lost: int = 0
    matches_drawn: int = 0
    games_won: int = 0
    games_lost: int = 0
    games_diff: int = 0
    points: int = 0
