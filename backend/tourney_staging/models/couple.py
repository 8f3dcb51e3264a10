from typing import Any, Dict, Optional

from sqlalchemy import JSON
from sqlalchemy import UniqueConstraint as SAUniqueConstraint
from sqlmodel import Column, Field, SQLModel


class Couple(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    tournament_id: Optional[int] = Field(default=None, index=True)
    name: str
    first_player_id: Optional[int] = Field(default=None)
    second_player_id: Optional[int] = Field(default=None)
    first_player: Optional[Dict[str, Any]] = Field(default=None, sa_column=Column(JSON, nullable=True))
    second_player: Optional[Dict[str, Any]] = Field(default=None, sa_column=Column(JSON, nullable=True))

    # Insertion order into the store; stable tiebreak for balanced assignment
    position: int = Field(default=0, index=True)


class GroupCouple(SQLModel, table=True):
    __tablename__ = "group_couple"
    __table_args__ = (
        # A couple belongs to at most one group within a stage
        SAUniqueConstraint("stage_id", "couple_id", name="uq_stage_couple"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    stage_id: int = Field(foreign_key="stage.id", index=True)
    group_id: int = Field(foreign_key="stage_group.id", index=True)
    couple_id: int = Field(foreign_key="couple.id")
