from typing import Optional

from sqlmodel import Field, SQLModel


class StageGroup(SQLModel, table=True):
    """Round-robin container of a `group` stage."""

    __tablename__ = "stage_group"

    id: Optional[int] = Field(default=None, primary_key=True)
    stage_id: int = Field(foreign_key="stage.id", index=True)
    name: str

    # Set once matches were generated or ingested; guards re-generation
    has_matches: bool = Field(default=False)
