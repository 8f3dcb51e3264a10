from typing import Optional

from sqlmodel import Field, SQLModel


class Court(SQLModel, table=True):
    """Tournament-wide court known to the store."""

    id: Optional[int] = Field(default=None, primary_key=True)
    tournament_id: Optional[int] = Field(default=None, index=True)
    name: str
