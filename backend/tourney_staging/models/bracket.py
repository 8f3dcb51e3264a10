from typing import Optional

from sqlmodel import Field, SQLModel


class Bracket(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    stage_id: int = Field(foreign_key="stage.id", index=True)
    bracket_type: str  # "main" | "consolation" | "gold" | "silver" | ...
    has_matches: bool = Field(default=False)

    @property
    def display_name(self) -> str:
        return f"{self.bracket_type[:1].upper()}{self.bracket_type[1:]} Bracket"
