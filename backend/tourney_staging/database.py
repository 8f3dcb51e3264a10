from pathlib import Path
from typing import Optional

from sqlalchemy.engine import Engine
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel, create_engine

from tourney_staging.config import DATABASE_URL, SQL_ECHO


def build_engine(url: Optional[str] = None, echo: bool = SQL_ECHO) -> Engine:
    """Create the engine backing the Entity Store.

    In-memory SQLite uses StaticPool so every session sees the same database.
    """
    url = url or DATABASE_URL
    if not url.startswith("sqlite"):
        return create_engine(url, echo=echo)

    db_path = url.replace("sqlite:///", "", 1)
    in_memory = url in ("sqlite://", "sqlite:///:memory:")
    if not in_memory:
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        return create_engine(url, echo=echo, connect_args={"check_same_thread": False})

    return create_engine(
        url,
        echo=echo,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )


engine: Engine = build_engine()


def init_db(target: Optional[Engine] = None) -> None:
    """Create all Entity Store tables"""
    # Import all models to ensure they're registered with SQLModel metadata
    from tourney_staging.models.bracket import Bracket  # noqa: F401
    from tourney_staging.models.couple import Couple, GroupCouple  # noqa: F401
    from tourney_staging.models.court import Court  # noqa: F401
    from tourney_staging.models.group import StageGroup  # noqa: F401
    from tourney_staging.models.match import Match  # noqa: F401
    from tourney_staging.models.stage import Stage  # noqa: F401

    SQLModel.metadata.create_all(target or engine)
