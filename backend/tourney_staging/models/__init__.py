from tourney_staging.models.bracket import Bracket
from tourney_staging.models.couple import Couple, GroupCouple
from tourney_staging.models.court import Court
from tourney_staging.models.group import StageGroup
from tourney_staging.models.match import TERMINAL_STATUSES, Game, Match, MatchResultStatus
from tourney_staging.models.stage import Stage, StageConfig, StageType
from tourney_staging.models.standings import StandingsRow

__all__ = [
    "Bracket",
    "Couple",
    "Court",
    "Game",
    "GroupCouple",
    "Match",
    "MatchResultStatus",
    "Stage",
    "StageConfig",
    "StageGroup",
    "StageType",
    "StandingsRow",
    "TERMINAL_STATUSES",
]
