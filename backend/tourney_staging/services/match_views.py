"""Read-only match projections: filtering, labels and result summaries."""
from dataclasses import dataclass, field
from typing import Callable, Iterable, List, Literal, Optional, Sequence

from pydantic import BaseModel, Field as PydanticField

from tourney_staging.models.bracket import Bracket
from tourney_staging.models.group import StageGroup
from tourney_staging.models.match import Match, MatchResultStatus
from tourney_staging.services.match_lifecycle import tally_games

ALL_STATUSES = [s.value for s in MatchResultStatus]

NameLookup = Callable[[Match], str]


class MatchFilters(BaseModel):
    status: List[str] = PydanticField(default_factory=lambda: list(ALL_STATUSES))
    courts: List[int] = PydanticField(default_factory=list)
    groups: List[int] = PydanticField(default_factory=list)
    brackets: List[int] = PydanticField(default_factory=list)
    search: str = ""

    def toggle(self, field_name: Literal["status", "courts", "groups", "brackets"], value) -> "MatchFilters":
        """Copy with `value` added to or removed from one of the list filters."""
        current = list(getattr(self, field_name))
        if value in current:
            current.remove(value)
        else:
            current.append(value)
        return self.model_copy(update={field_name: current})


def active_filter_count(filters: MatchFilters) -> int:
    count = 0
    if len(set(filters.status)) < len(ALL_STATUSES):
        count += 1
    if filters.courts:
        count += 1
    if filters.groups:
        count += 1
    if filters.brackets:
        count += 1
    if filters.search:
        count += 1
    return count


def _blank(_: Match) -> str:
    return ""


def filter_matches(
    matches: Iterable[Match],
    filters: MatchFilters,
    couple_name: Callable[[int], str] = lambda _: "",
    court_name: NameLookup = _blank,
    group_name: NameLookup = _blank,
) -> List[Match]:
    """
    Apply the filters in order: status, court, group, bracket, then search.

    Court/group/bracket filters only exclude matches that carry that field; an
    unscheduled match is not hidden by a court filter.
    """
    needle = filters.search.strip().lower()
    kept = []
    for m in matches:
        if MatchResultStatus(m.match_result_status).value not in filters.status:
            continue
        if filters.courts and m.court_id and m.court_id not in filters.courts:
            continue
        if filters.groups and m.group_id and m.group_id not in filters.groups:
            continue
        if filters.brackets and m.bracket_id and m.bracket_id not in filters.brackets:
            continue
        if needle:
            haystack = (
                str(m.id),
                couple_name(m.couple1_id),
                couple_name(m.couple2_id),
                court_name(m),
                group_name(m),
            )
            if not any(needle in text.lower() for text in haystack):
                continue
        kept.append(m)
    return kept


def group_label(match: Match, groups: Sequence[StageGroup]) -> str:
    if match.group_id is None:
        return ""
    for g in groups:
        if g.id == match.group_id:
            return g.name
    return ""


def bracket_label(match: Match, brackets: Sequence[Bracket]) -> str:
    if match.bracket_id is None:
        return ""
    for b in brackets:
        if b.id == match.bracket_id:
            return b.display_name
    return f"Bracket #{match.bracket_id}"


# ============================================================================
# Result summary
# ============================================================================


@dataclass
class MatchResultSummary:
    type: str  # "no-result" | "winner-only" | "detailed-score"
    winner_couple_id: Optional[int] = None
    couple1_wins: Optional[int] = None
    couple2_wins: Optional[int] = None
    game_scores: List[tuple] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "type": self.type,
            "winner_couple_id": self.winner_couple_id,
            "couple1_wins": self.couple1_wins,
            "couple2_wins": self.couple2_wins,
            "game_scores": [{"couple1_score": a, "couple2_score": b} for a, b in self.game_scores],
        }


def summarize_result(match: Match) -> MatchResultSummary:
    """How a finished match reads on a scoreboard. Only completed matches show scores."""
    if match.match_result_status != MatchResultStatus.completed:
        return MatchResultSummary(type="no-result")

    games = match.game_list()
    if not games:
        if match.winner_couple_id:
            return MatchResultSummary(type="winner-only", winner_couple_id=match.winner_couple_id)
        return MatchResultSummary(type="no-result")

    tally = tally_games(games, match.couple1_id, match.couple2_id)
    return MatchResultSummary(
        type="detailed-score",
        winner_couple_id=match.winner_couple_id,
        couple1_wins=tally.couple1_games,
        couple2_wins=tally.couple2_games,
        game_scores=[(g.couple1_score, g.couple2_score) for g in games],
    )
