"""
Court Priority Scheduler.

Pure functions over a match list and a "now". No state is kept here; every
view is recomputed from the Entity Store on demand.

Per-court total order (first difference wins):
  1. timing status: in-progress > ended > upcoming > scheduled > not-scheduled
  2. display_order ascending (matches with one sort before those without)
  3. scheduled_start ascending (set before unset)
  4. id ascending

"ended" is a pending match whose scheduled_end has passed without a result.
It still outranks anything that has not started, since its court is occupied
until a result is entered.
"""
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Dict, Iterable, List, Optional, Tuple

from tourney_staging.config import UPCOMING_WINDOW_MINUTES
from tourney_staging.models.match import Match
from tourney_staging.utils.courts import CourtDirectory


class TimingStatus(str, Enum):
    in_progress = "in-progress"
    ended = "ended"
    upcoming = "upcoming"
    scheduled = "scheduled"
    not_scheduled = "not-scheduled"


_STATUS_RANK = {
    TimingStatus.in_progress: 0,
    TimingStatus.ended: 1,
    TimingStatus.upcoming: 2,
    TimingStatus.scheduled: 3,
    TimingStatus.not_scheduled: 4,
}


def timing_status(match: Match, now: datetime, window_minutes: int = UPCOMING_WINDOW_MINUTES) -> TimingStatus:
    start = match.scheduled_start
    if start is None:
        return TimingStatus.not_scheduled
    if now >= start:
        if match.scheduled_end is None or now < match.scheduled_end:
            return TimingStatus.in_progress
        return TimingStatus.ended
    if start - now < timedelta(minutes=window_minutes):
        return TimingStatus.upcoming
    return TimingStatus.scheduled


def priority_key(
    match: Match, now: datetime, window_minutes: int = UPCOMING_WINDOW_MINUTES
) -> Tuple[int, bool, int, bool, datetime, int]:
    return (
        _STATUS_RANK[timing_status(match, now, window_minutes)],
        match.display_order is None,
        match.display_order if match.display_order is not None else 0,
        match.scheduled_start is None,
        match.scheduled_start or datetime.min,
        match.id or 0,
    )


def sort_by_priority(
    matches: Iterable[Match], now: datetime, window_minutes: int = UPCOMING_WINDOW_MINUTES
) -> List[Match]:
    return sorted(matches, key=lambda m: priority_key(m, now, window_minutes))


def court_queues(
    matches: Iterable[Match], now: datetime, window_minutes: int = UPCOMING_WINDOW_MINUTES
) -> Dict[int, List[Match]]:
    """court_id -> pending matches on that court in priority order (courts by id)."""
    by_court: Dict[int, List[Match]] = {}
    for m in matches:
        if m.is_pending and m.court_id is not None:
            by_court.setdefault(m.court_id, []).append(m)
    return {
        court_id: sort_by_priority(by_court[court_id], now, window_minutes) for court_id in sorted(by_court)
    }


def active_matches(
    matches: Iterable[Match], now: datetime, window_minutes: int = UPCOMING_WINDOW_MINUTES
) -> List[Match]:
    """The head of every court queue, ordered by court id."""
    return [queue[0] for queue in court_queues(matches, now, window_minutes).values()]


@dataclass
class MatchBuckets:
    live: List[Match] = field(default_factory=list)
    next: List[Match] = field(default_factory=list)
    upcoming: List[Match] = field(default_factory=list)
    completed: List[Match] = field(default_factory=list)

    def ids(self) -> Dict[str, List[int]]:
        return {
            "live": [m.id for m in self.live],
            "next": [m.id for m in self.next],
            "upcoming": [m.id for m in self.upcoming],
            "completed": [m.id for m in self.completed],
        }


def compute_buckets(
    matches: Iterable[Match], now: datetime, window_minutes: int = UPCOMING_WINDOW_MINUTES
) -> MatchBuckets:
    """
    Tournament-wide partition of matches.

    live:      head of each court queue
    next:      the match right after a live one on the same court, if upcoming
    upcoming:  every other pending match, in priority order
    completed: every non-pending match, newest id first
    """
    matches = list(matches)
    buckets = MatchBuckets()

    for queue in court_queues(matches, now, window_minutes).values():
        buckets.live.append(queue[0])
        if len(queue) > 1 and timing_status(queue[1], now, window_minutes) == TimingStatus.upcoming:
            buckets.next.append(queue[1])

    claimed = {m.id for m in buckets.live} | {m.id for m in buckets.next}
    buckets.upcoming = sort_by_priority(
        (m for m in matches if m.is_pending and m.id not in claimed), now, window_minutes
    )
    buckets.completed = sorted((m for m in matches if not m.is_pending), key=lambda m: m.id or 0, reverse=True)
    return buckets


# ============================================================================
# Per-court board
# ============================================================================


@dataclass
class CourtBoardSlot:
    court_id: int
    court_name: str
    now_playing: Optional[Match] = None
    up_next: Optional[Match] = None
    on_deck: Optional[Match] = None
    queue_length: int = 0


def build_court_board(
    matches: Iterable[Match],
    directory: CourtDirectory,
    now: datetime,
    window_minutes: int = UPCOMING_WINDOW_MINUTES,
) -> List[CourtBoardSlot]:
    """
    One slot per known court plus any court a pending match references.

    Courts without pending matches still get a slot so the board shows every
    court the directory knows about.
    """
    queues = court_queues(matches, now, window_minutes)
    court_ids = sorted({c.id for c in directory.all_courts() if c.id is not None} | set(queues))

    board: List[CourtBoardSlot] = []
    for court_id in court_ids:
        queue = queues.get(court_id, [])
        board.append(
            CourtBoardSlot(
                court_id=court_id,
                court_name=directory.court_name(court_id),
                now_playing=queue[0] if queue else None,
                up_next=queue[1] if len(queue) > 1 else None,
                on_deck=queue[2] if len(queue) > 2 else None,
                queue_length=len(queue),
            )
        )
    return board
