"""
Live Timer Coordinator: one shared countdown for the active time-limited matches.

The cohort is the scheduler's head match on every court, kept only when that
match is time-limited. A cohort change resets the countdown to not-started with
the first cohort match's limit. Otherwise a running countdown carries on.

State is written to a TimerStorage on every tick and every control, stamped
with lastUpdated. Restoring a running timer subtracts the wall-clock time since
lastUpdated, so a reload neither loses nor double-counts time.

The coordinator never touches Match rows. On expiry it hands the cohort ids to
the on_expired callback and the caller decides what to do with them.
"""
import asyncio
import logging
import math
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional, Protocol, Tuple

from pydantic import BaseModel, ConfigDict, Field as PydanticField, field_serializer, field_validator

from tourney_staging.config import (
    TIMER_DEFAULT_LIMIT_MINUTES,
    TIMER_STATE_PATH,
    TIMER_TICK_SECONDS,
    UPCOMING_WINDOW_MINUTES,
)
from tourney_staging.models.match import Match
from tourney_staging.services.court_scheduler import active_matches
from tourney_staging.utils.clock import Clock, format_iso, parse_iso, utc_now

logger = logging.getLogger(__name__)


class TimerStatus(str, Enum):
    not_started = "not-started"
    running = "running"
    paused = "paused"
    expired = "expired"


class PersistedTimerState(BaseModel):
    """On-disk schema. Keys are camelCase; datetimes are ISO-8601 UTC."""

    model_config = ConfigDict(populate_by_name=True)

    time_remaining: int = PydanticField(alias="timeRemaining", ge=0)
    status: TimerStatus
    started_at: Optional[datetime] = PydanticField(default=None, alias="startedAt")
    paused_at: Optional[datetime] = PydanticField(default=None, alias="pausedAt")
    total_time: int = PydanticField(alias="totalTime", ge=0)
    active_match_ids: List[int] = PydanticField(default_factory=list, alias="activeMatchIds")
    last_updated: datetime = PydanticField(alias="lastUpdated")

    @field_validator("started_at", "paused_at", "last_updated", mode="before")
    @classmethod
    def _naive_utc(cls, value: Any) -> Any:
        if value is None or isinstance(value, (str, datetime)):
            return parse_iso(value)
        return value

    @field_serializer("started_at", "paused_at", "last_updated")
    def _iso(self, value: Optional[datetime]) -> Optional[str]:
        return format_iso(value)


# ============================================================================
# Storage port
# ============================================================================


class TimerStorage(Protocol):
    def load(self) -> Optional[str]: ...

    def save(self, raw: str) -> None: ...

    def clear(self) -> None: ...


class InMemoryTimerStorage:
    def __init__(self, raw: Optional[str] = None):
        self.raw = raw

    def load(self) -> Optional[str]:
        return self.raw

    def save(self, raw: str) -> None:
        self.raw = raw

    def clear(self) -> None:
        self.raw = None


class FileTimerStorage:
    """Timer state as a single JSON file (TIMER_STATE_PATH by default)."""

    def __init__(self, path: str = TIMER_STATE_PATH):
        self.path = Path(path)

    def load(self) -> Optional[str]:
        if not self.path.exists():
            return None
        return self.path.read_text(encoding="utf-8")

    def save(self, raw: str) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(raw, encoding="utf-8")

    def clear(self) -> None:
        self.path.unlink(missing_ok=True)


# ============================================================================
# Display helpers
# ============================================================================


def format_time(seconds: int) -> str:
    """MM:SS, minutes zero-padded to two digits."""
    seconds = max(0, int(seconds))
    return f"{seconds // 60:02d}:{seconds % 60:02d}"


def time_band(time_remaining: int, total_time: int) -> str:
    """ok above 50% left, warning above 20%, critical below that."""
    if total_time <= 0:
        return "critical"
    percentage = time_remaining / total_time * 100
    if percentage > 50:
        return "ok"
    if percentage > 20:
        return "warning"
    return "critical"


# ============================================================================
# Coordinator
# ============================================================================


@dataclass
class TimerState:
    time_remaining: int
    status: TimerStatus
    total_time: int
    active_match_ids: List[int] = field(default_factory=list)
    started_at: Optional[datetime] = None
    paused_at: Optional[datetime] = None

    @classmethod
    def fresh(cls, total_time: int, active_match_ids: List[int]) -> "TimerState":
        return cls(
            time_remaining=total_time,
            status=TimerStatus.not_started,
            total_time=total_time,
            active_match_ids=list(active_match_ids),
        )

    def to_persisted(self, now: datetime) -> PersistedTimerState:
        return PersistedTimerState(
            time_remaining=self.time_remaining,
            status=self.status,
            started_at=self.started_at,
            paused_at=self.paused_at,
            total_time=self.total_time,
            active_match_ids=list(self.active_match_ids),
            last_updated=now,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "time_remaining": self.time_remaining,
            "status": self.status.value,
            "total_time": self.total_time,
            "active_match_ids": list(self.active_match_ids),
            "started_at": format_iso(self.started_at),
            "paused_at": format_iso(self.paused_at),
            "display": format_time(self.time_remaining),
            "band": time_band(self.time_remaining, self.total_time),
        }


def _same_cohort(a: Iterable[int], b: Iterable[int]) -> bool:
    return sorted(a) == sorted(b)


class TimerCoordinator:
    def __init__(
        self,
        storage: TimerStorage,
        clock: Clock = utc_now,
        on_expired: Optional[Callable[[List[int]], None]] = None,
        default_limit_minutes: int = TIMER_DEFAULT_LIMIT_MINUTES,
        window_minutes: int = UPCOMING_WINDOW_MINUTES,
        tick_seconds: float = TIMER_TICK_SECONDS,
    ):
        self.storage = storage
        self.clock = clock
        self.on_expired = on_expired
        self.default_limit_minutes = default_limit_minutes
        self.window_minutes = window_minutes
        self.tick_seconds = tick_seconds

        self.state = TimerState.fresh(default_limit_minutes * 60, [])
        self.restored = False
        self.attached = False
        self._last_tick: Optional[datetime] = None

    # ------------------------------------------------------------------
    # Cohort
    # ------------------------------------------------------------------

    def cohort_for(self, matches: Iterable[Match]) -> Tuple[List[int], int]:
        """(cohort match ids, total seconds) for the current pending set."""
        cohort = [m for m in active_matches(matches, self.clock(), self.window_minutes) if m.has_time_limit]
        if not cohort:
            return [], self.default_limit_minutes * 60

        limits = sorted({m.time_limit_minutes for m in cohort})
        if len(limits) > 1:
            logger.warning(
                f"Cohort {[m.id for m in cohort]} mixes time limits {limits}; "
                f"using {cohort[0].time_limit_minutes} min from match {cohort[0].id}"
            )
        return [m.id for m in cohort], cohort[0].time_limit_minutes * 60

    def refresh_cohort(self, matches: Iterable[Match]) -> bool:
        """Recompute the cohort. Returns True when the timer was reset."""
        ids, total = self.cohort_for(matches)
        if not _same_cohort(ids, self.state.active_match_ids):
            logger.info(f"Timer cohort changed {self.state.active_match_ids} -> {ids}; resetting to {total}s")
            self.state = TimerState.fresh(total, ids)
            self._last_tick = None
            self._persist()
            return True

        self.state.active_match_ids = ids
        self._persist()
        return False

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def _persist(self) -> None:
        # Only detach clears storage; an empty cohort is still written.
        try:
            self.storage.save(self.state.to_persisted(self.clock()).model_dump_json(by_alias=True))
        except OSError as e:
            logger.error(f"Could not persist timer state: {e}")

    def _clear_storage(self) -> None:
        try:
            self.storage.clear()
        except OSError as e:
            logger.error(f"Could not clear timer state: {e}")

    def _load_persisted(self) -> Optional[PersistedTimerState]:
        try:
            raw = self.storage.load()
        except OSError as e:
            logger.error(f"Could not read timer state: {e}")
            return None
        if not raw:
            return None
        try:
            return PersistedTimerState.model_validate_json(raw)
        except ValueError as e:
            logger.warning(f"Discarding malformed timer state: {e}")
            return None

    def attach(self, matches: Optional[Iterable[Match]] = None) -> TimerState:
        """
        Restore persisted state (reload / reattach).

        When `matches` is given, a stored cohort that no longer matches the
        current one is dropped in favour of a fresh timer. A running timer
        loses the wall-clock seconds since lastUpdated; reaching zero restores
        as expired and fires on_expired.
        """
        now = self.clock()
        if matches is not None:
            ids, total = self.cohort_for(matches)
        else:
            ids, total = list(self.state.active_match_ids), self.state.total_time
        state = TimerState.fresh(total, ids)
        self.restored = False

        data = self._load_persisted()
        if data is not None and matches is not None and not _same_cohort(data.active_match_ids, ids):
            logger.info(f"Stored timer cohort {data.active_match_ids} is stale (current {ids}); starting fresh")
            data = None

        if data is not None:
            remaining, status = data.time_remaining, data.status
            if status == TimerStatus.running:
                elapsed = max(0, math.floor((now - data.last_updated).total_seconds()))
                remaining = max(0, remaining - elapsed)
                if remaining == 0:
                    status = TimerStatus.expired
            state = TimerState(
                time_remaining=remaining,
                status=status,
                total_time=data.total_time,
                active_match_ids=list(ids if matches is not None else data.active_match_ids),
                started_at=data.started_at,
                paused_at=data.paused_at,
            )
            self.restored = status in (TimerStatus.running, TimerStatus.paused)

        self.state = state
        self.attached = True
        self._last_tick = now if state.status == TimerStatus.running else None
        self._persist()

        if state.status == TimerStatus.expired and state.active_match_ids:
            self._fire_expired()
        return self.state

    def detach(self) -> None:
        """Unmount. Running or paused state stays in storage for the next attach."""
        if self.state.status in (TimerStatus.not_started, TimerStatus.expired):
            self._clear_storage()
        self.attached = False
        self._last_tick = None

    # ------------------------------------------------------------------
    # Controls
    # ------------------------------------------------------------------

    def start(self) -> TimerState:
        if self.state.status not in (TimerStatus.not_started, TimerStatus.paused):
            logger.debug(f"Ignoring start while {self.state.status.value}")
            return self.state
        if not self.state.active_match_ids or self.state.time_remaining <= 0:
            logger.debug("Ignoring start: no time-limited matches are active")
            return self.state

        now = self.clock()
        self.state.status = TimerStatus.running
        self.state.started_at = self.state.started_at or now
        self.state.paused_at = None
        self._last_tick = now
        self._persist()
        logger.info(f"Timer started for matches {self.state.active_match_ids} ({self.state.time_remaining}s left)")
        return self.state

    def pause(self) -> TimerState:
        if self.state.status != TimerStatus.running:
            logger.debug(f"Ignoring pause while {self.state.status.value}")
            return self.state
        self.tick()
        if self.state.status != TimerStatus.running:
            return self.state

        self.state.status = TimerStatus.paused
        self.state.paused_at = self.clock()
        self._last_tick = None
        self._persist()
        return self.state

    def reset(self) -> TimerState:
        self.state = TimerState.fresh(self.state.total_time, self.state.active_match_ids)
        self._last_tick = None
        self._persist()
        return self.state

    def tick(self) -> TimerState:
        """Count down by the whole seconds elapsed since the last tick."""
        if self.state.status != TimerStatus.running or self._last_tick is None:
            return self.state

        elapsed = math.floor((self.clock() - self._last_tick).total_seconds())
        if elapsed <= 0:
            return self.state

        self._last_tick += timedelta(seconds=elapsed)
        self.state.time_remaining = max(0, self.state.time_remaining - elapsed)
        if self.state.time_remaining == 0:
            self.state.status = TimerStatus.expired
            self._last_tick = None
            self._persist()
            logger.info(f"Timer expired for matches {self.state.active_match_ids}")
            self._fire_expired()
            return self.state

        self._persist()
        return self.state

    def _fire_expired(self) -> None:
        if self.on_expired is not None:
            self.on_expired(list(self.state.active_match_ids))

    async def run(self) -> None:
        """Tick forever; cancel the task to stop."""
        while True:
            await asyncio.sleep(self.tick_seconds)
            try:
                self.tick()
            except Exception:
                logger.exception("Timer tick failed")
