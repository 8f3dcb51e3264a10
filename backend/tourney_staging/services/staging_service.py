"""Staging service.

Wires the Entity Store, the remote client and the five core components into
one object the HTTP layer talks to. It owns stage/group selection (with stale
load cancellation), the stage/group/bracket CRUD round-trips, manual match
scheduling, and keeps the live timer's cohort in step with the match set.
"""

import asyncio
import logging
import random
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from tourney_staging.database import engine
from tourney_staging.errors import StaleSelectionError, ValidationError
from tourney_staging.models.bracket import Bracket
from tourney_staging.models.couple import Couple
from tourney_staging.models.group import StageGroup
from tourney_staging.models.match import Match
from tourney_staging.models.stage import Stage, StageConfig, StageType
from tourney_staging.models.standings import StandingsRow
from tourney_staging.services.assignment_engine import AssignmentEngine, AssignmentMethod, AutoAssignResult
from tourney_staging.services.concurrency import SelectionGuard, StageLocks
from tourney_staging.services.court_scheduler import CourtBoardSlot, MatchBuckets, build_court_board, compute_buckets
from tourney_staging.services.live_timer import FileTimerStorage, TimerCoordinator, TimerState, TimerStorage
from tourney_staging.services.match_generation import MatchGenerationFacade
from tourney_staging.services.match_lifecycle import MatchLifecycle
from tourney_staging.services.match_views import MatchFilters, filter_matches, group_label
from tourney_staging.services.remote_client import RemoteStagingClient, StagingRemote
from tourney_staging.store import EntityStore
from tourney_staging.utils.clock import Clock, to_naive_utc, utc_now
from tourney_staging.utils.courts import CourtDirectory

logger = logging.getLogger(__name__)

STAGE_CONTEXT = "stage"
GROUP_CONTEXT = "group"


@dataclass
class StageBoard:
    stage: Stage
    buckets: MatchBuckets
    courts: List[CourtBoardSlot]
    court_names: Dict[int, str] = field(default_factory=dict)
    awaiting_time_expiry: List[int] = field(default_factory=list)


class StagingService:
    def __init__(
        self,
        store: EntityStore,
        remote: StagingRemote,
        timer_storage: Optional[TimerStorage] = None,
        clock: Clock = utc_now,
        rng: Optional[random.Random] = None,
    ):
        self.store = store
        self.remote = remote
        self.clock = clock
        self.locks = StageLocks()
        self.selection = SelectionGuard()

        self.assignments = AssignmentEngine(store, remote, self.locks, rng)
        self.generation = MatchGenerationFacade(store, remote, self.locks)
        self.lifecycle = MatchLifecycle(store, remote, self.locks, on_change=self._on_match_changed)
        self.timer = TimerCoordinator(
            timer_storage if timer_storage is not None else FileTimerStorage(),
            clock=clock,
            on_expired=self._on_time_expired,
        )

        # Caller-supplied courts, consulted after stage and tournament data
        self.extra_courts: List[Dict[str, Any]] = []
        self._timer_task: Optional[asyncio.Task] = None

    # ========================================================================
    # Lifecycle
    # ========================================================================

    async def startup(self) -> TimerState:
        """
        Restore the stored timer. With no stage loaded yet the stored cohort is
        kept as is; the first stage load re-checks it through refresh_timer.
        """
        pending = self.store.pending_matches()
        state = self.timer.attach(pending or None)
        if self._timer_task is None:
            self._timer_task = asyncio.create_task(self.timer.run())
        return state

    async def shutdown(self) -> None:
        if self._timer_task is not None:
            self._timer_task.cancel()
            try:
                await self._timer_task
            except asyncio.CancelledError:
                pass
            self._timer_task = None
        self.timer.detach()
        if isinstance(self.remote, RemoteStagingClient):
            await self.remote.aclose()

    # ========================================================================
    # Selection (stale loads are dropped)
    # ========================================================================

    async def select_stage(self, stage_id: int) -> Optional[Stage]:
        """
        Load a stage with its groups, brackets, memberships, matches, couples
        and courts. Returns None when a newer selection superseded this one.
        """
        token = self.selection.begin(STAGE_CONTEXT)
        try:
            stage_payload = await self.remote.fetch_stage(stage_id)
            self.selection.check(STAGE_CONTEXT, token)

            tournament_id = stage_payload["tournament_id"]
            groups, brackets, matches, couples, courts = await asyncio.gather(
                self.remote.fetch_stage_groups(stage_id),
                self.remote.fetch_stage_brackets(stage_id),
                self.remote.fetch_stage_matches(stage_id),
                self.remote.fetch_tournament_couples(tournament_id),
                self.remote.fetch_tournament_courts(tournament_id),
            )
            memberships = await asyncio.gather(*(self.remote.fetch_group_couples(g["id"]) for g in groups))
            self.selection.check(STAGE_CONTEXT, token)
        except StaleSelectionError as e:
            logger.debug(f"Dropping stage load: {e}")
            return None

        async with self.locks.hold(stage_id):
            if not self.selection.is_current(STAGE_CONTEXT, token):
                logger.debug(f"Dropping stage load for {stage_id}: superseded while waiting for the stage lock")
                return None
            stage = self.store.upsert_stage(stage_payload)
            self.store.upsert_couples({**c, "tournament_id": c.get("tournament_id", tournament_id)} for c in couples)
            self.store.upsert_courts({**c, "tournament_id": c.get("tournament_id", tournament_id)} for c in courts)
            self.store.replace_stage_groups(stage_id, groups)
            self.store.replace_stage_brackets(stage_id, brackets)
            for group, members in zip(groups, memberships):
                self.store.replace_group_couples(group["id"], members)
            self.store.replace_stage_matches(stage_id, matches)

        logger.info(
            f"Loaded stage {stage_id}: {len(groups)} groups, {len(brackets)} brackets, {len(matches)} matches"
        )
        self.refresh_timer()
        return stage

    async def select_group(self, group_id: int) -> Optional[List[Couple]]:
        """Reload one group's membership. None when superseded."""
        self.store.require_group(group_id)
        token = self.selection.begin(GROUP_CONTEXT)
        try:
            members = await self.remote.fetch_group_couples(group_id)
            self.selection.check(GROUP_CONTEXT, token)
        except StaleSelectionError as e:
            logger.debug(f"Dropping group load: {e}")
            return None
        return self.store.replace_group_couples(group_id, members)

    def cancel_selection(self, context: str = STAGE_CONTEXT) -> None:
        self.selection.cancel(context)

    # ========================================================================
    # Stages, groups, brackets
    # ========================================================================

    async def create_stage(
        self,
        tournament_id: int,
        name: str,
        stage_type: StageType,
        order: int = 0,
        config: Optional[Dict[str, Any]] = None,
    ) -> Stage:
        stage_type = StageType(stage_type)
        try:
            parsed = StageConfig.model_validate(config or {})
        except ValueError as e:
            raise ValidationError(f"Invalid stage config: {e}") from e
        payload = {
            "tournament_id": tournament_id,
            "name": name,
            "stage_type": stage_type.value,
            "order": order,
            "config": parsed.model_dump(),
        }
        created = await self.remote.create_stage(tournament_id, payload)
        stage = self.store.upsert_stage({**payload, **created})
        logger.info(f"Created {stage_type.value} stage {stage.id} in tournament {tournament_id}")
        return stage

    async def update_stage(self, stage_id: int, changes: Dict[str, Any]) -> Stage:
        """Rename/reorder/reconfigure a stage. Its type is fixed at creation."""
        stage = self.store.require_stage(stage_id)
        if "stage_type" in changes and StageType(changes["stage_type"]) != StageType(stage.stage_type):
            raise ValidationError("stage_type cannot change after the stage is created")
        if "config" in changes:
            try:
                changes = {**changes, "config": StageConfig.model_validate(changes["config"] or {}).model_dump()}
            except ValueError as e:
                raise ValidationError(f"Invalid stage config: {e}") from e

        async with self.locks.hold(stage_id):
            updated = await self.remote.update_stage(stage_id, changes)
            stage = self.store.upsert_stage({**stage.model_dump(), **changes, **(updated or {})})
        return stage

    async def delete_stage(self, stage_id: int) -> None:
        self.store.require_stage(stage_id)
        async with self.locks.hold(stage_id):
            await self.remote.delete_stage(stage_id)
            self.store.delete_stage(stage_id)
        logger.info(f"Deleted stage {stage_id}")
        self.refresh_timer()

    async def create_group(self, stage_id: int, name: str) -> StageGroup:
        stage = self.store.require_stage(stage_id)
        if StageType(stage.stage_type) != StageType.group:
            raise ValidationError(f"Stage {stage_id} is an elimination stage; add a bracket instead")
        async with self.locks.hold(stage_id):
            created = await self.remote.create_group(stage_id, name)
            return self.store.upsert_group({"name": name, **created, "stage_id": stage_id})

    async def update_group(self, group_id: int, name: str) -> StageGroup:
        group = self.store.require_group(group_id)
        async with self.locks.hold(group.stage_id):
            await self.remote.update_group(group_id, name)
            return self.store.upsert_group({**group.model_dump(), "name": name})

    async def delete_group(self, group_id: int) -> None:
        group = self.store.require_group(group_id)
        async with self.locks.hold(group.stage_id):
            await self.remote.delete_group(group_id)
            self.store.delete_group(group_id)
        self.refresh_timer()

    async def create_bracket(self, stage_id: int, bracket_type: str = "main") -> Bracket:
        stage = self.store.require_stage(stage_id)
        if StageType(stage.stage_type) != StageType.elimination:
            raise ValidationError(f"Stage {stage_id} is a group stage; add a group instead")
        async with self.locks.hold(stage_id):
            created = await self.remote.create_bracket(stage_id, bracket_type)
            return self.store.upsert_bracket({"bracket_type": bracket_type, **created, "stage_id": stage_id})

    async def delete_bracket(self, bracket_id: int) -> None:
        bracket = self.store.require_bracket(bracket_id)
        async with self.locks.hold(bracket.stage_id):
            await self.remote.delete_bracket(bracket_id)
            self.store.delete_bracket(bracket_id)
        self.refresh_timer()

    # ========================================================================
    # Assignment and generation
    # ========================================================================

    async def assign_couple(self, group_id: int, couple_id: int) -> bool:
        return await self.assignments.assign(group_id, couple_id)

    async def unassign_couple(self, group_id: int, couple_id: int) -> bool:
        return await self.assignments.unassign(group_id, couple_id)

    async def auto_assign(self, stage_id: int, method: AssignmentMethod) -> AutoAssignResult:
        return await self.assignments.auto_assign(stage_id, method)

    async def generate_group_matches(self, group_id: int, confirm: bool = False) -> List[Match]:
        matches = await self.generation.generate_for_group(group_id, confirm=confirm)
        self.refresh_timer()
        return matches

    async def generate_bracket_matches(
        self, bracket_id: int, seed_order: Optional[List[int]] = None, confirm: bool = False
    ) -> List[Match]:
        matches = await self.generation.generate_for_bracket(bracket_id, seed_order, confirm=confirm)
        self.refresh_timer()
        return matches

    # ========================================================================
    # Results and scheduling
    # ========================================================================

    async def submit_result(
        self,
        match_id: int,
        status: str,
        games: Iterable[Dict[str, Any]] = (),
        winner_couple_id: Optional[int] = None,
    ) -> Match:
        return await self.lifecycle.submit_result(match_id, status, games, winner_couple_id)

    async def schedule_match(
        self,
        match_id: int,
        court_id: int,
        start: datetime,
        end: Optional[datetime] = None,
    ) -> Match:
        match = self.store.require_match(match_id)
        start, end = to_naive_utc(start), to_naive_utc(end)
        if end is not None and end <= start:
            raise ValidationError("Scheduled end must be after scheduled start")

        async with self.locks.hold(match.stage_id):
            await self.remote.schedule_match(match_id, court_id, start, end)
            match = self.store.apply_schedule(match_id, court_id, start, end)
        logger.info(f"Scheduled match {match_id} on court {court_id} at {start}")
        self.refresh_timer()
        return match

    async def unschedule_match(self, match_id: int) -> Match:
        match = self.store.require_match(match_id)
        async with self.locks.hold(match.stage_id):
            await self.remote.unschedule_match(match_id)
            match = self.store.apply_schedule(match_id, None, None, None)
        self.refresh_timer()
        return match

    async def group_standings(self, group_id: int) -> List[StandingsRow]:
        self.store.require_group(group_id)
        rows = await self.remote.fetch_group_standings(group_id)
        return [StandingsRow.model_validate(row) for row in rows]

    # ========================================================================
    # Views
    # ========================================================================

    def court_directory(self, stage_id: Optional[int] = None) -> CourtDirectory:
        tournament_id = None
        if stage_id is not None:
            tournament_id = self.store.require_stage(stage_id).tournament_id
        return CourtDirectory.from_sources(
            stage=self.store.stage_court_entries(stage_id),
            tournament=self.store.courts(tournament_id),
            additional=self.extra_courts,
        )

    def match_list(self, stage_id: int, filters: Optional[MatchFilters] = None) -> List[Match]:
        """Stage matches narrowed by the list filters; search covers couple, court and group names."""
        stage = self.store.require_stage(stage_id)
        directory = self.court_directory(stage_id)
        groups = self.store.stage_groups(stage_id)
        couple_names = {c.id: c.name for c in self.store.couples(stage.tournament_id)}
        return filter_matches(
            self.store.stage_matches(stage_id),
            filters or MatchFilters(),
            couple_name=lambda couple_id: couple_names.get(couple_id, ""),
            court_name=lambda m: directory.court_name(m.court_id) if m.court_id is not None else "",
            group_name=lambda m: group_label(m, groups),
        )

    def board(self, stage_id: int) -> StageBoard:
        stage = self.store.require_stage(stage_id)
        matches = self.store.stage_matches(stage_id)
        directory = self.court_directory(stage_id)
        now = self.clock()

        court_ids = sorted({m.court_id for m in matches if m.court_id is not None})
        return StageBoard(
            stage=stage,
            buckets=compute_buckets(matches, now),
            courts=build_court_board(matches, directory, now),
            court_names={court_id: directory.court_name(court_id) for court_id in court_ids},
            awaiting_time_expiry=self.lifecycle.awaiting_time_expiry(),
        )

    # ========================================================================
    # Timer wiring
    # ========================================================================

    def refresh_timer(self) -> bool:
        return self.timer.refresh_cohort(self.store.pending_matches())

    def _on_match_changed(self, match: Match) -> None:
        self.refresh_timer()

    def _on_time_expired(self, match_ids: List[int]) -> None:
        self.lifecycle.mark_time_expired(match_ids)


_staging_service: Optional[StagingService] = None


def get_staging_service() -> StagingService:
    """Get or create the singleton StagingService instance."""
    global _staging_service
    if _staging_service is None:
        _staging_service = StagingService(EntityStore(engine), RemoteStagingClient())
    return _staging_service
