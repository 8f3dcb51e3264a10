"""
Assignment Engine: couples into the groups of a stage.

Invariant: a couple belongs to at most one group within a stage. Manual
assignment refuses to move a couple that sits in another group; automatic
assignment only ever touches couples that are unassigned.

Auto-assign methods:
- random:   couples shuffled, then dealt round-robin over the groups
- balanced: couples in insertion order, each dealt to the currently smallest
            group (ties -> lowest group id). From empty groups this is a plain
            round-robin deal and keeps max(size) - min(size) <= 1.
"""
import logging
import random
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Sequence, Tuple

from tourney_staging.errors import AlreadyAssignedError, NoGroupsError, RemoteError
from tourney_staging.models.couple import Couple
from tourney_staging.models.group import StageGroup
from tourney_staging.services.concurrency import StageLocks
from tourney_staging.services.remote_client import StagingRemote
from tourney_staging.store import EntityStore

logger = logging.getLogger(__name__)


class AssignmentMethod(str, Enum):
    balanced = "balanced"
    random = "random"


@dataclass
class AutoAssignResult:
    stage_id: int
    method: AssignmentMethod
    moved: Dict[int, List[int]] = field(default_factory=dict)  # group_id -> couple_ids

    @property
    def moved_count(self) -> int:
        return sum(len(ids) for ids in self.moved.values())

    def to_dict(self) -> Dict:
        return {
            "stage_id": self.stage_id,
            "method": self.method.value,
            "moved_count": self.moved_count,
            "moved": {str(group_id): ids for group_id, ids in self.moved.items()},
        }


def plan_random(
    couples: Sequence[Couple], groups: Sequence[StageGroup], rng: random.Random
) -> Dict[int, List[int]]:
    shuffled = list(couples)
    rng.shuffle(shuffled)
    plan: Dict[int, List[int]] = {g.id: [] for g in groups}
    for index, couple in enumerate(shuffled):
        plan[groups[index % len(groups)].id].append(couple.id)
    return plan


def plan_balanced(
    couples: Sequence[Couple],
    groups: Sequence[StageGroup],
    current_sizes: Optional[Dict[int, int]] = None,
) -> Dict[int, List[int]]:
    sizes = {g.id: (current_sizes or {}).get(g.id, 0) for g in groups}
    order = {g.id: index for index, g in enumerate(groups)}
    plan: Dict[int, List[int]] = {g.id: [] for g in groups}
    for couple in sorted(couples, key=lambda c: (c.position, c.id)):
        target = min(sizes, key=lambda gid: (sizes[gid], order[gid]))
        plan[target].append(couple.id)
        sizes[target] += 1
    return plan


class AssignmentEngine:
    def __init__(
        self,
        store: EntityStore,
        remote: StagingRemote,
        locks: StageLocks,
        rng: Optional[random.Random] = None,
    ):
        self.store = store
        self.remote = remote
        self.locks = locks
        self.rng = rng or random.Random()

    async def assign(self, group_id: int, couple_id: int) -> bool:
        """
        Put a couple into a group.

        Returns False when the couple already is in that group (nothing to do).

        Raises:
            AlreadyAssignedError if the couple sits in another group of the stage
            RemoteError if the service rejects the change (store untouched)
        """
        group = self.store.require_group(group_id)
        self.store.require_couple(couple_id)

        async with self.locks.hold(group.stage_id):
            current = self.store.group_of(group.stage_id, couple_id)
            if current == group_id:
                return False
            if current is not None:
                raise AlreadyAssignedError(couple_id, current)

            await self.remote.add_couple_to_group(group_id, couple_id)
            self.store.add_assignment(group.stage_id, group_id, couple_id)

        logger.info(f"Assigned couple {couple_id} to group {group_id}")
        return True

    async def unassign(self, group_id: int, couple_id: int) -> bool:
        """Remove a couple from a group. Absent assignment is a no-op (returns False)."""
        group = self.store.require_group(group_id)

        async with self.locks.hold(group.stage_id):
            if self.store.group_of(group.stage_id, couple_id) != group_id:
                return False

            await self.remote.remove_couple_from_group(group_id, couple_id)
            self.store.remove_assignment(group_id, couple_id)

        logger.info(f"Removed couple {couple_id} from group {group_id}")
        return True

    async def auto_assign(self, stage_id: int, method: AssignmentMethod) -> AutoAssignResult:
        """
        Deal every unassigned couple of the stage's tournament across its groups.

        Placements are written one by one. A RemoteError part way through
        withdraws the placements already made, remotely and in the store, and
        is then re-raised, so the store ends up as it was before the call.

        Raises:
            NoGroupsError if the stage has no groups
            RemoteError if the service rejects a placement
        """
        method = AssignmentMethod(method)
        stage = self.store.require_stage(stage_id)
        result = AutoAssignResult(stage_id=stage_id, method=method)

        async with self.locks.hold(stage_id):
            groups = self.store.stage_groups(stage_id)
            if not groups:
                raise NoGroupsError(stage_id)

            unassigned = self.store.unassigned_couples(stage_id, stage.tournament_id)
            if not unassigned:
                logger.info(f"Auto-assign on stage {stage_id}: no unassigned couples")
                return result

            if method == AssignmentMethod.random:
                plan = plan_random(unassigned, groups, self.rng)
            else:
                sizes: Dict[int, int] = {}
                for group_id in self.store.stage_assignments(stage_id).values():
                    sizes[group_id] = sizes.get(group_id, 0) + 1
                plan = plan_balanced(unassigned, groups, sizes)

            placed: List[Tuple[int, int]] = []
            try:
                for group in groups:
                    for couple_id in plan[group.id]:
                        await self.remote.add_couple_to_group(group.id, couple_id)
                        self.store.add_assignment(stage_id, group.id, couple_id)
                        placed.append((group.id, couple_id))
                        result.moved.setdefault(group.id, []).append(couple_id)
            except RemoteError:
                await self._withdraw(stage_id, placed)
                raise

        logger.info(f"Auto-assign ({method.value}) on stage {stage_id}: moved {result.moved_count} couples")
        return result

    async def _withdraw(self, stage_id: int, placed: List[Tuple[int, int]]) -> None:
        """Undo a partial auto-assign, newest placement first."""
        logger.warning(f"Auto-assign on stage {stage_id} failed after {len(placed)} placements; withdrawing them")
        for group_id, couple_id in reversed(placed):
            try:
                await self.remote.remove_couple_from_group(group_id, couple_id)
            except RemoteError as e:
                logger.error(f"Could not withdraw couple {couple_id} from group {group_id}: {e}")
            self.store.remove_assignment(group_id, couple_id)
