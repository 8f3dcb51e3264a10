"""Assignment Engine: manual assign/unassign and balanced/random auto-assign."""
import random
from collections import Counter
from types import SimpleNamespace

import pytest

from tourney_staging.errors import AlreadyAssignedError, NoGroupsError, RemoteError
from tourney_staging.services.assignment_engine import AssignmentMethod, plan_balanced, plan_random

pytestmark = pytest.mark.anyio


async def _load(service, stage_id=1):
    await service.select_stage(stage_id)
    return service.store


async def test_assign_writes_remote_then_store(service, group_stage):
    store = await _load(service)

    assert await service.assign_couple(11, 1) is True

    assert group_stage.called("add_couple_to_group") == [(11, 1)]
    assert store.group_of(1, 1) == 11


async def test_assign_same_group_is_noop(service, group_stage):
    await _load(service)
    await service.assign_couple(11, 1)

    assert await service.assign_couple(11, 1) is False
    assert len(group_stage.called("add_couple_to_group")) == 1


async def test_assign_to_second_group_raises(service, group_stage):
    store = await _load(service)
    await service.assign_couple(11, 1)

    with pytest.raises(AlreadyAssignedError) as exc:
        await service.assign_couple(12, 1)

    assert exc.value.group_id == 11
    assert store.group_of(1, 1) == 11


async def test_unassign_absent_is_success_without_mutation(service, group_stage):
    store = await _load(service)
    await service.assign_couple(11, 1)

    assert await service.unassign_couple(12, 1) is False
    assert await service.unassign_couple(11, 2) is False

    assert group_stage.called("remove_couple_from_group") == []
    assert store.stage_assignments(1) == {1: 11}


async def test_unassign_then_reassign(service, group_stage):
    store = await _load(service)
    await service.assign_couple(11, 1)

    assert await service.unassign_couple(11, 1) is True
    assert await service.assign_couple(12, 1) is True
    assert store.group_of(1, 1) == 12


async def test_remote_failure_leaves_store_unchanged(service, group_stage):
    store = await _load(service)
    group_stage.fail("add_couple_to_group", status_code=503)

    with pytest.raises(RemoteError) as exc:
        await service.assign_couple(11, 1)

    assert exc.value.status_code == 503
    assert store.group_of(1, 1) is None


async def test_auto_assign_balanced_spreads_evenly(service, group_stage):
    store = await _load(service)

    result = await service.auto_assign(1, AssignmentMethod.balanced)

    assert result.moved_count == 6
    sizes = Counter(store.stage_assignments(1).values())
    assert sizes == {11: 3, 12: 3}
    # Dealt in insertion order
    assert result.moved == {11: [1, 3, 5], 12: [2, 4, 6]}


async def test_auto_assign_balanced_fills_smaller_group_first(service, group_stage):
    group_stage.members[11] = [1, 2]
    store = await _load(service)

    await service.auto_assign(1, "balanced")

    sizes = Counter(store.stage_assignments(1).values())
    assert sizes == {11: 3, 12: 3}
    assert store.group_of(1, 1) == 11
    assert store.group_of(1, 2) == 11


async def test_auto_assign_random_covers_every_couple_once(service, group_stage):
    store = await _load(service)

    result = await service.auto_assign(1, AssignmentMethod.random)

    assigned = store.stage_assignments(1)
    assert sorted(assigned) == [1, 2, 3, 4, 5, 6]
    assert result.moved_count == 6
    assert max(Counter(assigned.values()).values()) - min(Counter(assigned.values()).values()) <= 1


async def test_auto_assign_never_moves_assigned_couples(service, group_stage):
    group_stage.members[12] = [1]
    store = await _load(service)

    result = await service.auto_assign(1, AssignmentMethod.random)

    assert store.group_of(1, 1) == 12
    assert 1 not in [cid for ids in result.moved.values() for cid in ids]


async def test_auto_assign_without_groups_fails_fast(service, remote):
    remote.add_stage(2, tournament_id=1)
    remote.add_couples(1, [1, 2])
    await _load(service, 2)

    with pytest.raises(NoGroupsError):
        await service.auto_assign(2, AssignmentMethod.balanced)
    assert remote.called("add_couple_to_group") == []


async def test_auto_assign_with_nothing_unassigned_is_noop(service, group_stage):
    group_stage.members[11] = [1, 2, 3]
    group_stage.members[12] = [4, 5, 6]
    await _load(service)

    result = await service.auto_assign(1, AssignmentMethod.balanced)

    assert result.moved_count == 0
    assert group_stage.called("add_couple_to_group") == []


async def test_auto_assign_failure_withdraws_partial_placements(service, group_stage):
    group_stage.members[12] = [6]
    store = await _load(service)

    calls = {"n": 0}

    async def fail_on_third():
        calls["n"] += 1
        if calls["n"] == 3:
            group_stage.fail("add_couple_to_group")
        else:
            group_stage.hooks["add_couple_to_group"] = fail_on_third

    group_stage.hooks["add_couple_to_group"] = fail_on_third

    with pytest.raises(RemoteError):
        await service.auto_assign(1, AssignmentMethod.balanced)

    assert store.stage_assignments(1) == {6: 12}
    assert [c.id for c in store.unassigned_couples(1)] == [1, 2, 3, 4, 5]
    assert group_stage.called("remove_couple_from_group") == [(11, 2), (11, 1)]
    assert group_stage.members == {11: [], 12: [6]}


@pytest.mark.parametrize("n_couples,n_groups", [(7, 3), (10, 4), (2, 5), (12, 1)])
def test_plan_balanced_size_spread(n_couples, n_groups):
    couples = [SimpleNamespace(id=i, position=i) for i in range(1, n_couples + 1)]
    groups = [SimpleNamespace(id=100 + g) for g in range(n_groups)]

    plan = plan_balanced(couples, groups)

    sizes = [len(ids) for ids in plan.values()]
    assert max(sizes) - min(sizes) <= 1
    assert sorted(cid for ids in plan.values() for cid in ids) == list(range(1, n_couples + 1))


def test_plan_random_is_seeded():
    couples = [SimpleNamespace(id=i, position=i) for i in range(1, 9)]
    groups = [SimpleNamespace(id=1), SimpleNamespace(id=2)]

    first = plan_random(couples, groups, random.Random(3))
    second = plan_random(couples, groups, random.Random(3))

    assert first == second
    assert sorted(first[1] + first[2]) == list(range(1, 9))
