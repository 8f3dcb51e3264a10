import itertools
import random
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Tuple

import pytest
from fastapi.testclient import TestClient

from tourney_staging.database import build_engine, init_db
from tourney_staging.errors import RemoteError
from tourney_staging.main import app
from tourney_staging.services.live_timer import InMemoryTimerStorage
from tourney_staging.services.staging_service import StagingService, get_staging_service
from tourney_staging.store import EntityStore
from tourney_staging.utils.clock import format_iso

# ============================================================================
# Test Entity Store
# ============================================================================
# 1. Every test gets its own sqlite:// engine; build_engine() uses StaticPool
#    for in-memory SQLite so all sessions of one store share the database
# 2. Tables created explicitly through init_db(engine), not app startup
# 3. The app dependency is overridden with a service built on that store
#    (see client_fixture); startup/shutdown honour the override

T0 = datetime(2026, 3, 14, 10, 0, 0)


class FakeClock:
    """Controllable naive-UTC clock."""

    def __init__(self, now: datetime = T0):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float = 0, minutes: float = 0) -> datetime:
        self.now = self.now + timedelta(seconds=seconds, minutes=minutes)
        return self.now


class FakeRemote:
    """
    In-memory staging service.

    Seed it with the add_* helpers. fail() makes the next call of a method
    raise RemoteError; hooks run before a method returns (used to interleave
    selections).
    """

    def __init__(self):
        self.stages: Dict[int, Dict[str, Any]] = {}
        self.groups: Dict[int, Dict[str, Any]] = {}
        self.brackets: Dict[int, Dict[str, Any]] = {}
        self.couples: Dict[int, Dict[str, Any]] = {}
        self.courts: Dict[int, List[Dict[str, Any]]] = {}
        self.members: Dict[int, List[int]] = {}
        self.matches: Dict[int, Dict[str, Any]] = {}
        self.standings: Dict[int, List[Dict[str, Any]]] = {}
        self.calls: List[Tuple[str, tuple]] = []
        self.failures: Dict[str, RemoteError] = {}
        self.hooks: Dict[str, Callable[[], Awaitable[None]]] = {}
        self._ids = itertools.count(1000)

    # ── seeding ────────────────────────────────────────────────────────

    def add_stage(self, stage_id: int, tournament_id: int = 1, stage_type: str = "group", **extra) -> Dict:
        self.stages[stage_id] = {
            "id": stage_id,
            "tournament_id": tournament_id,
            "name": extra.pop("name", f"Stage {stage_id}"),
            "stage_type": stage_type,
            "order": extra.pop("order", 0),
            "config": extra.pop("config", {}),
            **extra,
        }
        return self.stages[stage_id]

    def add_group(self, group_id: int, stage_id: int, name: Optional[str] = None, couple_ids: Sequence[int] = ()):
        self.groups[group_id] = {"id": group_id, "stage_id": stage_id, "name": name or f"Group {group_id}"}
        self.members[group_id] = list(couple_ids)
        return self.groups[group_id]

    def add_bracket(self, bracket_id: int, stage_id: int, bracket_type: str = "main"):
        self.brackets[bracket_id] = {"id": bracket_id, "stage_id": stage_id, "bracket_type": bracket_type}
        return self.brackets[bracket_id]

    def add_couples(self, tournament_id: int, couple_ids: Sequence[int]) -> None:
        for couple_id in couple_ids:
            self.couples[couple_id] = {
                "id": couple_id,
                "tournament_id": tournament_id,
                "name": f"Couple {couple_id}",
                "first_player_id": couple_id * 10,
                "second_player_id": couple_id * 10 + 1,
            }

    def add_court(self, tournament_id: int, court_id: int, name: str) -> None:
        self.courts.setdefault(tournament_id, []).append({"id": court_id, "name": name})

    def add_match(self, match_id: int, stage_id: int, couple1_id: int, couple2_id: int, **fields) -> Dict:
        payload = {
            "id": match_id,
            "stage_id": stage_id,
            "group_id": None,
            "bracket_id": None,
            "couple1_id": couple1_id,
            "couple2_id": couple2_id,
            "court_id": None,
            "scheduled_start": None,
            "scheduled_end": None,
            "is_time_limited": False,
            "time_limit_minutes": None,
            "match_result_status": "pending",
            "winner_couple_id": None,
            "games": [],
        }
        for key in ("scheduled_start", "scheduled_end"):
            if isinstance(fields.get(key), datetime):
                fields[key] = format_iso(fields[key])
        payload.update(fields)
        self.matches[match_id] = payload
        return payload

    def fail(self, method: str, status_code: int = 500, detail: Any = "staging service unavailable") -> None:
        self.failures[method] = RemoteError(f"{method} failed", status_code=status_code, detail=detail)

    def called(self, method: str) -> List[tuple]:
        return [args for name, args in self.calls if name == method]

    async def _call(self, method: str, *args: Any) -> None:
        self.calls.append((method, args))
        hook = self.hooks.pop(method, None)
        if hook is not None:
            await hook()
        if method in self.failures:
            raise self.failures.pop(method)

    # ── stages ─────────────────────────────────────────────────────────

    async def fetch_stage(self, stage_id):
        await self._call("fetch_stage", stage_id)
        return dict(self.stages[stage_id])

    async def create_stage(self, tournament_id, payload):
        await self._call("create_stage", tournament_id, payload)
        return self.add_stage(next(self._ids), **{**payload, "tournament_id": tournament_id})

    async def update_stage(self, stage_id, payload):
        await self._call("update_stage", stage_id, payload)
        self.stages.setdefault(stage_id, {"id": stage_id}).update(payload)
        return dict(self.stages[stage_id])

    async def delete_stage(self, stage_id):
        await self._call("delete_stage", stage_id)
        self.stages.pop(stage_id, None)

    # ── groups and brackets ────────────────────────────────────────────

    async def fetch_stage_groups(self, stage_id):
        await self._call("fetch_stage_groups", stage_id)
        return [dict(g) for g in self.groups.values() if g["stage_id"] == stage_id]

    async def create_group(self, stage_id, name):
        await self._call("create_group", stage_id, name)
        return dict(self.add_group(next(self._ids), stage_id, name))

    async def update_group(self, group_id, name):
        await self._call("update_group", group_id, name)
        self.groups[group_id]["name"] = name
        return dict(self.groups[group_id])

    async def delete_group(self, group_id):
        await self._call("delete_group", group_id)
        self.groups.pop(group_id, None)
        self.members.pop(group_id, None)

    async def fetch_stage_brackets(self, stage_id):
        await self._call("fetch_stage_brackets", stage_id)
        return [dict(b) for b in self.brackets.values() if b["stage_id"] == stage_id]

    async def create_bracket(self, stage_id, bracket_type):
        await self._call("create_bracket", stage_id, bracket_type)
        return dict(self.add_bracket(next(self._ids), stage_id, bracket_type))

    async def delete_bracket(self, bracket_id):
        await self._call("delete_bracket", bracket_id)
        self.brackets.pop(bracket_id, None)

    # ── couples and courts ─────────────────────────────────────────────

    async def fetch_group_couples(self, group_id):
        await self._call("fetch_group_couples", group_id)
        return [dict(self.couples[cid]) for cid in self.members.get(group_id, [])]

    async def add_couple_to_group(self, group_id, couple_id):
        await self._call("add_couple_to_group", group_id, couple_id)
        self.members.setdefault(group_id, []).append(couple_id)

    async def remove_couple_from_group(self, group_id, couple_id):
        await self._call("remove_couple_from_group", group_id, couple_id)
        self.members[group_id].remove(couple_id)

    async def fetch_tournament_couples(self, tournament_id):
        await self._call("fetch_tournament_couples", tournament_id)
        return [dict(c) for c in self.couples.values() if c["tournament_id"] == tournament_id]

    async def fetch_tournament_courts(self, tournament_id):
        await self._call("fetch_tournament_courts", tournament_id)
        return [dict(c) for c in self.courts.get(tournament_id, [])]

    # ── matches ────────────────────────────────────────────────────────

    async def generate_group_matches(self, group_id):
        await self._call("generate_group_matches", group_id)
        stage_id = self.groups[group_id]["stage_id"]
        for match_id in [mid for mid, m in self.matches.items() if m["group_id"] == group_id]:
            del self.matches[match_id]
        created = []
        for c1, c2 in itertools.combinations(self.members.get(group_id, []), 2):
            created.append(dict(self.add_match(next(self._ids), stage_id, c1, c2, group_id=group_id)))
        return created

    async def generate_bracket_matches(self, bracket_id, seeds=None):
        await self._call("generate_bracket_matches", bracket_id, seeds)
        stage_id = self.brackets[bracket_id]["stage_id"]
        seeds = list(seeds or [])
        created = []
        for i in range(len(seeds) // 2):
            created.append(
                dict(self.add_match(next(self._ids), stage_id, seeds[i], seeds[-1 - i], bracket_id=bracket_id))
            )
        return created

    async def fetch_stage_matches(self, stage_id):
        await self._call("fetch_stage_matches", stage_id)
        return [dict(m) for m in self.matches.values() if m["stage_id"] == stage_id]

    async def update_match(self, match_id, payload):
        await self._call("update_match", match_id, payload)
        self.matches[match_id].update(payload)
        return dict(self.matches[match_id])

    async def schedule_match(self, match_id, court_id, start_time, end_time=None):
        await self._call("schedule_match", match_id, court_id, start_time, end_time)
        self.matches[match_id].update(
            court_id=court_id, scheduled_start=format_iso(start_time), scheduled_end=format_iso(end_time)
        )
        return dict(self.matches[match_id])

    async def unschedule_match(self, match_id):
        await self._call("unschedule_match", match_id)
        self.matches[match_id].update(court_id=None, scheduled_start=None, scheduled_end=None)
        return dict(self.matches[match_id])

    async def fetch_group_standings(self, group_id):
        await self._call("fetch_group_standings", group_id)
        return list(self.standings.get(group_id, []))


# ============================================================================
# Fixtures
# ============================================================================


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture(name="store")
def store_fixture():
    test_engine = build_engine("sqlite://")
    init_db(test_engine)
    yield EntityStore(test_engine)
    test_engine.dispose()


@pytest.fixture(name="remote")
def remote_fixture():
    return FakeRemote()


@pytest.fixture(name="clock")
def clock_fixture():
    return FakeClock()


@pytest.fixture(name="timer_storage")
def timer_storage_fixture():
    return InMemoryTimerStorage()


@pytest.fixture(name="service")
def service_fixture(store, remote, clock, timer_storage):
    return StagingService(store, remote, timer_storage=timer_storage, clock=clock, rng=random.Random(7))


@pytest.fixture(name="group_stage")
def group_stage_fixture(remote):
    """Tournament 1, group stage 1 with two empty groups and six couples."""
    remote.add_stage(1, tournament_id=1, stage_type="group", config={"match_rules": {"games_per_match": 3}})
    remote.add_group(11, 1, "Group A")
    remote.add_group(12, 1, "Group B")
    remote.add_couples(1, [1, 2, 3, 4, 5, 6])
    remote.add_court(1, 5, "Center Court")
    remote.add_court(1, 6, "Court Six")
    return remote


@pytest.fixture(name="client")
def client_fixture(service):
    """TestClient bound to the per-test service.

    Override MUST be set BEFORE TestClient() so startup attaches this service's timer.
    """
    app.dependency_overrides[get_staging_service] = lambda: service

    with TestClient(app) as client:
        yield client

    app.dependency_overrides.clear()