"""Entity Store: ingestion, scoped views and cascading deletes."""
from datetime import datetime

import pytest

from tourney_staging.errors import NotFoundError
from tourney_staging.models.match import Match, MatchResultStatus
from tourney_staging.models.stage import StageType


def _seed_stage(store, stage_id=1, tournament_id=1):
    store.upsert_stage(
        {"id": stage_id, "tournament_id": tournament_id, "name": "Groups", "stage_type": "group", "extra": "x"}
    )
    store.replace_stage_groups(stage_id, [{"id": 11, "name": "A"}, {"id": 12, "name": "B"}])
    store.upsert_couples(
        [{"id": cid, "tournament_id": tournament_id, "name": f"Couple {cid}"} for cid in (1, 2, 3, 4)]
    )


def test_stage_payload_extras_ignored_and_config_defaults(store):
    _seed_stage(store)
    stage = store.require_stage(1)
    assert StageType(stage.stage_type) == StageType.group
    config = stage.parsed_config()
    assert config.match_rules.games_per_match == 3
    assert config.scoring.win_points == 3
    assert config.advancement_rules.tiebreaker[0] == "wins"


def test_require_missing_entities_raise_not_found(store):
    with pytest.raises(NotFoundError):
        store.require_stage(99)
    with pytest.raises(NotFoundError):
        store.require_match(99)


def test_couples_keep_insertion_order_across_upserts(store):
    _seed_stage(store)
    store.upsert_couples([{"id": 4, "name": "Renamed"}, {"id": 9, "tournament_id": 1, "name": "Late"}])
    couples = store.couples(1)
    assert [c.id for c in couples] == [1, 2, 3, 4, 9]
    renamed = store.require_couple(4)
    assert renamed.name == "Renamed"
    # A payload without tournament_id keeps the stored one
    assert renamed.tournament_id == 1


def test_assignments_and_unassigned_view(store):
    _seed_stage(store)
    store.add_assignment(1, 11, 1)
    store.add_assignment(1, 12, 3)

    assert store.stage_assignments(1) == {1: 11, 3: 12}
    assert store.group_of(1, 3) == 12
    assert [c.id for c in store.unassigned_couples(1, 1)] == [2, 4]
    assert store.remove_assignment(11, 1) is True
    assert store.remove_assignment(11, 1) is False


def test_replace_group_couples_moves_conflicting_membership(store):
    _seed_stage(store)
    store.add_assignment(1, 11, 2)

    members = store.replace_group_couples(12, [{"id": 2, "name": "Couple 2"}, {"id": 4, "name": "Couple 4"}])

    assert [c.id for c in members] == [2, 4]
    assert store.group_of(1, 2) == 12
    assert store.group_couples(11) == []


def test_match_payload_parsing(store):
    _seed_stage(store)
    matches = store.replace_group_matches(
        11,
        [
            {
                "id": 100,
                "couple1_id": 1,
                "couple2_id": 2,
                "scheduled_start": "2026-03-14T10:00:00.000Z",
                "games": [{"couple1_score": 6, "couple2_score": 3}],
                "unknown_field": True,
            }
        ],
    )
    match = matches[0]
    assert match.stage_id == 1
    assert match.group_id == 11
    assert match.scheduled_start == datetime(2026, 3, 14, 10, 0)
    assert match.games[0]["game_number"] == 1
    assert match.is_pending
    assert store.require_group(11).has_matches is True


def test_replace_stage_matches_sets_has_matches_flags(store):
    _seed_stage(store)
    store.replace_stage_matches(
        1,
        [
            {"id": 100, "group_id": 11, "couple1_id": 1, "couple2_id": 2},
            {"id": 101, "group_id": 11, "couple1_id": 3, "couple2_id": 4, "match_result_status": "completed",
             "winner_couple_id": 3},
        ],
    )
    assert store.require_group(11).has_matches is True
    assert store.require_group(12).has_matches is False
    assert [m.id for m in store.pending_matches(1)] == [100]
    assert [m.id for m in store.tournament_matches(1)] == [100, 101]
    assert store.tournament_matches(2) == []


def test_match_with_both_containers_keeps_group(store):
    _seed_stage(store)
    store.upsert_bracket({"id": 21, "stage_id": 1, "bracket_type": "main"})
    store.replace_stage_matches(1, [{"id": 100, "group_id": 11, "bracket_id": 21, "couple1_id": 1, "couple2_id": 2}])
    match = store.require_match(100)
    assert match.group_id == 11
    assert match.bracket_id is None


def test_delete_group_cascades(store):
    _seed_stage(store)
    store.add_assignment(1, 11, 1)
    store.replace_group_matches(11, [{"id": 100, "couple1_id": 1, "couple2_id": 2}])
    store.replace_group_matches(12, [{"id": 101, "couple1_id": 3, "couple2_id": 4}])

    store.delete_group(11)

    assert store.get_group(11) is None
    assert store.group_of(1, 1) is None
    assert store.get_match(100) is None
    assert store.get_match(101) is not None


def test_delete_stage_cascades(store):
    _seed_stage(store)
    store.upsert_bracket({"id": 21, "stage_id": 1, "bracket_type": "main"})
    store.add_assignment(1, 11, 1)
    store.replace_group_matches(11, [{"id": 100, "couple1_id": 1, "couple2_id": 2}])

    store.delete_stage(1)

    assert store.get_stage(1) is None
    assert store.stage_groups(1) == []
    assert store.stage_brackets(1) == []
    assert store.stage_assignments(1) == {}
    assert store.matches(1) == []
    # Couples exist independently of any stage
    assert len(store.couples(1)) == 4


def test_upsert_group_preserves_has_matches(store):
    _seed_stage(store)
    store.replace_group_matches(11, [])
    store.upsert_group({"id": 11, "stage_id": 1, "name": "Renamed"})
    group = store.require_group(11)
    assert group.name == "Renamed"
    assert group.has_matches is True


def test_apply_result_and_schedule(store):
    _seed_stage(store)
    store.replace_group_matches(11, [{"id": 100, "couple1_id": 1, "couple2_id": 2}])

    store.apply_schedule(100, 5, datetime(2026, 3, 14, 10), None)
    store.apply_result(100, [], 2, MatchResultStatus.forfeited)

    match = store.require_match(100)
    assert match.court_id == 5
    assert match.winner_couple_id == 2
    assert match.match_result_status == MatchResultStatus.forfeited


def test_courts_from_nested_tournament_rows(store):
    store.upsert_courts(
        [
            {"id": 7, "tournament_id": 1, "court": {"id": 5, "name": "Center Court"}},
            {"id": 6, "tournament_id": 1, "name": ""},
        ]
    )
    courts = {c.id: c.name for c in store.courts(1)}
    assert courts == {5: "Center Court", 6: "Court 6"}


def test_stage_court_entries_from_match_labels(store):
    _seed_stage(store)
    store.replace_group_matches(
        11,
        [
            {"id": 100, "couple1_id": 1, "couple2_id": 2, "court_id": 5, "court_name": "Pista 5"},
            {"id": 101, "couple1_id": 3, "couple2_id": 4, "court_id": 6},
        ],
    )
    assert store.stage_court_entries(1) == [{"id": 5, "court_name": "Pista 5"}]


def test_schedule_columns_store_naive_utc(store):
    _seed_stage(store)
    store.replace_group_matches(11, [{"id": 100, "couple1_id": 1, "couple2_id": 2}])

    store.apply_schedule(100, 5, datetime(2026, 3, 14, 10), datetime(2026, 3, 14, 10, 45))

    match = store.require_match(100)
    assert (match.scheduled_start, match.scheduled_end) == (datetime(2026, 3, 14, 10), datetime(2026, 3, 14, 10, 45))
    assert match.scheduled_start.tzinfo is None
    columns = Match.__table__.c
    assert columns.scheduled_start.type.timezone is False
    assert columns.scheduled_end.type.timezone is False
