"""
Entity Store: the single in-process source of truth for staging entities.

Entities are keyed by the ids the remote service hands out. Every read returns
detached instances from a short-lived session; every write goes through one of
the mutation methods below, which the core components call after the remote
side has accepted the change. Views never keep their own copies.
"""
import logging
from datetime import datetime
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Type, TypeVar

from sqlalchemy import func
from sqlalchemy.engine import Engine
from sqlmodel import Session, SQLModel, select

from tourney_staging.errors import NotFoundError
from tourney_staging.models.bracket import Bracket
from tourney_staging.models.couple import Couple, GroupCouple
from tourney_staging.models.court import Court
from tourney_staging.models.group import StageGroup
from tourney_staging.models.match import Game, Match, MatchResultStatus
from tourney_staging.models.stage import Stage, StageType
from tourney_staging.utils.clock import parse_iso

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=SQLModel)

_MATCH_DATETIME_FIELDS = ("scheduled_start", "scheduled_end")


def _pick(model: Type[ModelT], payload: Mapping[str, Any]) -> Dict[str, Any]:
    """Keep only the keys the model declares (remote payloads carry extras)."""
    fields = model.model_fields
    return {key: value for key, value in payload.items() if key in fields}


def _normalise_games(games: Optional[Iterable[Any]]) -> List[Dict[str, Any]]:
    normalised = []
    for index, raw in enumerate(games or [], start=1):
        game = raw if isinstance(raw, Game) else Game.model_validate({"game_number": index, **dict(raw)})
        normalised.append(game.model_dump())
    return normalised


def match_from_payload(payload: Mapping[str, Any]) -> Match:
    data = _pick(Match, payload)
    for key in _MATCH_DATETIME_FIELDS:
        if key in data:
            data[key] = parse_iso(data[key])
    data["games"] = _normalise_games(data.get("games"))
    status = data.get("match_result_status") or MatchResultStatus.pending
    data["match_result_status"] = MatchResultStatus(status)
    data["is_time_limited"] = bool(data.get("is_time_limited", False))
    return Match(**data)


def stage_from_payload(payload: Mapping[str, Any]) -> Stage:
    data = _pick(Stage, payload)
    data["stage_type"] = StageType(data["stage_type"])
    data["config"] = dict(data.get("config") or {})
    return Stage(**data)


class EntityStore:
    def __init__(self, engine: Engine):
        self.engine = engine

    def _session(self) -> Session:
        return Session(self.engine, expire_on_commit=False)

    def _get(self, model: Type[ModelT], entity_id: Optional[int]) -> Optional[ModelT]:
        if entity_id is None:
            return None
        with self._session() as session:
            return session.get(model, entity_id)

    def _require(self, model: Type[ModelT], entity_id: int, label: str) -> ModelT:
        entity = self._get(model, entity_id)
        if entity is None:
            raise NotFoundError(f"{label} {entity_id} not found")
        return entity

    # ------------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------------

    def get_stage(self, stage_id: int) -> Optional[Stage]:
        return self._get(Stage, stage_id)

    def require_stage(self, stage_id: int) -> Stage:
        return self._require(Stage, stage_id, "Stage")

    def tournament_stages(self, tournament_id: int) -> List[Stage]:
        with self._session() as session:
            return list(
                session.exec(
                    select(Stage).where(Stage.tournament_id == tournament_id).order_by(Stage.order, Stage.id)
                ).all()
            )

    def upsert_stage(self, payload: Mapping[str, Any]) -> Stage:
        with self._session() as session:
            stage = session.merge(stage_from_payload(payload))
            session.commit()
            return stage

    def delete_stage(self, stage_id: int) -> None:
        """Remove a stage with its groups, brackets, assignments and matches."""
        with self._session() as session:
            for model in (Match, GroupCouple, StageGroup, Bracket):
                for row in session.exec(select(model).where(model.stage_id == stage_id)).all():
                    session.delete(row)
            stage = session.get(Stage, stage_id)
            if stage:
                session.delete(stage)
            session.commit()

    # ------------------------------------------------------------------
    # Groups and brackets
    # ------------------------------------------------------------------

    def get_group(self, group_id: int) -> Optional[StageGroup]:
        return self._get(StageGroup, group_id)

    def require_group(self, group_id: int) -> StageGroup:
        return self._require(StageGroup, group_id, "Group")

    def stage_groups(self, stage_id: int) -> List[StageGroup]:
        with self._session() as session:
            return list(
                session.exec(select(StageGroup).where(StageGroup.stage_id == stage_id).order_by(StageGroup.id)).all()
            )

    def upsert_group(self, payload: Mapping[str, Any]) -> StageGroup:
        with self._session() as session:
            existing = session.get(StageGroup, payload.get("id"))
            group = StageGroup(**_pick(StageGroup, payload))
            if existing is not None and "has_matches" not in payload:
                group.has_matches = existing.has_matches
            group = session.merge(group)
            session.commit()
            return group

    def replace_stage_groups(self, stage_id: int, payloads: Sequence[Mapping[str, Any]]) -> List[StageGroup]:
        """Make the stage's group set equal to what the remote service returned."""
        keep_ids = {p["id"] for p in payloads}
        for group in self.stage_groups(stage_id):
            if group.id not in keep_ids:
                self.delete_group(group.id)
        for payload in payloads:
            self.upsert_group({**payload, "stage_id": stage_id})
        return self.stage_groups(stage_id)

    def delete_group(self, group_id: int) -> None:
        """Remove a group with its couple assignments and generated matches."""
        with self._session() as session:
            for row in session.exec(select(GroupCouple).where(GroupCouple.group_id == group_id)).all():
                session.delete(row)
            for row in session.exec(select(Match).where(Match.group_id == group_id)).all():
                session.delete(row)
            group = session.get(StageGroup, group_id)
            if group:
                session.delete(group)
            session.commit()

    def get_bracket(self, bracket_id: int) -> Optional[Bracket]:
        return self._get(Bracket, bracket_id)

    def require_bracket(self, bracket_id: int) -> Bracket:
        return self._require(Bracket, bracket_id, "Bracket")

    def stage_brackets(self, stage_id: int) -> List[Bracket]:
        with self._session() as session:
            return list(session.exec(select(Bracket).where(Bracket.stage_id == stage_id).order_by(Bracket.id)).all())

    def upsert_bracket(self, payload: Mapping[str, Any]) -> Bracket:
        with self._session() as session:
            existing = session.get(Bracket, payload.get("id"))
            bracket = Bracket(**_pick(Bracket, payload))
            if existing is not None and "has_matches" not in payload:
                bracket.has_matches = existing.has_matches
            bracket = session.merge(bracket)
            session.commit()
            return bracket

    def replace_stage_brackets(self, stage_id: int, payloads: Sequence[Mapping[str, Any]]) -> List[Bracket]:
        keep_ids = {p["id"] for p in payloads}
        for bracket in self.stage_brackets(stage_id):
            if bracket.id not in keep_ids:
                self.delete_bracket(bracket.id)
        for payload in payloads:
            self.upsert_bracket({**payload, "stage_id": stage_id})
        return self.stage_brackets(stage_id)

    def delete_bracket(self, bracket_id: int) -> None:
        with self._session() as session:
            for row in session.exec(select(Match).where(Match.bracket_id == bracket_id)).all():
                session.delete(row)
            bracket = session.get(Bracket, bracket_id)
            if bracket:
                session.delete(bracket)
            session.commit()

    # ------------------------------------------------------------------
    # Couples and assignments
    # ------------------------------------------------------------------

    def get_couple(self, couple_id: int) -> Optional[Couple]:
        return self._get(Couple, couple_id)

    def require_couple(self, couple_id: int) -> Couple:
        return self._require(Couple, couple_id, "Couple")

    def upsert_couples(self, payloads: Iterable[Mapping[str, Any]]) -> List[Couple]:
        """Upsert couples, keeping first-seen insertion order in `position`."""
        stored: List[Couple] = []
        with self._session() as session:
            next_position = (session.exec(select(func.max(Couple.position))).one() or 0) + 1
            for payload in payloads:
                existing = session.get(Couple, payload["id"])
                couple = Couple(**_pick(Couple, payload))
                if existing is not None:
                    couple.position = existing.position
                    if couple.tournament_id is None:
                        couple.tournament_id = existing.tournament_id
                else:
                    couple.position = next_position
                    next_position += 1
                stored.append(session.merge(couple))
            session.commit()
        return stored

    def couples(self, tournament_id: Optional[int] = None) -> List[Couple]:
        query = select(Couple)
        if tournament_id is not None:
            query = query.where(Couple.tournament_id == tournament_id)
        with self._session() as session:
            return list(session.exec(query.order_by(Couple.position, Couple.id)).all())

    def group_couples(self, group_id: int) -> List[Couple]:
        with self._session() as session:
            rows = session.exec(
                select(Couple, GroupCouple)
                .where(GroupCouple.group_id == group_id, GroupCouple.couple_id == Couple.id)
                .order_by(GroupCouple.id)
            ).all()
            return [couple for couple, _ in rows]

    def stage_assignments(self, stage_id: int) -> Dict[int, int]:
        """couple_id -> group_id for every assigned couple of the stage."""
        with self._session() as session:
            rows = session.exec(select(GroupCouple).where(GroupCouple.stage_id == stage_id)).all()
            return {row.couple_id: row.group_id for row in rows}

    def group_of(self, stage_id: int, couple_id: int) -> Optional[int]:
        with self._session() as session:
            row = session.exec(
                select(GroupCouple).where(GroupCouple.stage_id == stage_id, GroupCouple.couple_id == couple_id)
            ).first()
            return row.group_id if row else None

    def add_assignment(self, stage_id: int, group_id: int, couple_id: int) -> GroupCouple:
        with self._session() as session:
            row = GroupCouple(stage_id=stage_id, group_id=group_id, couple_id=couple_id)
            session.add(row)
            session.commit()
            session.refresh(row)
            return row

    def remove_assignment(self, group_id: int, couple_id: int) -> bool:
        with self._session() as session:
            row = session.exec(
                select(GroupCouple).where(GroupCouple.group_id == group_id, GroupCouple.couple_id == couple_id)
            ).first()
            if row is None:
                return False
            session.delete(row)
            session.commit()
            return True

    def replace_group_couples(self, group_id: int, payloads: Sequence[Mapping[str, Any]]) -> List[Couple]:
        """Make the group's membership equal to the remote list.

        A couple listed here that the store still has in a sibling group is
        moved; the remote membership is authoritative on load.
        """
        group = self.require_group(group_id)
        self.upsert_couples(payloads)
        incoming = [p["id"] for p in payloads]
        with self._session() as session:
            for row in session.exec(select(GroupCouple).where(GroupCouple.group_id == group_id)).all():
                session.delete(row)
            for row in session.exec(
                select(GroupCouple).where(
                    GroupCouple.stage_id == group.stage_id,
                    GroupCouple.couple_id.in_(incoming),  # type: ignore[attr-defined]
                )
            ).all():
                logger.warning(
                    f"Couple {row.couple_id} listed in group {group_id} but stored in group {row.group_id}; moving"
                )
                session.delete(row)
            session.flush()
            for couple_id in incoming:
                session.add(GroupCouple(stage_id=group.stage_id, group_id=group_id, couple_id=couple_id))
            session.commit()
        return self.group_couples(group_id)

    def unassigned_couples(self, stage_id: int, tournament_id: Optional[int] = None) -> List[Couple]:
        """Couples not in any group of the stage, in insertion order."""
        assigned = self.stage_assignments(stage_id)
        return [c for c in self.couples(tournament_id) if c.id not in assigned]

    # ------------------------------------------------------------------
    # Matches
    # ------------------------------------------------------------------

    def get_match(self, match_id: int) -> Optional[Match]:
        return self._get(Match, match_id)

    def require_match(self, match_id: int) -> Match:
        return self._require(Match, match_id, "Match")

    def matches(self, stage_id: Optional[int] = None) -> List[Match]:
        query = select(Match)
        if stage_id is not None:
            query = query.where(Match.stage_id == stage_id)
        with self._session() as session:
            return list(session.exec(query.order_by(Match.id)).all())

    def stage_matches(self, stage_id: int) -> List[Match]:
        return self.matches(stage_id)

    def tournament_matches(self, tournament_id: int) -> List[Match]:
        with self._session() as session:
            rows = session.exec(
                select(Match, Stage)
                .where(Match.stage_id == Stage.id, Stage.tournament_id == tournament_id)
                .order_by(Match.id)
            ).all()
            return [match for match, _ in rows]

    def pending_matches(self, stage_id: Optional[int] = None) -> List[Match]:
        return [m for m in self.matches(stage_id) if m.is_pending]

    def group_matches(self, group_id: int) -> List[Match]:
        with self._session() as session:
            return list(session.exec(select(Match).where(Match.group_id == group_id).order_by(Match.id)).all())

    def bracket_matches(self, bracket_id: int) -> List[Match]:
        with self._session() as session:
            return list(session.exec(select(Match).where(Match.bracket_id == bracket_id).order_by(Match.id)).all())

    def _insert_matches(self, session: Session, payloads: Iterable[Mapping[str, Any]], **overrides: Any) -> None:
        for payload in payloads:
            match = match_from_payload({**payload, **overrides})
            if match.group_id is not None and match.bracket_id is not None:
                logger.warning(f"Match {match.id} references both group and bracket; keeping group")
                match.bracket_id = None
            session.merge(match)

    def replace_stage_matches(self, stage_id: int, payloads: Sequence[Mapping[str, Any]]) -> List[Match]:
        """Swap the whole stage match set and refresh the has-matches flags."""
        with self._session() as session:
            for row in session.exec(select(Match).where(Match.stage_id == stage_id)).all():
                session.delete(row)
            session.flush()
            self._insert_matches(session, payloads, stage_id=stage_id)
            session.flush()

            inserted = session.exec(select(Match).where(Match.stage_id == stage_id)).all()
            group_ids = {m.group_id for m in inserted if m.group_id is not None}
            bracket_ids = {m.bracket_id for m in inserted if m.bracket_id is not None}
            for group in session.exec(select(StageGroup).where(StageGroup.stage_id == stage_id)).all():
                group.has_matches = group.id in group_ids
                session.add(group)
            for bracket in session.exec(select(Bracket).where(Bracket.stage_id == stage_id)).all():
                bracket.has_matches = bracket.id in bracket_ids
                session.add(bracket)
            session.commit()
        return self.matches(stage_id)

    def replace_group_matches(self, group_id: int, payloads: Sequence[Mapping[str, Any]]) -> List[Match]:
        group = self.require_group(group_id)
        with self._session() as session:
            for row in session.exec(select(Match).where(Match.group_id == group_id)).all():
                session.delete(row)
            session.flush()
            self._insert_matches(session, payloads, stage_id=group.stage_id, group_id=group_id, bracket_id=None)
            group = session.get(StageGroup, group_id)
            group.has_matches = True
            session.add(group)
            session.commit()
        return self.group_matches(group_id)

    def replace_bracket_matches(self, bracket_id: int, payloads: Sequence[Mapping[str, Any]]) -> List[Match]:
        bracket = self.require_bracket(bracket_id)
        with self._session() as session:
            for row in session.exec(select(Match).where(Match.bracket_id == bracket_id)).all():
                session.delete(row)
            session.flush()
            self._insert_matches(session, payloads, stage_id=bracket.stage_id, bracket_id=bracket_id, group_id=None)
            bracket = session.get(Bracket, bracket_id)
            bracket.has_matches = True
            session.add(bracket)
            session.commit()
        return self.bracket_matches(bracket_id)

    def apply_result(
        self,
        match_id: int,
        games: List[Dict[str, Any]],
        winner_couple_id: Optional[int],
        status: MatchResultStatus,
    ) -> Match:
        with self._session() as session:
            match = session.get(Match, match_id)
            if match is None:
                raise NotFoundError(f"Match {match_id} not found")
            match.games = list(games)
            match.winner_couple_id = winner_couple_id
            match.match_result_status = status
            session.add(match)
            session.commit()
            return match

    def apply_schedule(
        self,
        match_id: int,
        court_id: Optional[int],
        scheduled_start: Optional[datetime],
        scheduled_end: Optional[datetime],
    ) -> Match:
        with self._session() as session:
            match = session.get(Match, match_id)
            if match is None:
                raise NotFoundError(f"Match {match_id} not found")
            match.court_id = court_id
            match.scheduled_start = scheduled_start
            match.scheduled_end = scheduled_end
            session.add(match)
            session.commit()
            return match

    # ------------------------------------------------------------------
    # Courts
    # ------------------------------------------------------------------

    def upsert_courts(self, payloads: Iterable[Mapping[str, Any]]) -> List[Court]:
        stored = []
        with self._session() as session:
            for payload in payloads:
                data = dict(payload)
                # Tournament court rows nest the venue court under "court"
                nested = data.get("court")
                if isinstance(nested, Mapping):
                    data = {**data, "id": nested.get("id", data.get("court_id")), "name": nested.get("name")}
                if not data.get("name"):
                    data["name"] = data.get("court_name") or f"Court {data['id']}"
                stored.append(session.merge(Court(**_pick(Court, data))))
            session.commit()
        return stored

    def courts(self, tournament_id: Optional[int] = None) -> List[Court]:
        query = select(Court)
        if tournament_id is not None:
            query = query.where(Court.tournament_id == tournament_id)
        with self._session() as session:
            return list(session.exec(query.order_by(Court.id)).all())

    def stage_court_entries(self, stage_id: Optional[int] = None) -> List[Dict[str, Any]]:
        """Court labels the stage's own match data carries (stage-local source)."""
        entries: Dict[int, Dict[str, Any]] = {}
        for match in self.matches(stage_id):
            if match.court_id and match.court_name and match.court_id not in entries:
                entries[match.court_id] = {"id": match.court_id, "court_name": match.court_name}
        return list(entries.values())
