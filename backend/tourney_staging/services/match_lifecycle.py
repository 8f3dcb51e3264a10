"""
Match Lifecycle State Machine: result entry for a single match.

    pending -> completed | time_expired | forfeited

Terminal states are re-enterable: submitting again on a finished match
re-runs the same transition, which is how referee mistakes get corrected.

Derived fields (per-game winner, match winner) come only from the pure
functions below; callers never compute them on their own.

A transition is written to the remote service first and lands in the store
only after that write succeeds.
"""
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Set, Union

from tourney_staging.errors import ValidationError
from tourney_staging.models.match import TERMINAL_STATUSES, Game, Match, MatchResultStatus
from tourney_staging.services.concurrency import StageLocks
from tourney_staging.services.remote_client import StagingRemote
from tourney_staging.store import EntityStore

logger = logging.getLogger(__name__)

GameInput = Union[Game, Mapping[str, Any]]


@dataclass(frozen=True)
class GameTally:
    couple1_games: int
    couple2_games: int
    undecided: int  # tied games count for nobody


@dataclass(frozen=True)
class MatchResult:
    status: MatchResultStatus
    games: List[Game]
    winner_couple_id: Optional[int]

    def to_payload(self) -> Dict[str, Any]:
        return {
            "games": [g.model_dump() for g in self.games],
            "winner_couple_id": self.winner_couple_id,
            "match_result_status": self.status.value,
        }


def derive_game_winner(game: Game, couple1_id: int, couple2_id: int) -> Optional[int]:
    """Higher score wins the game; equal scores leave it undecided."""
    if game.couple1_score > game.couple2_score:
        return couple1_id
    if game.couple2_score > game.couple1_score:
        return couple2_id
    return None


def score_games(games: Iterable[GameInput], couple1_id: int, couple2_id: int) -> List[Game]:
    """Validate raw game input and fill in each game's winner."""
    scored: List[Game] = []
    for index, raw in enumerate(games, start=1):
        data = raw.model_dump() if isinstance(raw, Game) else dict(raw)
        data.setdefault("game_number", index)
        data.pop("winner_id", None)
        try:
            game = Game.model_validate(data)
        except ValueError as e:
            raise ValidationError(f"Invalid score for game {index}: {e}") from e
        scored.append(game.model_copy(update={"winner_id": derive_game_winner(game, couple1_id, couple2_id)}))
    return scored


def tally_games(games: Iterable[Game], couple1_id: int, couple2_id: int) -> GameTally:
    c1 = c2 = undecided = 0
    for game in games:
        if game.winner_id == couple1_id:
            c1 += 1
        elif game.winner_id == couple2_id:
            c2 += 1
        else:
            undecided += 1
    return GameTally(couple1_games=c1, couple2_games=c2, undecided=undecided)


def derive_match_winner(tally: GameTally, couple1_id: int, couple2_id: int) -> Optional[int]:
    """The couple with strictly more game wins; None on a tie."""
    if tally.couple1_games > tally.couple2_games:
        return couple1_id
    if tally.couple2_games > tally.couple1_games:
        return couple2_id
    return None


def build_result(
    match: Match,
    status: Union[MatchResultStatus, str],
    games: Iterable[GameInput] = (),
    winner_couple_id: Optional[int] = None,
    games_per_match: Optional[int] = None,
) -> MatchResult:
    """
    Compute the result a transition would write, without side effects.

    Raises:
        ValidationError if the submission cannot produce a valid terminal result
    """
    try:
        status = MatchResultStatus(status)
    except ValueError as e:
        raise ValidationError(f"Invalid match_result_status: {status}") from e
    if status not in TERMINAL_STATUSES:
        raise ValidationError(f"Cannot submit a result with status {status.value}")

    scored = score_games(games, match.couple1_id, match.couple2_id)
    if games_per_match is not None and len(scored) > games_per_match:
        raise ValidationError(f"{len(scored)} games submitted; this stage plays at most {games_per_match}")

    if status == MatchResultStatus.completed:
        tally = tally_games(scored, match.couple1_id, match.couple2_id)
        winner = derive_match_winner(tally, match.couple1_id, match.couple2_id)
        if winner is None:
            raise ValidationError(
                f"Games are tied {tally.couple1_games}-{tally.couple2_games}; a completed match needs a decisive "
                "winner. Record it as time_expired or forfeited with an explicit winner instead."
            )
        if winner_couple_id is not None and winner_couple_id != winner:
            logger.debug(f"Match {match.id}: submitted winner {winner_couple_id} overridden by game count")
        return MatchResult(status=status, games=scored, winner_couple_id=winner)

    if winner_couple_id is None:
        raise ValidationError(f"winner_couple_id is required when setting status to {status.value}")
    if winner_couple_id not in (match.couple1_id, match.couple2_id):
        raise ValidationError(f"Couple {winner_couple_id} does not play match {match.id}")
    return MatchResult(status=status, games=scored, winner_couple_id=winner_couple_id)


def result_is_consistent(match: Match) -> bool:
    """winner set iff not pending; completed winner agrees with the game count."""
    if match.is_pending:
        return match.winner_couple_id is None
    if match.winner_couple_id is None:
        return False
    if match.match_result_status == MatchResultStatus.completed:
        tally = tally_games(match.game_list(), match.couple1_id, match.couple2_id)
        return derive_match_winner(tally, match.couple1_id, match.couple2_id) == match.winner_couple_id
    return True


class MatchLifecycle:
    def __init__(
        self,
        store: EntityStore,
        remote: StagingRemote,
        locks: StageLocks,
        on_change: Optional[Callable[[Match], None]] = None,
    ):
        self.store = store
        self.remote = remote
        self.locks = locks
        self.on_change = on_change
        self._time_up: Set[int] = set()

    def _games_per_match(self, match: Match) -> Optional[int]:
        stage = self.store.get_stage(match.stage_id)
        if stage is None:
            return None
        return stage.parsed_config().match_rules.games_per_match

    async def submit_result(
        self,
        match_id: int,
        status: Union[MatchResultStatus, str],
        games: Iterable[GameInput] = (),
        winner_couple_id: Optional[int] = None,
    ) -> Match:
        """
        Apply a terminal transition (first submission or re-entry).

        Raises:
            ValidationError on tied completed games or a missing winner (no mutation)
            RemoteError if the service rejects the write (store untouched)
        """
        match = self.store.require_match(match_id)
        result = build_result(match, status, games, winner_couple_id, self._games_per_match(match))
        if not match.is_pending:
            logger.info(f"Match {match_id}: re-submitting {match.match_result_status} as {result.status.value}")

        async with self.locks.hold(match.stage_id):
            await self.remote.update_match(match_id, result.to_payload())
            stored = self.store.apply_result(
                match_id,
                games=[g.model_dump() for g in result.games],
                winner_couple_id=result.winner_couple_id,
                status=result.status,
            )

        self._time_up.discard(match_id)
        logger.info(f"Match {match_id} -> {result.status.value} (winner couple {result.winner_couple_id})")
        if self.on_change is not None:
            self.on_change(stored)
        return stored

    def mark_time_expired(self, match_ids: Iterable[int]) -> List[int]:
        """
        Record that the shared countdown ran out for these matches.

        They still need a time_expired submission with a winner; until then
        they are reported by awaiting_time_expiry().
        """
        flagged = []
        for match_id in match_ids:
            match = self.store.get_match(match_id)
            if match is not None and match.is_pending:
                self._time_up.add(match_id)
                flagged.append(match_id)
        if flagged:
            logger.info(f"Time expired for matches {flagged}; waiting for winners")
        return flagged

    async def expire(self, match_id: int, winner_couple_id: Optional[int], games: Iterable[GameInput] = ()) -> Match:
        return await self.submit_result(match_id, MatchResultStatus.time_expired, games, winner_couple_id)

    def awaiting_time_expiry(self) -> List[int]:
        return sorted(
            mid for mid in self._time_up if (m := self.store.get_match(mid)) is not None and m.is_pending
        )
