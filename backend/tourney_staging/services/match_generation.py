"""
Match Generation Facade.

Asks the remote service to generate the matches of a group or bracket and
swaps the local match set for the response. The remote side is not
idempotent, so re-generating a container that already has matches needs an
explicit confirm. The has-matches flag lives in the store and is not
re-derived from the server on each call.
"""
import logging
from typing import List, Optional, Sequence

from tourney_staging.errors import ConfirmationRequiredError
from tourney_staging.models.match import Match
from tourney_staging.services.concurrency import StageLocks
from tourney_staging.services.remote_client import StagingRemote
from tourney_staging.store import EntityStore

logger = logging.getLogger(__name__)


class MatchGenerationFacade:
    def __init__(self, store: EntityStore, remote: StagingRemote, locks: StageLocks):
        self.store = store
        self.remote = remote
        self.locks = locks

    def requires_confirmation(self, group_id: Optional[int] = None, bracket_id: Optional[int] = None) -> bool:
        if group_id is not None:
            return self.store.require_group(group_id).has_matches
        if bracket_id is not None:
            return self.store.require_bracket(bracket_id).has_matches
        return False

    async def generate_for_group(self, group_id: int, confirm: bool = False) -> List[Match]:
        """
        Generate round-robin matches for a group.

        Raises:
            ConfirmationRequiredError if the group already has matches and confirm is False
            RemoteError verbatim from the service (store untouched)
        """
        group = self.store.require_group(group_id)
        async with self.locks.hold(group.stage_id):
            if self.store.require_group(group_id).has_matches and not confirm:
                raise ConfirmationRequiredError(
                    f"Group {group_id} already has matches; generating again replaces them. Confirm to proceed."
                )
            payloads = await self.remote.generate_group_matches(group_id)
            matches = self.store.replace_group_matches(group_id, payloads)

        logger.info(f"Generated {len(matches)} matches for group {group_id}")
        return matches

    async def generate_for_bracket(
        self,
        bracket_id: int,
        seed_order: Optional[Sequence[int]] = None,
        confirm: bool = False,
    ) -> List[Match]:
        """Generate elimination matches for a bracket, optionally with a seed order of couple ids."""
        bracket = self.store.require_bracket(bracket_id)
        async with self.locks.hold(bracket.stage_id):
            if self.store.require_bracket(bracket_id).has_matches and not confirm:
                raise ConfirmationRequiredError(
                    f"Bracket {bracket_id} already has matches; generating again replaces them. Confirm to proceed."
                )
            payloads = await self.remote.generate_bracket_matches(bracket_id, seed_order)
            matches = self.store.replace_bracket_matches(bracket_id, payloads)

        logger.info(f"Generated {len(matches)} matches for bracket {bracket_id}")
        return matches
