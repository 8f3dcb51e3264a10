"""
Coordination primitives for the staging core.

StageLocks serialises mutations per stage so two assignment or generation
requests never interleave on the same groups. SelectionGuard is a generation
counter: a load only lands if nothing newer was selected while it was in flight.
"""
import asyncio
import logging
from collections import defaultdict
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, Hashable

from tourney_staging.errors import StaleSelectionError

logger = logging.getLogger(__name__)


class StageLocks:
    def __init__(self) -> None:
        self._locks: Dict[int, asyncio.Lock] = defaultdict(asyncio.Lock)

    @asynccontextmanager
    async def hold(self, stage_id: int) -> AsyncIterator[None]:
        lock = self._locks[stage_id]
        if lock.locked():
            logger.debug(f"Waiting for in-flight mutation on stage {stage_id}")
        async with lock:
            yield


class SelectionGuard:
    """Per-context generation counter (e.g. "stage", "group")."""

    def __init__(self) -> None:
        self._generation: Dict[Hashable, int] = defaultdict(int)

    def begin(self, context: Hashable) -> int:
        self._generation[context] += 1
        return self._generation[context]

    def cancel(self, context: Hashable) -> None:
        """Invalidate whatever load is in flight for the context."""
        self._generation[context] += 1

    def is_current(self, context: Hashable, token: int) -> bool:
        return self._generation[context] == token

    def check(self, context: Hashable, token: int) -> None:
        if not self.is_current(context, token):
            raise StaleSelectionError(f"Load for {context!r} (generation {token}) superseded")
