"""Remote staging service client.

Thin async wrapper around the staging REST API that owns match generation,
persistence and standings. Every failure is surfaced as RemoteError with the
status code and body the service returned; nothing here retries.
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Protocol, Sequence

import httpx

from tourney_staging.config import STAGING_API_TIMEOUT, STAGING_API_TOKEN, STAGING_API_URL
from tourney_staging.errors import RemoteError
from tourney_staging.utils.clock import format_iso

logger = logging.getLogger(__name__)

Payload = Dict[str, Any]


class StagingRemote(Protocol):
    """Port the core depends on; RemoteStagingClient is the HTTP adapter."""

    async def fetch_stage(self, stage_id: int) -> Payload: ...

    async def create_stage(self, tournament_id: int, payload: Payload) -> Payload: ...

    async def update_stage(self, stage_id: int, payload: Payload) -> Payload: ...

    async def delete_stage(self, stage_id: int) -> None: ...

    async def fetch_stage_groups(self, stage_id: int) -> List[Payload]: ...

    async def create_group(self, stage_id: int, name: str) -> Payload: ...

    async def update_group(self, group_id: int, name: str) -> Payload: ...

    async def delete_group(self, group_id: int) -> None: ...

    async def fetch_stage_brackets(self, stage_id: int) -> List[Payload]: ...

    async def create_bracket(self, stage_id: int, bracket_type: str) -> Payload: ...

    async def delete_bracket(self, bracket_id: int) -> None: ...

    async def fetch_group_couples(self, group_id: int) -> List[Payload]: ...

    async def add_couple_to_group(self, group_id: int, couple_id: int) -> None: ...

    async def remove_couple_from_group(self, group_id: int, couple_id: int) -> None: ...

    async def fetch_tournament_couples(self, tournament_id: int) -> List[Payload]: ...

    async def fetch_tournament_courts(self, tournament_id: int) -> List[Payload]: ...

    async def generate_group_matches(self, group_id: int) -> List[Payload]: ...

    async def generate_bracket_matches(
        self, bracket_id: int, seeds: Optional[Sequence[int]] = None
    ) -> List[Payload]: ...

    async def fetch_stage_matches(self, stage_id: int) -> List[Payload]: ...

    async def update_match(self, match_id: int, payload: Payload) -> Payload: ...

    async def schedule_match(
        self,
        match_id: int,
        court_id: int,
        start_time: datetime,
        end_time: Optional[datetime] = None,
    ) -> Payload: ...

    async def unschedule_match(self, match_id: int) -> Payload: ...

    async def fetch_group_standings(self, group_id: int) -> List[Payload]: ...


def _as_list(data: Any, key: str) -> List[Payload]:
    """Accept both bare lists and {key: [...]} envelopes."""
    if data is None:
        return []
    if isinstance(data, list):
        return data
    if isinstance(data, dict) and isinstance(data.get(key), list):
        return data[key]
    raise RemoteError(f"Unexpected response shape; expected a list of {key}", detail=data)


class RemoteStagingClient:
    """
    HTTP adapter for the staging service.

    Reads its defaults from config (STAGING_API_URL, STAGING_API_TOKEN,
    STAGING_API_TIMEOUT). A custom httpx transport may be injected for tests.
    """

    def __init__(
        self,
        base_url: str = STAGING_API_URL,
        token: str = STAGING_API_TOKEN,
        timeout: float = STAGING_API_TIMEOUT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        headers = {"Accept": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            headers=headers,
            timeout=timeout,
            transport=transport,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        try:
            response = await self._client.request(method, path, **kwargs)
        except httpx.HTTPError as e:
            logger.error(f"Staging service call {method} {path} failed: {e}")
            raise RemoteError(f"{method} {path} failed: {e}") from e

        if response.status_code >= 400:
            try:
                detail = response.json()
            except ValueError:
                detail = response.text
            logger.error(f"Staging service call {method} {path} returned {response.status_code}: {detail}")
            raise RemoteError(
                f"{method} {path} returned {response.status_code}",
                status_code=response.status_code,
                detail=detail,
            )

        if response.status_code == 204 or not response.content:
            return None
        return response.json()

    # Stages

    async def fetch_stage(self, stage_id: int) -> Payload:
        return await self._request("GET", f"/staging/stages/{stage_id}")

    async def create_stage(self, tournament_id: int, payload: Payload) -> Payload:
        return await self._request("POST", f"/staging/tournaments/{tournament_id}/stages", json=payload)

    async def update_stage(self, stage_id: int, payload: Payload) -> Payload:
        return await self._request("PUT", f"/staging/stages/{stage_id}", json=payload)

    async def delete_stage(self, stage_id: int) -> None:
        await self._request("DELETE", f"/staging/stages/{stage_id}")

    # Groups and brackets

    async def fetch_stage_groups(self, stage_id: int) -> List[Payload]:
        return _as_list(await self._request("GET", f"/staging/stages/{stage_id}/groups"), "groups")

    async def create_group(self, stage_id: int, name: str) -> Payload:
        return await self._request("POST", f"/staging/stages/{stage_id}/groups", json={"name": name})

    async def update_group(self, group_id: int, name: str) -> Payload:
        return await self._request("PUT", f"/staging/groups/{group_id}", json={"name": name})

    async def delete_group(self, group_id: int) -> None:
        await self._request("DELETE", f"/staging/groups/{group_id}")

    async def fetch_stage_brackets(self, stage_id: int) -> List[Payload]:
        return _as_list(await self._request("GET", f"/staging/stages/{stage_id}/brackets"), "brackets")

    async def create_bracket(self, stage_id: int, bracket_type: str) -> Payload:
        return await self._request(
            "POST", f"/staging/stages/{stage_id}/brackets", json={"bracket_type": bracket_type}
        )

    async def delete_bracket(self, bracket_id: int) -> None:
        await self._request("DELETE", f"/staging/brackets/{bracket_id}")

    # Couples

    async def fetch_group_couples(self, group_id: int) -> List[Payload]:
        return _as_list(await self._request("GET", f"/staging/groups/{group_id}/couples"), "couples")

    async def add_couple_to_group(self, group_id: int, couple_id: int) -> None:
        await self._request("POST", f"/staging/groups/{group_id}/couples", json={"couple_id": couple_id})

    async def remove_couple_from_group(self, group_id: int, couple_id: int) -> None:
        await self._request("DELETE", f"/staging/groups/{group_id}/couples/{couple_id}")

    async def fetch_tournament_couples(self, tournament_id: int) -> List[Payload]:
        return _as_list(await self._request("GET", f"/tournaments/{tournament_id}/couples"), "couples")

    async def fetch_tournament_courts(self, tournament_id: int) -> List[Payload]:
        return _as_list(await self._request("GET", f"/tournaments/{tournament_id}/courts"), "courts")

    # Matches

    async def generate_group_matches(self, group_id: int) -> List[Payload]:
        data = await self._request("POST", f"/staging/groups/{group_id}/generate-matches")
        return _as_list(data, "matches")

    async def generate_bracket_matches(
        self, bracket_id: int, seeds: Optional[Sequence[int]] = None
    ) -> List[Payload]:
        body = {"couple_ids": list(seeds)} if seeds else None
        data = await self._request("POST", f"/staging/brackets/{bracket_id}/generate-matches", json=body)
        return _as_list(data, "matches")

    async def fetch_stage_matches(self, stage_id: int) -> List[Payload]:
        return _as_list(await self._request("GET", f"/staging/stages/{stage_id}/matches"), "matches")

    async def update_match(self, match_id: int, payload: Payload) -> Payload:
        return await self._request("PUT", f"/staging/matches/{match_id}", json=payload)

    async def schedule_match(
        self,
        match_id: int,
        court_id: int,
        start_time: datetime,
        end_time: Optional[datetime] = None,
    ) -> Payload:
        body = {
            "court_id": court_id,
            "start_time": format_iso(start_time),
            "end_time": format_iso(end_time),
        }
        return await self._request("POST", f"/staging/matches/{match_id}/schedule", json=body)

    async def unschedule_match(self, match_id: int) -> Payload:
        return await self._request("DELETE", f"/staging/matches/{match_id}/schedule")

    async def fetch_group_standings(self, group_id: int) -> List[Payload]:
        return _as_list(await self._request("GET", f"/staging/groups/{group_id}/standings"), "standings")
