"""RemoteStagingClient against an httpx mock transport."""
import json
from datetime import datetime

import httpx
import pytest

from tourney_staging.errors import RemoteError
from tourney_staging.services.remote_client import RemoteStagingClient

pytestmark = pytest.mark.anyio


class Recorder:
    """Mock transport handler: records requests and replays canned responses."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self.responses.pop(0)


def _client(recorder, token="secret"):
    return RemoteStagingClient(
        base_url="http://staging.test/api/", token=token, transport=httpx.MockTransport(recorder)
    )


async def test_bare_list_and_envelope_are_both_accepted():
    recorder = Recorder(
        httpx.Response(200, json=[{"id": 11, "name": "Group A"}]),
        httpx.Response(200, json={"groups": [{"id": 12, "name": "Group B"}]}),
    )
    client = _client(recorder)

    first = await client.fetch_stage_groups(1)
    second = await client.fetch_stage_groups(1)
    await client.aclose()

    assert [g["id"] for g in first + second] == [11, 12]
    assert recorder.requests[0].url.path == "/api/staging/stages/1/groups"


async def test_bearer_token_is_sent():
    recorder = Recorder(httpx.Response(200, json={"id": 1}))
    client = _client(recorder)

    await client.fetch_stage(1)
    await client.aclose()

    assert recorder.requests[0].headers["Authorization"] == "Bearer secret"


async def test_no_token_no_header():
    recorder = Recorder(httpx.Response(200, json={"id": 1}))
    client = _client(recorder, token="")

    await client.fetch_stage(1)
    await client.aclose()

    assert "Authorization" not in recorder.requests[0].headers


async def test_error_status_becomes_remote_error_verbatim():
    recorder = Recorder(httpx.Response(409, json={"detail": "Matches already exist"}))
    client = _client(recorder)

    with pytest.raises(RemoteError) as exc:
        await client.generate_group_matches(11)
    await client.aclose()

    assert exc.value.status_code == 409
    assert exc.value.detail == {"detail": "Matches already exist"}


async def test_non_json_error_body_kept_as_text():
    recorder = Recorder(httpx.Response(502, text="Bad Gateway"))
    client = _client(recorder)

    with pytest.raises(RemoteError) as exc:
        await client.fetch_stage_matches(1)
    await client.aclose()

    assert exc.value.detail == "Bad Gateway"


async def test_transport_failure_becomes_remote_error():
    def refuse(request):
        raise httpx.ConnectError("connection refused", request=request)

    client = RemoteStagingClient(base_url="http://staging.test/api", transport=httpx.MockTransport(refuse))

    with pytest.raises(RemoteError) as exc:
        await client.fetch_stage(1)
    await client.aclose()

    assert exc.value.status_code is None


async def test_no_content_returns_none():
    recorder = Recorder(httpx.Response(204))
    client = _client(recorder)

    assert await client.delete_group(11) is None
    await client.aclose()

    assert recorder.requests[0].method == "DELETE"


async def test_unexpected_shape_is_rejected():
    recorder = Recorder(httpx.Response(200, json={"items": []}))
    client = _client(recorder)

    with pytest.raises(RemoteError):
        await client.fetch_stage_matches(1)
    await client.aclose()


async def test_schedule_and_seeded_generation_bodies():
    recorder = Recorder(
        httpx.Response(200, json={"id": 100, "court_id": 5}),
        httpx.Response(200, json={"matches": []}),
    )
    client = _client(recorder)

    await client.schedule_match(100, 5, datetime(2026, 3, 14, 10, 0))
    await client.generate_bracket_matches(21, seeds=[4, 3, 2, 1])
    await client.aclose()

    schedule, generate = recorder.requests
    assert schedule.url.path == "/api/staging/matches/100/schedule"
    assert json.loads(schedule.content) == {
        "court_id": 5,
        "start_time": "2026-03-14T10:00:00.000Z",
        "end_time": None,
    }
    assert json.loads(generate.content) == {"couple_ids": [4, 3, 2, 1]}
