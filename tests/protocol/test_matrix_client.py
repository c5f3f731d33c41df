"""Tests for the httpx Matrix protocol client."""

from __future__ import annotations

import json
from collections.abc import Callable
from unittest.mock import AsyncMock, patch

import httpx
import pytest

from meetings.errors import ProtocolRequestError
from meetings.protocol.matrix import MatrixClient

pytestmark = pytest.mark.unit

HOMESERVER = "https://matrix.example.org"
PREFIX = f"{HOMESERVER}/_matrix/client/v3"


def _make_client(handler: Callable[[httpx.Request], httpx.Response]) -> MatrixClient:
    transport = httpx.MockTransport(handler)
    return MatrixClient(HOMESERVER, "secret-token", http_client=httpx.AsyncClient(transport=transport))


class TestRequests:
    async def test_bearer_auth_and_whoami_is_cached(self):
        requests: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(200, json={"user_id": "@bot:example.org"})

        client = _make_client(handler)
        assert await client.get_user_id() == "@bot:example.org"
        assert await client.get_user_id() == "@bot:example.org"

        assert len(requests) == 1
        assert requests[0].headers["Authorization"] == "Bearer secret-token"
        assert str(requests[0].url) == f"{PREFIX}/account/whoami"

    async def test_path_segments_are_escaped(self):
        requests: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(200, json={"name": "Room"})

        client = _make_client(handler)
        content = await client.get_room_state_event("!room:example.org", "m.room.name")

        assert content == {"name": "Room"}
        assert requests[0].url.raw_path.decode() == (
            "/_matrix/client/v3/rooms/%21room%3Aexample.org/state/m.room.name/"
        )

    async def test_send_state_event(self):
        requests: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(200, json={"event_id": "$abc"})

        client = _make_client(handler)
        event_id = await client.send_state_event(
            "!r:x", "im.vector.modular.widgets", "jitsi", {"type": "jitsi"}
        )

        assert event_id == "$abc"
        assert requests[0].method == "PUT"
        assert json.loads(requests[0].content) == {"type": "jitsi"}

    async def test_send_event_uses_fresh_transaction_ids(self):
        paths: list[str] = []

        def handler(request: httpx.Request) -> httpx.Response:
            paths.append(request.url.path)
            return httpx.Response(200, json={"event_id": "$e"})

        client = _make_client(handler)
        await client.send_event("!r:x", "m.room.message", {"body": "a"})
        await client.send_event("!r:x", "m.room.message", {"body": "b"})

        assert paths[0] != paths[1]
        assert all("/send/m.room.message/" in p for p in paths)

    async def test_html_notice_content(self):
        bodies: list[dict] = []

        def handler(request: httpx.Request) -> httpx.Response:
            bodies.append(json.loads(request.content))
            return httpx.Response(200, json={"event_id": "$e"})

        client = _make_client(handler)
        await client.send_html_notice("!r:x", "<b>hi</b>")

        assert bodies == [
            {
                "msgtype": "m.notice",
                "body": "<b>hi</b>",
                "format": "org.matrix.custom.html",
                "formatted_body": "<b>hi</b>",
            }
        ]

    async def test_kick_with_reason(self):
        bodies: list[dict] = []

        def handler(request: httpx.Request) -> httpx.Response:
            bodies.append(json.loads(request.content))
            return httpx.Response(200, json={})

        client = _make_client(handler)
        await client.kick_user("!r:x", "@u:x", "bye")
        await client.invite_user("!r:x", "@u:x")

        assert bodies == [{"user_id": "@u:x", "reason": "bye"}, {"user_id": "@u:x"}]

    async def test_create_room_returns_id(self):
        client = _make_client(lambda request: httpx.Response(200, json={"room_id": "!new:x"}))
        assert await client.create_room({"name": "Meeting"}) == "!new:x"


class TestErrors:
    async def test_error_payload_is_parsed(self):
        client = _make_client(
            lambda request: httpx.Response(
                404, json={"errcode": "M_NOT_FOUND", "error": "Event not found."}
            )
        )
        with pytest.raises(ProtocolRequestError) as exc_info:
            await client.get_room_state_event("!r:x", "m.room.name")

        error = exc_info.value
        assert error.status_code == 404
        assert error.errcode == "M_NOT_FOUND"
        assert error.message == "Event not found."
        assert error.is_not_found

    async def test_forbidden_is_not_a_missing_event(self):
        client = _make_client(
            lambda request: httpx.Response(403, json={"errcode": "M_FORBIDDEN", "error": "no"})
        )
        with pytest.raises(ProtocolRequestError) as exc_info:
            await client.get_room_state("!r:x")
        assert not exc_info.value.is_not_found

    async def test_plain_text_error(self):
        client = _make_client(lambda request: httpx.Response(502, text="Bad   Gateway"))
        with pytest.raises(ProtocolRequestError, match="Bad Gateway"):
            await client.get_room_state("!r:x")

    async def test_transport_error_becomes_503(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        client = _make_client(handler)
        with pytest.raises(ProtocolRequestError) as exc_info:
            await client.get_room_state("!r:x")
        assert exc_info.value.status_code == 503


class TestRateLimit:
    async def test_retries_after_server_hint(self):
        responses = iter(
            [
                httpx.Response(429, json={"errcode": "M_LIMIT_EXCEEDED", "retry_after_ms": 250}),
                httpx.Response(200, json={"user_id": "@bot:x"}),
            ]
        )
        client = _make_client(lambda request: next(responses))

        with patch("meetings.protocol.matrix.asyncio.sleep", new_callable=AsyncMock) as sleep:
            assert await client.get_user_id() == "@bot:x"
        sleep.assert_awaited_once_with(0.25)

    async def test_gives_up_after_max_retries(self):
        calls = 0

        def handler(request: httpx.Request) -> httpx.Response:
            nonlocal calls
            calls += 1
            return httpx.Response(429, json={"errcode": "M_LIMIT_EXCEEDED"})

        client = _make_client(handler)
        with patch("meetings.protocol.matrix.asyncio.sleep", new_callable=AsyncMock) as sleep:
            with pytest.raises(ProtocolRequestError) as exc_info:
                await client.get_room_state("!r:x")

        assert exc_info.value.status_code == 429
        assert calls == 4
        assert [c.args[0] for c in sleep.await_args_list] == [1.0, 2.0, 4.0]


class TestShutdown:
    async def test_injected_client_is_not_closed(self):
        http_client = httpx.AsyncClient(transport=httpx.MockTransport(lambda r: httpx.Response(200)))
        client = MatrixClient(HOMESERVER, "t", http_client=http_client)
        await client.shutdown()
        assert not http_client.is_closed
        await http_client.aclose()

    async def test_owned_client_is_closed(self):
        client = MatrixClient(HOMESERVER, "t")
        await client.shutdown()
        assert client._http_client.is_closed
