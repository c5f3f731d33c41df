"""httpx implementation of the protocol client against the Matrix client-server API."""

from __future__ import annotations

import asyncio
import logging
import uuid
from typing import Any
from urllib.parse import quote

import httpx

from meetings.errors import ProtocolRequestError
from meetings.protocol.base import ProtocolClient

logger = logging.getLogger(__name__)

CLIENT_API_PREFIX = "/_matrix/client/v3"
RATE_LIMIT_MAX_RETRIES = 3
RATE_LIMIT_BASE_BACKOFF_SECONDS = 1.0


def _q(value: str) -> str:
    return quote(value, safe="")


def _safe_error(response: httpx.Response) -> tuple[str | None, str]:
    try:
        payload = response.json()
    except ValueError:
        payload = None

    if isinstance(payload, dict):
        errcode = payload.get("errcode") if isinstance(payload.get("errcode"), str) else None
        message = payload.get("error")
        if isinstance(message, str) and message.strip():
            return errcode, " ".join(message.split())[:200]
        if errcode:
            return errcode, errcode

    raw_text = response.text.strip()
    if raw_text:
        return None, " ".join(raw_text.split())[:200]
    return None, "Request failed without an error payload"


def _retry_after_seconds(response: httpx.Response, attempt: int) -> float:
    backoff = RATE_LIMIT_BASE_BACKOFF_SECONDS * (2**attempt)
    try:
        payload = response.json()
    except ValueError:
        return backoff
    if isinstance(payload, dict):
        retry_after_ms = payload.get("retry_after_ms")
        if isinstance(retry_after_ms, int | float) and retry_after_ms >= 0:
            return retry_after_ms / 1000
    return backoff


class MatrixClient(ProtocolClient):
    """Bearer-authenticated client for a single homeserver account."""

    def __init__(
        self,
        homeserver_url: str,
        access_token: str,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._base_url = homeserver_url.rstrip("/")
        self._access_token = access_token
        self._owns_http_client = http_client is None
        self._http_client = http_client or httpx.AsyncClient(timeout=30.0)
        self._user_id: str | None = None

    async def _request_json(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        json_body: dict[str, Any] | None = None,
    ) -> Any:
        url = f"{self._base_url}{CLIENT_API_PREFIX}{path}"
        headers = {"Authorization": f"Bearer {self._access_token}"}

        response = await self._send(method, url, params=params, json_body=json_body, headers=headers)
        attempt = 0
        while response.status_code == 429 and attempt < RATE_LIMIT_MAX_RETRIES:
            backoff = _retry_after_seconds(response, attempt)
            logger.warning(
                "Homeserver rate-limited %s %s, retrying in %.1fs (attempt %d/%d)",
                method,
                path,
                backoff,
                attempt + 1,
                RATE_LIMIT_MAX_RETRIES,
            )
            await asyncio.sleep(backoff)
            response = await self._send(
                method, url, params=params, json_body=json_body, headers=headers
            )
            attempt += 1

        if response.status_code < 200 or response.status_code >= 300:
            errcode, message = _safe_error(response)
            raise ProtocolRequestError(
                status_code=response.status_code, message=message, errcode=errcode
            )

        try:
            return response.json()
        except ValueError as exc:
            raise ProtocolRequestError(
                status_code=response.status_code,
                message="Homeserver returned invalid JSON for a successful response",
            ) from exc

    async def _send(
        self,
        method: str,
        url: str,
        *,
        params: dict[str, Any] | None,
        json_body: dict[str, Any] | None,
        headers: dict[str, str],
    ) -> httpx.Response:
        try:
            return await self._http_client.request(
                method, url, params=params, json=json_body, headers=headers
            )
        except httpx.HTTPError as exc:
            raise ProtocolRequestError(status_code=503, message=f"Request failed: {exc}") from exc

    async def get_user_id(self) -> str:
        if self._user_id is None:
            payload = await self._request_json("GET", "/account/whoami")
            self._user_id = payload["user_id"]
        return self._user_id

    async def get_user_profile(self, user_id: str) -> dict[str, Any]:
        return await self._request_json("GET", f"/profile/{_q(user_id)}")

    async def get_room_state(self, room_id: str) -> list[dict[str, Any]]:
        return await self._request_json("GET", f"/rooms/{_q(room_id)}/state")

    async def get_room_state_event(
        self, room_id: str, event_type: str, state_key: str = ""
    ) -> dict[str, Any]:
        return await self._request_json(
            "GET", f"/rooms/{_q(room_id)}/state/{_q(event_type)}/{_q(state_key)}"
        )

    async def create_room(self, options: dict[str, Any]) -> str | None:
        payload = await self._request_json("POST", "/createRoom", json_body=options)
        return payload.get("room_id") if isinstance(payload, dict) else None

    async def send_state_event(
        self, room_id: str, event_type: str, state_key: str, content: dict[str, Any]
    ) -> str:
        payload = await self._request_json(
            "PUT",
            f"/rooms/{_q(room_id)}/state/{_q(event_type)}/{_q(state_key)}",
            json_body=content,
        )
        return payload.get("event_id", "")

    async def send_event(self, room_id: str, event_type: str, content: dict[str, Any]) -> str:
        txn_id = uuid.uuid4().hex
        payload = await self._request_json(
            "PUT",
            f"/rooms/{_q(room_id)}/send/{_q(event_type)}/{txn_id}",
            json_body=content,
        )
        return payload.get("event_id", "")

    async def invite_user(self, room_id: str, user_id: str, reason: str | None = None) -> None:
        body: dict[str, Any] = {"user_id": user_id}
        if reason is not None:
            body["reason"] = reason
        await self._request_json("POST", f"/rooms/{_q(room_id)}/invite", json_body=body)

    async def kick_user(self, room_id: str, user_id: str, reason: str | None = None) -> None:
        body: dict[str, Any] = {"user_id": user_id}
        if reason is not None:
            body["reason"] = reason
        await self._request_json("POST", f"/rooms/{_q(room_id)}/kick", json_body=body)

    async def leave_room(self, room_id: str) -> None:
        await self._request_json("POST", f"/rooms/{_q(room_id)}/leave", json_body={})

    async def shutdown(self) -> None:
        if self._owns_http_client:
            await self._http_client.aclose()
