from __future__ import annotations

from typing import Any, Dict, Optional
from urllib.parse import quote

import httpx


RESOURCE_STATE = "state"
RESOURCE_ARCHIVES = "archives"
RESOURCE_SETTINGS = "settings"
RESOURCES = (RESOURCE_STATE, RESOURCE_ARCHIVES, RESOURCE_SETTINGS)

DEFAULT_TIMEOUT = 10.0


class SyncError(RuntimeError):
    """Base error for the room endpoint client."""


class SyncTransportError(SyncError):
    """Timeout or connection failure before an HTTP response arrived."""


class SyncHttpError(SyncError):
    """Endpoint answered with a non-2xx status."""

    def __init__(self, message: str, *, status_code: int) -> None:
        super().__init__(message)
        self.status_code = status_code


class SyncPayloadError(SyncError):
    """Response body was not the expected JSON object."""


def check_resource(resource: str) -> str:
    if resource not in RESOURCES:
        raise ValueError(f"Unknown resource: {resource!r}")
    return resource


class RoomClient:
    """
    Minimal async client for the shared room endpoint.

    Notes
    - `GET  {base}/rooms/{room}/{resource}` returns the stored snapshot, 404 if none.
    - `PUT  {base}/rooms/{room}/{resource}` stores a snapshot; the server answers
      `{ok: true, updatedAt}`.
    - Sends `Authorization: Bearer <token>` when a token is configured.
    - No retries here: the poll loop is the retry policy.
    """

    def __init__(
        self,
        base_url: str,
        room_code: str,
        *,
        auth_token: Optional[str] = None,
        timeout: float = DEFAULT_TIMEOUT,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        if not base_url:
            raise ValueError("base_url is required")
        if not room_code:
            raise ValueError("room_code is required")
        self._base_url = base_url.rstrip("/")
        self._room_code = room_code
        self._auth_token = auth_token or None
        self._timeout = timeout
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=self._timeout)

    @property
    def room_code(self) -> str:
        return self._room_code

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> "RoomClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    def url_for(self, resource: str) -> str:
        check_resource(resource)
        return f"{self._base_url}/rooms/{quote(self._room_code, safe='')}/{resource}"

    # --------------- Public API ---------------
    async def fetch(self, resource: str) -> Optional[Dict[str, Any]]:
        """
        GET the stored snapshot for `resource`.

        Returns the decoded JSON object, or None when the room has no snapshot yet.
        Raises SyncTransportError, SyncHttpError or SyncPayloadError.
        """
        resp = await self._send("GET", resource)
        if resp.status_code == 404:
            return None
        self._raise_for_status(resp, "GET", resource)
        return self._decode(resp, resource)

    async def store(self, resource: str, body: Dict[str, Any]) -> Dict[str, Any]:
        """PUT `body` as the snapshot for `resource`; returns the server's ack object."""
        resp = await self._send("PUT", resource, json_body=body)
        self._raise_for_status(resp, "PUT", resource)
        if not resp.content:
            return {}
        return self._decode(resp, resource)

    # --------------- Internal ---------------
    def _headers(self, *, include_json: bool) -> Dict[str, str]:
        headers = {"Accept": "application/json"}
        if include_json:
            headers["Content-Type"] = "application/json"
        if self._auth_token:
            headers["Authorization"] = f"Bearer {self._auth_token}"
        return headers

    async def _send(
        self, method: str, resource: str, *, json_body: Optional[Dict[str, Any]] = None
    ) -> httpx.Response:
        url = self.url_for(resource)
        try:
            return await self._client.request(
                method,
                url,
                json=json_body,
                headers=self._headers(include_json=json_body is not None),
                timeout=self._timeout,
            )
        except (httpx.TimeoutException, httpx.RequestError) as exc:
            raise SyncTransportError(f"{method} {resource} failed: {exc!r}") from exc

    @staticmethod
    def _raise_for_status(resp: httpx.Response, method: str, resource: str) -> None:
        if 200 <= resp.status_code < 300:
            return
        raise SyncHttpError(
            f"{method} {resource} failed with HTTP {resp.status_code}: {resp.text[:200]}",
            status_code=resp.status_code,
        )

    @staticmethod
    def _decode(resp: httpx.Response, resource: str) -> Dict[str, Any]:
        try:
            data = resp.json()
        except ValueError as exc:  # JSON decode error
            raise SyncPayloadError(f"Failed to parse JSON for {resource}") from exc
        if not isinstance(data, dict):
            raise SyncPayloadError(f"Expected a JSON object for {resource}, got {type(data).__name__}")
        return data


__all__ = [
    "RESOURCES",
    "RESOURCE_ARCHIVES",
    "RESOURCE_SETTINGS",
    "RESOURCE_STATE",
    "RoomClient",
    "SyncError",
    "SyncHttpError",
    "SyncPayloadError",
    "SyncTransportError",
    "check_resource",
]
