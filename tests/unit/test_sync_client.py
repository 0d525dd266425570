from __future__ import annotations

import asyncio
from typing import Any, Dict

import httpx
import pytest

from sync.client import (
    RoomClient,
    SyncHttpError,
    SyncPayloadError,
    SyncTransportError,
)


BASE = "https://room.example/functions/v1/coin3/"


def _run(handler, coro_fn):
    async def main():
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http:
            rc = RoomClient(BASE, "家族 room", auth_token="tok", client=http)
            return await coro_fn(rc)

    return asyncio.run(main())


def test_url_and_headers():
    calls: Dict[str, Any] = {}

    def handler(request: httpx.Request) -> httpx.Response:
        calls["request"] = request
        return httpx.Response(200, json={"payload": {"coins": 1}, "updatedAt": "2024-01-01T00:00:00.000Z"})

    data = _run(handler, lambda rc: rc.fetch("state"))

    req = calls["request"]
    assert req.method == "GET"
    assert str(req.url) == "https://room.example/functions/v1/coin3/rooms/%E5%AE%B6%E6%97%8F%20room/state"
    assert req.headers["Authorization"] == "Bearer tok"
    assert req.headers["Accept"] == "application/json"
    assert data == {"payload": {"coins": 1}, "updatedAt": "2024-01-01T00:00:00.000Z"}


def test_missing_snapshot_is_none():
    data = _run(lambda _req: httpx.Response(404, json={"error": "nope"}), lambda rc: rc.fetch("archives"))
    assert data is None


def test_store_puts_json_and_returns_ack():
    calls: Dict[str, Any] = {}

    def handler(request: httpx.Request) -> httpx.Response:
        calls["request"] = request
        return httpx.Response(200, json={"ok": True, "updatedAt": "2024-01-01T00:00:00.000Z"})

    body = {"payload": {"jarCapacity": 120}, "updatedAt": "2024-01-01T00:00:00.000Z"}
    ack = _run(handler, lambda rc: rc.store("settings", body))

    req = calls["request"]
    assert req.method == "PUT"
    assert req.headers["Content-Type"] == "application/json"
    assert req.url.path.endswith("/settings")
    assert ack["ok"] is True


def test_store_with_empty_body_returns_empty_ack():
    ack = _run(lambda _req: httpx.Response(204), lambda rc: rc.store("state", {"payload": {}}))
    assert ack == {}


def test_non_2xx_raises_http_error():
    with pytest.raises(SyncHttpError) as ei:
        _run(lambda _req: httpx.Response(401, json={"error": "unauthorized"}), lambda rc: rc.fetch("state"))
    assert ei.value.status_code == 401


@pytest.mark.parametrize(
    "response",
    [
        httpx.Response(200, text="<html>"),
        httpx.Response(200, json=[1, 2, 3]),
    ],
)
def test_bad_json_raises_payload_error(response: httpx.Response):
    with pytest.raises(SyncPayloadError):
        _run(lambda _req: response, lambda rc: rc.fetch("state"))


def test_transport_errors_are_wrapped():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(SyncTransportError):
        _run(handler, lambda rc: rc.fetch("state"))


def test_timeouts_are_wrapped():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("slow", request=request)

    with pytest.raises(SyncTransportError):
        _run(handler, lambda rc: rc.store("state", {"payload": {}}))


def test_unknown_resource_and_missing_config_raise():
    with pytest.raises(ValueError):
        RoomClient("", "room")
    with pytest.raises(ValueError):
        RoomClient(BASE, "")
    rc = RoomClient(BASE, "room", client=httpx.AsyncClient())
    with pytest.raises(ValueError):
        rc.url_for("coins")
