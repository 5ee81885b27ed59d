"""
Unit tests for the Socket.IO connection registry and user-directed emits.

A user usually holds one socket per namespace; events addressed to a
namespace must only reach the sockets connected to it.
"""

from unittest.mock import AsyncMock

import pytest

from servicetrack.api.deps import create_access_token
from servicetrack.realtime import socketServer
from servicetrack.realtime.socketServer import (
    connect_location,
    connect_orders,
    get_sid_meta,
    get_user_sids,
    send_to_user,
    unregister,
)

from tests.conftest import PROVIDER_ID

pytestmark = pytest.mark.asyncio

USER = str(PROVIDER_ID)


@pytest.fixture(autouse=True)
def registry(monkeypatch) -> AsyncMock:
    monkeypatch.setattr(socketServer, "_user_sids", {})
    monkeypatch.setattr(socketServer, "_sid_meta", {})
    emit = AsyncMock()
    monkeypatch.setattr(socketServer.sio, "emit", emit)
    monkeypatch.setattr(socketServer.sio, "enter_room", AsyncMock())
    return emit


def _auth() -> dict[str, str]:
    return {"token": create_access_token(PROVIDER_ID, "provider")}


async def _connect_both() -> None:
    assert await connect_orders("orders-sid", {}, _auth()) is True
    assert await connect_location("location-sid", {}, _auth()) is True


class TestRegistry:

    async def test_sessions_are_kept_per_namespace(self):
        await _connect_both()
        assert get_user_sids(USER, "/orders") == {"orders-sid"}
        assert get_user_sids(USER, "/location") == {"location-sid"}
        assert get_sid_meta("location-sid")["namespace"] == "/location"

    async def test_disconnect_only_drops_its_namespace(self):
        await _connect_both()
        assert unregister("location-sid") == USER
        assert get_user_sids(USER, "/location") == set()
        assert get_user_sids(USER, "/orders") == {"orders-sid"}
        assert unregister("location-sid") is None

    async def test_invalid_token_is_rejected(self):
        assert await connect_orders("sid", {}, {"token": "nope"}) is False
        assert get_sid_meta("sid") is None


class TestSendToUser:

    async def test_emits_only_on_requested_namespace(self, registry):
        await _connect_both()
        await send_to_user(USER, "notify", {"level": "error"}, namespace="/location")
        registry.assert_awaited_once_with(
            "notify", {"level": "error"}, to="location-sid", namespace="/location"
        )

    async def test_role_uses_personal_room(self, registry):
        await send_to_user(USER, "notify", {}, namespace="/orders", role="provider")
        registry.assert_awaited_once_with(
            "notify", {}, room=f"provider_{USER}", namespace="/orders"
        )

    async def test_no_sessions_no_emit(self, registry):
        await send_to_user(USER, "notify", {}, namespace="/location")
        registry.assert_not_awaited()
