"""Tests for the listener registry."""

import asyncio

import pytest
from starlette.websockets import WebSocketState

from notification_relay.models.notification import CONNECTION_MESSAGE
from tests.conftest import FakeWebSocket


class RecordingWebSocket(FakeWebSocket):
    """Records whether the registry already listed it while the ack was sent."""

    def __init__(self, manager):
        super().__init__()
        self.manager = manager
        self.registered_during_ack = None

    async def send_json(self, data):
        if data["type"] == "connection":
            self.registered_during_ack = self in self.manager
        await super().send_json(data)


class TestRegister:
    @pytest.mark.asyncio
    async def test_register_accepts_and_sends_ack(self, manager):
        listener = FakeWebSocket()
        assert await manager.register(listener) is True

        assert listener.accepted
        assert listener in manager
        [ack] = listener.sent
        assert ack["type"] == "connection"
        assert ack["message"] == CONNECTION_MESSAGE
        assert isinstance(ack["timestamp"], int)

    @pytest.mark.asyncio
    async def test_ack_only_goes_to_new_listener(self, manager):
        first = FakeWebSocket()
        second = FakeWebSocket()
        await manager.register(first)
        await manager.register(second)
        assert len(first.sent) == 1
        assert len(second.sent) == 1

    @pytest.mark.asyncio
    async def test_failed_ack_drops_listener(self, manager):
        listener = FakeWebSocket(fail=True)
        assert await manager.register(listener) is False
        assert len(manager) == 0
        assert listener.client_state == WebSocketState.DISCONNECTED

    @pytest.mark.asyncio
    async def test_listener_joins_only_after_ack(self, manager):
        listener = RecordingWebSocket(manager)
        assert await manager.register(listener) is True
        assert listener.registered_during_ack is False
        assert listener in manager

    @pytest.mark.asyncio
    async def test_broadcast_during_ack_skips_new_listener(self, manager):
        """A broadcast racing the ack is not delivered before the ack."""
        existing = FakeWebSocket()
        await manager.register(existing)
        joining = FakeWebSocket(delay=0.05)

        registered, delivered = await asyncio.gather(
            manager.register(joining),
            manager.broadcast({"type": "notification_count", "unreadCount": 0}),
        )
        assert registered is True
        assert delivered == 1
        assert [payload["type"] for payload in joining.sent] == ["connection"]


class TestUnregister:
    @pytest.mark.asyncio
    async def test_unregister_is_idempotent(self, manager):
        listener = FakeWebSocket()
        await manager.register(listener)
        manager.unregister(listener)
        manager.unregister(listener)
        manager.unregister(FakeWebSocket())
        assert len(manager) == 0


class TestBroadcast:
    @pytest.mark.asyncio
    async def test_broadcast_without_listeners(self, manager):
        assert await manager.broadcast({"type": "notification_count"}) == 0

    @pytest.mark.asyncio
    async def test_failing_listener_is_pruned_others_delivered(self, manager):
        healthy = [FakeWebSocket(), FakeWebSocket()]
        broken = FakeWebSocket()
        for listener in (*healthy, broken):
            await manager.register(listener)
        broken.fail = True

        payload = {"type": "notification_count", "unreadCount": 1}
        assert await manager.broadcast(payload) == 2

        for listener in healthy:
            assert listener.sent[-1] == payload
        assert broken not in manager
        assert len(manager) == 2
        assert broken.client_state == WebSocketState.DISCONNECTED
        assert all(l.client_state == WebSocketState.CONNECTED for l in healthy)

    @pytest.mark.asyncio
    async def test_closed_listener_is_pruned_without_send(self, manager):
        open_listener = FakeWebSocket()
        closed = FakeWebSocket()
        await manager.register(open_listener)
        await manager.register(closed)
        closed.application_state = WebSocketState.DISCONNECTED

        assert await manager.broadcast({"type": "notification_count"}) == 1
        assert closed not in manager
        assert len(closed.sent) == 1  # only the ack

    @pytest.mark.asyncio
    async def test_slow_listener_does_not_stall_others(self, manager):
        fast = FakeWebSocket()
        slow = FakeWebSocket()
        await manager.register(fast)
        await manager.register(slow)
        slow.delay = 5.0

        assert await manager.broadcast({"type": "notification_count"}) == 1
        assert fast.sent[-1] == {"type": "notification_count"}
        assert slow not in manager
        assert slow.client_state == WebSocketState.DISCONNECTED

    @pytest.mark.asyncio
    async def test_close_all(self, manager):
        listeners = [FakeWebSocket(), FakeWebSocket()]
        for listener in listeners:
            await manager.register(listener)
        await manager.close_all()
        assert len(manager) == 0
        assert all(l.client_state == WebSocketState.DISCONNECTED for l in listeners)
