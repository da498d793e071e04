"""Shared test fixtures: in-memory table client and fake WebSocket listeners."""

import asyncio
from typing import Any, Dict, Optional, Tuple

import pytest
from azure.core import MatchConditions
from azure.core.exceptions import (
    ResourceExistsError,
    ResourceModifiedError,
    ResourceNotFoundError,
)
from azure.data.tables import UpdateMode
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketState

from notification_relay.config import Settings
from notification_relay.infra.table_client import NotificationStore
from notification_relay.main import create_app
from notification_relay.services.broadcaster import BroadcastCoordinator
from notification_relay.services.notification_service import NotificationService
from notification_relay.services.websocket_manager import WebSocketManager


class FakeEntity(dict):
    """Stands in for azure.data.tables.TableEntity (a dict with metadata)."""

    def __init__(self, data: Dict[str, Any], etag: str):
        super().__init__(data)
        self.metadata = {"etag": etag}


class _AsyncRows:
    def __init__(self, rows):
        self._rows = list(rows)

    def __aiter__(self):
        return self._iterate()

    async def _iterate(self):
        for row in self._rows:
            await asyncio.sleep(0)
            yield row


class FakeTableClient:
    """In-memory version of the async TableClient surface the store uses.

    Every call yields to the event loop once so concurrent operations
    interleave the way they would against the real service.
    """

    def __init__(self):
        self.exists = False
        self.create_table_calls = 0
        self.closed = False
        self.fail: Optional[Exception] = None
        self._rows: Dict[Tuple[str, str], Tuple[Dict[str, Any], int]] = {}
        self._version = 0

    async def _tick(self):
        await asyncio.sleep(0)
        if self.fail is not None:
            raise self.fail

    def _etag(self) -> int:
        self._version += 1
        return self._version

    async def create_table(self):
        self.create_table_calls += 1
        await self._tick()
        if self.exists:
            raise ResourceExistsError("TableAlreadyExists")
        self.exists = True

    async def close(self):
        self.closed = True

    async def create_entity(self, entity):
        await self._tick()
        key = (entity["PartitionKey"], entity["RowKey"])
        if key in self._rows:
            raise ResourceExistsError("EntityAlreadyExists")
        self._rows[key] = (dict(entity), self._etag())

    async def get_entity(self, partition_key, row_key):
        await self._tick()
        try:
            data, etag = self._rows[(partition_key, row_key)]
        except KeyError:
            raise ResourceNotFoundError("ResourceNotFound")
        return FakeEntity(data, str(etag))

    async def update_entity(self, entity, mode=UpdateMode.MERGE, etag=None, match_condition=None):
        await self._tick()
        key = (entity["PartitionKey"], entity["RowKey"])
        if key not in self._rows:
            raise ResourceNotFoundError("ResourceNotFound")
        current, current_etag = self._rows[key]
        if match_condition == MatchConditions.IfNotModified and etag != str(current_etag):
            raise ResourceModifiedError("UpdateConditionNotSatisfied")
        if mode == UpdateMode.REPLACE:
            updated = dict(entity)
        else:
            updated = {**current, **entity}
        self._rows[key] = (updated, self._etag())

    async def delete_entity(self, partition_key, row_key, etag=None, match_condition=None):
        """Like the SDK: deleting a missing entity is silently ignored."""
        await self._tick()
        key = (partition_key, row_key)
        if key not in self._rows:
            return
        if match_condition == MatchConditions.IfNotModified and etag != str(self._rows[key][1]):
            raise ResourceModifiedError("UpdateConditionNotSatisfied")
        del self._rows[key]

    async def submit_transaction(self, operations):
        await self._tick()
        for _, entity, _ in operations:
            if (entity["PartitionKey"], entity["RowKey"]) not in self._rows:
                raise ResourceNotFoundError("ResourceNotFound")
        for _, entity, _ in operations:
            key = (entity["PartitionKey"], entity["RowKey"])
            current, _ = self._rows[key]
            self._rows[key] = ({**current, **entity}, self._etag())

    def query_entities(self, query_filter, parameters=None, select=None):
        if self.fail is not None:
            raise self.fail
        partition = (parameters or {}).get("pk")
        rows = []
        for (pk, _), (data, etag) in sorted(self._rows.items()):
            if partition is not None and pk != partition:
                continue
            if "read eq false" in query_filter and data.get("read", False):
                continue
            if select:
                data = {name: data[name] for name in select if name in data}
            rows.append(FakeEntity(data, str(etag)))
        return _AsyncRows(rows)


class FakeWebSocket:
    """A push listener that records what it was sent."""

    def __init__(self, fail: bool = False, delay: float = 0.0):
        self.fail = fail
        self.delay = delay
        self.accepted = False
        self.sent = []
        self.client_state = WebSocketState.CONNECTED
        self.application_state = WebSocketState.CONNECTED

    async def accept(self):
        self.accepted = True

    async def send_json(self, data):
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail:
            raise RuntimeError("connection reset")
        self.sent.append(data)

    async def close(self):
        self.client_state = WebSocketState.DISCONNECTED
        self.application_state = WebSocketState.DISCONNECTED

    def payloads(self, kind):
        return [payload for payload in self.sent if payload["type"] == kind]


@pytest.fixture
def table():
    return FakeTableClient()


@pytest.fixture
def store(table):
    return NotificationStore(table, table_name="notifications")


@pytest.fixture
def manager():
    return WebSocketManager(send_timeout=0.2)


@pytest.fixture
def broadcaster(store, manager):
    return BroadcastCoordinator(store, manager)


@pytest.fixture
def service(store, broadcaster):
    return NotificationService(store, broadcaster)


@pytest.fixture
def settings():
    return Settings(_env_file=None, table_connection_string=None, log_level="WARNING")


@pytest.fixture
def client(settings, store):
    """TestClient with the lifespan running (store initialized, worker started)."""
    app = create_app(settings, store=store)
    with TestClient(app) as test_client:
        yield test_client
