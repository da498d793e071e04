# notification_relay/services/broadcaster.py
import asyncio
import logging
from dataclasses import dataclass
from typing import Optional, Union

from notification_relay.errors import StoreFailure
from notification_relay.infra.table_client import NotificationStore
from notification_relay.models.notification import Notification, count_payload, notification_payload
from notification_relay.services.websocket_manager import WebSocketManager

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class NotificationCreated:
    notification: Notification


@dataclass(frozen=True)
class UnreadCountChanged:
    pass


BroadcastEvent = Union[NotificationCreated, UnreadCountChanged]


class BroadcastCoordinator:
    """
    Traduce cada mutación del store en pushes para los listeners.

    Los servicios encolan un evento y siguen (no esperan a los sockets).
    Un único worker consume la cola en orden, así que para una creación
    siempre sale primero la notificación completa y después el contador.
    El contador se recalcula contra la tabla en cada envío.
    """

    def __init__(self, store: NotificationStore, manager: WebSocketManager, queue_size: int = 1000):
        self._store = store
        self._manager = manager
        self._events: "asyncio.Queue[BroadcastEvent]" = asyncio.Queue(maxsize=queue_size)
        self._worker: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._worker is not None and not self._worker.done()

    def start(self) -> None:
        if self.running:
            return
        self._worker = asyncio.create_task(self._run(), name="broadcast-coordinator")

    async def stop(self) -> None:
        if self._worker is None:
            return
        if self.running:
            await self.drain()
        self._worker.cancel()
        try:
            await self._worker
        except asyncio.CancelledError:
            pass
        self._worker = None

    async def drain(self) -> None:
        """Espera a que se hayan despachado todos los eventos encolados."""
        await self._events.join()

    def notification_created(self, notification: Notification) -> None:
        self._enqueue(NotificationCreated(notification))

    def unread_count_changed(self) -> None:
        self._enqueue(UnreadCountChanged())

    def _enqueue(self, event: BroadcastEvent) -> None:
        try:
            self._events.put_nowait(event)
        except asyncio.QueueFull:
            logger.warning("Cola de broadcast llena, se descarta %s", type(event).__name__)

    async def _run(self) -> None:
        while True:
            event = await self._events.get()
            try:
                await self.dispatch(event)
            except Exception:
                logger.exception("Error despachando %s", type(event).__name__)
            finally:
                self._events.task_done()

    async def dispatch(self, event: BroadcastEvent) -> None:
        if isinstance(event, NotificationCreated):
            await self._manager.broadcast(notification_payload(event.notification))

        if not len(self._manager):
            # nadie escuchando: no hace falta recontar
            return

        try:
            unread = await self._store.count_unread()
        except StoreFailure as exc:
            logger.error("No se pudo recalcular el contador de no leídas: %s", exc)
            return
        await self._manager.broadcast(count_payload(unread))
