# notification_relay/main.py
import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from notification_relay.api.notifications import health_router
from notification_relay.api.notifications import router as notifications_router
from notification_relay.api.websocket import router as ws_router
from notification_relay.config import Settings
from notification_relay.infra.servicebus_consumer import QueueConsumer
from notification_relay.infra.table_client import NotificationStore
from notification_relay.services.broadcaster import BroadcastCoordinator
from notification_relay.services.notification_service import NotificationService
from notification_relay.services.websocket_manager import WebSocketManager

logger = logging.getLogger(__name__)


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    state = app.state

    # 1) tabla lista antes de servir
    await state.store.initialize()
    # 2) worker de broadcast
    state.broadcaster.start()
    # 3) consumer de Service Bus en background (si hay conn string)
    consumer_task = None
    if state.queue_consumer.enabled:
        consumer_task = asyncio.create_task(state.queue_consumer.run())

    logger.info("Notification relay listo")
    try:
        yield
    finally:
        if consumer_task is not None:
            consumer_task.cancel()
            try:
                await consumer_task
            except asyncio.CancelledError:
                pass
        await state.broadcaster.stop()
        await state.ws_manager.close_all()
        await state.store.close()
        logger.info("Notification relay detenido")


def create_app(settings: Optional[Settings] = None, store: Optional[NotificationStore] = None) -> FastAPI:
    settings = settings or Settings()
    configure_logging(settings.log_level)

    if store is None:
        store = NotificationStore.from_connection_string(
            settings.table_connection_string, settings.table_name
        )

    ws_manager = WebSocketManager(send_timeout=settings.ws_send_timeout)
    broadcaster = BroadcastCoordinator(store, ws_manager, queue_size=settings.broadcast_queue_size)
    service = NotificationService(store, broadcaster)
    consumer = QueueConsumer(
        service,
        settings.servicebus_connection_string,
        settings.servicebus_queue_name,
    )

    app = FastAPI(title="Notification Relay", lifespan=lifespan)

    # una instancia de cada componente, colgada del app (nada global)
    app.state.settings = settings
    app.state.store = store
    app.state.ws_manager = ws_manager
    app.state.broadcaster = broadcaster
    app.state.notification_service = service
    app.state.queue_consumer = consumer

    # CORS (puedes limitar orígenes en prod)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origin_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Rutas REST
    app.include_router(notifications_router)
    app.include_router(health_router)
    # Ruta WebSocket
    app.include_router(ws_router)

    return app


def run() -> None:
    settings = Settings()
    uvicorn.run(create_app(settings), host=settings.host, port=settings.port)


if __name__ == "__main__":
    run()
