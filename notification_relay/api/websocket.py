# notification_relay/api/websocket.py
import logging

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from notification_relay.services.notification_handler import process_listener_message

logger = logging.getLogger(__name__)

router = APIRouter(tags=["websocket"])


@router.websocket("/ws/notifications")
async def websocket_notifications(websocket: WebSocket):
    """
    WebSocket para notificaciones en tiempo real.
    El frontend debe conectarse con:
      ws://localhost:8001/ws/notifications
    Recibe un ack de conexión y después:
      {"type": "notification", "notification": {...}, "timestamp": ...}
      {"type": "notification_count", "unreadCount": N, "timestamp": ...}
    """
    state = websocket.app.state
    manager = state.ws_manager

    # 1. Registrar conexión (manda el ack)
    if not await manager.register(websocket):
        return

    try:
        # 2. Mantener la conexión viva; opcionalmente aceptar "publish"
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                break
            raw = message.get("text")
            if raw is None:
                logger.debug("Frame binario ignorado")
                continue
            if state.settings.ws_allow_publish:
                await process_listener_message(state.notification_service, raw)
    except WebSocketDisconnect:
        pass
    finally:
        manager.unregister(websocket)
