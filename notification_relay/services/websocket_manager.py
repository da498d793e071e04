# notification_relay/services/websocket_manager.py
import asyncio
import logging
from typing import Any, Dict, Set

from fastapi import WebSocket
from starlette.websockets import WebSocketState

from notification_relay.models.notification import connection_payload

logger = logging.getLogger(__name__)


def _is_open(websocket: WebSocket) -> bool:
    return (
        websocket.client_state == WebSocketState.CONNECTED
        and websocket.application_state == WebSocketState.CONNECTED
    )


class WebSocketManager:
    """
    Mantiene las conexiones WebSocket activas (los listeners).
    Sólo esta clase modifica el set; una conexión muerta se descarta
    en el siguiente broadcast, no se hace polling.
    """
    def __init__(self, send_timeout: float = 5.0):
        self.send_timeout = send_timeout
        self._connections: Set[WebSocket] = set()

    def __len__(self) -> int:
        return len(self._connections)

    def __contains__(self, websocket: WebSocket) -> bool:
        return websocket in self._connections

    async def register(self, websocket: WebSocket) -> bool:
        """
        Acepta la conexión y le manda el ack de conexión (sólo a ella).
        Recién con el ack entregado entra al set, así un broadcast nunca
        le llega antes que el ack. Devuelve False si el ack no se pudo enviar.
        """
        await websocket.accept()
        try:
            await asyncio.wait_for(websocket.send_json(connection_payload()), self.send_timeout)
        except Exception as exc:
            logger.warning("No se pudo enviar el ack de conexión: %r", exc)
            await self._close(websocket)
            return False
        self._connections.add(websocket)
        logger.info("Listener conectado (%d activos)", len(self._connections))
        return True

    def unregister(self, websocket: WebSocket) -> None:
        if websocket in self._connections:
            self._connections.discard(websocket)
            logger.info("Listener desconectado (%d activos)", len(self._connections))

    async def _close(self, websocket: WebSocket) -> None:
        # best-effort, acotado por send_timeout
        if websocket.application_state == WebSocketState.DISCONNECTED:
            return
        try:
            await asyncio.wait_for(websocket.close(), self.send_timeout)
        except Exception as exc:
            logger.debug("Error cerrando listener: %r", exc)

    async def _discard(self, websocket: WebSocket) -> None:
        self.unregister(websocket)
        await self._close(websocket)

    async def _send(self, websocket: WebSocket, message: Dict[str, Any]) -> bool:
        if not _is_open(websocket):
            await self._discard(websocket)
            return False
        try:
            await asyncio.wait_for(websocket.send_json(message), self.send_timeout)
        except Exception as exc:
            logger.warning("Fallo enviando a un listener, se descarta: %r", exc)
            await self._discard(websocket)
            return False
        return True

    async def broadcast(self, message: Dict[str, Any]) -> int:
        """
        Envía el mensaje a TODAS las conexiones a la vez. Un listener
        lento o caído no frena a los demás ni hace fallar el broadcast.
        Devuelve a cuántos se entregó.
        """
        targets = list(self._connections)
        if not targets:
            return 0
        results = await asyncio.gather(*(self._send(ws, message) for ws in targets))
        return sum(1 for delivered in results if delivered)

    async def close_all(self) -> None:
        targets = list(self._connections)
        self._connections.clear()
        for ws in targets:
            await self._close(ws)
