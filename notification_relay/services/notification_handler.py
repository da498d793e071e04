# notification_relay/services/notification_handler.py
import json
import logging
from typing import Any, Dict, Optional

from pydantic import ValidationError as PayloadError

from notification_relay.errors import StoreFailure, ValidationError
from notification_relay.models.notification import Notification
from notification_relay.models.queue_message import ListenerMessage, QueueMessage
from notification_relay.services.notification_service import NotificationService

logger = logging.getLogger(__name__)

PUBLISH_COMMAND = "publish"


async def process_queue_message(service: NotificationService, msg: Dict[str, Any]) -> Optional[Notification]:
    """
    Procesa un mensaje que viene de la cola.
    Estructura esperada:
      {
        "message": "Build succeeded",
        "type": "success"      # opcional
      }
    Devuelve None si el mensaje no es válido (se loguea y se descarta).
    """
    try:
        payload = QueueMessage.model_validate(msg)
        return await service.create_notification(payload.message, payload.type)
    except (PayloadError, ValidationError) as exc:
        logger.warning("Mensaje de cola descartado: %s", exc)
        return None


async def process_listener_message(service: NotificationService, raw: str) -> Optional[Notification]:
    """
    Un cliente WebSocket puede publicar con:
      {"type": "publish", "message": "...", "notificationType": "info"}
    Cualquier otro mensaje se ignora.
    """
    try:
        data = json.loads(raw)
        payload = ListenerMessage.model_validate(data)
    except (json.JSONDecodeError, PayloadError) as exc:
        logger.warning("Mensaje de listener ignorado: %s", exc)
        return None

    if payload.type != PUBLISH_COMMAND:
        logger.debug("Comando de listener desconocido: %s", payload.type)
        return None

    try:
        return await service.create_notification(payload.message, payload.notificationType)
    except ValidationError as exc:
        logger.warning("Publicación de listener rechazada: %s", exc)
        return None
    except StoreFailure as exc:
        # el listener no tiene a quién reportarle el error; no se corta el socket
        logger.error("Publicación de listener no guardada: %s", exc)
        return None
