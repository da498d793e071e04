# notification_relay/models/notification.py
import time
from enum import Enum
from typing import Any, Dict

from pydantic import BaseModel


class NotificationType(str, Enum):
    INFO = "info"
    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"
    GENERAL = "general"

    @classmethod
    def coerce(cls, value: Any) -> "NotificationType":
        """Tipos desconocidos (o ausentes) caen en 'general', nunca fallan."""
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            try:
                return cls(value)
            except ValueError:
                pass
        return cls.GENERAL


class Notification(BaseModel):
    id: int
    message: str
    timestamp: int          # epoch ms, lo fija el store al crear
    type: NotificationType = NotificationType.GENERAL
    read: bool = False


def now_ms() -> int:
    return int(time.time() * 1000)


# Payloads que se empujan por WebSocket.
# Todos llevan "type" como discriminador y un timestamp del servidor.

CONNECTION_MESSAGE = "Connected to notification stream"


def connection_payload() -> Dict[str, Any]:
    return {
        "type": "connection",
        "message": CONNECTION_MESSAGE,
        "timestamp": now_ms(),
    }


def notification_payload(notification: Notification) -> Dict[str, Any]:
    return {
        "type": "notification",
        "notification": notification.model_dump(mode="json"),
        "timestamp": now_ms(),
    }


def count_payload(unread_count: int) -> Dict[str, Any]:
    return {
        "type": "notification_count",
        "unreadCount": unread_count,
        "timestamp": now_ms(),
    }
