# notification_relay/models/queue_message.py
from typing import Any, Optional

from pydantic import BaseModel


class QueueMessage(BaseModel):
    """Mensaje que llega por la cola de Service Bus."""
    message: Optional[Any] = None
    type: Optional[Any] = None


class ListenerMessage(BaseModel):
    """Mensaje que un cliente WebSocket puede mandar para publicar."""
    type: str
    message: Optional[Any] = None
    notificationType: Optional[Any] = None
