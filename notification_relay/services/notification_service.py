# notification_relay/services/notification_service.py
import logging
from typing import Any, Dict, List, Optional

from notification_relay.errors import ValidationError
from notification_relay.infra.table_client import NotificationStore
from notification_relay.models.notification import Notification, NotificationType
from notification_relay.services.broadcaster import BroadcastCoordinator

logger = logging.getLogger(__name__)


class NotificationService:
    """
    Punto de entrada único para la API y los consumers.
    Valida antes de tocar el store y, si la mutación salió bien,
    le avisa al coordinador de broadcast (sin esperar a los sockets).
    """

    def __init__(self, store: NotificationStore, broadcaster: BroadcastCoordinator):
        self.store = store
        self.broadcaster = broadcaster

    async def list_notifications(self) -> List[Notification]:
        return await self.store.list()

    async def create_notification(self, message: Any, type: Any = None) -> Notification:
        if not isinstance(message, str) or not message:
            raise ValidationError("Message is required")

        notification = await self.store.create(message, NotificationType.coerce(type))
        logger.info("Nueva notificación %d: %s", notification.id, message)
        self.broadcaster.notification_created(notification)
        return notification

    async def update_notification(self, notification_id: int, changes: Dict[str, Any]) -> Optional[Notification]:
        """
        Aplica los cambios permitidos (sólo 'read').
        None si la notificación no existe.
        """
        if "read" not in changes:
            # nada que cambiar: se devuelve la fila tal cual
            return await self.store.get(notification_id)

        read = changes["read"]
        if not isinstance(read, bool):
            raise ValidationError("read field must be a boolean")

        notification = await self.store.update(notification_id, read)
        if notification is not None:
            self.broadcaster.unread_count_changed()
        return notification

    async def update_all(self, read: Any) -> int:
        if not isinstance(read, bool):
            raise ValidationError("read field must be a boolean")

        updated = await self.store.update_all(read)
        logger.info("%d notificaciones marcadas como %s", updated, "leídas" if read else "no leídas")
        self.broadcaster.unread_count_changed()
        return updated

    async def delete_notification(self, notification_id: int) -> bool:
        deleted = await self.store.delete(notification_id)
        if deleted:
            self.broadcaster.unread_count_changed()
        return deleted

    async def unread_count(self) -> int:
        return await self.store.count_unread()
