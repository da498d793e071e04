# notification_relay/api/notifications.py
import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Body, Depends, HTTPException, Request, Response, status

from notification_relay.api.deps import get_notification_service
from notification_relay.errors import StoreFailure, ValidationError
from notification_relay.models.notification import Notification
from notification_relay.services.notification_service import NotificationService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/notifications", tags=["notifications"])
health_router = APIRouter(tags=["health"])

NOT_FOUND = "Notification not found"


def _store_error(detail: str, exc: StoreFailure) -> HTTPException:
    logger.error("%s (%s)", detail, exc)
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail=detail,
    )


def _bad_request(exc: ValidationError) -> HTTPException:
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))


@router.get("", response_model=List[Notification])
async def list_notifications(service: NotificationService = Depends(get_notification_service)):
    """Devuelve todas las notificaciones, la más reciente primero."""
    try:
        return await service.list_notifications()
    except StoreFailure as exc:
        raise _store_error("Failed to fetch notifications", exc)


@router.post("", response_model=Notification, status_code=status.HTTP_201_CREATED)
async def create_notification(
    body: Optional[Dict[str, Any]] = Body(default=None),
    service: NotificationService = Depends(get_notification_service),
):
    """
    Crea una notificación y la empuja a todos los listeners.
    Body: {"message": "...", "type": "info|success|warning|error|general"}
    """
    body = body or {}
    try:
        return await service.create_notification(body.get("message"), body.get("type"))
    except ValidationError as exc:
        raise _bad_request(exc)
    except StoreFailure as exc:
        raise _store_error("Failed to create notification", exc)


@router.patch("")
async def update_all_notifications(
    body: Optional[Dict[str, Any]] = Body(default=None),
    service: NotificationService = Depends(get_notification_service),
):
    """Marca todas las notificaciones como leídas / no leídas."""
    read = (body or {}).get("read")
    try:
        updated = await service.update_all(read)
    except ValidationError as exc:
        raise _bad_request(exc)
    except StoreFailure as exc:
        raise _store_error("Failed to update notifications", exc)

    return {
        "message": f"All notifications marked as {'read' if read else 'unread'}",
        "updated": updated,
    }


@router.patch("/{notification_id}", response_model=Notification)
async def update_notification(
    notification_id: int,
    body: Optional[Dict[str, Any]] = Body(default=None),
    service: NotificationService = Depends(get_notification_service),
):
    read = (body or {}).get("read")
    try:
        notification = await service.update_notification(notification_id, {"read": read})
    except ValidationError as exc:
        raise _bad_request(exc)
    except StoreFailure as exc:
        raise _store_error("Failed to update notification", exc)

    if notification is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=NOT_FOUND)
    return notification


@router.delete("/{notification_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_notification(
    notification_id: int,
    service: NotificationService = Depends(get_notification_service),
):
    try:
        deleted = await service.delete_notification(notification_id)
    except StoreFailure as exc:
        raise _store_error("Failed to delete notification", exc)

    if not deleted:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=NOT_FOUND)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# =========================
# 🔎 Diagnóstico del consumer de Service Bus
# =========================
@router.get("/debug/consumer-status")
async def debug_consumer_status(request: Request):
    """
    Devuelve el estado del consumer de Service Bus:
    - startedAt: cuándo arrancó
    - lastMessageAt: último mensaje procesado
    - lastError: último error visto (si hubo)
    - queue: nombre de la cola
    - hasConnectionString: si hay conn string configurado
    """
    return request.app.state.queue_consumer.status()


@health_router.get("/health")
async def health():
    return {
        "message": "Backend is working",
        "features": {
            "notifications": "active",
            "websockets": "active",
        },
    }
