# notification_relay/api/deps.py
from fastapi import Request

from notification_relay.services.notification_service import NotificationService


def get_notification_service(request: Request) -> NotificationService:
    return request.app.state.notification_service
