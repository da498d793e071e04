# notification_relay/infra/servicebus_consumer.py
import asyncio
import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from azure.servicebus import TransportType
from azure.servicebus.aio import ServiceBusClient

from notification_relay.services.notification_handler import process_queue_message
from notification_relay.services.notification_service import NotificationService

logger = logging.getLogger(__name__)


def _utcnow() -> str:
    return datetime.now(timezone.utc).isoformat()


class QueueConsumer:
    """
    Consumer asíncrono de Azure Service Bus:
      - AMQP sobre WebSocket (443) para funcionar en App Service.
      - Lee mensajes de la cola y crea la notificación vía el servicio.
      - Confirma (complete) sólo si procesó OK.
      - Reconecta con backoff si se cae.
    """

    def __init__(
        self,
        service: NotificationService,
        connection_string: Optional[str],
        queue_name: str,
        backoff: float = 5.0,
    ):
        self.service = service
        self.connection_string = connection_string
        self.queue_name = queue_name
        self.backoff = backoff
        self.started_at: Optional[str] = None
        self.last_message_at: Optional[str] = None
        self.last_error: Optional[str] = None

    @property
    def enabled(self) -> bool:
        return bool(self.connection_string and self.queue_name)

    def status(self) -> Dict[str, Any]:
        return {
            "startedAt": self.started_at,
            "lastMessageAt": self.last_message_at,
            "lastError": self.last_error,
            "queue": self.queue_name,
            "hasConnectionString": bool(self.connection_string),
        }

    async def handle(self, body_bytes: bytes) -> None:
        payload = json.loads(body_bytes.decode("utf-8"))
        logger.info("Mensaje recibido de %s: %s", self.queue_name, payload)
        await process_queue_message(self.service, payload)
        self.last_message_at = _utcnow()

    async def run(self) -> None:
        if not self.enabled:
            logger.warning("Falta AZURE_SERVICE_BUS_CONNECTION_STRING. No se consumirá la cola.")
            return

        self.started_at = _utcnow()
        while True:
            try:
                logger.info("Conectando a Service Bus (cola: %s) con WebSockets 443", self.queue_name)
                async with ServiceBusClient.from_connection_string(
                    self.connection_string,
                    transport_type=TransportType.AmqpOverWebsocket,
                ) as sb_client:
                    receiver = sb_client.get_queue_receiver(
                        queue_name=self.queue_name,
                        max_wait_time=20,
                    )
                    async with receiver:
                        logger.info("Escuchando cola: %s", self.queue_name)
                        while True:
                            messages = await receiver.receive_messages(
                                max_message_count=10,
                                max_wait_time=10,
                            )
                            if not messages:
                                await asyncio.sleep(0.5)
                                continue

                            for msg in messages:
                                try:
                                    await self.handle(b"".join(part for part in msg.body))
                                    await receiver.complete_message(msg)
                                except Exception as exc:
                                    # No completar => reintenta (o DLQ por MaxDeliveryCount)
                                    self.last_error = repr(exc)
                                    logger.exception("Error procesando mensaje de la cola")

                await asyncio.sleep(1)

            except asyncio.CancelledError:
                raise
            except Exception as exc:
                self.last_error = repr(exc)
                logger.warning("Error de conexión con Service Bus, reintento en %ss: %r", self.backoff, exc)
                await asyncio.sleep(self.backoff)
