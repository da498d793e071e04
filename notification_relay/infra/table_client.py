# notification_relay/infra/table_client.py
import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, List, Optional

from azure.core import MatchConditions
from azure.core.exceptions import (
    AzureError,
    ResourceExistsError,
    ResourceModifiedError,
    ResourceNotFoundError,
)
from azure.data.tables import EdmType, EntityProperty, TableTransactionError, UpdateMode
from azure.data.tables.aio import TableClient

from notification_relay.errors import StoreFailure
from notification_relay.models.notification import Notification, NotificationType, now_ms

logger = logging.getLogger(__name__)

NOTIFICATION_PARTITION = "notification"
SEQUENCE_PARTITION = "sequence"
SEQUENCE_ROW = "notification"

# Azure acepta hasta 100 operaciones por transacción (misma partición)
TRANSACTION_BATCH_SIZE = 100
MAX_CONFLICT_RETRIES = 10

# marca que reclama una fila antes de borrarla
DELETING = "deleting"


def _row_key(notification_id: int) -> str:
    # padding para que el orden lexicográfico del RowKey sea el orden del id
    return f"{notification_id:019d}"


def _as_int(value: Any) -> int:
    # los Int64 pueden volver envueltos en EntityProperty
    return int(getattr(value, "value", value))


def _int64(value: int) -> EntityProperty:
    return EntityProperty(value, EdmType.INT64)


def _to_notification(entity: Dict[str, Any]) -> Notification:
    return Notification(
        id=int(entity["RowKey"]),
        message=entity["message"],
        timestamp=_as_int(entity["createdAt"]),
        type=NotificationType.coerce(entity.get("type")),
        read=bool(entity.get("read", False)),
    )


class NotificationStore:
    """
    Tabla de notificaciones en Azure Table Storage.

    - Una partición con las filas (RowKey = id con padding).
    - Una entidad "sequence" con el último id asignado; se incrementa con
      concurrencia optimista (ETag), así los ids nunca se reutilizan.
    - Cada operación es una unidad atómica contra la tabla. Los errores del
      SDK se convierten en StoreFailure con el nombre de la operación.
    """

    def __init__(self, table_client: TableClient, table_name: str = "notifications"):
        self._table = table_client
        self._table_name = table_name
        self._initialized = False
        self._init_lock = asyncio.Lock()

    @classmethod
    def from_connection_string(cls, conn_str: Optional[str], table_name: str) -> "NotificationStore":
        if not conn_str:
            raise RuntimeError("AZURE_STORAGE_CONNECTION_STRING no está configurada en .env")

        table_client = TableClient.from_connection_string(conn_str=conn_str, table_name=table_name)
        return cls(table_client, table_name=table_name)

    async def initialize(self) -> None:
        """
        Crea la tabla si no existe. Idempotente: nunca borra filas.
        El lock hace que dos primeros usos concurrentes no la creen dos veces.
        """
        if self._initialized:
            return
        async with self._init_lock:
            if self._initialized:
                return
            try:
                await self._table.create_table()
                logger.info("Tabla %s creada", self._table_name)
            except ResourceExistsError:
                logger.debug("Tabla %s ya existía", self._table_name)
            except AzureError as exc:
                logger.exception("No se pudo inicializar la tabla %s", self._table_name)
                raise StoreFailure("initialize", str(exc)) from exc
            self._initialized = True

    async def close(self) -> None:
        await self._table.close()

    @asynccontextmanager
    async def _operation(self, name: str) -> AsyncIterator[None]:
        await self.initialize()
        try:
            yield
        except AzureError as exc:
            logger.exception("Falló %s sobre la tabla %s", name, self._table_name)
            raise StoreFailure(name, str(exc)) from exc

    async def _next_id(self) -> int:
        for _ in range(MAX_CONFLICT_RETRIES):
            try:
                entity = await self._table.get_entity(
                    partition_key=SEQUENCE_PARTITION, row_key=SEQUENCE_ROW
                )
            except ResourceNotFoundError:
                try:
                    await self._table.create_entity(entity={
                        "PartitionKey": SEQUENCE_PARTITION,
                        "RowKey": SEQUENCE_ROW,
                        "lastId": _int64(1),
                    })
                except ResourceExistsError:
                    continue
                return 1

            next_id = _as_int(entity["lastId"]) + 1
            entity["lastId"] = _int64(next_id)
            try:
                await self._table.update_entity(
                    entity=entity,
                    mode=UpdateMode.REPLACE,
                    etag=entity.metadata["etag"],
                    match_condition=MatchConditions.IfNotModified,
                )
            except ResourceModifiedError:
                # otro create ganó la carrera, reintentar con el valor nuevo
                continue
            return next_id

        raise StoreFailure("create", "could not allocate a notification id")

    async def create(self, message: str, type: NotificationType) -> Notification:
        async with self._operation("create"):
            notification_id = await self._next_id()
            timestamp = now_ms()
            await self._table.create_entity(entity={
                "PartitionKey": NOTIFICATION_PARTITION,
                "RowKey": _row_key(notification_id),
                "message": message,
                "type": type.value,
                "read": False,
                "createdAt": _int64(timestamp),
            })
        return Notification(
            id=notification_id,
            message=message,
            timestamp=timestamp,
            type=type,
            read=False,
        )

    async def _rows(self, query_filter: str, **kwargs) -> List[Dict[str, Any]]:
        entities = self._table.query_entities(
            query_filter,
            parameters={"pk": NOTIFICATION_PARTITION},
            **kwargs
        )
        return [entity async for entity in entities]

    async def list(self) -> List[Notification]:
        """Todas las notificaciones, la más reciente primero."""
        async with self._operation("list"):
            rows = await self._rows("PartitionKey eq @pk")
        notifications = [_to_notification(row) for row in rows if not row.get(DELETING)]
        notifications.sort(key=lambda n: (n.timestamp, n.id), reverse=True)
        return notifications

    async def get(self, notification_id: int) -> Optional[Notification]:
        async with self._operation("get"):
            try:
                entity = await self._table.get_entity(
                    partition_key=NOTIFICATION_PARTITION,
                    row_key=_row_key(notification_id),
                )
            except ResourceNotFoundError:
                return None
        if entity.get(DELETING):
            return None
        return _to_notification(entity)

    async def update(self, notification_id: int, read: bool) -> Optional[Notification]:
        """
        Cambia 'read' y devuelve la fila releída.
        None si no existe ninguna fila con ese id.
        """
        async with self._operation("update"):
            try:
                await self._table.update_entity(
                    entity={
                        "PartitionKey": NOTIFICATION_PARTITION,
                        "RowKey": _row_key(notification_id),
                        "read": read,
                    },
                    mode=UpdateMode.MERGE,
                )
            except ResourceNotFoundError:
                return None
        return await self.get(notification_id)

    async def update_all(self, read: bool) -> int:
        """Marca todas las filas con el mismo 'read'. Devuelve cuántas se tocaron."""
        async with self._operation("update_all"):
            rows = await self._rows("PartitionKey eq @pk", select=["PartitionKey", "RowKey"])
            updated = 0
            for start in range(0, len(rows), TRANSACTION_BATCH_SIZE):
                batch = rows[start:start + TRANSACTION_BATCH_SIZE]
                updated += await self._update_batch(batch, read)
        return updated

    async def _update_batch(self, rows: List[Dict[str, Any]], read: bool) -> int:
        operations = [
            ("update", {"PartitionKey": row["PartitionKey"], "RowKey": row["RowKey"], "read": read},
             {"mode": UpdateMode.MERGE})
            for row in rows
        ]
        try:
            await self._table.submit_transaction(operations)
            return len(operations)
        except (TableTransactionError, ResourceNotFoundError):
            # alguna fila se borró entre la consulta y la transacción:
            # seguimos fila por fila y saltamos las que ya no están
            logger.info("Transacción de update_all rechazada, reintentando fila por fila")

        updated = 0
        for _, entity, kwargs in operations:
            try:
                await self._table.update_entity(entity=entity, **kwargs)
            except ResourceNotFoundError:
                continue
            updated += 1
        return updated

    async def delete(self, notification_id: int) -> bool:
        """
        True si se borró una fila, False si no existía.

        delete_entity no avisa cuando la fila ya no está, así que primero se
        reclama la fila con una escritura condicionada al ETag leído. Sólo
        quien gana el reclamo borra; los demás ven la marca y devuelven False.
        """
        row_key = _row_key(notification_id)
        async with self._operation("delete"):
            for _ in range(MAX_CONFLICT_RETRIES):
                try:
                    entity = await self._table.get_entity(
                        partition_key=NOTIFICATION_PARTITION, row_key=row_key
                    )
                except ResourceNotFoundError:
                    return False
                if entity.get(DELETING):
                    return False

                try:
                    await self._table.update_entity(
                        entity={
                            "PartitionKey": NOTIFICATION_PARTITION,
                            "RowKey": row_key,
                            DELETING: True,
                        },
                        mode=UpdateMode.MERGE,
                        etag=entity.metadata["etag"],
                        match_condition=MatchConditions.IfNotModified,
                    )
                except ResourceNotFoundError:
                    return False
                except ResourceModifiedError:
                    # la fila cambió (otro delete o un update): releer
                    continue

                await self._table.delete_entity(
                    partition_key=NOTIFICATION_PARTITION, row_key=row_key
                )
                return True

        raise StoreFailure("delete", "row kept changing while deleting")

    async def count_unread(self) -> int:
        """Recuenta en la tabla las filas con read = false (no hay contador incremental)."""
        async with self._operation("count_unread"):
            rows = await self._rows(
                "PartitionKey eq @pk and read eq false", select=["RowKey", DELETING]
            )
        return sum(1 for row in rows if not row.get(DELETING))
