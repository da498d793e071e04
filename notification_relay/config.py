# notification_relay/config.py
from typing import List, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Configuración del servicio, leída del entorno y del .env.
    Se arma una sola vez al arrancar y se pasa explícitamente a cada componente.
    """
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    table_connection_string: Optional[str] = Field(default=None, alias="AZURE_STORAGE_CONNECTION_STRING")
    table_name: str = Field(default="notifications", alias="TABLE_NAME")

    servicebus_connection_string: Optional[str] = Field(default=None, alias="AZURE_SERVICE_BUS_CONNECTION_STRING")
    servicebus_queue_name: str = Field(default="notifications-queue", alias="AZURE_SERVICE_BUS_QUEUE_NAME")

    # lista separada por comas
    cors_origins: str = Field(default="*", alias="CORS_ORIGINS")

    ws_send_timeout: float = Field(default=5.0, alias="WS_SEND_TIMEOUT")
    ws_allow_publish: bool = Field(default=False, alias="WS_ALLOW_PUBLISH")
    broadcast_queue_size: int = Field(default=1000, alias="BROADCAST_QUEUE_SIZE")

    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    host: str = Field(default="0.0.0.0", alias="HOST")
    port: int = Field(default=8001, alias="PORT")

    @field_validator("log_level")
    @classmethod
    def _upper_log_level(cls, value: str) -> str:
        return value.upper()

    @property
    def cors_origin_list(self) -> List[str]:
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]
