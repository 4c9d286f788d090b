from __future__ import annotations

from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


def _read_secret(path: str | None) -> str | None:
    if not path:
        return None
    p = Path(path)
    if not p.exists():
        return None
    return p.read_text(encoding="utf-8").strip()


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="SPB_", env_file=".env", extra="ignore")

    # MQTT
    mqtt_host: str = Field("localhost", min_length=1)
    mqtt_port: int = 1883
    mqtt_username: str | None = None
    mqtt_password: str | None = None
    mqtt_password_file: str | None = None
    mqtt_keepalive: int = 60
    mqtt_connect_timeout: float = 10.0

    # Sparkplug identity
    group_id: str = "factory"
    node_id: str = "edge1"
    client_id: str | None = None

    # Session
    connect_retry_interval: float = 10.0
    connect_max_attempts: int | None = None
    disconnect_grace: float = 0.25

    log_level: str = "INFO"

    # Status API
    api_enabled: bool = False
    api_host: str = "127.0.0.1"
    api_port: int = 8080

    @property
    def mqtt_secret(self) -> str | None:
        return _read_secret(self.mqtt_password_file) or self.mqtt_password

    @property
    def mqtt_client_id(self) -> str:
        return self.client_id or self.node_id
