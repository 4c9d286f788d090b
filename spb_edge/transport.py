import logging
import threading
from typing import Callable, Optional, Protocol

import paho.mqtt.client as mqtt

from .errors import TransportError

logger = logging.getLogger(__name__)

MessageHandler = Callable[[str, bytes], None]
ConnectionLostHandler = Callable[[str], None]


class Transport(Protocol):
    def connect(
        self,
        host: str,
        port: int,
        client_id: str,
        will_topic: str,
        will_payload: bytes,
        will_retained: bool,
    ) -> None: ...

    def publish(self, topic: str, payload: bytes, retained: bool) -> None: ...

    def subscribe(self, pattern: str, handler: MessageHandler) -> None: ...

    def disconnect(self, grace_period: float) -> None: ...

    def set_connection_lost_handler(self, handler: Optional[ConnectionLostHandler]) -> None: ...


class PahoTransport:
    """paho-mqtt client wrapper with a blocking connect.

    A new paho client is created for every connect() so each connection
    registers its own last will. paho's automatic reconnect is off; the
    session controller decides when to connect again.
    """

    def __init__(
        self,
        username: Optional[str] = None,
        password: Optional[str] = None,
        keepalive: int = 60,
        connect_timeout: float = 10.0,
    ):
        self._username = username
        self._password = password
        self._keepalive = keepalive
        self._connect_timeout = connect_timeout
        self._client: Optional[mqtt.Client] = None
        self._last_publish: Optional[mqtt.MQTTMessageInfo] = None
        self._connack = threading.Event()
        self._connack_reason = None
        self._closing = False
        self._connection_lost: Optional[ConnectionLostHandler] = None

    @property
    def connected(self) -> bool:
        return self._client is not None and self._client.is_connected()

    def set_connection_lost_handler(self, handler: Optional[ConnectionLostHandler]) -> None:
        self._connection_lost = handler

    def _new_client(self, client_id: str) -> mqtt.Client:
        return mqtt.Client(
            callback_api_version=mqtt.CallbackAPIVersion.VERSION2,
            client_id=client_id,
            reconnect_on_failure=False,
        )

    def connect(self, host, port, client_id, will_topic, will_payload, will_retained) -> None:
        client = self._new_client(client_id)
        if self._username:
            client.username_pw_set(self._username, self._password)
        client.will_set(will_topic, payload=will_payload, qos=0, retain=will_retained)
        client.on_connect = self._on_connect
        client.on_disconnect = self._on_disconnect

        self._connack.clear()
        self._connack_reason = None
        self._closing = False

        try:
            client.connect(host, port, self._keepalive)
        except (OSError, ValueError) as e:
            raise TransportError(f"Could not reach MQTT broker at {host}:{port}: {e}") from e

        client.loop_start()
        if not self._connack.wait(self._connect_timeout):
            self._abandon(client)
            raise TransportError(f"No CONNACK from {host}:{port} within {self._connect_timeout}s")
        if self._connack_reason is not None and self._connack_reason.is_failure:
            self._abandon(client)
            raise TransportError(f"Broker at {host}:{port} refused connection: {self._connack_reason}")

        self._client = client
        logger.info("Connected to MQTT broker at %s:%s as %s", host, port, client_id)

    def _abandon(self, client: mqtt.Client) -> None:
        self._closing = True
        client.disconnect()
        client.loop_stop()

    def _on_connect(self, client, userdata, flags, reason_code, properties):
        self._connack_reason = reason_code
        self._connack.set()

    def _on_disconnect(self, client, userdata, flags, reason_code, properties):
        if self._closing or client is not self._client:
            return
        logger.warning("Lost connection to MQTT broker: %s", reason_code)
        if self._connection_lost is not None:
            self._connection_lost(str(reason_code))

    def _require_client(self) -> mqtt.Client:
        if self._client is None:
            raise TransportError("MQTT client is not connected")
        return self._client

    def publish(self, topic: str, payload: bytes, retained: bool) -> None:
        client = self._require_client()
        info = client.publish(topic, payload, qos=0, retain=retained)
        if info.rc != mqtt.MQTT_ERR_SUCCESS:
            raise TransportError(f"Failed to publish to topic {topic}: {mqtt.error_string(info.rc)}")
        self._last_publish = info

    def subscribe(self, pattern: str, handler: MessageHandler) -> None:
        client = self._require_client()

        def on_message(client, userdata, msg):
            handler(msg.topic, msg.payload)

        client.message_callback_add(pattern, on_message)
        result, _ = client.subscribe(pattern, qos=0)
        if result != mqtt.MQTT_ERR_SUCCESS:
            client.message_callback_remove(pattern)
            raise TransportError(f"Failed to subscribe to {pattern}: {mqtt.error_string(result)}")
        logger.info("Subscribed to %s", pattern)

    def disconnect(self, grace_period: float) -> None:
        client = self._client
        if client is None:
            return
        self._closing = True
        if self._last_publish is not None and not self._last_publish.is_published():
            try:
                self._last_publish.wait_for_publish(timeout=grace_period)
            except (RuntimeError, ValueError) as e:
                logger.warning("Last message was not flushed before disconnect: %s", e)
        client.disconnect()
        client.loop_stop()
        self._client = None
        self._last_publish = None
        logger.info("Disconnected from MQTT broker")
