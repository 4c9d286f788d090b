"""Sparkplug B edge node session controller.

Builds and publishes every outbound message kind, keeps the lifecycle state
machine and the sequence counters consistent, and handles inbound NCMD/DCMD
messages. All of that happens under one lock; the paho network thread
(inbound commands, connection loss) and application threads (DATA) race on
the same counters.
"""

import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, Mapping, Optional, Union

import pysparkplug

from . import metrics as encoder
from .codec import BD_SEQ_METRIC, Codec, Message, SparkplugCodec
from .errors import (
    CodecError,
    ConnectAborted,
    EmptyPayloadError,
    ProtocolStateError,
    SparkplugError,
    TopicError,
    TransportError,
    UnknownDeviceError,
)
from .lifecycle import Device, DeviceSession, LifecycleState, NodeSession
from .schemas import DeviceStatus, NodeStatus
from .sequence import SequenceAuthority
from .topics import MessageKind, command_topics, parse_topic, topic
from .transport import PahoTransport, Transport

logger = logging.getLogger(__name__)

REBIRTH_METRIC = "Node Control/Rebirth"
REBOOT_METRIC = "Node Control/Reboot"


@dataclass(frozen=True)
class RetryPolicy:
    """Fixed-interval connect retry. ``max_attempts=None`` retries forever."""

    interval: float = 10.0
    max_attempts: Optional[int] = None

    def exhausted(self, attempts: int) -> bool:
        return self.max_attempts is not None and attempts >= self.max_attempts


class SessionController:
    def __init__(
        self,
        group_id: str,
        node_id: str,
        transport: Transport,
        *,
        host: str = "localhost",
        port: int = 1883,
        client_id: Optional[str] = None,
        codec: Optional[Codec] = None,
        retry_policy: Optional[RetryPolicy] = None,
        disconnect_grace: float = 0.25,
        node_metrics: Optional[Callable[[], Mapping[str, Any]]] = None,
        reboot_handler: Optional[Callable[[], None]] = None,
    ):
        # fail early on ids that cannot form a topic
        topic(group_id, node_id, MessageKind.NBIRTH)

        self._lock = threading.RLock()
        self._node = NodeSession(group_id, node_id, client_id or node_id, SequenceAuthority(lock=self._lock))
        self._transport = transport
        self._host = host
        self._port = port
        self._codec = codec if codec is not None else SparkplugCodec()
        self._retry = retry_policy if retry_policy is not None else RetryPolicy()
        self._disconnect_grace = disconnect_grace
        self._node_metrics = node_metrics
        self._reboot_handler = reboot_handler
        self._stopping = threading.Event()
        # last published births; commands are decoded against them
        self._node_birth: Optional[Message] = None
        self._device_births: Dict[str, Message] = {}
        transport.set_connection_lost_handler(self._on_connection_lost)

    @classmethod
    def from_settings(cls, settings, transport: Optional[Transport] = None, **kwargs) -> "SessionController":
        if transport is None:
            transport = PahoTransport(
                username=settings.mqtt_username,
                password=settings.mqtt_secret,
                keepalive=settings.mqtt_keepalive,
                connect_timeout=settings.mqtt_connect_timeout,
            )
        return cls(
            settings.group_id,
            settings.node_id,
            transport,
            host=settings.mqtt_host,
            port=settings.mqtt_port,
            client_id=settings.mqtt_client_id,
            retry_policy=RetryPolicy(settings.connect_retry_interval, settings.connect_max_attempts),
            disconnect_grace=settings.disconnect_grace,
            **kwargs,
        )

    @property
    def node(self) -> NodeSession:
        return self._node

    @property
    def state(self) -> LifecycleState:
        with self._lock:
            return self._node.state

    def device_state(self, device_id: str) -> LifecycleState:
        with self._lock:
            return self._device(device_id).state

    def status(self) -> NodeStatus:
        with self._lock:
            authority = self._node.authority
            return NodeStatus(
                group_id=self._node.group_id,
                node_id=self._node.node_id,
                client_id=self._node.client_id,
                state=self._node.state.value,
                seq=authority.seq,
                bd_seq=authority.current_bd_seq() if authority.has_connected() else None,
                devices=[
                    DeviceStatus(device_id=device_id, state=session.state.value)
                    for device_id, session in self._node.devices.items()
                ],
            )

    # ------------------------------------------------------------------
    # message construction

    def _topic(self, kind: MessageKind, device_id: Optional[str] = None) -> str:
        return topic(self._node.group_id, self._node.node_id, kind, device_id)

    def _death_message(self, bd_seq: int, seq: Optional[int]) -> Message:
        timestamp = pysparkplug.get_current_timestamp()
        bd_seq_metric = encoder.encode(BD_SEQ_METRIC, encoder.UInt64(bd_seq), timestamp)
        return Message(MessageKind.NDEATH, timestamp, seq, (bd_seq_metric,))

    def _birth_metrics(self, bd_seq: int, timestamp: int) -> list:
        metrics = [
            encoder.encode(BD_SEQ_METRIC, encoder.UInt64(bd_seq), timestamp),
            encoder.encode(REBIRTH_METRIC, False, timestamp),
            encoder.encode(REBOOT_METRIC, False, timestamp),
        ]
        if self._node_metrics is not None:
            metrics.extend(encoder.encode_all(self._node_metrics(), timestamp))
        return metrics

    def _send(self, message: Message, device_id: Optional[str] = None, retained: bool = False) -> None:
        topic_str = self._topic(message.kind, device_id)
        payload = self._codec.encode(message)
        self._transport.publish(topic_str, payload, retained)
        logger.info("Published %s to topic %s (seq=%s)", message.kind.value, topic_str, message.seq)

    def _publish_node_birth(self) -> None:
        self._node.require(MessageKind.NBIRTH)
        authority = self._node.authority
        timestamp = pysparkplug.get_current_timestamp()
        metrics = self._birth_metrics(authority.current_bd_seq(), timestamp)
        message = Message(MessageKind.NBIRTH, timestamp, authority.next_seq(), tuple(metrics))
        self._send(message, retained=True)
        self._node_birth = message
        self._node.transition(LifecycleState.ONLINE)

    def _publish_device_birth(self, session: DeviceSession) -> None:
        session.transition(LifecycleState.CONNECTING)
        try:
            session.require(MessageKind.DBIRTH)
            timestamp = pysparkplug.get_current_timestamp()
            metrics = encoder.encode_all(session.device.metric_values(), timestamp)
            message = Message(MessageKind.DBIRTH, timestamp, self._node.authority.next_seq(), tuple(metrics))
            self._send(message, session.device_id, retained=False)
        except Exception:
            session.transition(LifecycleState.OFFLINE)
            raise
        self._device_births[session.device_id] = message
        session.transition(LifecycleState.ONLINE)

    def _command_birth(self, device_id: Optional[str]) -> Optional[Message]:
        """Birth that declares the metrics a command on this topic may name.

        A DCMD may carry node control metrics as well as the device's own, so
        its birth is the node's metrics followed by the device's.
        """
        device_birth = self._device_births.get(device_id) if device_id is not None else None
        if device_birth is None or self._node_birth is None:
            return device_birth or self._node_birth
        return Message(
            device_birth.kind,
            device_birth.timestamp,
            device_birth.seq,
            self._node_birth.metrics + device_birth.metrics,
        )

    def _device(self, device_id: str) -> DeviceSession:
        session = self._node.devices.get(device_id)
        if session is None:
            raise UnknownDeviceError(device_id)
        return session

    # ------------------------------------------------------------------
    # lifecycle

    def start(self, cancel: Optional[threading.Event] = None) -> None:
        """Connect, subscribe to commands and publish NBIRTH.

        Connection attempts are retried according to the retry policy until
        one succeeds, ``max_attempts`` is reached, ``cancel`` is set or
        stop() is called from another thread.
        """
        with self._lock:
            if self._node.state is not LifecycleState.OFFLINE:
                raise ProtocolStateError(f"{self._node.label} is already {self._node.state.value}")
            self._stopping.clear()
            self._node.transition(LifecycleState.CONNECTING)

        try:
            attempts = self._connect(cancel)
        except SparkplugError:
            with self._lock:
                self._node.go_offline()
            raise

        try:
            for pattern in command_topics(self._node.group_id, self._node.node_id):
                self._transport.subscribe(pattern, self.on_inbound_command)
            with self._lock:
                if self._stopping.is_set() or self._node.state is not LifecycleState.CONNECTING:
                    raise ConnectAborted("stop() was called while connecting", attempts)
                self._node.authority.advance_bd_seq()
                self._publish_node_birth()
        except SparkplugError:
            with self._lock:
                self._node.go_offline()
            self._transport.disconnect(0)
            raise

    def _aborted(self, cancel: Optional[threading.Event]) -> bool:
        return self._stopping.is_set() or (cancel is not None and cancel.is_set())

    def _connect(self, cancel: Optional[threading.Event]) -> int:
        will_topic = self._topic(MessageKind.NDEATH)
        attempts = 0
        while True:
            if self._aborted(cancel):
                raise ConnectAborted("start() was cancelled", attempts)

            # the will carries the bdSeq this connection is about to use
            will = self._codec.encode(self._death_message(self._node.authority.upcoming_bd_seq(), None))
            attempts += 1
            try:
                self._transport.connect(self._host, self._port, self._node.client_id, will_topic, will, True)
                return attempts
            except TransportError as e:
                if self._retry.exhausted(attempts):
                    raise ConnectAborted(f"Giving up after {attempts} connection attempts: {e}", attempts) from e
                logger.warning("Connection failed: %s. Retrying in %s seconds...", e, self._retry.interval)

            deadline = time.monotonic() + self._retry.interval
            while not self._aborted(cancel):
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    break
                # stop() sets _stopping directly; the caller's event is polled
                self._stopping.wait(min(remaining, 0.1))

    def stop(self) -> None:
        """Publish NDEATH (when online) and disconnect.

        Also ends a start() that is still retrying in another thread.
        """
        self._stopping.set()
        with self._lock:
            if self._node.state is LifecycleState.OFFLINE:
                logger.info("MQTT client is not connected, nothing to stop")
                return
        try:
            with self._lock:
                try:
                    if self._node.online:
                        self._node.require(MessageKind.NDEATH)
                        authority = self._node.authority
                        self._send(
                            self._death_message(authority.current_bd_seq(), authority.next_seq()),
                            retained=True,
                        )
                finally:
                    self._node.go_offline()
        finally:
            self._transport.disconnect(self._disconnect_grace)

    def _on_connection_lost(self, reason: str) -> None:
        with self._lock:
            if self._node.state is LifecycleState.OFFLINE:
                return
            logger.warning("Connection lost (%s); %s and its devices are offline", reason, self._node.label)
            self._node.go_offline()

    def rebirth(self) -> None:
        """Republish NBIRTH with a new bdSeq, then DBIRTH for every online device."""
        try:
            with self._lock:
                if not self._node.online:
                    raise ProtocolStateError(
                        f"Cannot rebirth while {self._node.label} is {self._node.state.value}"
                    )
                self._node.transition(LifecycleState.CONNECTING)
                self._node.authority.advance_bd_seq()
                self._publish_node_birth()
                for session in list(self._node.devices.values()):
                    if session.online:
                        self._publish_device_birth(session)
        except (TransportError, CodecError):
            with self._lock:
                self._node.go_offline()
            self._transport.disconnect(0)
            raise

    # ------------------------------------------------------------------
    # devices and data

    def attach_device(self, device: Device) -> DeviceSession:
        """Register a device; publish its DBIRTH right away if the node is online."""
        self._topic(MessageKind.DBIRTH, device.device_id)
        with self._lock:
            session = self._node.attach(device)
            if not self._node.online:
                logger.info(
                    "%s is %s, DBIRTH for %s deferred until it is attached while online",
                    self._node.label,
                    self._node.state.value,
                    device.device_id,
                )
                return session
            self._publish_device_birth(session)
            return session

    def detach_device(self, device_id: str) -> None:
        with self._lock:
            session = self._device(device_id)
            try:
                if session.online:
                    session.require(MessageKind.DDEATH)
                    timestamp = pysparkplug.get_current_timestamp()
                    message = Message(MessageKind.DDEATH, timestamp, self._node.authority.next_seq())
                    self._send(message, device_id)
            finally:
                self._node.detach(device_id)
                self._device_births.pop(device_id, None)
                session.force_offline()

    def publish_node_data(self, values: Mapping[str, Any]) -> None:
        with self._lock:
            self._node.require(MessageKind.NDATA)
            timestamp = pysparkplug.get_current_timestamp()
            metrics = encoder.encode_all(values, timestamp)
            if not metrics:
                raise EmptyPayloadError("NDATA needs at least one encodable metric")
            self._send(Message(MessageKind.NDATA, timestamp, self._node.authority.next_seq(), tuple(metrics)))

    def publish_device_data(self, device_id: str, metrics: Union[Mapping[str, Any], Iterable[str]]) -> None:
        """Publish DDATA from a name->value mapping, or from metric names looked up on the device."""
        with self._lock:
            session = self._device(device_id)
            session.require(MessageKind.DDATA)
            timestamp = pysparkplug.get_current_timestamp()
            if isinstance(metrics, Mapping):
                encoded = encoder.encode_all(metrics, timestamp)
            else:
                names = [metrics] if isinstance(metrics, str) else metrics
                encoded = encoder.encode_device_metrics(session.device, names, timestamp)
            if not encoded:
                raise EmptyPayloadError(f"DDATA for {device_id} needs at least one encodable metric")
            message = Message(MessageKind.DDATA, timestamp, self._node.authority.next_seq(), tuple(encoded))
            self._send(message, device_id)

    # ------------------------------------------------------------------
    # inbound commands

    def on_inbound_command(self, topic_str: str, raw: bytes) -> None:
        """Transport callback for NCMD/DCMD. Never raises."""
        try:
            parsed = parse_topic(topic_str)
        except TopicError as e:
            logger.warning("Ignoring message on %s: %s", topic_str, e)
            return
        if (
            parsed.kind not in (MessageKind.NCMD, MessageKind.DCMD)
            or parsed.group_id != self._node.group_id
            or parsed.node_id != self._node.node_id
        ):
            logger.warning("Ignoring %s message on %s", parsed.kind.value, topic_str)
            return

        with self._lock:
            birth = self._command_birth(parsed.device_id)
        try:
            message = self._codec.decode(parsed.kind, raw, birth)
        except CodecError as e:
            logger.warning("Failed to decode command payload on %s: %s", topic_str, e)
            return

        for metric in message.metrics:
            try:
                self._handle_command_metric(metric, topic_str)
            except SparkplugError:
                logger.exception("Command %r on topic %s failed", metric.name, topic_str)

    def _handle_command_metric(self, metric: pysparkplug.Metric, source: str) -> None:
        if metric.name == REBIRTH_METRIC:
            logger.info("Received Rebirth command on topic %s", source)
            self.rebirth()
            logger.info("Published NBIRTH in response to Rebirth command on topic %s", source)
        elif metric.name == REBOOT_METRIC:
            logger.info("Received Reboot command on topic %s", source)
            if self._reboot_handler is not None:
                self._reboot_handler()
        else:
            logger.warning("Received unknown command %r on topic %s", metric.name, source)
