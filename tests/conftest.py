"""Shared fixtures: a recording transport and a codec that keeps Message objects."""

from typing import List, Tuple

import pytest

from spb_edge.codec import Message
from spb_edge.controller import RetryPolicy, SessionController
from spb_edge.device import SimpleDevice
from spb_edge.errors import CodecError, TransportError


class FakeTransport:
    def __init__(self, fail_connects: int = 0) -> None:
        self.fail_connects = fail_connects
        self.fail_publish = False
        self.connects: List[tuple] = []
        self.published: List[Tuple[str, bytes, bool]] = []
        self.subscriptions = {}
        self.disconnects: List[float] = []
        self.connection_lost = None

    def connect(self, host, port, client_id, will_topic, will_payload, will_retained) -> None:
        self.connects.append((host, port, client_id, will_topic, will_payload, will_retained))
        if self.fail_connects:
            self.fail_connects -= 1
            raise TransportError("connection refused")

    def publish(self, topic, payload, retained) -> None:
        if self.fail_publish:
            raise TransportError(f"Failed to publish to topic {topic}")
        self.published.append((topic, payload, retained))

    def subscribe(self, pattern, handler) -> None:
        self.subscriptions[pattern] = handler

    def disconnect(self, grace_period) -> None:
        self.disconnects.append(grace_period)

    def set_connection_lost_handler(self, handler) -> None:
        self.connection_lost = handler

    def drop(self) -> None:
        self.connection_lost("connection reset by peer")


class FakeCodec:
    """Encodes a Message as an index into ``encoded``."""

    def __init__(self) -> None:
        self.encoded: List[Message] = []
        self.inbound = {}
        self.births = []

    def encode(self, message: Message) -> bytes:
        self.encoded.append(message)
        return f"{message.kind.value}#{len(self.encoded) - 1}".encode()

    def decode(self, kind, raw: bytes, birth=None) -> Message:
        self.births.append(birth)
        try:
            return self.inbound[raw]
        except KeyError:
            raise CodecError(f"cannot decode {raw!r}") from None

    def message_for(self, payload: bytes) -> Message:
        return self.encoded[int(payload.split(b"#")[1])]


@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def codec() -> FakeCodec:
    return FakeCodec()


@pytest.fixture
def controller(transport, codec) -> SessionController:
    return SessionController(
        "G",
        "N",
        transport,
        codec=codec,
        retry_policy=RetryPolicy(interval=0, max_attempts=3),
    )


@pytest.fixture
def device() -> SimpleDevice:
    return SimpleDevice("D1", {"Temperature": 25.5, "Humidity": 60, "Status": "OK"})


@pytest.fixture
def sent(transport, codec):
    """Published traffic as (topic, Message, retained) tuples."""

    def _sent():
        return [(topic, codec.message_for(payload), retained) for topic, payload, retained in transport.published]

    return _sent
