from .codec import Message, SparkplugCodec
from .controller import REBIRTH_METRIC, REBOOT_METRIC, RetryPolicy, SessionController
from .device import SimpleDevice
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
from .metrics import Double, Float, Int32, Int64, UInt32, UInt64, Unsupported, encode
from .sequence import SequenceAuthority
from .topics import MessageKind, command_topics, parse_topic, topic
from .transport import PahoTransport, Transport

__all__ = [
    "CodecError",
    "ConnectAborted",
    "Device",
    "DeviceSession",
    "Double",
    "EmptyPayloadError",
    "Float",
    "Int32",
    "Int64",
    "LifecycleState",
    "Message",
    "MessageKind",
    "NodeSession",
    "PahoTransport",
    "ProtocolStateError",
    "REBIRTH_METRIC",
    "REBOOT_METRIC",
    "RetryPolicy",
    "SequenceAuthority",
    "SessionController",
    "SimpleDevice",
    "SparkplugCodec",
    "SparkplugError",
    "TopicError",
    "Transport",
    "TransportError",
    "UInt32",
    "UInt64",
    "UnknownDeviceError",
    "Unsupported",
    "command_topics",
    "encode",
    "parse_topic",
    "topic",
]
