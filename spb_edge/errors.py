"""Exceptions raised by the Sparkplug B session engine."""


class SparkplugError(Exception):
    """Base class for every error raised by spb_edge."""


class ProtocolStateError(SparkplugError):
    """A message or operation is not legal in the current lifecycle state."""


class TopicError(SparkplugError, ValueError):
    """A topic could not be derived or parsed."""


class EmptyPayloadError(SparkplugError, ValueError):
    """A DATA message would carry no metrics."""


class UnknownDeviceError(SparkplugError, KeyError):
    """The device id is not attached to this node."""


class TransportError(SparkplugError):
    """The MQTT transport failed to connect, publish or subscribe."""


class ConnectAborted(TransportError):
    """start() stopped retrying before a connection was established."""

    def __init__(self, message, attempts):
        super().__init__(message)
        self.attempts = attempts


class CodecError(SparkplugError):
    """A payload could not be encoded or decoded."""
