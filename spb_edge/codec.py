"""Wire codec: Sparkplug B protobuf payloads via pysparkplug."""

from dataclasses import dataclass, field
from typing import Optional, Protocol, Tuple

import pysparkplug
from google.protobuf.message import DecodeError

from .errors import CodecError
from .topics import MessageKind

BD_SEQ_METRIC = "bdSeq"


@dataclass(frozen=True)
class Message:
    kind: MessageKind
    timestamp: int
    seq: Optional[int]
    metrics: Tuple[pysparkplug.Metric, ...] = field(default_factory=tuple)

    def metric(self, name: str) -> Optional[pysparkplug.Metric]:
        for metric in self.metrics:
            if metric.name == name:
                return metric
        return None


class Codec(Protocol):
    def encode(self, message: Message) -> bytes: ...

    def decode(self, kind: MessageKind, raw: bytes, birth: Optional[Message] = None) -> Message: ...


_WITH_METRICS = {
    MessageKind.NBIRTH: pysparkplug.NBirth,
    MessageKind.NDATA: pysparkplug.NData,
    MessageKind.DBIRTH: pysparkplug.DBirth,
    MessageKind.DDATA: pysparkplug.DData,
}

_COMMANDS = {
    MessageKind.NCMD: pysparkplug.NCmd,
    MessageKind.DCMD: pysparkplug.DCmd,
}


class SparkplugCodec:
    """Maps ``Message`` onto pysparkplug's payload classes.

    The NDEATH payload carries only the bdSeq metric and no seq; DDEATH
    carries seq and no metrics. Those are the shapes the Sparkplug B schema
    defines for death certificates.

    Every metric is encoded with its datatype. Host applications usually
    leave datatypes out of NCMD/DCMD, so commands are decoded against the
    birth certificate that declared the metrics they name.
    """

    def encode(self, message: Message) -> bytes:
        kind = message.kind
        try:
            if kind in _WITH_METRICS:
                payload = _WITH_METRICS[kind](
                    timestamp=message.timestamp, seq=message.seq, metrics=message.metrics
                )
            elif kind in _COMMANDS:
                payload = _COMMANDS[kind](timestamp=message.timestamp, metrics=message.metrics)
            elif kind is MessageKind.NDEATH:
                bd_seq = message.metric(BD_SEQ_METRIC)
                if bd_seq is None:
                    raise CodecError("NDEATH needs a bdSeq metric")
                payload = pysparkplug.NDeath(timestamp=message.timestamp, bd_seq_metric=bd_seq)
            elif kind is MessageKind.DDEATH:
                payload = pysparkplug.DDeath(timestamp=message.timestamp, seq=message.seq)
            else:
                raise CodecError(f"Cannot encode message kind {kind!r}")
            return payload.encode(include_dtypes=True)
        except (TypeError, ValueError, OverflowError) as e:
            raise CodecError(f"Failed to encode {kind.value} payload: {e}") from e

    def decode(self, kind: MessageKind, raw: bytes, birth: Optional[Message] = None) -> Message:
        try:
            if kind in _WITH_METRICS:
                payload = _WITH_METRICS[kind].decode(raw, birth=_as_birth(birth))
                return Message(kind, payload.timestamp, payload.seq, tuple(payload.metrics))
            if kind in _COMMANDS:
                payload = _COMMANDS[kind].decode(raw, birth=_as_birth(birth))
                return Message(kind, payload.timestamp, None, tuple(payload.metrics))
            if kind is MessageKind.NDEATH:
                payload = pysparkplug.NDeath.decode(raw)
                return Message(kind, payload.timestamp, None, (payload.bd_seq_metric,))
            if kind is MessageKind.DDEATH:
                payload = pysparkplug.DDeath.decode(raw)
                return Message(kind, payload.timestamp, payload.seq)
        except KeyError as e:
            raise CodecError(f"{kind.value} names metric {e} with no datatype and no birth declaring it") from e
        except (DecodeError, TypeError, ValueError, OverflowError, IndexError) as e:
            raise CodecError(f"Failed to decode {kind.value} payload: {e}") from e
        raise CodecError(f"Cannot decode message kind {kind!r}")


def _as_birth(birth: Optional[Message]) -> Optional[pysparkplug.NBirth]:
    if birth is None:
        return None
    return pysparkplug.NBirth(timestamp=birth.timestamp, seq=birth.seq or 0, metrics=birth.metrics)
