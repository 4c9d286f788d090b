"""Typed metric values and the encoder that turns them into Sparkplug metrics.

Application metric maps are heterogeneous, so the encoder never raises on a
bad value: it returns ``Unsupported`` and the caller leaves the metric out.

Plain Python values map as follows::

    bool              -> Boolean
    int               -> Int64
    float             -> Double
    str               -> String
    bytes, bytearray  -> Bytes

Use the wrappers (``Int32(7)``, ``UInt64(3)``, ``Float(1.5)`` ...) when the
wire type has to be narrower or unsigned.
"""

import logging
import math
from dataclasses import dataclass
from typing import Any, Iterable, List, Mapping, Optional, Tuple, Union

import pysparkplug

logger = logging.getLogger(__name__)

_FLOAT32_MAX = 3.4028234663852886e38


@dataclass(frozen=True)
class TypedValue:
    value: Any

    datatype = None
    bounds = None

    def check(self) -> Optional[str]:
        if isinstance(self.value, bool) or not isinstance(self.value, int):
            return f"{type(self).__name__} needs an int, got {type(self.value).__name__}"
        low, high = self.bounds
        if not low <= self.value <= high:
            return f"{self.value} is outside the {type(self).__name__} range"
        return None


class Int32(TypedValue):
    datatype = pysparkplug.DataType.INT32
    bounds = (-(2**31), 2**31 - 1)


class Int64(TypedValue):
    datatype = pysparkplug.DataType.INT64
    bounds = (-(2**63), 2**63 - 1)


class UInt32(TypedValue):
    datatype = pysparkplug.DataType.UINT32
    bounds = (0, 2**32 - 1)


class UInt64(TypedValue):
    datatype = pysparkplug.DataType.UINT64
    bounds = (0, 2**64 - 1)


class Float(TypedValue):
    datatype = pysparkplug.DataType.FLOAT

    def check(self) -> Optional[str]:
        if isinstance(self.value, bool) or not isinstance(self.value, (int, float)):
            return f"Float needs a number, got {type(self.value).__name__}"
        if math.isfinite(self.value) and abs(self.value) > _FLOAT32_MAX:
            return f"{self.value} does not fit in a 32-bit float"
        return None


class Double(TypedValue):
    datatype = pysparkplug.DataType.DOUBLE

    def check(self) -> Optional[str]:
        if isinstance(self.value, bool) or not isinstance(self.value, (int, float)):
            return f"Double needs a number, got {type(self.value).__name__}"
        return None


@dataclass(frozen=True)
class Unsupported:
    """Encoding outcome for a value with no Sparkplug representation."""

    name: str
    reason: str


EncodeResult = Union[pysparkplug.Metric, Unsupported]


def _classify(value: Any) -> Union[Tuple[pysparkplug.DataType, Any], str]:
    if isinstance(value, TypedValue):
        problem = value.check()
        if problem:
            return problem
        if value.datatype in (pysparkplug.DataType.FLOAT, pysparkplug.DataType.DOUBLE):
            return value.datatype, float(value.value)
        return value.datatype, value.value
    # bool first, it is a subclass of int
    if isinstance(value, bool):
        return pysparkplug.DataType.BOOLEAN, value
    if isinstance(value, int):
        problem = Int64(value).check()
        if problem:
            return problem
        return pysparkplug.DataType.INT64, value
    if isinstance(value, float):
        return pysparkplug.DataType.DOUBLE, value
    if isinstance(value, str):
        return pysparkplug.DataType.STRING, value
    if isinstance(value, (bytes, bytearray)):
        return pysparkplug.DataType.BYTES, bytes(value)
    return f"unsupported value type {type(value).__name__}"


def encode(name: str, value: Any, timestamp: Optional[int] = None) -> EncodeResult:
    """Encode one named value as a Sparkplug metric, or return Unsupported."""
    classified = _classify(value)
    if isinstance(classified, str):
        return Unsupported(name, classified)
    datatype, wire_value = classified
    return pysparkplug.Metric(
        name=name,
        datatype=datatype,
        value=wire_value,
        timestamp=timestamp if timestamp is not None else pysparkplug.get_current_timestamp(),
    )


def encode_all(values: Mapping[str, Any], timestamp: Optional[int] = None) -> List[pysparkplug.Metric]:
    """Encode a metric map in insertion order, dropping what cannot be encoded."""
    metrics = []
    for name, value in values.items():
        result = encode(name, value, timestamp)
        if isinstance(result, Unsupported):
            logger.warning("Dropping metric %r: %s", result.name, result.reason)
            continue
        metrics.append(result)
    return metrics


def encode_device_metric(device, name: str, timestamp: Optional[int] = None) -> EncodeResult:
    """Look up ``name`` on a device and encode its current value."""
    return encode(name, device.metric_value(name), timestamp)


def encode_device_metrics(device, names: Iterable[str], timestamp: Optional[int] = None) -> List[pysparkplug.Metric]:
    metrics = []
    for name in names:
        result = encode_device_metric(device, name, timestamp)
        if isinstance(result, Unsupported):
            logger.warning("Dropping metric %r of device %s: %s", name, device.device_id, result.reason)
            continue
        metrics.append(result)
    return metrics
