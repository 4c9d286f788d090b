from enum import Enum
from typing import NamedTuple, Optional, Tuple, Union

from .errors import TopicError

NAMESPACE = "spBv1.0"
SINGLE_LEVEL_WILDCARD = "+"


class MessageKind(str, Enum):
    NBIRTH = "NBIRTH"
    NDEATH = "NDEATH"
    NDATA = "NDATA"
    NCMD = "NCMD"
    DBIRTH = "DBIRTH"
    DDEATH = "DDEATH"
    DDATA = "DDATA"
    DCMD = "DCMD"

    @property
    def device_scoped(self) -> bool:
        return self.value.startswith("D")


class Topic(NamedTuple):
    group_id: str
    kind: MessageKind
    node_id: str
    device_id: Optional[str] = None

    def __str__(self) -> str:
        return topic(self.group_id, self.node_id, self.kind, self.device_id)


def _kind(kind: Union[MessageKind, str]) -> MessageKind:
    try:
        return MessageKind(kind)
    except ValueError:
        raise TopicError(f"Unknown Sparkplug message kind: {kind!r}") from None


def _check_id(label: str, value: Optional[str]) -> None:
    if not value:
        raise TopicError(f"{label} must be a non-empty string")
    if any(ch in value for ch in "/+#"):
        raise TopicError(f"{label} {value!r} contains a reserved MQTT character")


def topic(group_id: str, node_id: str, kind: Union[MessageKind, str], device_id: Optional[str] = None) -> str:
    """
    Build a Sparkplug B topic.
    Format: spBv1.0/{group_id}/{KIND}/{node_id}[/{device_id}]

    Device-scoped kinds (DBIRTH, DDEATH, DDATA, DCMD) require a device id,
    node-scoped kinds forbid one.
    """
    kind = _kind(kind)
    _check_id("group_id", group_id)
    _check_id("node_id", node_id)

    if not kind.device_scoped:
        if device_id is not None:
            raise TopicError(f"{kind.value} is node-scoped and takes no device id")
        return f"{NAMESPACE}/{group_id}/{kind.value}/{node_id}"

    if device_id is None:
        raise TopicError(f"{kind.value} requires a device id")
    _check_id("device_id", device_id)
    return f"{NAMESPACE}/{group_id}/{kind.value}/{node_id}/{device_id}"


def command_topics(group_id: str, node_id: str) -> Tuple[str, str]:
    """NCMD topic and a DCMD pattern that covers every device under the node."""
    ncmd = topic(group_id, node_id, MessageKind.NCMD)
    dcmd = f"{NAMESPACE}/{group_id}/{MessageKind.DCMD.value}/{node_id}/{SINGLE_LEVEL_WILDCARD}"
    return ncmd, dcmd


def parse_topic(value: str) -> Topic:
    parts = value.split("/")
    if len(parts) not in (4, 5) or parts[0] != NAMESPACE:
        raise TopicError(f"Not a Sparkplug B topic: {value!r}")

    _, group_id, kind, node_id, *rest = parts
    kind = _kind(kind)
    device_id = rest[0] if rest else None
    if kind.device_scoped != (device_id is not None):
        raise TopicError(f"Topic {value!r} does not match the scope of {kind.value}")
    _check_id("group_id", group_id)
    _check_id("node_id", node_id)
    if device_id is not None:
        _check_id("device_id", device_id)
    return Topic(group_id, kind, node_id, device_id)
