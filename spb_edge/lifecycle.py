"""Node and device session state machines.

A node moves ``offline -> connecting -> online``. Its birth certificate is
built while it is ``connecting`` and the node only becomes ``online`` once
that birth went out, so DATA and DEATH can never precede a BIRTH. A rebirth
takes an online node back through ``connecting``.

Devices follow the same states nested under their node. A device can only
start connecting while the node is online, and a node going offline drags
every device down with it without publishing a DDEATH per device.
"""

import logging
from enum import Enum
from typing import Any, Dict, Mapping, Optional, Protocol

from .errors import ProtocolStateError
from .sequence import SequenceAuthority
from .topics import MessageKind

logger = logging.getLogger(__name__)


class LifecycleState(str, Enum):
    OFFLINE = "offline"
    CONNECTING = "connecting"
    ONLINE = "online"


_TRANSITIONS = {
    LifecycleState.OFFLINE: {LifecycleState.CONNECTING},
    LifecycleState.CONNECTING: {LifecycleState.ONLINE, LifecycleState.OFFLINE},
    LifecycleState.ONLINE: {LifecycleState.CONNECTING, LifecycleState.OFFLINE},
}

# message kind -> state the sender must be in to build it
LEGAL_STATE = {
    MessageKind.NBIRTH: LifecycleState.CONNECTING,
    MessageKind.DBIRTH: LifecycleState.CONNECTING,
    MessageKind.NDATA: LifecycleState.ONLINE,
    MessageKind.DDATA: LifecycleState.ONLINE,
    MessageKind.NDEATH: LifecycleState.ONLINE,
    MessageKind.DDEATH: LifecycleState.ONLINE,
}


class Device(Protocol):
    """What the session needs from an application device."""

    @property
    def device_id(self) -> str: ...

    def metric_values(self) -> Mapping[str, Any]: ...

    def metric_value(self, name: str) -> Any: ...


class _Lifecycle:
    def __init__(self, label: str):
        self.label = label
        self._state = LifecycleState.OFFLINE

    @property
    def state(self) -> LifecycleState:
        return self._state

    @property
    def online(self) -> bool:
        return self._state is LifecycleState.ONLINE

    def transition(self, target: LifecycleState) -> None:
        if target not in _TRANSITIONS[self._state]:
            raise ProtocolStateError(
                f"{self.label} cannot go from {self._state.value} to {target.value}"
            )
        logger.debug("%s: %s -> %s", self.label, self._state.value, target.value)
        self._state = target

    def require(self, kind: MessageKind) -> None:
        """Raise ProtocolStateError unless ``kind`` may be built right now."""
        legal = LEGAL_STATE.get(kind)
        if legal is None:
            raise ProtocolStateError(f"{kind.value} is not an outbound message kind")
        if self._state is not legal:
            raise ProtocolStateError(
                f"{kind.value} is not allowed while {self.label} is {self._state.value}"
            )


class DeviceSession(_Lifecycle):
    def __init__(self, device: Device, node: "NodeSession"):
        super().__init__(f"device {device.device_id}")
        self.device = device
        self.node = node

    @property
    def device_id(self) -> str:
        return self.device.device_id

    def transition(self, target: LifecycleState) -> None:
        if target is LifecycleState.CONNECTING and not self.node.online:
            raise ProtocolStateError(
                f"{self.label} cannot come online while {self.node.label} is {self.node.state.value}"
            )
        super().transition(target)

    def force_offline(self) -> None:
        self._state = LifecycleState.OFFLINE


class NodeSession(_Lifecycle):
    def __init__(self, group_id: str, node_id: str, client_id: str, authority: Optional[SequenceAuthority] = None):
        super().__init__(f"node {group_id}/{node_id}")
        self.group_id = group_id
        self.node_id = node_id
        self.client_id = client_id
        self.authority = authority if authority is not None else SequenceAuthority()
        self.devices: Dict[str, DeviceSession] = {}

    def attach(self, device: Device) -> DeviceSession:
        session = self.devices.get(device.device_id)
        if session is None:
            session = DeviceSession(device, self)
            self.devices[device.device_id] = session
        else:
            session.device = device
        return session

    def detach(self, device_id: str) -> Optional[DeviceSession]:
        return self.devices.pop(device_id, None)

    def go_offline(self) -> None:
        """Node death: the node and every device under it are presumed dead."""
        if self._state is not LifecycleState.OFFLINE:
            self.transition(LifecycleState.OFFLINE)
        for device in self.devices.values():
            device.force_offline()
