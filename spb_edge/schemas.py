from typing import Optional

from pydantic import BaseModel


class DeviceStatus(BaseModel):
    device_id: str
    state: str


class NodeStatus(BaseModel):
    group_id: str
    node_id: str
    client_id: str
    state: str
    seq: int
    bd_seq: Optional[int] = None
    devices: list[DeviceStatus] = []
