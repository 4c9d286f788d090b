from typing import Any, Dict, Mapping, Optional


class SimpleDevice:
    """Dictionary-backed device; the application updates values in place."""

    def __init__(self, device_id: str, values: Optional[Mapping[str, Any]] = None):
        self._device_id = device_id
        self._values: Dict[str, Any] = dict(values or {})

    @property
    def device_id(self) -> str:
        return self._device_id

    def metric_values(self) -> Dict[str, Any]:
        return dict(self._values)

    def metric_value(self, name: str) -> Any:
        return self._values.get(name)

    def update(self, values: Mapping[str, Any]) -> None:
        self._values.update(values)

    def __repr__(self) -> str:
        return f"SimpleDevice({self._device_id!r})"
