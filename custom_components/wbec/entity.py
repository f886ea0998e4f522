from __future__ import annotations

from typing import Any

from homeassistant.helpers.device_registry import DeviceInfo
from homeassistant.helpers.update_coordinator import CoordinatorEntity

from .const import DOMAIN
from .coordinator import WbecCoordinator


def controller_device_info(coord: WbecCoordinator) -> DeviceInfo:
    wbec = (coord.data or {}).get("wbec") or {}
    return DeviceInfo(
        identifiers={(DOMAIN, coord.host)},
        manufacturer="steff393",
        model="wbec",
        name=f"wbec {coord.host}",
        sw_version=wbec.get("version"),
        configuration_url=f"http://{coord.host}",
    )


class WbecBaseEntity(CoordinatorEntity[WbecCoordinator]):
    """Entity bound to one wallbox behind the controller."""

    _attr_has_entity_name = True

    def __init__(self, coord: WbecCoordinator, box_id: int):
        super().__init__(coord)
        self._coord = coord
        self._box_id = box_id

    @property
    def data(self) -> dict[str, Any]:
        return self._coord.box_data(self._box_id)

    @property
    def available(self) -> bool:  # type: ignore[override]
        return super().available and bool(self.data)

    @property
    def device_info(self) -> DeviceInfo:
        data = self.data
        return DeviceInfo(
            identifiers={(DOMAIN, f"{self._coord.host}-box{self._box_id}")},
            manufacturer="Heidelberg",
            model="Energy Control",
            name=f"Wallbox {self._box_id}",
            sw_version=data.get("version"),
            via_device=(DOMAIN, self._coord.host),
        )
