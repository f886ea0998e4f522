from __future__ import annotations

from homeassistant.components.switch import SwitchEntity
from homeassistant.config_entries import ConfigEntry
from homeassistant.core import HomeAssistant, callback
from homeassistant.helpers.device_registry import DeviceInfo
from homeassistant.helpers.entity_platform import AddEntitiesCallback
from homeassistant.helpers.update_coordinator import CoordinatorEntity

from .const import DOMAIN, PvMode
from .coordinator import WbecCoordinator
from .entity import WbecBaseEntity, controller_device_info

# All writes go through the client's request queue.
PARALLEL_UPDATES = 0

PV_ACTIVE_MODES = {PvMode.PV, PvMode.PV_WITH_MIN}


async def async_setup_entry(
    hass: HomeAssistant, entry: ConfigEntry, async_add_entities: AddEntitiesCallback
):
    coord: WbecCoordinator = hass.data[DOMAIN][entry.entry_id]["coordinator"]
    known_boxes: set[int] = set()

    @callback
    def _async_sync_boxes() -> None:
        box_ids = [b for b in coord.iter_box_ids() if b not in known_boxes]
        if not box_ids:
            return
        known_boxes.update(box_ids)
        async_add_entities(
            [ChargingSwitch(coord, box_id) for box_id in box_ids],
            update_before_add=False,
        )

    entry.async_on_unload(coord.async_add_listener(_async_sync_boxes))
    async_add_entities([PvChargingSwitch(coord)], update_before_add=False)
    _async_sync_boxes()


class ChargingSwitch(WbecBaseEntity, SwitchEntity):
    """Allow or block charging by toggling the box current limit."""

    _attr_translation_key = "charging"
    _attr_name = None

    def __init__(self, coord: WbecCoordinator, box_id: int):
        super().__init__(coord, box_id)
        self._attr_unique_id = f"{DOMAIN}_{coord.host}_{box_id}_charging"

    @property
    def is_on(self) -> bool:
        return bool(self.data.get("current_limit"))

    async def async_turn_on(self, **kwargs) -> None:
        await self._coord.async_start_charging(self._box_id)

    async def async_turn_off(self, **kwargs) -> None:
        await self._coord.async_stop_charging(self._box_id)


class PvChargingSwitch(CoordinatorEntity[WbecCoordinator], SwitchEntity):
    """Toggle PV surplus charging on the controller."""

    _attr_has_entity_name = True
    _attr_translation_key = "pv_charging"
    _attr_name = "PV charging"

    def __init__(self, coord: WbecCoordinator):
        super().__init__(coord)
        self._coord = coord
        self._attr_unique_id = f"{DOMAIN}_{coord.host}_pv_charging"

    @property
    def _mode(self) -> PvMode | None:
        return ((self._coord.data or {}).get("pv") or {}).get("mode")

    @property
    def available(self) -> bool:  # type: ignore[override]
        if not super().available:
            return False
        mode = self._mode
        return mode is not None and mode != PvMode.DISABLED

    @property
    def is_on(self) -> bool:
        return self._mode in PV_ACTIVE_MODES

    @property
    def device_info(self) -> DeviceInfo:
        return controller_device_info(self._coord)

    async def async_turn_on(self, **kwargs) -> None:
        await self._coord.async_set_pv_mode(PvMode.PV)

    async def async_turn_off(self, **kwargs) -> None:
        await self._coord.async_set_pv_mode(PvMode.OFF)
