from __future__ import annotations

from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest

from custom_components.wbec.const import PvMode
from custom_components.wbec.coordinator import WbecCoordinator


def make_box(**overrides) -> dict:
    box = {
        "box_id": 0,
        "bus_id": 1,
        "version": "1.0",
        "charge_state": 7,
        "charging": True,
        "plugged": True,
        "power": 11000,
        "energy_kwh": 1234.5,
        "session_energy_kwh": 3.2,
        "current_limit": 160,
        "current_max": 160,
        "current_min": 60,
        "failsafe_current": 60,
        "pcb_temp": 25.0,
        "failures": 0,
    }
    box.update(overrides)
    return box


@pytest.fixture
def coordinator_factory(hass, config_entry, monkeypatch):
    """Create a coordinator whose client calls are mocked."""

    def _create(
        boxes: dict[int, dict] | None = None,
        pv_mode: PvMode | None = PvMode.OFF,
        *,
        real_client: bool = False,
    ) -> WbecCoordinator:
        monkeypatch.setattr(
            "custom_components.wbec.coordinator.async_get_clientsession",
            lambda *args, **kwargs: MagicMock(),
        )
        coord = WbecCoordinator(hass, config_entry.data, config_entry=config_entry)
        coord._schedule_refresh = MagicMock()
        if boxes is None:
            boxes = {0: make_box()}
        for box_id in boxes:
            coord._ensure_box_tracked(box_id)
        coord.data = {
            "wbec": {"version": "v0.5.0"},
            "pv": {"mode": pv_mode, "watt": 0, "box_id": 0},
            "boxes": boxes,
        }
        if not real_client:
            coord.client = SimpleNamespace(
                host=coord.host,
                request_json=AsyncMock(return_value={}),
                set_current_limit=AsyncMock(return_value={"ok": True}),
                set_pv_value=AsyncMock(return_value={"pv": {"mode": 2}}),
                client_reset=MagicMock(),
            )
        coord.async_request_refresh = AsyncMock()
        return coord

    return _create
