from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import pytest

from custom_components.wbec import DOMAIN
from custom_components.wbec.const import PvMode
from custom_components.wbec.switch import (
    ChargingSwitch,
    PvChargingSwitch,
    async_setup_entry,
)

from .conftest import make_box


@pytest.mark.asyncio
async def test_async_setup_entry_adds_boxes_as_they_appear(
    hass, config_entry, coordinator_factory, monkeypatch
) -> None:
    coord = coordinator_factory()
    hass.data.setdefault(DOMAIN, {})[config_entry.entry_id] = {"coordinator": coord}

    added = []

    def _capture(entities, update_before_add=False):
        added.extend(entities)

    listener_spy = MagicMock(wraps=coord.async_add_listener)
    monkeypatch.setattr(coord, "async_add_listener", listener_spy)

    await async_setup_entry(hass, config_entry, _capture)

    assert isinstance(added[0], PvChargingSwitch)
    assert [ent._box_id for ent in added[1:]] == [0]
    listener_spy.assert_called_once()
    listener = listener_spy.call_args[0][0]

    coord.data["boxes"][3] = make_box(box_id=3)
    coord._ensure_box_tracked(3)

    listener()
    assert [ent._box_id for ent in added[1:]] == [0, 3]

    listener()
    assert len(added) == 3


@pytest.mark.asyncio
async def test_charging_switch_state_and_actions(coordinator_factory) -> None:
    coord = coordinator_factory(
        boxes={0: make_box(current_limit=160), 1: make_box(current_limit=0)}
    )
    coord.async_start_charging = AsyncMock()
    coord.async_stop_charging = AsyncMock()

    active = ChargingSwitch(coord, 0)
    blocked = ChargingSwitch(coord, 1)

    assert active.unique_id == "wbec_192.168.1.100_0_charging"
    assert active.is_on is True
    assert blocked.is_on is False
    assert active.available is True

    await blocked.async_turn_on()
    coord.async_start_charging.assert_awaited_once_with(1)

    await active.async_turn_off()
    coord.async_stop_charging.assert_awaited_once_with(0)


@pytest.mark.asyncio
async def test_charging_switch_unavailable_when_box_missing(coordinator_factory) -> None:
    coord = coordinator_factory()
    switch = ChargingSwitch(coord, 9)

    assert switch.available is False
    assert switch.is_on is False


@pytest.mark.asyncio
async def test_charging_switch_device_info(coordinator_factory) -> None:
    coord = coordinator_factory()
    info = ChargingSwitch(coord, 0).device_info

    assert info["identifiers"] == {(DOMAIN, "192.168.1.100-box0")}
    assert info["via_device"] == (DOMAIN, "192.168.1.100")
    assert info["name"] == "Wallbox 0"


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("mode", "available", "is_on"),
    [
        (PvMode.PV, True, True),
        (PvMode.PV_WITH_MIN, True, True),
        (PvMode.OFF, True, False),
        (PvMode.DISABLED, False, False),
        (None, False, False),
    ],
)
async def test_pv_switch_state(coordinator_factory, mode, available, is_on) -> None:
    coord = coordinator_factory(pv_mode=mode)
    switch = PvChargingSwitch(coord)

    assert switch.available is available
    assert switch.is_on is is_on


@pytest.mark.asyncio
async def test_pv_switch_actions(coordinator_factory) -> None:
    coord = coordinator_factory()
    coord.async_set_pv_mode = AsyncMock()
    switch = PvChargingSwitch(coord)

    await switch.async_turn_on()
    await switch.async_turn_off()

    assert [c.args for c in coord.async_set_pv_mode.await_args_list] == [
        (PvMode.PV,),
        (PvMode.OFF,),
    ]
    assert switch.device_info["identifiers"] == {(DOMAIN, "192.168.1.100")}
