from __future__ import annotations

import pytest
from homeassistant.const import CONF_HOST
from pytest_homeassistant_custom_component.common import MockConfigEntry

from custom_components.wbec.const import (
    DOMAIN,
    OPT_REQUEST_INTERVAL,
    OPT_SCAN_INTERVAL,
    OPT_TIMEOUT,
)

TEST_HOST = "192.168.1.100"


@pytest.fixture(autouse=True)
def auto_enable_custom_integrations(enable_custom_integrations):
    yield


@pytest.fixture
def config_entry(hass) -> MockConfigEntry:
    entry = MockConfigEntry(
        domain=DOMAIN,
        title=f"wbec {TEST_HOST}",
        data={CONF_HOST: TEST_HOST},
        options={OPT_TIMEOUT: 1, OPT_REQUEST_INTERVAL: 0, OPT_SCAN_INTERVAL: 30},
        unique_id=TEST_HOST,
    )
    entry.add_to_hass(hass)
    return entry
