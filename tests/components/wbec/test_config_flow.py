from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, patch

import aiohttp
import pytest
from homeassistant import config_entries
from homeassistant.const import CONF_HOST
from homeassistant.data_entry_flow import FlowResultType

from custom_components.wbec.api import WbecClient
from custom_components.wbec.const import (
    DOMAIN,
    OPT_REQUEST_INTERVAL,
    OPT_SCAN_INTERVAL,
    OPT_TIMEOUT,
)


@pytest.fixture
def bypass_setup():
    with patch("custom_components.wbec.async_setup_entry", return_value=True):
        yield


@pytest.mark.asyncio
async def test_user_flow_creates_entry(hass, bypass_setup, monkeypatch) -> None:
    monkeypatch.setattr(
        WbecClient,
        "request_json",
        AsyncMock(return_value={"wbec": {"version": "v0.5.0"}}),
    )

    result = await hass.config_entries.flow.async_init(
        DOMAIN, context={"source": config_entries.SOURCE_USER}
    )
    assert result["type"] is FlowResultType.FORM
    assert result["step_id"] == "user"

    result = await hass.config_entries.flow.async_configure(
        result["flow_id"], {CONF_HOST: " 10.0.0.5 "}
    )

    assert result["type"] is FlowResultType.CREATE_ENTRY
    assert result["title"] == "wbec 10.0.0.5"
    assert result["data"] == {CONF_HOST: "10.0.0.5"}


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "error",
    [asyncio.TimeoutError(), aiohttp.ClientConnectionError("refused")],
)
async def test_user_flow_cannot_connect(hass, bypass_setup, monkeypatch, error) -> None:
    monkeypatch.setattr(WbecClient, "request_json", AsyncMock(side_effect=error))

    result = await hass.config_entries.flow.async_init(
        DOMAIN, context={"source": config_entries.SOURCE_USER}
    )
    result = await hass.config_entries.flow.async_configure(
        result["flow_id"], {CONF_HOST: "10.0.0.5"}
    )

    assert result["type"] is FlowResultType.FORM
    assert result["errors"] == {"base": "cannot_connect"}


@pytest.mark.asyncio
async def test_user_flow_aborts_for_known_host(hass, config_entry, bypass_setup) -> None:
    result = await hass.config_entries.flow.async_init(
        DOMAIN, context={"source": config_entries.SOURCE_USER}
    )
    result = await hass.config_entries.flow.async_configure(
        result["flow_id"], {CONF_HOST: config_entry.data[CONF_HOST]}
    )

    assert result["type"] is FlowResultType.ABORT
    assert result["reason"] == "already_configured"


@pytest.mark.asyncio
async def test_options_flow(hass, config_entry, bypass_setup) -> None:
    result = await hass.config_entries.options.async_init(config_entry.entry_id)
    assert result["type"] is FlowResultType.FORM
    assert result["step_id"] == "init"

    result = await hass.config_entries.options.async_configure(
        result["flow_id"],
        {OPT_TIMEOUT: 3, OPT_REQUEST_INTERVAL: 2.5, OPT_SCAN_INTERVAL: 60},
    )

    assert result["type"] is FlowResultType.CREATE_ENTRY
    assert config_entry.options == {
        OPT_TIMEOUT: 3,
        OPT_REQUEST_INTERVAL: 2.5,
        OPT_SCAN_INTERVAL: 60,
    }
