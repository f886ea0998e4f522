from __future__ import annotations

import asyncio
import logging
from typing import Any

import aiohttp
import voluptuous as vol
from homeassistant.config_entries import (
    ConfigEntry,
    ConfigFlow,
    ConfigFlowResult,
    OptionsFlow,
)
from homeassistant.const import CONF_HOST
from homeassistant.core import callback
from homeassistant.helpers.aiohttp_client import async_get_clientsession

from .api import WbecClient, WbecError
from .const import (
    DEFAULT_MIN_REQUEST_INTERVAL,
    DEFAULT_SCAN_INTERVAL,
    DEFAULT_TIMEOUT,
    DOMAIN,
    OPT_REQUEST_INTERVAL,
    OPT_SCAN_INTERVAL,
    OPT_TIMEOUT,
)

_LOGGER = logging.getLogger(__name__)


class WbecConfigFlow(ConfigFlow, domain=DOMAIN):
    VERSION = 1

    async def async_step_user(
        self, user_input: dict[str, Any] | None = None
    ) -> ConfigFlowResult:
        errors: dict[str, str] = {}
        if user_input is not None:
            host = str(user_input[CONF_HOST]).strip()
            await self.async_set_unique_id(host)
            self._abort_if_unique_id_configured()
            client = WbecClient(async_get_clientsession(self.hass), host)
            try:
                payload = await client.request_json()
            except (aiohttp.ClientError, asyncio.TimeoutError, WbecError) as err:
                _LOGGER.debug("wbec at %s unreachable: %s", host, err)
                errors["base"] = "cannot_connect"
            else:
                version = ((payload or {}).get("wbec") or {}).get("version")
                _LOGGER.debug("Found wbec %s at %s", version, host)
                return self.async_create_entry(
                    title=f"wbec {host}", data={CONF_HOST: host}
                )

        return self.async_show_form(
            step_id="user",
            data_schema=vol.Schema({vol.Required(CONF_HOST): str}),
            errors=errors,
        )

    @staticmethod
    @callback
    def async_get_options_flow(config_entry: ConfigEntry) -> OptionsFlow:
        return WbecOptionsFlow()


class WbecOptionsFlow(OptionsFlow):
    async def async_step_init(
        self, user_input: dict[str, Any] | None = None
    ) -> ConfigFlowResult:
        if user_input is not None:
            return self.async_create_entry(title="", data=user_input)

        options = self.config_entry.options
        schema = vol.Schema(
            {
                vol.Optional(
                    OPT_TIMEOUT, default=options.get(OPT_TIMEOUT, DEFAULT_TIMEOUT)
                ): vol.All(vol.Coerce(int), vol.Range(min=1, max=60)),
                vol.Optional(
                    OPT_REQUEST_INTERVAL,
                    default=options.get(
                        OPT_REQUEST_INTERVAL, DEFAULT_MIN_REQUEST_INTERVAL
                    ),
                ): vol.All(vol.Coerce(float), vol.Range(min=0, max=60)),
                vol.Optional(
                    OPT_SCAN_INTERVAL,
                    default=options.get(OPT_SCAN_INTERVAL, DEFAULT_SCAN_INTERVAL),
                ): vol.All(vol.Coerce(int), vol.Range(min=5, max=3600)),
            }
        )
        return self.async_show_form(step_id="init", data_schema=schema)
