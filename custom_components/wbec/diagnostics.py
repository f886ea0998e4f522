from __future__ import annotations

from typing import Any

from homeassistant.components.diagnostics import async_redact_data
from homeassistant.config_entries import ConfigEntry
from homeassistant.const import CONF_HOST
from homeassistant.core import HomeAssistant

from .const import DOMAIN

TO_REDACT = {CONF_HOST, "host", "mac", "ssid"}


async def async_get_config_entry_diagnostics(
    hass: HomeAssistant, entry: ConfigEntry
) -> dict[str, Any]:
    """Return polling and request queue state for a wbec entry."""
    coord = hass.data[DOMAIN][entry.entry_id]["coordinator"]
    data = coord.data or {}
    return {
        "entry": {
            "data": async_redact_data(dict(entry.data), TO_REDACT),
            "options": dict(entry.options),
        },
        "metrics": async_redact_data(coord.collect_metrics(), TO_REDACT),
        "controller": async_redact_data(dict(data.get("wbec") or {}), TO_REDACT),
        "pv": dict(data.get("pv") or {}),
        "boxes": {
            str(box_id): dict(box) for box_id, box in (data.get("boxes") or {}).items()
        },
    }
