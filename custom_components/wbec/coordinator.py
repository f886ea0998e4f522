from __future__ import annotations

import asyncio
import logging
import random
import time
from datetime import datetime, timedelta
from http import HTTPStatus
from typing import Any, Callable

import aiohttp
from homeassistant.const import CONF_HOST
from homeassistant.core import HomeAssistant
from homeassistant.exceptions import ServiceValidationError
from homeassistant.helpers.aiohttp_client import async_get_clientsession
from homeassistant.helpers.event import async_call_later
from homeassistant.helpers.update_coordinator import DataUpdateCoordinator, UpdateFailed
from homeassistant.util import dt as dt_util

from .api import QueueResetError, WbecClient, WbecInvalidResponse
from .const import (
    CHARGING_STATES,
    DEFAULT_CURRENT_LIMIT,
    DEFAULT_MIN_REQUEST_INTERVAL,
    DEFAULT_SCAN_INTERVAL,
    DEFAULT_TIMEOUT,
    DOMAIN,
    OPT_REQUEST_INTERVAL,
    OPT_SCAN_INTERVAL,
    OPT_TIMEOUT,
    PLUGGED_STATES,
    PvMode,
)

_LOGGER = logging.getLogger(__name__)

BACKOFF_MAX_EXPONENT = 3


def _as_int(value) -> int | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(float(value))
    except (TypeError, ValueError):
        return None


def _as_float(value, *, precision: int | None = None) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        out = float(value)
    except (TypeError, ValueError):
        return None
    if precision is not None:
        out = round(out, precision)
    return out


def _normalize_box(box_id: int, raw: dict) -> dict[str, Any]:
    charge_state = _as_int(raw.get("chgStat"))
    return {
        "box_id": box_id,
        "bus_id": _as_int(raw.get("busId")),
        "version": raw.get("version"),
        "charge_state": charge_state,
        "charging": charge_state in CHARGING_STATES,
        "plugged": charge_state in PLUGGED_STATES,
        "power": _as_int(raw.get("power")),
        "energy_kwh": _as_float(raw.get("energyI"), precision=3),
        "session_energy_kwh": _as_float(raw.get("energyC"), precision=3),
        "current_limit": _as_int(raw.get("currLim")),
        "current_max": _as_int(raw.get("currMax")),
        "current_min": _as_int(raw.get("currMin")),
        "failsafe_current": _as_int(raw.get("currFs")),
        "pcb_temp": _as_float(raw.get("pcbTemp"), precision=1),
        "failures": _as_int(raw.get("failCnt")),
    }


class WbecCoordinator(DataUpdateCoordinator[dict]):
    """Poll the controller snapshot and route control requests."""

    def __init__(self, hass: HomeAssistant, config, config_entry=None):
        self.hass = hass
        self.config_entry = config_entry
        self.host = str(config[CONF_HOST]).strip()
        options = config_entry.options if config_entry is not None else {}
        timeout = DEFAULT_TIMEOUT
        request_interval = DEFAULT_MIN_REQUEST_INTERVAL
        interval = DEFAULT_SCAN_INTERVAL
        try:
            timeout = int(options.get(OPT_TIMEOUT, DEFAULT_TIMEOUT))
            request_interval = float(
                options.get(OPT_REQUEST_INTERVAL, DEFAULT_MIN_REQUEST_INTERVAL)
            )
            interval = int(options.get(OPT_SCAN_INTERVAL, DEFAULT_SCAN_INTERVAL))
        except (TypeError, ValueError):
            _LOGGER.warning("Ignoring invalid wbec options: %s", dict(options))
        self.client = WbecClient(
            async_get_clientsession(hass),
            self.host,
            timeout=timeout,
            min_request_interval=max(0.0, request_interval),
        )
        self._box_order: list[int] = []
        # Last non-zero current limit per box, used to resume charging
        self.last_set_limit: dict[int, int] = {}
        self.last_success_utc: datetime | None = None
        self.latency_ms: int | None = None
        self.last_failure_utc: datetime | None = None
        self.last_failure_status: int | None = None
        self.last_failure_description: str | None = None
        self.last_failure_source: str | None = None
        self.backoff_ends_utc: datetime | None = None
        self._http_errors = 0
        self._network_errors = 0
        self._backoff_until: float | None = None
        self._backoff_cancel: Callable[[], None] | None = None
        self._last_error: str | None = None
        super().__init__(
            hass,
            _LOGGER,
            config_entry=config_entry,
            name=DOMAIN,
            update_interval=timedelta(seconds=max(1, interval)),
        )

    async def _async_update_data(self) -> dict:
        t0 = time.monotonic()

        if self._backoff_until and time.monotonic() < self._backoff_until:
            raise UpdateFailed("In backoff after repeated controller errors")

        try:
            payload = await self.client.request_json()
        except QueueResetError as err:
            raise UpdateFailed("Request queue reset") from err
        except aiohttp.ClientResponseError as err:
            self._http_errors += 1
            self._network_errors = 0
            reason = (err.message or err.__class__.__name__).strip()
            self._last_error = f"HTTP {err.status}"
            description = reason
            try:
                description = HTTPStatus(int(err.status)).phrase
            except ValueError:
                pass
            self._record_failure(err.status, description, "http")
            self._start_backoff(self._http_errors)
            raise UpdateFailed(f"Controller error {err.status}: {reason}") from err
        except (aiohttp.ClientError, asyncio.TimeoutError, WbecInvalidResponse) as err:
            msg = str(err).strip() or err.__class__.__name__
            source = "payload" if isinstance(err, WbecInvalidResponse) else "network"
            self._last_error = msg
            self._network_errors += 1
            self._record_failure(None, msg, source)
            self._start_backoff(self._network_errors)
            raise UpdateFailed(f"Error communicating with wbec: {msg}") from err
        finally:
            self.latency_ms = int((time.monotonic() - t0) * 1000)

        self._http_errors = 0
        self._network_errors = 0
        self._backoff_until = None
        self._clear_backoff_timer()
        self._last_error = None
        self.last_success_utc = dt_util.utcnow()

        if not isinstance(payload, dict):
            raise UpdateFailed("Unexpected controller payload")

        boxes: dict[int, dict[str, Any]] = {}
        raw_boxes = payload.get("box") or []
        if isinstance(raw_boxes, list):
            for box_id, raw in enumerate(raw_boxes):
                if not isinstance(raw, dict):
                    continue
                self._ensure_box_tracked(box_id)
                boxes[box_id] = _normalize_box(box_id, raw)
                limit = boxes[box_id]["current_limit"]
                if limit:
                    self.last_set_limit.setdefault(box_id, limit)

        pv = payload.get("pv") if isinstance(payload.get("pv"), dict) else {}
        pv_mode = _as_int(pv.get("mode"))
        try:
            mode = PvMode(pv_mode) if pv_mode is not None else None
        except ValueError:
            mode = None

        return {
            "wbec": payload.get("wbec") or {},
            "pv": {
                "mode": mode,
                "watt": _as_int(pv.get("watt")),
                "box_id": _as_int(pv.get("wbId")),
            },
            "boxes": boxes,
        }

    def _record_failure(
        self, status: int | None, description: str | None, source: str
    ) -> None:
        self.last_failure_utc = dt_util.utcnow()
        self.last_failure_status = status
        self.last_failure_description = description
        self.last_failure_source = source

    def _start_backoff(self, failures: int) -> None:
        # The first failure is retried on the next regular poll.
        if failures < 2:
            return
        multiplier = 2 ** min(failures - 2, BACKOFF_MAX_EXPONENT)
        jitter = random.uniform(1.0, 2.0)
        backoff = self._interval_floor() * multiplier * jitter
        _LOGGER.warning(
            "wbec at %s failed %s times (%s); backing off for %.0fs",
            self.host,
            failures,
            self._last_error,
            backoff,
        )
        self._backoff_until = time.monotonic() + backoff
        self._schedule_backoff_timer(backoff)

    def _interval_floor(self) -> int:
        if self.update_interval:
            return max(1, int(self.update_interval.total_seconds()))
        return DEFAULT_SCAN_INTERVAL

    def _clear_backoff_timer(self) -> None:
        if self._backoff_cancel:
            self._backoff_cancel()
            self._backoff_cancel = None
        self.backoff_ends_utc = None

    def _schedule_backoff_timer(self, delay: float) -> None:
        self._clear_backoff_timer()
        self.backoff_ends_utc = dt_util.utcnow() + timedelta(seconds=delay)

        async def _resume(_now: datetime) -> None:
            self._backoff_cancel = None
            self._backoff_until = None
            self.backoff_ends_utc = None
            await self.async_request_refresh()

        self._backoff_cancel = async_call_later(self.hass, delay, _resume)

    def _ensure_box_tracked(self, box_id: int) -> bool:
        """Record a box id that appears in runtime data.

        Returns True when the box was newly discovered.
        """
        if box_id in self._box_order:
            return False
        self._box_order.append(box_id)
        _LOGGER.info("Discovered wallbox %s on wbec %s", box_id, self.host)
        return True

    def iter_box_ids(self) -> list[int]:
        """Return box ids in discovery order for entity setup."""
        return list(self._box_order)

    def box_data(self, box_id: int) -> dict[str, Any]:
        boxes = (self.data or {}).get("boxes") or {}
        return boxes.get(box_id) or {}

    def _require_box(self, box_id: int) -> dict[str, Any]:
        data = self.box_data(box_id)
        if not data:
            raise ServiceValidationError(
                f"Wallbox {box_id} is not connected to wbec {self.host}"
            )
        return data

    def _apply_limits(self, box_id: int, limit: int) -> int:
        if limit <= 0:
            return 0
        data = self.box_data(box_id)
        min_limit = data.get("current_min")
        max_limit = data.get("current_max")
        if max_limit and limit > max_limit:
            limit = max_limit
        if min_limit and limit < min_limit:
            limit = min_limit
        return limit

    def pick_start_limit(self, box_id: int) -> int:
        """Return the limit used to resume charging on a box."""
        for candidate in (
            self.last_set_limit.get(box_id),
            self.box_data(box_id).get("current_max"),
            DEFAULT_CURRENT_LIMIT,
        ):
            if candidate:
                return self._apply_limits(box_id, int(candidate))
        return DEFAULT_CURRENT_LIMIT

    async def async_set_current_limit(self, box_id: int, limit: int) -> dict:
        """Set a box current limit, clamped to the box's reported range."""
        self._require_box(box_id)
        safe = self._apply_limits(box_id, int(limit))
        result = await self.client.set_current_limit(box_id, safe)
        if safe > 0:
            self.last_set_limit[box_id] = safe
        await self.async_request_refresh()
        return result

    async def async_start_charging(self, box_id: int) -> dict:
        return await self.async_set_current_limit(box_id, self.pick_start_limit(box_id))

    async def async_stop_charging(self, box_id: int) -> dict:
        return await self.async_set_current_limit(box_id, 0)

    async def async_set_pv_mode(self, mode: PvMode) -> dict:
        result = await self.client.set_pv_value(pv_mode=mode)
        await self.async_request_refresh()
        return result

    async def async_shutdown_client(self) -> None:
        """Fail queued requests and stop backoff timers."""
        self._clear_backoff_timer()
        self.client.client_reset()

    def collect_metrics(self) -> dict[str, object]:
        """Return diagnostics about polling and the request queue."""

        def _iso(dt: datetime | None) -> str | None:
            return dt.isoformat() if dt else None

        queue = self.client.queue
        return {
            "host": self.host,
            "last_success": _iso(self.last_success_utc),
            "last_failure": _iso(self.last_failure_utc),
            "last_failure_status": self.last_failure_status,
            "last_failure_description": self.last_failure_description,
            "last_failure_source": self.last_failure_source,
            "latency_ms": self.latency_ms,
            "backoff_ends_utc": _iso(self.backoff_ends_utc),
            "last_error": self._last_error,
            "queue_state": queue.state.value,
            "queue_depth": len(queue),
            "box_count": len(self._box_order),
        }
