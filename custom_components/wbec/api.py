from __future__ import annotations

import json
import logging
from typing import Any, Awaitable, TypedDict

import aiohttp
import async_timeout
from yarl import URL

from .const import (
    DEFAULT_CHARGE_LOG_LENGTH,
    DEFAULT_MIN_REQUEST_INTERVAL,
    DEFAULT_TIMEOUT,
    MAX_BOXES,
    PATH_CHARGE_LOG,
    PATH_CONFIG,
    PATH_JSON,
    PATH_PV,
    PATH_RESET,
    PATH_STATUS,
    PvMode,
)
from .task_queue import QueueResetError, RateLimitedTaskQueue

__all__ = [
    "QueueResetError",
    "WbecClient",
    "WbecError",
    "WbecInvalidResponse",
]

_LOGGER = logging.getLogger(__name__)


class WbecError(Exception):
    """Base exception for wbec client failures."""


class WbecInvalidResponse(WbecError):
    """Raised when the controller answers with a body that is not JSON."""


class WbecBox(TypedDict, total=False):
    """One wallbox entry of the ``/json`` payload."""

    busId: int
    version: str
    chgStat: int
    currL1: float
    currL2: float
    currL3: float
    pcbTemp: float
    voltL1: int
    voltL2: int
    voltL3: int
    extLock: int
    power: int
    energyP: float
    energyI: float
    energyC: float
    currMax: int
    currMin: int
    logStr: str
    wdTmOut: int
    standby: int
    remLock: int
    currLim: int
    currFs: int
    lmReq: int
    lmLim: int
    resCode: str
    failCnt: int


class WbecJsonResponse(TypedDict, total=False):
    """Payload of ``GET /json``; ``box`` holds ``None`` for absent boxes."""

    wbec: dict[str, Any]
    box: list[WbecBox | None]
    modbus: dict[str, Any]
    rfid: dict[str, Any]
    pv: dict[str, Any]
    wifi: dict[str, Any]


class WbecPvResponse(TypedDict, total=False):
    """Payload of ``GET /pv``."""

    box: dict[str, Any]
    modbus: dict[str, Any]
    pv: dict[str, Any]


class ChargeLogEntry(TypedDict):
    timestamp: int
    duration: int
    energy: float
    user: int
    box: int


class WbecChargeLogResponse(TypedDict):
    line: list[ChargeLogEntry]


# ``/cfg`` and ``/status`` are flat string/number maps whose keys depend on the
# firmware version, so they are passed through untyped.
WbecConfigResponse = dict[str, Any]
WbecStatusResponse = dict[str, Any]


def _check_box_id(box_id: int) -> int:
    value = int(box_id)
    if not 0 <= value < MAX_BOXES:
        raise ValueError(f"Box id must be between 0 and {MAX_BOXES - 1}, got {box_id}")
    return value


class WbecClient:
    """Client for the HTTP interface of a wbec controller.

    Every request is queued on a ``RateLimitedTaskQueue`` so the controller
    never sees more than one request at a time, with at least
    ``min_request_interval`` seconds between them. Requests carry a
    coalescing key: repeating a request while an earlier one with the same
    key is still queued replaces it and both callers get the same answer.
    """

    def __init__(
        self,
        session: aiohttp.ClientSession,
        host: str,
        *,
        timeout: int | float = DEFAULT_TIMEOUT,
        min_request_interval: float = DEFAULT_MIN_REQUEST_INTERVAL,
    ):
        self._s = session
        self._host = str(host).strip().rstrip("/")
        self._timeout = timeout
        self._queue = RateLimitedTaskQueue(min_request_interval)

    @property
    def host(self) -> str:
        return self._host

    @property
    def base_url(self) -> URL:
        return URL(f"http://{self._host}")

    @property
    def queue(self) -> RateLimitedTaskQueue:
        return self._queue

    def client_reset(self) -> None:
        """Drop every queued request; waiting callers get ``QueueResetError``."""

        self._queue.reset()

    def _url(self, path: str, query: dict[str, Any] | None = None) -> URL:
        url = self.base_url.with_path(path)
        if query:
            url = url.with_query(query)
        return url

    async def _get(self, url: URL, *, parse_json: bool = True) -> Any:
        """Perform one GET against the controller and decode the JSON body.

        With ``parse_json=False`` only the status is checked and the body is
        returned as text.
        """

        _LOGGER.debug("GET %s", url)
        async with async_timeout.timeout(self._timeout):
            async with self._s.get(url) as r:
                if r.status in (204, 205):
                    return {}
                if r.status >= 400:
                    try:
                        body_text = await r.text()
                    except Exception:  # noqa: BLE001 - fall back to the reason
                        body_text = ""
                    message = (body_text or r.reason or "").strip()
                    if len(message) > 256:
                        message = f"{message[:256]}..."
                    raise aiohttp.ClientResponseError(
                        r.request_info,
                        r.history,
                        status=r.status,
                        message=message or r.reason,
                        headers=r.headers,
                    )
                # The firmware does not always label JSON as such.
                text = await r.text()
        if not parse_json:
            return text
        if not text.strip():
            return {}
        try:
            return json.loads(text)
        except json.JSONDecodeError as err:
            raise WbecInvalidResponse(
                f"Unexpected response from {url}: {text[:120]}"
            ) from err

    def _request(
        self, url: URL, key: str | None, *, parse_json: bool = True
    ) -> Awaitable[Any]:
        return self._queue.enqueue(
            lambda: self._get(url, parse_json=parse_json), key
        )

    async def request_config(self) -> WbecConfigResponse:
        return await self._request(self._url(PATH_CONFIG), "cfg")

    async def request_json(self, box_id: int | None = None) -> WbecJsonResponse:
        """Return the full controller snapshot, or a single box when given."""

        query = None
        if box_id is not None:
            box_id = _check_box_id(box_id)
            query = {"id": box_id}
        return await self._request(self._url(PATH_JSON, query), f"json{box_id}")

    async def request_pv(self) -> WbecPvResponse:
        return await self._request(self._url(PATH_PV), "pv")

    async def request_status(self, box_id: int) -> WbecStatusResponse:
        """Return the go-e compatible status of one box."""

        box_id = _check_box_id(box_id)
        return await self._request(
            self._url(PATH_STATUS, {"box": box_id}), f"status{box_id}"
        )

    async def request_charge_log(
        self, box_id: int, length: int = DEFAULT_CHARGE_LOG_LENGTH
    ) -> WbecChargeLogResponse:
        box_id = _check_box_id(box_id)
        length = int(length)
        if length < 1:
            raise ValueError("Charge log length must be positive")
        return await self._request(
            self._url(PATH_CHARGE_LOG, {"id": box_id, "len": length}),
            f"chargelog{box_id}-{length}",
        )

    async def set_pv_value(
        self,
        *,
        pv_wb_id: int | None = None,
        pv_watt: int | None = None,
        pv_batt: int | None = None,
        pv_mode: PvMode | int | None = None,
    ) -> WbecPvResponse:
        """Update PV surplus parameters.

        Only the supplied values are sent. Calls that set the same group of
        parameters coalesce while queued, so only the latest values reach the
        controller.
        """
        params: dict[str, int] = {}
        if pv_wb_id is not None:
            params["pvWbId"] = _check_box_id(pv_wb_id)
        if pv_watt is not None:
            params["pvWatt"] = int(pv_watt)
        if pv_batt is not None:
            params["pvBatt"] = int(pv_batt)
        if pv_mode is not None:
            params["pvMode"] = int(PvMode(pv_mode))
        if not params:
            raise ValueError("set_pv_value needs at least one value")
        key = "pvset-" + "+".join(params)
        return await self._request(self._url(PATH_PV, params), key)

    async def set_current_limit(
        self, box_id: int, current_limit: int
    ) -> WbecJsonResponse:
        """Set the current limit of a box in 0.1 A; 0 stops charging."""

        box_id = _check_box_id(box_id)
        current_limit = int(current_limit)
        if current_limit < 0:
            raise ValueError("Current limit must not be negative")
        return await self._request(
            self._url(PATH_JSON, {"currLim": current_limit, "id": box_id}),
            f"jsonset{box_id}",
        )

    async def reset(self) -> None:
        """Reboot the controller."""

        # The controller answers with a plain-text notice before rebooting.
        await self._request(self._url(PATH_RESET), "reset", parse_json=False)
