from __future__ import annotations

from enum import IntEnum

DOMAIN = "wbec"

PLATFORMS = ["switch"]

OPT_TIMEOUT = "timeout"
OPT_REQUEST_INTERVAL = "request_interval"
OPT_SCAN_INTERVAL = "scan_interval"

DEFAULT_TIMEOUT = 5
DEFAULT_MIN_REQUEST_INTERVAL = 1.0
DEFAULT_SCAN_INTERVAL = 30
DEFAULT_CHARGE_LOG_LENGTH = 10
# Current limits are in the controller's unit of 0.1 A.
DEFAULT_CURRENT_LIMIT = 160

MAX_BOXES = 16

PATH_CONFIG = "/cfg"
PATH_JSON = "/json"
PATH_PV = "/pv"
PATH_STATUS = "/status"
PATH_CHARGE_LOG = "/chargelog"
PATH_RESET = "/reset"

# Heidelberg charge states as reported in ``chgStat``
CHARGING_STATES = {6, 7}
PLUGGED_STATES = {4, 5, 6, 7}


class PvMode(IntEnum):
    """Surplus charging mode of the controller."""

    DISABLED = 0
    OFF = 1
    PV = 2
    PV_WITH_MIN = 3
