# services/config.py
from __future__ import annotations
import logging
import os
from zoneinfo import ZoneInfo

from dotenv import load_dotenv

load_dotenv()  # loads values from a local .env file if present

# ------------------------------------------------------------------------------
# Helper: get env var with fallback
# ------------------------------------------------------------------------------
def _env(name: str, default: str = "") -> str:
    v = os.getenv(name)
    return v if v is not None and v != "" else default


def _env_bool(name: str, default: bool) -> bool:
    return _env(name, "true" if default else "false").strip().lower() in {"1", "true", "yes", "on"}


# ------------------------------------------------------------------------------
# Billing engine
# ------------------------------------------------------------------------------
# Wall-clock zone used to bucket samples into time-of-use windows.
BILLING_TZ_NAME: str = _env("BILLING_TZ", "UTC")
BILLING_TZ = ZoneInfo(BILLING_TZ_NAME)

BILL_CURRENCY: str = _env("BILL_CURRENCY", "USD")

# Demand (kVA) charges only apply to windows strictly longer than this.
MATURITY_DAYS: float = float(_env("MATURITY_DAYS", "27"))

ENERGY_UNIT: str = _env("ENERGY_UNIT", "kWh")
DEMAND_UNIT: str = _env("DEMAND_UNIT", "kVA")

# Resolve sibling subtrees concurrently (asyncio.gather) instead of one by one.
TOPOLOGY_FAN_OUT: bool = _env_bool("TOPOLOGY_FAN_OUT", True)

# ---------------- Signal map (YAML) ----------------
SIGNAL_MAP_FILE: str = _env("SIGNAL_MAP_FILE", "config/signal_map.yaml")

# ---------------- Read store ----------------
DATABASE_URL: str = _env("DATABASE_URL", "sqlite+aiosqlite:///data/billing.db")

# ---------------- Logging ----------------
LOG_LEVEL: str = _env("LOG_LEVEL", "INFO").upper()
LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"


def configure_logging(level: str | None = None) -> None:
    logging.basicConfig(level=(level or LOG_LEVEL), format=LOG_FORMAT)
