# dispatch/config.py

import logging
import os

# ==================================================
# EXTERNAL SERVICES
# ==================================================

MAPBOX_ACCESS_TOKEN = os.getenv("MAPBOX_ACCESS_TOKEN", "")
MAPBOX_TIMEOUT_SECONDS = int(os.getenv("MAPBOX_TIMEOUT_SECONDS", "10"))
GEOCODE_CACHE_SECONDS = int(os.getenv("GEOCODE_CACHE_SECONDS", "3600"))

# ==================================================
# STORAGE
# ==================================================

DISPATCH_DATA_DIR = os.getenv("DISPATCH_DATA_DIR", os.path.join("data", "dispatch"))

# ==================================================
# ASSIGNMENT TIMING
# ==================================================

OFFER_TIMEOUT_SECONDS = int(os.getenv("OFFER_TIMEOUT_SECONDS", "120"))
OFFER_EXPIRY_CHECK_SECONDS = int(os.getenv("OFFER_EXPIRY_CHECK_SECONDS", "1"))
PICKUP_WAIT_SECONDS = int(os.getenv("PICKUP_WAIT_SECONDS", "30"))
WORKER_POLL_INTERVAL_SECONDS = int(os.getenv("WORKER_POLL_INTERVAL_SECONDS", "5"))
WORKER_BATCH_SIZE = int(os.getenv("WORKER_BATCH_SIZE", "2"))
CONSTRAINTS_CACHE_SECONDS = int(os.getenv("CONSTRAINTS_CACHE_SECONDS", "300"))

LOG_LEVEL = os.getenv("DISPATCH_LOG_LEVEL", "INFO")

_logging_configured = False


def configure_logging(level: str = LOG_LEVEL) -> None:
    """Install a console handler on the root logger (once per process)."""
    global _logging_configured

    if _logging_configured:
        return

    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
    _logging_configured = True
