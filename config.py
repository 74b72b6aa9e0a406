"""
Drip Irrigation Dashboard - configuration
Firebase credentials and timing constants, read from the environment / .env
"""

import logging
import os
from zoneinfo import ZoneInfo

from dotenv import load_dotenv

load_dotenv()

# =====================================================
# FIREBASE CONFIGURATION
# =====================================================
FIREBASE_CONFIG = {
    "apiKey": os.getenv("FIREBASE_API_KEY", ""),
    "authDomain": os.getenv("FIREBASE_AUTH_DOMAIN", ""),
    "databaseURL": os.getenv("FIREBASE_DATABASE_URL", ""),
    "storageBucket": os.getenv("FIREBASE_STORAGE_BUCKET", ""),
}

# Signed-in user, provided by the external identity provider
USER_ID = os.getenv("DRIP_USER_ID", "")
ID_TOKEN = os.getenv("DRIP_ID_TOKEN") or None

# =====================================================
# TIMING
# =====================================================
POLL_INTERVAL = float(os.getenv("DRIP_POLL_INTERVAL", "10"))  # seconds
HISTORY_LIMIT = int(os.getenv("DRIP_HISTORY_LIMIT", "20"))
ANALYTICS_LIMIT = int(os.getenv("DRIP_ANALYTICS_LIMIT", "100"))
PENDING_TIMEOUT = float(os.getenv("DRIP_PENDING_TIMEOUT", "30"))  # seconds
LOAD_TIMEOUT = float(os.getenv("DRIP_LOAD_TIMEOUT", "10"))  # seconds

ONLINE_WINDOW = 120  # seconds since last snapshot
REFRESH_INTERVAL_MS = 5000

# Display timezone for charts
TIMEZONE = ZoneInfo(os.getenv("DRIP_TIMEZONE", "UTC"))

LOG_LEVEL = os.getenv("DRIP_LOG_LEVEL", "INFO")


def configure_logging(level=None):
    """Set up root logging for the dashboard process"""
    logging.basicConfig(
        level=(level or LOG_LEVEL).upper(),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[logging.StreamHandler()],
    )
