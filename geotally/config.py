from __future__ import annotations

import os

APP_VERSION = os.getenv("APP_VERSION", "0.1.0")

# Both paths are required; startup aborts when either is empty.
GEOLITE2_COUNTRY_DB = os.getenv("GEOLITE2_COUNTRY_DB", "")
ANALYTICS_DB = os.getenv("ANALYTICS_DB", "")

# Set by the edge proxy to the real client address
CLIENT_IP_HEADER = os.getenv("CLIENT_IP_HEADER", "fly-client-ip")

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
LOG_FORMAT = os.getenv("LOG_FORMAT", "%(asctime)s %(levelname)-7s [%(name)s] %(message)s")

SERVER_HOST = os.getenv("SERVER_HOST", "0.0.0.0")
SERVER_PORT = int(os.getenv("PORT", "8080"))
