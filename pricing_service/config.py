import os
from dotenv import load_dotenv

load_dotenv() # Optional: Load .env file

APP_HOST = os.getenv("APP_HOST", "0.0.0.0")
APP_PORT = int(os.getenv("APP_PORT", "8002")) # Port for this service

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

# How long a caller waits on the background worker before computing in-process
CALCULATION_TIMEOUT_SECONDS = float(os.getenv("CALCULATION_TIMEOUT_SECONDS", "5.0"))

# Set to false to always compute in-process
CALCULATION_WORKER_ENABLED = os.getenv("CALCULATION_WORKER_ENABLED", "true").lower() in ("1", "true", "yes")

# Worker result cache: once it grows past MAX, only the TRIM_TO most recent entries are kept
CALCULATION_CACHE_MAX_ENTRIES = int(os.getenv("CALCULATION_CACHE_MAX_ENTRIES", "1000"))
CALCULATION_CACHE_TRIM_TO = int(os.getenv("CALCULATION_CACHE_TRIM_TO", "500"))
