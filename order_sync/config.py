import os
from dotenv import load_dotenv

load_dotenv() # Optional: Load .env file

APP_HOST = os.getenv("APP_HOST", "0.0.0.0")
APP_PORT = int(os.getenv("APP_PORT", "8003"))

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

# REST backend holding orders, discounts and menu
BACKEND_URL = os.getenv("BACKEND_URL", "http://localhost:5000")
HTTP_TIMEOUT_SECONDS = float(os.getenv("HTTP_TIMEOUT_SECONDS", "10.0"))

# Socket.IO push endpoint (same host as the backend unless overridden)
SOCKET_URL = os.getenv("SOCKET_URL", BACKEND_URL)
SOCKET_PATH = os.getenv("SOCKET_PATH", "socket.io")
SOCKET_RECONNECTION_ATTEMPTS = int(os.getenv("SOCKET_RECONNECTION_ATTEMPTS", "10"))
SOCKET_RECONNECTION_DELAY_SECONDS = float(os.getenv("SOCKET_RECONNECTION_DELAY_SECONDS", "2"))
SOCKET_CONNECT_TIMEOUT_SECONDS = float(os.getenv("SOCKET_CONNECT_TIMEOUT_SECONDS", "30"))

# Best-effort warm-up request sent before connecting (backend may be cold-starting)
PROBE_TIMEOUT_SECONDS = float(os.getenv("PROBE_TIMEOUT_SECONDS", "2.0"))
HEARTBEAT_INTERVAL_SECONDS = float(os.getenv("HEARTBEAT_INTERVAL_SECONDS", "10.0"))

# Terminal identity; the device token is the long-lived credential issued at login
SYNC_USER_ID = os.getenv("SYNC_USER_ID", "")
SYNC_SESSION_TOKEN = os.getenv("SYNC_SESSION_TOKEN", "")
SYNC_DEVICE_TOKEN = os.getenv("SYNC_DEVICE_TOKEN", "")
