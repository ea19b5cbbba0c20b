import os

from dotenv import load_dotenv

load_dotenv()

DATABASE_PATH = os.getenv("DATABASE_PATH", "triage.db")

DATABASE_URL = os.getenv("DATABASE_URL", "")
DATABASE_MAX_CONNECTIONS = int(os.getenv("DATABASE_MAX_CONNECTIONS", "5"))
SEED_DEMO_CASES = os.getenv("SEED_DEMO_CASES", "true").lower() in ("1", "true", "yes", "on")

# Default lookback window for /metrics/quality
QUALITY_METRICS_DEFAULT_HOURS = float(os.getenv("QUALITY_METRICS_DEFAULT_HOURS", "24"))

# Dashboard websocket keepalive
EVENT_PING_SECONDS = float(os.getenv("EVENT_PING_SECONDS", "10"))
