import os
from dotenv import load_dotenv

load_dotenv()

# Empty or unset means an ephemeral in-memory database.
DB_PATH = os.getenv("CRATE_STATS_DB") or None
QUEUE_CAPACITY = max(1, int(os.getenv("CRATE_STATS_QUEUE_CAPACITY", "10")))
STATS_WINDOW_HOURS = float(os.getenv("CRATE_STATS_WINDOW_HOURS", "24"))
LOG_LEVEL = os.getenv("CRATE_STATS_LOG_LEVEL", "INFO").upper()
