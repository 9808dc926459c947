"""
BinWatch — Settings & Thresholds
=================================
Alert cutoffs are global policy. Everything else can be overridden from
the environment (.env is loaded here once).
"""
import os

from dotenv import load_dotenv

load_dotenv()

# ══════════════════════════════════════════════════════════════════════════════
# ALERT LEVELS (percent-full, global; bin.thresholdPct is NOT consulted)
# ══════════════════════════════════════════════════════════════════════════════
ALERT_LEVELS = [
    {"kind": "full",    "min_pct": 95},
    {"kind": "warning", "min_pct": 80},
]

# ══════════════════════════════════════════════════════════════════════════════
# BIN DEFAULTS (used when a bin document omits the field)
# ══════════════════════════════════════════════════════════════════════════════
DEFAULT_CAPACITY_KG   = 10.0
DEFAULT_THRESHOLD_PCT = 80.0

# ══════════════════════════════════════════════════════════════════════════════
# WEEKLY SUMMARY
# ══════════════════════════════════════════════════════════════════════════════
COLLECTION_DROP_RATIO = 0.5       # current < previous * 0.5 = collection
SUMMARY_WINDOW_DAYS   = 7
SUMMARY_WEEKDAY       = 6         # Sunday (Monday = 0)
SUMMARY_HOUR          = 2         # 02:00 local
SUMMARY_TIMEZONE      = os.getenv("SUMMARY_TIMEZONE", "Asia/Manila")
SUMMARY_RETRY_COUNT   = int(os.getenv("SUMMARY_RETRY_COUNT", "3"))
SUMMARY_RETRY_DELAY_SEC = float(os.getenv("SUMMARY_RETRY_DELAY_SEC", "30"))

# ══════════════════════════════════════════════════════════════════════════════
# DASHBOARD STATS
# ══════════════════════════════════════════════════════════════════════════════
DASHBOARD_FULL_PCT = 90
DASHBOARD_TIMEZONE = os.getenv("DASHBOARD_TIMEZONE", "UTC")

# ══════════════════════════════════════════════════════════════════════════════
# STORAGE
# ══════════════════════════════════════════════════════════════════════════════
PROJECT_ROOT  = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
STORE_BACKEND = os.getenv("STORE_BACKEND", "json")      # json | memory
STORE_DIR     = os.getenv("STORE_DIR", os.path.join(PROJECT_ROOT, "data", "store"))
OUTPUT_DIR    = os.getenv("OUTPUT_DIR", os.path.join(PROJECT_ROOT, "data", "output"))

# Process readings in the API process (store subscription). Turn off when
# reading_engine.py is running against the same STORE_DIR.
INLINE_PROCESSING = os.getenv("INLINE_PROCESSING", "true").lower() in ("1", "true", "yes")
PENDING_SWEEP_SEC = 30

# ══════════════════════════════════════════════════════════════════════════════
# SIMULATOR
# ══════════════════════════════════════════════════════════════════════════════
SIMULATION_INTERVAL_SEC = 10
WASTE_ACCUMULATION_KG   = 0.5     # per interval, doubled at meal times
COLLECTION_PROBABILITY  = 0.08
COLLECTION_MIN_KG       = 2.0     # only bins heavier than this get collected
MAX_FILL_RATIO          = 1.2     # allow slight overflow
MEAL_HOURS              = [(11, 13), (17, 19)]

# ══════════════════════════════════════════════════════════════════════════════
# SERVER
# ══════════════════════════════════════════════════════════════════════════════
SERVER_HOST = "0.0.0.0"
SERVER_PORT = int(os.getenv("PORT", "8000"))
ADMIN_TOKEN = os.getenv("ADMIN_TOKEN", "BINWATCH_ADMIN_2026")
LOG_LEVEL   = os.getenv("LOG_LEVEL", "INFO")
LOG_FORMAT  = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
