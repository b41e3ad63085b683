"""
Centralised configuration constants read from the environment.
"""

import os

from dotenv import load_dotenv

load_dotenv()

# ── Persistence ──────────────────────────────────────────────────────
# Fall back to local SQLite for the no-Docker demo
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./medgate.db")

# ── Logging ──────────────────────────────────────────────────────────
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

# ── Scheduler ────────────────────────────────────────────────────────
# Seconds a booking waits for the doctor's lock before giving up
SCHEDULER_LOCK_TIMEOUT = float(os.getenv("SCHEDULER_LOCK_TIMEOUT", "5"))
SLOT_GRID_MINUTES = int(os.getenv("SLOT_GRID_MINUTES", "15"))
MAX_SUGGESTED_SLOTS = 10

# ── Background tasks ─────────────────────────────────────────────────
CELERY_BROKER_URL = os.getenv("CELERY_BROKER_URL", "redis://redis:6379/0")
CELERY_BACKEND_URL = os.getenv("CELERY_RESULT_BACKEND", "redis://redis:6379/1")

# ── API ──────────────────────────────────────────────────────────────
API_TITLE = "MedGate API"
API_VERSION = "0.1.0"
