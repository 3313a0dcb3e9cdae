"""
Runtime configuration for Sender Sync.

Environment-driven settings are read once from .env / the process
environment. Sync tuning constants are fixed: the batch driver relies on
them to keep each tick short and within the Gmail quota.
"""

import os
from datetime import timedelta

from dotenv import load_dotenv

# Load environment variables
load_dotenv()


# ============ DATABASE ============

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./sender_sync.db")


# ============ GOOGLE OAUTH ============

GOOGLE_CLIENT_ID = os.getenv("GOOGLE_CLIENT_ID")
GOOGLE_CLIENT_SECRET = os.getenv("GOOGLE_CLIENT_SECRET")
GOOGLE_CREDENTIALS_FILE = os.getenv("GOOGLE_CREDENTIALS_FILE", "credentials.json")
GOOGLE_TOKEN_URI = "https://oauth2.googleapis.com/token"

# Overrides the redirect URI derived from the incoming request
OAUTH_REDIRECT_URI = os.getenv("OAUTH_REDIRECT_URI")

SCOPES = [
    "openid",
    "https://www.googleapis.com/auth/userinfo.email",
    "https://www.googleapis.com/auth/userinfo.profile",
    "https://www.googleapis.com/auth/gmail.readonly",
    "https://www.googleapis.com/auth/spreadsheets",
    "https://www.googleapis.com/auth/drive.metadata.readonly",
]


# ============ CELERY ============

CELERY_BROKER_URL = os.getenv("CELERY_BROKER_URL", "redis://localhost:6379/0")
CELERY_RESULT_BACKEND = os.getenv("CELERY_RESULT_BACKEND", "redis://localhost:6379/1")


# ============ HTTP / LOGGING ============

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

CORS_ORIGINS = [
    origin.strip()
    for origin in os.getenv("CORS_ORIGINS", "http://localhost:5173").split(",")
    if origin.strip()
]


# ============ SYNC TUNING ============

# Maximum messages to process per batch tick
BATCH_SIZE = 200

# Delay between batch ticks (Gmail rate limits)
BATCH_DELAY_MS = 500

# Delay between starting a cycle and its first tick
FIRST_BATCH_DELAY_MS = 100

# maxResults for Gmail message listing
GMAIL_PAGE_SIZE = 100

# Rows removed per deletion tick (teardown / full reset)
DELETE_BATCH_SIZE = 500
DELETE_BATCH_DELAY_MS = 100

# A sync with no progress after this long is reported as stuck
STUCK_THRESHOLD_SECONDS = 120

# Cadence of the due-connection sweep (Celery beat)
SCHEDULER_INTERVAL_MINUTES = 15

# "manual" and unknown schedules are never picked up by the sweep
SCHEDULE_INTERVALS = {
    "15min": timedelta(minutes=15),
    "1hour": timedelta(hours=1),
    "4hours": timedelta(hours=4),
    "daily": timedelta(days=1),
}

SYNC_SCHEDULES = ["manual", *SCHEDULE_INTERVALS]


# ============ SPREADSHEET EXPORT ============

SHEET_HEADER = ["Email", "Name", "First Contact", "Email Count"]
DEFAULT_SHEET_TAB = "Addresses"
