import logging
import os
from pathlib import Path

APP_VERSION = "2.2.0"

# Local device storage (one JSON blob per storage key)
DATA_DIR = Path(os.getenv("PATIENT_NOTES_DATA_DIR", "./data"))
DATA_DIR.mkdir(parents=True, exist_ok=True)
LOCAL_STORE_DIR = DATA_DIR / "local"

# Schema version lives in the key name, not in the payload
STORAGE_KEY = "patientNotes.v5"
LEGACY_STORAGE_KEYS = ("patientNotes.v1",)

# Remote group store
GROUP_DB_PATH = DATA_DIR / "groups.db"
GROUP_DB_URL = os.getenv("GROUP_DB_URL", f"sqlite:///{GROUP_DB_PATH.resolve()}")
GROUP_ID_PATTERN = r"^[A-Za-z0-9_-]{3,40}$"
REQUIRE_BASE_VERSION = os.getenv("REQUIRE_BASE_VERSION", "").lower() in ("1", "true", "yes")

# Envelope format v=1
PBKDF2_ITERATIONS = 100_000
KEY_SIZE = 32
SALT_SIZE = 16
IV_SIZE = 16

# Device-side sync client
SYNC_BASE_URL = os.getenv("SYNC_BASE_URL", "http://127.0.0.1:8000")
SYNC_TIMEOUT = float(os.environ["SYNC_TIMEOUT"]) if os.getenv("SYNC_TIMEOUT") else None

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()


def configure_logging(level: str = LOG_LEVEL):
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
