import math
import os
from pathlib import Path
from typing import Optional


def _env_int(name: str, default: int, minimum: Optional[int] = None, maximum: Optional[int] = None) -> int:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError:
        return default
    if minimum is not None and value < minimum:
        return default
    if maximum is not None and value > maximum:
        return default
    return value


def _env_float(name: str, default: float, minimum: Optional[float] = None, maximum: Optional[float] = None) -> float:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        value = float(raw)
    except ValueError:
        return default
    if not math.isfinite(value):
        return default
    if minimum is not None and value < minimum:
        return default
    if maximum is not None and value > maximum:
        return default
    return value


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name, "").strip().lower()
    if not raw:
        return default
    return raw in {"1", "true", "yes"}


def parse_csv_env(name: str, default: str) -> list[str]:
    raw = os.getenv(name, default)
    return [item.strip() for item in raw.split(",") if item.strip()]


LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

DOCUMENT_STORE_BACKEND = os.getenv("DOCUMENT_STORE_BACKEND", "memory").strip().lower()
FIREBASE_CREDENTIALS_PATH = os.getenv("FIREBASE_CREDENTIALS_PATH", "").strip()
FIREBASE_PROJECT_ID = os.getenv("FIREBASE_PROJECT_ID", "").strip() or None
SEED_DEMO_DATA = _env_bool("SEED_DEMO_DATA", True)

_default_preferences_db = str(Path(__file__).resolve().parents[1] / "data" / "preferences.sqlite3")
PREFERENCES_DB_PATH = os.getenv("PREFERENCES_DB_PATH", _default_preferences_db)

USERS_COLLECTION = os.getenv("USERS_COLLECTION", "users")
CONVERSATIONS_COLLECTION = os.getenv("CONVERSATIONS_COLLECTION", "chats")
MESSAGES_SUBCOLLECTION = os.getenv("MESSAGES_SUBCOLLECTION", "messages")
REVIEWS_COLLECTION = os.getenv("REVIEWS_COLLECTION", "reviews")

MIN_SEARCH_RADIUS_KM = 1
MAX_SEARCH_RADIUS_KM = 50
DEFAULT_SEARCH_RADIUS_KM = _env_int(
    "DEFAULT_SEARCH_RADIUS_KM", 5, minimum=MIN_SEARCH_RADIUS_KM, maximum=MAX_SEARCH_RADIUS_KM
)
DISCOVERY_FETCH_LIMIT = _env_int("DISCOVERY_FETCH_LIMIT", 50, minimum=1)
DISCOVERY_RESULT_CAP = _env_int("DISCOVERY_RESULT_CAP", 50, minimum=1)

# Rio de Janeiro city centre.
DEFAULT_LATITUDE = _env_float("DEFAULT_LATITUDE", -22.9068, minimum=-90, maximum=90)
DEFAULT_LONGITUDE = _env_float("DEFAULT_LONGITUDE", -43.1729, minimum=-180, maximum=180)
LOCATION_TIMEOUT_SECONDS = _env_float("LOCATION_TIMEOUT_SECONDS", 10.0)

MESSAGE_MAX_LENGTH = 500
REVIEW_COMMENT_MAX_LENGTH = 500

NOTIFICATION_CONVERSATION_LIMIT = _env_int("NOTIFICATION_CONVERSATION_LIMIT", 10, minimum=1)
NOTIFICATION_REVIEW_LIMIT = _env_int("NOTIFICATION_REVIEW_LIMIT", 5, minimum=1)
