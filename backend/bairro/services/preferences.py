import sqlite3
from pathlib import Path
from threading import Lock

from bairro.config import DEFAULT_SEARCH_RADIUS_KM, MAX_SEARCH_RADIUS_KM, MIN_SEARCH_RADIUS_KM
from bairro.services.errors import ValidationError


class PreferenceStore:
    """Durable per-user search radius, the only state the core keeps locally."""

    def __init__(self, db_path: str, default_radius_km: int = DEFAULT_SEARCH_RADIUS_KM) -> None:
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self.default_radius_km = default_radius_km
        self._lock = Lock()
        self._init_db()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self.db_path), check_same_thread=False)
        conn.row_factory = sqlite3.Row
        return conn

    def _init_db(self) -> None:
        with self._lock:
            with self._connect() as conn:
                conn.execute(
                    """
                    CREATE TABLE IF NOT EXISTS user_preferences (
                        user_id TEXT PRIMARY KEY,
                        search_radius_km INTEGER NOT NULL,
                        updated_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
                    )
                    """
                )
                conn.commit()

    def load_search_radius(self, user_id: str) -> int:
        with self._lock:
            with self._connect() as conn:
                row = conn.execute(
                    "SELECT search_radius_km FROM user_preferences WHERE user_id = ?",
                    (user_id,),
                ).fetchone()
        if not row:
            return self.default_radius_km
        try:
            radius = int(row["search_radius_km"])
        except (TypeError, ValueError):
            return self.default_radius_km
        if not MIN_SEARCH_RADIUS_KM <= radius <= MAX_SEARCH_RADIUS_KM:
            return self.default_radius_km
        return radius

    def save_search_radius(self, user_id: str, radius_km: int) -> int:
        if isinstance(radius_km, bool) or not isinstance(radius_km, int):
            raise ValidationError("Search radius must be a whole number of kilometres")
        if not MIN_SEARCH_RADIUS_KM <= radius_km <= MAX_SEARCH_RADIUS_KM:
            raise ValidationError(
                f"Search radius must be between {MIN_SEARCH_RADIUS_KM} and {MAX_SEARCH_RADIUS_KM} km"
            )
        with self._lock:
            with self._connect() as conn:
                conn.execute(
                    """
                    INSERT INTO user_preferences (user_id, search_radius_km, updated_at)
                    VALUES (?, ?, CURRENT_TIMESTAMP)
                    ON CONFLICT(user_id) DO UPDATE SET
                        search_radius_km = excluded.search_radius_km,
                        updated_at = CURRENT_TIMESTAMP
                    """,
                    (user_id, radius_km),
                )
                conn.commit()
        return radius_km
