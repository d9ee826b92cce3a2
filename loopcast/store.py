"""SQLite storage for plans and per-user streaming usage."""

from __future__ import annotations

import datetime as dt
import logging
import os
import sqlite3
import threading
from typing import Optional

from .models import Plan, User

logger = logging.getLogger(__name__)

DEFAULT_PLANS = [
    # id, name, max_storage_mb, allowed_types, max_active_streams, daily_limit_hours, limit_type
    (1, "Free Trial", 2048, "video,audio", 3, 5, "total"),
    (2, "Pro (Creator)", 10240, "video,audio", 5, 24, "daily"),
    (3, "Radio 24/7", 5120, "audio", 3, 24, "daily"),
    (4, "Private", 25600, "video,audio", 10, 24, "daily"),
]


def utc_today() -> str:
    return dt.datetime.now(dt.timezone.utc).date().isoformat()


class UsageDatabase:
    """Plans and users, one connection per thread."""

    def __init__(self, db_path: str = "data/loopcast.sqlite"):
        self.db_path = db_path
        self.local = threading.local()

    def connect(self) -> sqlite3.Connection:
        conn = getattr(self.local, "conn", None)
        if conn is None:
            directory = os.path.dirname(self.db_path)
            if directory:
                os.makedirs(directory, exist_ok=True)
            conn = sqlite3.connect(self.db_path)
            conn.row_factory = sqlite3.Row
            conn.execute("PRAGMA foreign_keys = ON")
            self.local.conn = conn
        return conn

    def close(self) -> None:
        conn = getattr(self.local, "conn", None)
        if conn is not None:
            conn.close()
            self.local.conn = None

    def initialize(self) -> None:
        """Create tables and seed the default plans."""
        conn = self.connect()
        with conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS plans (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    name TEXT UNIQUE,
                    max_storage_mb INTEGER,
                    allowed_types TEXT,
                    max_active_streams INTEGER,
                    daily_limit_hours INTEGER DEFAULT 24,
                    limit_type TEXT DEFAULT 'daily'
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS users (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    username TEXT UNIQUE,
                    plan_id INTEGER DEFAULT 1,
                    usage_seconds INTEGER DEFAULT 0,
                    last_usage_reset TEXT,
                    FOREIGN KEY(plan_id) REFERENCES plans(id)
                )
                """
            )
            for plan in DEFAULT_PLANS:
                conn.execute(
                    "INSERT OR IGNORE INTO plans (id, name, max_storage_mb, allowed_types, max_active_streams, "
                    "daily_limit_hours, limit_type) VALUES (?, ?, ?, ?, ?, ?, ?)",
                    plan,
                )
                conn.execute(
                    "UPDATE plans SET max_active_streams = ?, daily_limit_hours = ?, limit_type = ? WHERE id = ?",
                    (plan[4], plan[5], plan[6], plan[0]),
                )
        logger.info("Database initialized at %s", self.db_path)

    def create_user(self, username: str, plan_id: int = 1) -> User:
        conn = self.connect()
        with conn:
            cursor = conn.execute(
                "INSERT INTO users (username, plan_id, last_usage_reset) VALUES (?, ?, ?)",
                (username, plan_id, utc_today()),
            )
        return self.get_user(cursor.lastrowid)

    def get_user(self, user_id: int) -> Optional[User]:
        row = self.connect().execute(
            "SELECT id, username, plan_id, usage_seconds, last_usage_reset FROM users WHERE id = ?", (user_id,)
        ).fetchone()
        if row is None:
            return None
        return User(
            id=row["id"],
            username=row["username"],
            plan_id=row["plan_id"],
            usage_seconds=row["usage_seconds"] or 0,
            last_usage_reset=row["last_usage_reset"],
        )

    def set_plan(self, user_id: int, plan_id: int) -> None:
        conn = self.connect()
        with conn:
            conn.execute("UPDATE users SET plan_id = ? WHERE id = ?", (plan_id, user_id))

    def get_plan(self, plan_id: int) -> Optional[Plan]:
        row = self.connect().execute("SELECT * FROM plans WHERE id = ?", (plan_id,)).fetchone()
        return self._plan_from_row(row) if row else None

    def get_plan_for_user(self, user_id: int) -> Optional[Plan]:
        row = self.connect().execute(
            "SELECT p.* FROM users u JOIN plans p ON u.plan_id = p.id WHERE u.id = ?", (user_id,)
        ).fetchone()
        return self._plan_from_row(row) if row else None

    def add_usage(self, user_id: int, delta_seconds: int) -> int:
        """Atomically add to the usage counter and return the new total."""
        conn = self.connect()
        with conn:
            conn.execute(
                "UPDATE users SET usage_seconds = usage_seconds + ? WHERE id = ?", (delta_seconds, user_id)
            )
            row = conn.execute("SELECT usage_seconds FROM users WHERE id = ?", (user_id,)).fetchone()
        return row["usage_seconds"] if row else 0

    def sync_usage(self, user_id: int, today: Optional[str] = None) -> int:
        """Apply the reset policy and return current usage.

        Daily plans start from zero on each new UTC date; total plans never reset.
        """
        today = today or utc_today()
        conn = self.connect()
        row = conn.execute(
            "SELECT u.usage_seconds, u.last_usage_reset, p.limit_type FROM users u "
            "LEFT JOIN plans p ON u.plan_id = p.id WHERE u.id = ?",
            (user_id,),
        ).fetchone()
        if row is None:
            return 0
        if row["limit_type"] == "daily" and row["last_usage_reset"] != today:
            with conn:
                conn.execute(
                    "UPDATE users SET usage_seconds = 0, last_usage_reset = ? WHERE id = ?", (today, user_id)
                )
            return 0
        return row["usage_seconds"] or 0

    @staticmethod
    def _plan_from_row(row: sqlite3.Row) -> Plan:
        allowed = frozenset(t.strip() for t in (row["allowed_types"] or "").split(",") if t.strip())
        return Plan(
            id=row["id"],
            name=row["name"],
            max_storage_mb=row["max_storage_mb"],
            allowed_types=allowed,
            max_active_streams=row["max_active_streams"],
            daily_limit_hours=row["daily_limit_hours"],
            limit_type=row["limit_type"] or "daily",
        )
