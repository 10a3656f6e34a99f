"""
SQLite persistence: confession audit log, process-wide settings and votes.

Snowflake ids are stored as TEXT and handed back as int.
"""

from __future__ import annotations

import sqlite3
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import List, Optional


@dataclass(frozen=True)
class VoteTotal:
    message_id: int
    vote_count: int
    average_stars: float


class ConfessionStore:
    def __init__(self, db_path: str):
        self.db_path = db_path
        self._init_db()

    def _conn(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        return conn

    def _init_db(self) -> None:
        with self._conn() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS confessions (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    user_id TEXT,
                    content TEXT,
                    date TEXT
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS settings (
                    key TEXT PRIMARY KEY,
                    value TEXT
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS votes (
                    message_id TEXT NOT NULL,
                    user_id TEXT NOT NULL,
                    stars INTEGER NOT NULL CHECK (stars BETWEEN 1 AND 5),
                    UNIQUE (message_id, user_id)
                )
            """)

    # --- confessions (write-only audit trail) ---
    def log_confession(self, user_id: int, content: str, date: Optional[datetime] = None) -> int:
        date = date or datetime.now(timezone.utc)
        with self._conn() as conn:
            cur = conn.execute(
                "INSERT INTO confessions (user_id, content, date) VALUES (?, ?, ?)",
                (str(user_id), content, date.isoformat()),
            )
            return int(cur.lastrowid)

    # --- settings ---
    def get_setting(self, key: str) -> Optional[str]:
        with self._conn() as conn:
            row = conn.execute("SELECT value FROM settings WHERE key=?", (key,)).fetchone()
            return row["value"] if row else None

    def set_setting(self, key: str, value: str) -> None:
        with self._conn() as conn:
            conn.execute(
                "INSERT OR REPLACE INTO settings (key, value) VALUES (?, ?)",
                (key, value),
            )

    # --- votes ---
    def record_vote(self, message_id: int, user_id: int, stars: int) -> bool:
        """
        Store one vote unless this user already voted on this message.
        Returns True if the vote was stored, False for a duplicate.
        """
        if not 1 <= stars <= 5:
            raise ValueError(f"stars must be between 1 and 5, got {stars}")
        with self._conn() as conn:
            cur = conn.execute(
                "INSERT OR IGNORE INTO votes (message_id, user_id, stars) VALUES (?, ?, ?)",
                (str(message_id), str(user_id), stars),
            )
            return cur.rowcount == 1

    def has_voted(self, message_id: int, user_id: int) -> bool:
        with self._conn() as conn:
            row = conn.execute(
                "SELECT 1 FROM votes WHERE message_id=? AND user_id=?",
                (str(message_id), str(user_id)),
            ).fetchone()
            return row is not None

    def vote_totals(self) -> List[VoteTotal]:
        with self._conn() as conn:
            rows = conn.execute("""
                SELECT message_id, COUNT(*) AS vote_count, AVG(stars) AS average_stars
                FROM votes
                GROUP BY message_id
                HAVING COUNT(*) > 0
            """).fetchall()
        return [
            VoteTotal(
                message_id=int(row["message_id"]),
                vote_count=row["vote_count"],
                average_stars=float(row["average_stars"]),
            )
            for row in rows
        ]

    def delete_votes(self, message_id: int) -> int:
        with self._conn() as conn:
            cur = conn.execute("DELETE FROM votes WHERE message_id=?", (str(message_id),))
            return cur.rowcount
