"""Per-viewer interaction history."""

import logging
import sqlite3
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Protocol

logger = logging.getLogger(__name__)


@dataclass
class ViewerRecord:
    """What we remember about one viewer."""

    username: str
    message_count: int = 0
    total_bits: int = 0
    months_subscribed: int = 0
    last_seen: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def is_returning(self) -> bool:
        return self.message_count > 1

    def __str__(self) -> str:
        return (
            f"ViewerRecord({self.username}: messages={self.message_count} "
            f"bits={self.total_bits} months={self.months_subscribed})"
        )


class ViewerStore(Protocol):
    """Read/write contract for viewer history, keyed by lowercased username."""

    def get(self, username: str) -> ViewerRecord | None: ...

    def put(self, record: ViewerRecord) -> None: ...


class MemoryViewerStore:
    """Dict-backed store, used when no database path is configured."""

    def __init__(self) -> None:
        self._records: dict[str, ViewerRecord] = {}

    def get(self, username: str) -> ViewerRecord | None:
        return self._records.get(username.lower())

    def put(self, record: ViewerRecord) -> None:
        self._records[record.username.lower()] = record


class SqliteViewerStore:
    """SQLite-backed viewer storage."""

    def __init__(self, db_path: Path | str):
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(str(self.db_path), check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._ensure_schema()
        logger.info(f"SqliteViewerStore initialized at {self.db_path}")

    def _ensure_schema(self) -> None:
        """Create tables if they don't exist."""
        self._conn.executescript("""
            CREATE TABLE IF NOT EXISTS viewers (
                key TEXT PRIMARY KEY,
                username TEXT NOT NULL,
                message_count INTEGER NOT NULL DEFAULT 0,
                total_bits INTEGER NOT NULL DEFAULT 0,
                months_subscribed INTEGER NOT NULL DEFAULT 0,
                last_seen TIMESTAMP NOT NULL
            );
        """)
        self._conn.commit()

    def get(self, username: str) -> ViewerRecord | None:
        row = self._conn.execute(
            """
            SELECT username, message_count, total_bits, months_subscribed, last_seen
            FROM viewers
            WHERE key = ?
            """,
            (username.lower(),),
        ).fetchone()
        if row is None:
            return None
        return ViewerRecord(
            username=row["username"],
            message_count=row["message_count"],
            total_bits=row["total_bits"],
            months_subscribed=row["months_subscribed"],
            last_seen=datetime.fromisoformat(row["last_seen"]),
        )

    def put(self, record: ViewerRecord) -> None:
        """Insert or replace the record for ``record.username``."""
        self._conn.execute(
            """
            INSERT INTO viewers (key, username, message_count, total_bits, months_subscribed, last_seen)
            VALUES (?, ?, ?, ?, ?, ?)
            ON CONFLICT(key) DO UPDATE SET
                username = excluded.username,
                message_count = excluded.message_count,
                total_bits = excluded.total_bits,
                months_subscribed = excluded.months_subscribed,
                last_seen = excluded.last_seen
            """,
            (
                record.username.lower(),
                record.username,
                record.message_count,
                record.total_bits,
                record.months_subscribed,
                record.last_seen.isoformat(),
            ),
        )
        self._conn.commit()

    def count(self) -> int:
        return self._conn.execute("SELECT COUNT(*) FROM viewers").fetchone()[0]

    def close(self) -> None:
        """Close the database connection."""
        self._conn.close()
