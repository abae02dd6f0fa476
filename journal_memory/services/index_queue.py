"""
Durable indexing queue using SQLite.

Holds (entityType, entityId) pairs awaiting embedding generation. Every
mutation is committed immediately, so the queue survives process restarts
and there is no separate in-memory copy to drift out of sync.

Items are processed in insertion order. A failed item keeps its original
position; its attempt count and last error are recorded but never cap
retries. Rows written in the legacy bare-id form are rewritten to the typed
key when read.
"""

import logging
import sqlite3
from collections.abc import Iterable
from datetime import UTC, datetime
from pathlib import Path

from journal_memory.errors import StoreUnavailableError
from journal_memory.models.queue import EntityRef

logger = logging.getLogger(__name__)


class IndexQueue:
    """SQLite-backed FIFO set of entity references"""

    def __init__(self, db_path: str):
        """
        Args:
            db_path: Path to SQLite database file, or ":memory:"
        """
        self.db_path = db_path
        self._conn: sqlite3.Connection | None = None

    async def initialize(self) -> None:
        """Open the database and create the queue table"""
        if self._conn is not None:
            return

        if self.db_path != ":memory:":
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)

        self._conn = sqlite3.connect(self.db_path)
        self._conn.row_factory = sqlite3.Row

        if self.db_path != ":memory:":
            self._conn.execute("PRAGMA journal_mode=WAL")

        self._conn.execute("""
            CREATE TABLE IF NOT EXISTS index_queue (
                position INTEGER PRIMARY KEY AUTOINCREMENT,
                item_key TEXT NOT NULL UNIQUE,
                queued_at TEXT NOT NULL,
                attempts INTEGER NOT NULL DEFAULT 0,
                last_error TEXT
            )
        """)
        self._conn.commit()
        self._canonicalize(self._conn)

        restored = await self.length()
        if restored:
            logger.info(f"Restored {restored} items from persisted index queue")

    def _require_connection(self) -> sqlite3.Connection:
        if self._conn is None:
            raise StoreUnavailableError(f"Index queue is not initialized: {self.db_path}")
        return self._conn

    async def add(self, ref: EntityRef) -> bool:
        """
        Append an item unless it is already queued

        Returns:
            True if the item was added, False if it was already present
        """
        conn = self._require_connection()
        cursor = conn.execute(
            "INSERT OR IGNORE INTO index_queue (item_key, queued_at) VALUES (?, ?)",
            (ref.key, datetime.now(UTC).isoformat()),
        )
        conn.commit()
        return cursor.rowcount > 0

    async def remove(self, ref: EntityRef) -> bool:
        conn = self._require_connection()
        cursor = conn.execute("DELETE FROM index_queue WHERE item_key = ?", (ref.key,))
        conn.commit()
        return cursor.rowcount > 0

    async def contains(self, ref: EntityRef) -> bool:
        conn = self._require_connection()
        row = conn.execute(
            "SELECT 1 FROM index_queue WHERE item_key = ?", (ref.key,)
        ).fetchone()
        return row is not None

    async def items(self) -> list[EntityRef]:
        """Queued items in processing (insertion) order"""
        conn = self._require_connection()
        self._canonicalize(conn)
        rows = conn.execute("SELECT item_key FROM index_queue ORDER BY position").fetchall()
        return [EntityRef.parse(row["item_key"]) for row in rows]

    def _canonicalize(self, conn: sqlite3.Connection) -> None:
        """
        Rewrite legacy rows to the "<entityType>:<entityId>" key

        A bare id row keeps its position; a later row for the same entity is
        dropped. Rows that cannot be parsed are deleted.
        """
        rows = conn.execute("SELECT position, item_key FROM index_queue ORDER BY position")
        seen: set[EntityRef] = set()
        changed = False

        for row in rows.fetchall():
            raw = row["item_key"]
            try:
                ref = EntityRef.parse(raw)
            except ValueError as e:
                logger.warning(f"Dropping unreadable queue item {raw!r}: {e}")
                conn.execute("DELETE FROM index_queue WHERE position = ?", (row["position"],))
                changed = True
                continue

            if ref in seen:
                conn.execute("DELETE FROM index_queue WHERE position = ?", (row["position"],))
                changed = True
                continue
            seen.add(ref)

            if ref.key != raw:
                conn.execute("DELETE FROM index_queue WHERE item_key = ?", (ref.key,))
                conn.execute(
                    "UPDATE index_queue SET item_key = ? WHERE position = ?",
                    (ref.key, row["position"]),
                )
                changed = True

        if changed:
            conn.commit()

    async def length(self) -> int:
        conn = self._require_connection()
        result = conn.execute("SELECT COUNT(*) FROM index_queue").fetchone()
        return result[0] if result else 0

    async def record_failure(self, ref: EntityRef, error: str) -> None:
        """Note a failed attempt; the item keeps its position"""
        conn = self._require_connection()
        conn.execute(
            """
            UPDATE index_queue
            SET attempts = attempts + 1, last_error = ?
            WHERE item_key = ?
            """,
            (error[:500], ref.key),
        )
        conn.commit()

    async def attempts(self, ref: EntityRef) -> int:
        conn = self._require_connection()
        row = conn.execute(
            "SELECT attempts FROM index_queue WHERE item_key = ?", (ref.key,)
        ).fetchone()
        return row["attempts"] if row else 0

    async def clear(self) -> int:
        """Drop every queued item; returns how many were removed"""
        conn = self._require_connection()
        cursor = conn.execute("DELETE FROM index_queue")
        conn.commit()
        return cursor.rowcount

    async def export(self) -> list[str]:
        """Queued items in the persisted "<entityType>:<entityId>" form"""
        return [ref.key for ref in await self.items()]

    async def import_legacy(self, raw_items: Iterable[str]) -> int:
        """
        Load a list of persisted queue strings

        Bare identifiers are treated as message ids. Unreadable entries are
        logged and skipped.

        Returns:
            Number of items newly added
        """
        added = 0
        for raw in raw_items:
            try:
                ref = EntityRef.parse(raw)
            except ValueError as e:
                logger.warning(f"Skipping legacy queue item {raw!r}: {e}")
                continue
            if await self.add(ref):
                added += 1
        return added

    def close(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None
