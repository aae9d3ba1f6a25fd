"""
Raw content storage for interactions.

Interactions keep only a pointer (raw_content_pointer) to their raw text so
entity rows stay small. Raw text is cached in memory and persisted to a
raw_content table in the graph database.
"""
import logging
import sqlite3
import threading
import uuid
from pathlib import Path
from typing import Optional, Protocol

from api.utils.datetime_utils import utc_now

logger = logging.getLogger(__name__)

# Returned by load() when a pointer cannot be resolved
MISSING_CONTENT = "Content pointer inaccessible."


class BlobStore(Protocol):
    """Port for out-of-band raw content."""

    def save(self, raw_text: str) -> str:
        ...

    def load(self, key: str) -> str:
        ...


def new_blob_key() -> str:
    return f"blob_{uuid.uuid4()}"


class SqliteBlobStore:
    """
    SQLite-backed blob store with an in-memory cache.

    A failed persist is logged; the cached copy stays readable for the life
    of the process.
    """

    def __init__(self, db_path: Optional[str] = None):
        """
        Initialize blob store.

        Args:
            db_path: Path to SQLite database (None = memory only)
        """
        self.db_path = str(db_path) if db_path else None
        self._cache: dict[str, str] = {}
        self._lock = threading.Lock()
        if self.db_path:
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
            self._init_db()

    def _init_db(self):
        conn = sqlite3.connect(self.db_path)
        try:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS raw_content (
                    id TEXT PRIMARY KEY,
                    content TEXT NOT NULL,
                    created_at TIMESTAMP NOT NULL
                )
            """
            )
            conn.commit()
        finally:
            conn.close()

    def save(self, raw_text: str) -> str:
        """
        Store raw text out of band.

        Returns:
            Opaque key for Interaction.raw_content_pointer
        """
        key = new_blob_key()
        with self._lock:
            self._cache[key] = raw_text
        if self.db_path:
            try:
                conn = sqlite3.connect(self.db_path)
                try:
                    conn.execute(
                        "INSERT OR REPLACE INTO raw_content (id, content, created_at) VALUES (?, ?, ?)",
                        (key, raw_text, utc_now().isoformat()),
                    )
                    conn.commit()
                finally:
                    conn.close()
            except sqlite3.Error as e:
                logger.warning(f"Failed to persist raw content {key}: {e}")
        return key

    def load(self, key: str) -> str:
        """Resolve a pointer, falling back to MISSING_CONTENT."""
        with self._lock:
            if key in self._cache:
                return self._cache[key]
        if not self.db_path or not key:
            return MISSING_CONTENT
        try:
            conn = sqlite3.connect(self.db_path)
            try:
                row = conn.execute("SELECT content FROM raw_content WHERE id = ?", (key,)).fetchone()
            finally:
                conn.close()
        except sqlite3.Error as e:
            logger.warning(f"Failed to load raw content {key}: {e}")
            return MISSING_CONTENT
        if row is None:
            return MISSING_CONTENT
        with self._lock:
            self._cache[key] = row[0]
        return row[0]
