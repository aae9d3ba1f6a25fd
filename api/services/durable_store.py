"""
Durable mirror for the identity graph.

The EntityStore keeps the authoritative in-memory collections; a DurableStore
only receives a copy of each row so the graph survives restarts.

Each entity kind is stored as a JSON document table keyed by the record's
primary key. Rows are plain dicts produced by the record's to_dict().
"""
import json
import logging
import sqlite3
import threading
from enum import Enum
from pathlib import Path
from typing import Optional, Protocol

from api.utils.datetime_utils import utc_now

logger = logging.getLogger(__name__)


class EntityKind(str, Enum):
    """Entity kinds mirrored to durable storage."""

    PERSONS = "persons"
    EVIDENCE = "evidence"
    INTERACTIONS = "interactions"
    PARTICIPANTS = "participants"
    SYNC_STATES = "sync_states"
    SYNC_RUNS = "sync_runs"

    @property
    def key_field(self) -> str:
        """Field of the row dict used as primary key."""
        return _KEY_FIELDS[self]


_KEY_FIELDS = {
    EntityKind.PERSONS: "id",
    EntityKind.EVIDENCE: "id",
    EntityKind.INTERACTIONS: "id",
    EntityKind.PARTICIPANTS: "id",
    EntityKind.SYNC_STATES: "platform",
    EntityKind.SYNC_RUNS: "run_id",
}


def row_key(kind: EntityKind, row: dict) -> str:
    """Primary key of a row (participants use interaction:person)."""
    if kind == EntityKind.PARTICIPANTS and "id" not in row:
        return f"{row['interaction_id']}:{row['person_id']}"
    return str(row[kind.key_field])


class DurableStore(Protocol):
    """Port implemented by durable backends."""

    def fetch_all(self, kind: EntityKind) -> list[dict]:
        ...

    def upsert(self, kind: EntityKind, row: dict) -> None:
        ...

    def get_scalar(self, kind: EntityKind, key: str) -> Optional[dict]:
        ...


class SqliteDurableStore:
    """
    SQLite-backed durable store.

    One table per entity kind, each row a JSON document. Connections are
    opened per call so the store can be used from the write-behind worker
    thread and from request threads alike.
    """

    def __init__(self, db_path: str):
        """
        Initialize durable store.

        Args:
            db_path: Path to SQLite database
        """
        self.db_path = str(db_path)
        Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    def _init_db(self):
        """Create one document table per entity kind."""
        conn = sqlite3.connect(self.db_path)
        try:
            for kind in EntityKind:
                conn.execute(
                    f"""
                    CREATE TABLE IF NOT EXISTS {kind.value} (
                        id TEXT PRIMARY KEY,
                        data TEXT NOT NULL,
                        updated_at TIMESTAMP NOT NULL
                    )
                """
                )
            conn.commit()
            logger.info(f"Initialized graph database at {self.db_path}")
        finally:
            conn.close()

    def _get_connection(self) -> sqlite3.Connection:
        return sqlite3.connect(self.db_path)

    def fetch_all(self, kind: EntityKind) -> list[dict]:
        conn = self._get_connection()
        try:
            cursor = conn.execute(f"SELECT data FROM {kind.value}")
            return [json.loads(row[0]) for row in cursor.fetchall()]
        finally:
            conn.close()

    def upsert(self, kind: EntityKind, row: dict) -> None:
        conn = self._get_connection()
        try:
            conn.execute(
                f"INSERT OR REPLACE INTO {kind.value} (id, data, updated_at) VALUES (?, ?, ?)",
                (row_key(kind, row), json.dumps(row), utc_now().isoformat()),
            )
            conn.commit()
        finally:
            conn.close()

    def get_scalar(self, kind: EntityKind, key: str) -> Optional[dict]:
        conn = self._get_connection()
        try:
            cursor = conn.execute(f"SELECT data FROM {kind.value} WHERE id = ?", (key,))
            row = cursor.fetchone()
            if row:
                return json.loads(row[0])
            return None
        finally:
            conn.close()


class InMemoryDurableStore:
    """Dict-backed durable store for tests and ephemeral runs."""

    def __init__(self):
        self._tables: dict[EntityKind, dict[str, dict]] = {kind: {} for kind in EntityKind}
        self._lock = threading.Lock()

    def fetch_all(self, kind: EntityKind) -> list[dict]:
        with self._lock:
            return [dict(row) for row in self._tables[kind].values()]

    def upsert(self, kind: EntityKind, row: dict) -> None:
        with self._lock:
            self._tables[kind][row_key(kind, row)] = dict(row)

    def get_scalar(self, kind: EntityKind, key: str) -> Optional[dict]:
        with self._lock:
            row = self._tables[kind].get(key)
            return dict(row) if row else None
