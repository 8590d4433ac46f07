"""
Record Store — durable keyed storage for World records.

Behavioral Contract:
- Records are keyed on (id, environment).
- insert_if_absent is the only cross-process coordination primitive: it is a
  single INSERT against a primary key, so exactly one of any number of
  concurrent inserts for the same key succeeds, across threads and processes
  sharing the database file.
- put replaces an existing record whole (last write wins) and never creates one.
- query returns records in insertion order.
"""

import json
import sqlite3
import threading
from typing import List, Optional, Protocol, Union

from world_manager.models.world import Category, Environment, World

EnvLike = Union[Environment, str]


class RecordStore(Protocol):
    """Swappable World record backend."""

    def insert_if_absent(self, world: World) -> bool:
        """Insert the record unless its key exists. Returns True if inserted."""
        ...

    def get(self, world_id: str, environment: EnvLike) -> Optional[World]:
        """Fetch one record by key."""
        ...

    def put(self, world: World) -> bool:
        """Overwrite an existing record. Returns False if it doesn't exist."""
        ...

    def delete(self, world_id: str, environment: EnvLike) -> bool:
        """Remove a record. Returns True if it existed."""
        ...

    def query(
        self,
        environment: Optional[EnvLike] = None,
        category: Optional[Category] = None,
        is_active: Optional[bool] = None,
        is_template: Optional[bool] = None,
    ) -> List[World]:
        """Filter on indexed columns, insertion order."""
        ...

    def close(self) -> None:
        ...


class SqliteRecordStore:
    """
    SQLite-backed record store.
    Uniqueness is a PRIMARY KEY constraint, so it holds for every process
    that opens the same database file.
    """

    def __init__(self, db_path: str = ":memory:", timeout: float = 30.0):
        self.db_path = db_path
        self._conn = sqlite3.connect(db_path, timeout=timeout, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._lock = threading.Lock()
        self._init_schema()

    def _init_schema(self) -> None:
        """Create the worlds table if it doesn't exist."""
        with self._lock:
            self._conn.execute("""
                CREATE TABLE IF NOT EXISTS worlds (
                    id TEXT NOT NULL,
                    environment TEXT NOT NULL,
                    category TEXT NOT NULL,
                    is_active INTEGER NOT NULL DEFAULT 1,
                    is_template INTEGER NOT NULL DEFAULT 0,
                    updated_at TEXT NOT NULL,
                    record_json TEXT NOT NULL,
                    PRIMARY KEY (id, environment)
                )
            """)
            self._conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_worlds_environment ON worlds(environment)
            """)
            self._conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_worlds_active ON worlds(is_active)
            """)
            self._conn.commit()

    @staticmethod
    def _columns(world: World) -> tuple:
        return (
            world.category.value,
            int(world.is_active),
            int(world.is_template),
            world.updated_at.isoformat(),
            world.model_dump_json(),
        )

    def _deserialize(self, row: sqlite3.Row) -> World:
        return World.model_validate(json.loads(row["record_json"]))

    def insert_if_absent(self, world: World) -> bool:
        try:
            with self._lock:
                with self._conn:
                    self._conn.execute(
                        """
                        INSERT INTO worlds (
                            id, environment, category, is_active, is_template,
                            updated_at, record_json
                        ) VALUES (?, ?, ?, ?, ?, ?, ?)
                        """,
                        (world.id, world.environment.value) + self._columns(world),
                    )
        except sqlite3.IntegrityError:
            return False
        return True

    def get(self, world_id: str, environment: EnvLike) -> Optional[World]:
        with self._lock:
            row = self._conn.execute(
                "SELECT record_json FROM worlds WHERE id = ? AND environment = ?",
                (world_id, Environment(environment).value),
            ).fetchone()
        return self._deserialize(row) if row else None

    def put(self, world: World) -> bool:
        with self._lock:
            with self._conn:
                cursor = self._conn.execute(
                    """
                    UPDATE worlds
                    SET category = ?, is_active = ?, is_template = ?,
                        updated_at = ?, record_json = ?
                    WHERE id = ? AND environment = ?
                    """,
                    self._columns(world) + (world.id, world.environment.value),
                )
        return cursor.rowcount > 0

    def delete(self, world_id: str, environment: EnvLike) -> bool:
        with self._lock:
            with self._conn:
                cursor = self._conn.execute(
                    "DELETE FROM worlds WHERE id = ? AND environment = ?",
                    (world_id, Environment(environment).value),
                )
        return cursor.rowcount > 0

    def query(
        self,
        environment: Optional[EnvLike] = None,
        category: Optional[Category] = None,
        is_active: Optional[bool] = None,
        is_template: Optional[bool] = None,
    ) -> List[World]:
        clauses = []
        params: list = []
        if environment is not None:
            clauses.append("environment = ?")
            params.append(Environment(environment).value)
        if category is not None:
            clauses.append("category = ?")
            params.append(Category(category).value)
        if is_active is not None:
            clauses.append("is_active = ?")
            params.append(int(is_active))
        if is_template is not None:
            clauses.append("is_template = ?")
            params.append(int(is_template))

        sql = "SELECT record_json FROM worlds"
        if clauses:
            sql += " WHERE " + " AND ".join(clauses)
        sql += " ORDER BY rowid"

        with self._lock:
            rows = self._conn.execute(sql, params).fetchall()
        return [self._deserialize(r) for r in rows]

    def count(self) -> int:
        """Total number of records."""
        with self._lock:
            row = self._conn.execute("SELECT COUNT(*) AS cnt FROM worlds").fetchone()
        return row["cnt"]

    def close(self) -> None:
        """Close the database connection."""
        self._conn.close()
