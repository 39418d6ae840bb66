"""
SQLite database for the LRM catalog.

This module owns the physical layout and the transaction boundaries:
- mp_res: one root row per resource (identity, kind, notes, timestamps)
- mp_<layer>: one table per specialization layer, keyed by the root identity
- mp_relationship: the generic typed edge table
- schema_version: schema version and registry fingerprint

The DDL is generated from the TypeRegistry so adding a layer or a kind is a
registry change only.

Invariants:
    - PRAGMA foreign_keys is ON for every connection
    - Layer tables reference their parent layer (or mp_res) ON DELETE CASCADE
    - Edge endpoints reference mp_res ON DELETE CASCADE
    - kind and rel_type columns are pinned to the closed enumerations by CHECK
    - All multi-statement writes run inside transaction()

How to change safely:
    - Add columns by adding fields to the registry; never rename columns
    - Bump SCHEMA_VERSION when the layout of the fixed tables changes
    - Test with large datasets before production

Table schema:
    mp_res:
        - id TEXT (UUID) PRIMARY KEY
        - kind TEXT
        - notes_json TEXT (JSON list)
        - created_at INTEGER (Unix ms)
        - updated_at INTEGER (Unix ms, NULL until first mutation)

    mp_<layer>:
        - id TEXT PRIMARY KEY REFERENCES <parent table>(id) ON DELETE CASCADE
        - one column per layer field

    mp_relationship:
        - id TEXT (UUID) PRIMARY KEY
        - source_id TEXT REFERENCES mp_res(id) ON DELETE CASCADE
        - target_id TEXT REFERENCES mp_res(id) ON DELETE CASCADE
        - rel_type TEXT
        - start_date INTEGER, end_date INTEGER (Unix ms)
        - note TEXT
        - created_at INTEGER (Unix ms)
"""

from __future__ import annotations

import asyncio
import logging
import sqlite3
import time
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

from ..errors import StorageUnavailableError
from ..schema import EntityKind, LayerDef, RelationshipKind, TypeRegistry

logger = logging.getLogger(__name__)

ROOT_TABLE = "mp_res"
EDGE_TABLE = "mp_relationship"

# SQLite host parameter limit is 999 on older builds
MAX_VARIABLES = 500


def quote(identifier: str) -> str:
    """Quote an SQL identifier."""
    return '"' + identifier.replace('"', '""') + '"'


def chunked(values: list[str], size: int = MAX_VARIABLES) -> Iterator[list[str]]:
    """Split a list into chunks that fit in one IN (...) clause."""
    for start in range(0, len(values), size):
        yield values[start:start + size]


def placeholders(count: int) -> str:
    """Comma separated '?' placeholders."""
    return ", ".join("?" for _ in range(count))


def now_ms() -> int:
    """Current time in Unix milliseconds."""
    return int(time.time() * 1000)


class Database:
    """SQLite database holding the catalog tables.

    Thread safety:
        Each operation opens its own connection.
        SQLite handles concurrent access via WAL mode.

    Example:
        >>> db = Database("/var/lib/catalog/catalog.db", get_registry())
        >>> await db.initialize()
        >>> with db.connect() as conn, db.transaction(conn):
        ...     conn.execute("DELETE FROM mp_res WHERE id = ?", (entity_id,))
    """

    SCHEMA_VERSION = 1

    def __init__(
        self,
        path: str,
        registry: TypeRegistry,
        wal_mode: bool = True,
        busy_timeout_ms: int = 5000,
        cache_size_pages: int = -64000,
    ) -> None:
        """Initialize the database handle.

        Args:
            path: SQLite database file
            registry: Frozen type registry used to generate the layout
            wal_mode: Enable SQLite WAL mode
            busy_timeout_ms: SQLite busy timeout
            cache_size_pages: SQLite cache size (negative = KB)
        """
        self.path = Path(path)
        self.registry = registry
        self.wal_mode = wal_mode
        self.busy_timeout_ms = busy_timeout_ms
        self.cache_size_pages = cache_size_pages
        self._lock = asyncio.Lock()

    @contextmanager
    def connect(self, create: bool = False) -> Iterator[sqlite3.Connection]:
        """Open a configured connection.

        Args:
            create: Whether to create the database file if it doesn't exist

        Yields:
            SQLite connection in autocommit mode

        Raises:
            StorageUnavailableError: If the database is missing or can't be opened
        """
        if not create and not self.path.exists():
            raise StorageUnavailableError(
                f"Catalog database not found: {self.path}", operation="connect"
            )

        try:
            if create:
                self.path.parent.mkdir(parents=True, exist_ok=True)
            conn = sqlite3.connect(
                str(self.path),
                timeout=self.busy_timeout_ms / 1000.0,
                isolation_level=None,  # Autocommit by default, explicit transactions
            )
        except (sqlite3.Error, OSError) as e:
            raise StorageUnavailableError(
                f"Cannot open catalog database {self.path}: {e}", operation="connect"
            ) from e

        conn.row_factory = sqlite3.Row

        try:
            try:
                conn.execute(f"PRAGMA busy_timeout = {self.busy_timeout_ms}")
                conn.execute(f"PRAGMA cache_size = {self.cache_size_pages}")
                if self.wal_mode:
                    conn.execute("PRAGMA journal_mode = WAL")
                conn.execute("PRAGMA synchronous = NORMAL")
                conn.execute("PRAGMA foreign_keys = ON")
            except sqlite3.Error as e:
                raise StorageUnavailableError(
                    f"Cannot configure catalog database: {e}", operation="connect"
                ) from e

            yield conn
        finally:
            conn.close()

    @contextmanager
    def transaction(self, conn: sqlite3.Connection) -> Iterator[sqlite3.Connection]:
        """Run a write unit of work.

        BEGIN IMMEDIATE takes the write lock up front so validation reads and
        the writes that depend on them see the same data. Any exception rolls
        back every statement of the unit.

        Raises:
            StorageUnavailableError: On lock timeouts and I/O failures
                (retryable) or constraint violations (not retryable)
        """
        try:
            conn.execute("BEGIN IMMEDIATE")
        except sqlite3.OperationalError as e:
            raise StorageUnavailableError(
                f"Cannot begin transaction: {e}", operation="begin"
            ) from e

        try:
            yield conn
            conn.execute("COMMIT")
        except BaseException as e:
            # SQLite may already have rolled back on I/O errors
            if conn.in_transaction:
                conn.execute("ROLLBACK")
            if isinstance(e, sqlite3.IntegrityError):
                raise StorageUnavailableError(
                    f"Write rejected by the store: {e}", operation="write", retryable=False
                ) from e
            if isinstance(e, sqlite3.DatabaseError):
                raise StorageUnavailableError(
                    f"Transaction failed: {e}", operation="write"
                ) from e
            raise

    @contextmanager
    def read_snapshot(self, conn: sqlite3.Connection) -> Iterator[sqlite3.Connection]:
        """Group several reads into one consistent snapshot."""
        try:
            conn.execute("BEGIN")
        except sqlite3.OperationalError as e:
            raise StorageUnavailableError(
                f"Cannot begin read: {e}", operation="read"
            ) from e

        try:
            yield conn
        except sqlite3.DatabaseError as e:
            raise StorageUnavailableError(f"Read failed: {e}", operation="read") from e
        finally:
            if conn.in_transaction:
                conn.execute("COMMIT")

    # Schema

    def _layer_ddl(self, layer: LayerDef) -> str:
        parent_table = ROOT_TABLE
        if layer.parent is not None:
            parent = self.registry.get_layer(layer.parent)
            parent_table = parent.table
        columns = [f"id TEXT PRIMARY KEY REFERENCES {quote(parent_table)}(id) ON DELETE CASCADE"]
        for f in layer.fields:
            column = f"{quote(f.name)} {f.kind.sql_type}"
            if f.required:
                column += " NOT NULL"
            columns.append(column)
        body = ",\n    ".join(columns)
        return f"CREATE TABLE IF NOT EXISTS {quote(layer.table)} (\n    {body}\n);"

    def schema_sql(self) -> str:
        """Generate the full DDL for the registry."""
        kinds = ", ".join(f"'{k.value}'" for k in EntityKind)
        rel_types = ", ".join(f"'{r.value}'" for r in RelationshipKind)

        statements = [
            """
CREATE TABLE IF NOT EXISTS schema_version (
    version INTEGER PRIMARY KEY,
    fingerprint TEXT,
    applied_at INTEGER NOT NULL
);""",
            f"""
CREATE TABLE IF NOT EXISTS {ROOT_TABLE} (
    id TEXT PRIMARY KEY,
    kind TEXT NOT NULL CHECK (kind IN ({kinds})),
    notes_json TEXT NOT NULL DEFAULT '[]',
    created_at INTEGER NOT NULL,
    updated_at INTEGER
);
CREATE INDEX IF NOT EXISTS idx_mp_res_kind ON {ROOT_TABLE}(kind);
CREATE INDEX IF NOT EXISTS idx_mp_res_created ON {ROOT_TABLE}(created_at DESC, id DESC);""",
        ]

        # Registration order is parent-first, so referenced tables exist
        for layer in self.registry.layers():
            statements.append(self._layer_ddl(layer))

        statements.append(f"""
CREATE TABLE IF NOT EXISTS {EDGE_TABLE} (
    id TEXT PRIMARY KEY,
    source_id TEXT NOT NULL REFERENCES {ROOT_TABLE}(id) ON DELETE CASCADE,
    target_id TEXT NOT NULL REFERENCES {ROOT_TABLE}(id) ON DELETE CASCADE,
    rel_type TEXT NOT NULL CHECK (rel_type IN ({rel_types})),
    start_date INTEGER,
    end_date INTEGER,
    note TEXT,
    created_at INTEGER NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_mp_relationship_composite
    ON {EDGE_TABLE}(source_id, rel_type, target_id);
CREATE INDEX IF NOT EXISTS idx_mp_relationship_source ON {EDGE_TABLE}(source_id);
CREATE INDEX IF NOT EXISTS idx_mp_relationship_target ON {EDGE_TABLE}(target_id);
CREATE INDEX IF NOT EXISTS idx_mp_relationship_type ON {EDGE_TABLE}(rel_type);""")

        return "\n".join(s.strip() for s in statements) + "\n"

    def create_schema(self) -> None:
        """Create the database file and tables if they don't exist."""
        with self.connect(create=True) as conn:
            try:
                conn.executescript(self.schema_sql())
                conn.execute(
                    """
                    INSERT OR IGNORE INTO schema_version (version, fingerprint, applied_at)
                    VALUES (?, ?, ?)
                    """,
                    (self.SCHEMA_VERSION, self.registry.fingerprint, now_ms()),
                )
                row = conn.execute(
                    "SELECT fingerprint FROM schema_version WHERE version = ?",
                    (self.SCHEMA_VERSION,),
                ).fetchone()
            except sqlite3.DatabaseError as e:
                raise StorageUnavailableError(
                    f"Cannot create catalog schema: {e}", operation="create_schema"
                ) from e

        if row is not None and row["fingerprint"] != self.registry.fingerprint:
            logger.warning(
                "Stored schema fingerprint differs from the running registry",
                extra={
                    "stored": row["fingerprint"],
                    "running": self.registry.fingerprint,
                },
            )
        logger.info(f"Initialized catalog database: {self.path}")

    async def initialize(self) -> None:
        """Create the schema once, serialized against concurrent initializers."""
        async with self._lock:
            self.create_schema()

    async def get_stats(self) -> dict[str, int]:
        """Row counts of the root and edge tables."""
        with self.connect() as conn, self.read_snapshot(conn):
            stats = {}
            stats["resources"] = conn.execute(f"SELECT COUNT(*) FROM {ROOT_TABLE}").fetchone()[0]
            stats["relationships"] = conn.execute(
                f"SELECT COUNT(*) FROM {EDGE_TABLE}"
            ).fetchone()[0]
            return stats
