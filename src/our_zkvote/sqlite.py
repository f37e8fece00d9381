"""SQLite storage for the nullifier ledger, identity registry and action log.

One database file holds all three tables. Uniqueness is enforced by the
schema: consuming a nullifier is a single INSERT against
``PRIMARY KEY (domain, nullifier)``, and a constraint violation means the
nullifier was already used. There is never a read-then-write.

Field elements exceed 64 bits, so they are stored as decimal TEXT.
"""

from __future__ import annotations

import json
import logging
import sqlite3
import threading
from collections.abc import Iterator
from contextlib import AbstractContextManager, contextmanager, nullcontext
from datetime import datetime
from pathlib import Path
from typing import Any

from our_zkvote._primitives import to_field
from our_zkvote.ledger import ConsumeResult, DomainLike, NullifierLedger, domain_name
from our_zkvote.store import ActionLog, ActionRecord, IdentityRegistry

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 1

SCHEMA = """
CREATE TABLE IF NOT EXISTS schema_version (
    version INTEGER PRIMARY KEY
);

-- Consumed nullifiers, one partition per domain
CREATE TABLE IF NOT EXISTS nullifiers (
    domain TEXT NOT NULL,
    nullifier TEXT NOT NULL,
    consumed_at TEXT NOT NULL,
    PRIMARY KEY (domain, nullifier)
);

-- Registered identity commitments
CREATE TABLE IF NOT EXISTS identities (
    commitment TEXT PRIMARY KEY,
    registered_at TEXT NOT NULL
);

-- Accepted actions
CREATE TABLE IF NOT EXISTS actions (
    seq INTEGER PRIMARY KEY AUTOINCREMENT,
    domain TEXT NOT NULL,
    nullifier TEXT NOT NULL,
    action_commitment TEXT NOT NULL,
    metadata TEXT NOT NULL,
    recorded_at TEXT NOT NULL,
    UNIQUE (domain, nullifier)
);
"""


class SQLiteDatabase:
    """Shared SQLite connection with serialized access.

    Args:
        path: Database file, or ":memory:" for a private in-memory database
    """

    def __init__(self, path: str | Path = ":memory:"):
        self.path = str(path)
        if self.path != ":memory:":
            Path(self.path).parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.RLock()
        self._depth = 0
        self._conn = sqlite3.connect(self.path, check_same_thread=False, isolation_level=None)
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.execute("PRAGMA synchronous=FULL")
        self._init_schema()

    def _init_schema(self) -> None:
        with self._lock:
            self._conn.executescript(SCHEMA)
            row = self._conn.execute("SELECT version FROM schema_version").fetchone()
            if row is None:
                self._conn.execute("INSERT INTO schema_version (version) VALUES (?)", (SCHEMA_VERSION,))
            elif row[0] != SCHEMA_VERSION:
                raise sqlite3.DatabaseError(f"Unsupported schema version {row[0]}, expected {SCHEMA_VERSION}")
        logger.debug(f"Opened database {self.path}")

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Run statements in one immediate transaction.

        A nested call on the same thread opens a savepoint: its failure undoes
        only the inner block, and nothing commits before the outermost block.
        """
        with self._lock:
            savepoint = f"sp{self._depth}" if self._depth else None
            self._conn.execute(f"SAVEPOINT {savepoint}" if savepoint else "BEGIN IMMEDIATE")
            self._depth += 1
            try:
                yield self._conn
            except BaseException:
                self._depth -= 1
                if savepoint:
                    self._conn.execute(f"ROLLBACK TO {savepoint}")
                    self._conn.execute(f"RELEASE {savepoint}")
                else:
                    self._conn.execute("ROLLBACK")
                raise
            else:
                self._depth -= 1
                self._conn.execute(f"RELEASE {savepoint}" if savepoint else "COMMIT")

    def query(self, sql: str, params: tuple[Any, ...] = ()) -> list[tuple[Any, ...]]:
        with self._lock:
            return self._conn.execute(sql, params).fetchall()

    def close(self) -> None:
        with self._lock:
            self._conn.close()


class SQLiteNullifierLedger(NullifierLedger):
    """Nullifier ledger backed by a unique-constrained table."""

    def __init__(self, db: SQLiteDatabase):
        self.db = db

    def try_consume(self, domain: DomainLike, nullifier: int) -> ConsumeResult:
        name = domain_name(domain)
        value = to_field(nullifier, "nullifier")
        try:
            with self.db.transaction() as conn:
                conn.execute(
                    "INSERT INTO nullifiers (domain, nullifier, consumed_at) VALUES (?, ?, ?)",
                    (name, str(value), datetime.now().isoformat()),
                )
        except sqlite3.IntegrityError:
            return ConsumeResult.ALREADY_USED
        return ConsumeResult.CONSUMED

    def is_used(self, domain: DomainLike, nullifier: int) -> bool:
        name = domain_name(domain)
        value = to_field(nullifier, "nullifier")
        rows = self.db.query("SELECT 1 FROM nullifiers WHERE domain = ? AND nullifier = ?", (name, str(value)))
        return bool(rows)

    def count(self, domain: DomainLike) -> int:
        rows = self.db.query("SELECT COUNT(*) FROM nullifiers WHERE domain = ?", (domain_name(domain),))
        return rows[0][0]

    def atomic_with(self, action_log: ActionLog) -> AbstractContextManager[object]:
        """One transaction when ``action_log`` writes to this ledger's database."""
        if isinstance(action_log, SQLiteActionLog) and action_log.db is self.db:
            return self.db.transaction()
        return nullcontext()


class SQLiteIdentityRegistry(IdentityRegistry):
    def __init__(self, db: SQLiteDatabase):
        self.db = db

    def add(self, commitment: int) -> bool:
        value = to_field(commitment, "identity_commitment")
        try:
            with self.db.transaction() as conn:
                conn.execute(
                    "INSERT INTO identities (commitment, registered_at) VALUES (?, ?)",
                    (str(value), datetime.now().isoformat()),
                )
        except sqlite3.IntegrityError:
            return False
        return True

    def contains(self, commitment: int) -> bool:
        value = to_field(commitment, "identity_commitment")
        return bool(self.db.query("SELECT 1 FROM identities WHERE commitment = ?", (str(value),)))

    def count(self) -> int:
        return self.db.query("SELECT COUNT(*) FROM identities")[0][0]


class SQLiteActionLog(ActionLog):
    def __init__(self, db: SQLiteDatabase):
        self.db = db

    def persist(
        self,
        domain: DomainLike,
        nullifier: int,
        action_commitment: int,
        metadata: dict[str, Any] | None = None,
    ) -> ActionRecord:
        record = ActionRecord(
            domain=domain_name(domain),
            nullifier=to_field(nullifier, "nullifier"),
            action_commitment=to_field(action_commitment, "action_commitment"),
            metadata=dict(metadata or {}),
        )
        with self.db.transaction() as conn:
            conn.execute(
                "INSERT INTO actions (domain, nullifier, action_commitment, metadata, recorded_at) "
                "VALUES (?, ?, ?, ?, ?)",
                (
                    record.domain,
                    str(record.nullifier),
                    str(record.action_commitment),
                    json.dumps(record.metadata, sort_keys=True),
                    record.recorded_at.isoformat(),
                ),
            )
        return record

    @staticmethod
    def _row_to_record(row: tuple[Any, ...]) -> ActionRecord:
        domain, nullifier, commitment, metadata, recorded_at = row
        return ActionRecord(
            domain=domain,
            nullifier=int(nullifier),
            action_commitment=int(commitment),
            metadata=json.loads(metadata),
            recorded_at=datetime.fromisoformat(recorded_at),
        )

    def get(self, domain: DomainLike, nullifier: int) -> ActionRecord | None:
        rows = self.db.query(
            "SELECT domain, nullifier, action_commitment, metadata, recorded_at FROM actions "
            "WHERE domain = ? AND nullifier = ?",
            (domain_name(domain), str(to_field(nullifier, "nullifier"))),
        )
        return self._row_to_record(rows[0]) if rows else None

    def records(self, domain: DomainLike) -> list[ActionRecord]:
        rows = self.db.query(
            "SELECT domain, nullifier, action_commitment, metadata, recorded_at FROM actions "
            "WHERE domain = ? ORDER BY seq",
            (domain_name(domain),),
        )
        return [self._row_to_record(row) for row in rows]
