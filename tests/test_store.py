"""Tests for the identity registry, action log and receipt sink."""

from __future__ import annotations

import sqlite3
from collections.abc import Iterator

import pytest

from our_zkvote.hashing import Domain
from our_zkvote.ledger import ConsumeResult
from our_zkvote.sqlite import (
    SCHEMA_VERSION,
    SQLiteActionLog,
    SQLiteDatabase,
    SQLiteIdentityRegistry,
    SQLiteNullifierLedger,
)
from our_zkvote.store import (
    ActionLog,
    ActionRecord,
    HashChainReceiptSink,
    IdentityRegistry,
    InMemoryActionLog,
    InMemoryIdentityRegistry,
)


@pytest.fixture(params=["memory", "sqlite"], ids=["registry-memory", "registry-sqlite"])
def registry(request: pytest.FixtureRequest, sqlite_db: SQLiteDatabase) -> IdentityRegistry:
    if request.param == "memory":
        return InMemoryIdentityRegistry()
    return SQLiteIdentityRegistry(sqlite_db)


@pytest.fixture(params=["memory", "sqlite"], ids=["log-memory", "log-sqlite"])
def action_log(request: pytest.FixtureRequest, sqlite_db: SQLiteDatabase) -> Iterator[ActionLog]:
    if request.param == "memory":
        yield InMemoryActionLog()
    else:
        yield SQLiteActionLog(sqlite_db)


class TestIdentityRegistry:
    """Contract tests for identity registries."""

    def test_add_and_contains(self, registry: IdentityRegistry) -> None:
        """Added commitments are found; others are not."""
        assert registry.add(12345)
        assert registry.contains(12345)
        assert not registry.contains(54321)
        assert registry.count() == 1

    def test_duplicate(self, registry: IdentityRegistry) -> None:
        """Adding a commitment twice reports False."""
        assert registry.add(777)
        assert not registry.add(777)
        assert registry.count() == 1

    def test_rejects_out_of_field(self, registry: IdentityRegistry) -> None:
        """Commitments must be field elements."""
        with pytest.raises(ValueError):
            registry.add(-1)

    def test_decimal_string_lookup(self, registry: IdentityRegistry) -> None:
        """Lookups accept snarkjs decimal strings on every backend."""
        registry.add(12345)
        assert registry.contains("12345")
        assert not registry.contains("54321")
        with pytest.raises(ValueError):
            registry.contains(-1)


class TestActionLog:
    """Contract tests for action logs."""

    def test_persist_and_get(self, action_log: ActionLog) -> None:
        """Persisted records are retrievable by (domain, nullifier)."""
        record = action_log.persist(Domain.VOTE, 11, 22, {"poll": "p1"})
        fetched = action_log.get("vote", 11)

        assert fetched is not None
        assert fetched.action_commitment == 22
        assert fetched.metadata == {"poll": "p1"}
        assert fetched.domain == record.domain == "vote"
        assert action_log.get(Domain.ADMIN, 11) is None

    def test_get_by_decimal_string(self, action_log: ActionLog) -> None:
        """A nullifier given as a decimal string finds the same record."""
        action_log.persist(Domain.VOTE, 2**200, 22)
        fetched = action_log.get(Domain.VOTE, str(2**200))

        assert fetched is not None
        assert fetched.nullifier == 2**200

    def test_records_in_order(self, action_log: ActionLog) -> None:
        """Records of a domain come back in insertion order."""
        for n in (3, 1, 2):
            action_log.persist(Domain.ADMIN, n, n * 10)
        action_log.persist(Domain.VOTE, 9, 90)

        assert [r.nullifier for r in action_log.records(Domain.ADMIN)] == [3, 1, 2]

    def test_duplicate_nullifier(self, action_log: ActionLog) -> None:
        """A nullifier is recorded at most once per domain."""
        action_log.persist(Domain.VOTE, 5, 50)
        with pytest.raises((ValueError, sqlite3.IntegrityError)):
            action_log.persist(Domain.VOTE, 5, 51)

    def test_record_dict_roundtrip(self) -> None:
        """Records serialize big integers as decimal strings."""
        record = ActionRecord(domain="vote", nullifier=2**200, action_commitment=3, metadata={"k": "v"})
        data = record.to_dict()

        assert data["nullifier"] == str(2**200)
        assert ActionRecord.from_dict(data) == record


class TestSQLiteDatabase:
    """Tests for the shared SQLite connection."""

    def test_schema_version_recorded(self, sqlite_db: SQLiteDatabase) -> None:
        """A new database records the schema version."""
        assert sqlite_db.query("SELECT version FROM schema_version") == [(SCHEMA_VERSION,)]

    def test_transaction_rolls_back(self, sqlite_db: SQLiteDatabase) -> None:
        """An exception inside a transaction discards its writes."""
        with pytest.raises(RuntimeError):
            with sqlite_db.transaction() as conn:
                conn.execute("INSERT INTO identities (commitment, registered_at) VALUES ('1', 'now')")
                raise RuntimeError("abort")
        assert sqlite_db.query("SELECT COUNT(*) FROM identities") == [(0,)]

    def test_nested_transaction_is_savepoint(self, sqlite_db: SQLiteDatabase) -> None:
        """An inner failure undoes only the inner block; the outer block still commits."""
        with sqlite_db.transaction() as conn:
            conn.execute("INSERT INTO identities (commitment, registered_at) VALUES ('1', 'now')")
            with pytest.raises(RuntimeError):
                with sqlite_db.transaction() as inner:
                    inner.execute("INSERT INTO identities (commitment, registered_at) VALUES ('2', 'now')")
                    raise RuntimeError("inner")

        assert sqlite_db.query("SELECT commitment FROM identities") == [("1",)]

    def test_outer_rollback_discards_nested_work(self, sqlite_db: SQLiteDatabase) -> None:
        """Nothing committed inside a nested block survives an outer rollback."""
        ledger = SQLiteNullifierLedger(sqlite_db)
        with pytest.raises(RuntimeError):
            with ledger.atomic_with(SQLiteActionLog(sqlite_db)):
                assert ledger.try_consume(Domain.VOTE, 7) is ConsumeResult.CONSUMED
                assert ledger.try_consume(Domain.VOTE, 7) is ConsumeResult.ALREADY_USED
                raise RuntimeError("abort")

        assert not ledger.is_used(Domain.VOTE, 7)

    def test_atomic_scope_only_for_same_database(self, sqlite_db: SQLiteDatabase, tmp_path) -> None:
        """Stores in different databases, or in memory, commit independently."""
        ledger = SQLiteNullifierLedger(sqlite_db)
        other = SQLiteDatabase(tmp_path / "other.db")
        for nullifier, action_log in enumerate((SQLiteActionLog(other), InMemoryActionLog()), start=9):
            with pytest.raises(RuntimeError):
                with ledger.atomic_with(action_log):
                    ledger.try_consume(Domain.ADMIN, nullifier)
                    raise RuntimeError("abort")
            assert ledger.is_used(Domain.ADMIN, nullifier)
        other.close()

    def test_rejects_newer_schema(self, tmp_path) -> None:
        """A database from an unknown schema version is refused."""
        path = tmp_path / "future.db"
        db = SQLiteDatabase(path)
        db.query("UPDATE schema_version SET version = 99")
        db.close()

        with pytest.raises(sqlite3.DatabaseError, match="schema version 99"):
            SQLiteDatabase(path)


class TestHashChainReceiptSink:
    """Tests for the hash-chained receipt log."""

    def test_chain_links(self, receipt_sink: HashChainReceiptSink) -> None:
        """Each receipt points at the previous digest."""
        first = receipt_sink.submit(1, 10)
        second = receipt_sink.submit(2, 20)
        receipts = receipt_sink.receipts

        assert receipts[0].previous == HashChainReceiptSink.GENESIS
        assert receipts[1].previous == first
        assert receipts[1].digest == second
        assert receipt_sink.verify_chain()

    def test_tamper_detected(self, receipt_sink: HashChainReceiptSink) -> None:
        """Altering any receipt breaks verification."""
        for n in range(3):
            receipt_sink.submit(n, n)
        receipt_sink._chain[1].action_commitment = 999

        assert not receipt_sink.verify_chain()

    def test_empty_chain_valid(self, receipt_sink: HashChainReceiptSink) -> None:
        """An empty log verifies."""
        assert receipt_sink.verify_chain()
