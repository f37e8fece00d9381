"""Tests for nullifier ledgers (in-memory and SQLite)."""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor

import pytest

from our_zkvote._primitives import FIELD_MODULUS
from our_zkvote.hashing import Domain
from our_zkvote.ledger import ConsumeResult, NullifierLedger, domain_name
from our_zkvote.sqlite import SQLiteDatabase, SQLiteNullifierLedger

BIG = FIELD_MODULUS - 12345


class TestDomainName:
    """Tests for domain validation."""

    def test_enum_and_string(self) -> None:
        """Enum members and their names are both accepted."""
        assert domain_name(Domain.VOTE) == "vote"
        assert domain_name("admin") == "admin"

    def test_unknown_string(self) -> None:
        """Unknown domain names are rejected."""
        with pytest.raises(ValueError):
            domain_name("ballot")


class TestNullifierLedger:
    """Contract tests run against every ledger backend."""

    def test_consume_once(self, ledger: NullifierLedger) -> None:
        """The first consumption succeeds and later ones report already used."""
        assert ledger.try_consume(Domain.AUTH, 42) is ConsumeResult.CONSUMED
        assert ledger.try_consume(Domain.AUTH, 42) is ConsumeResult.ALREADY_USED
        assert ledger.try_consume("auth", 42) is ConsumeResult.ALREADY_USED

    def test_domains_are_partitions(self, ledger: NullifierLedger) -> None:
        """The same value may be consumed once in each domain."""
        for domain in Domain:
            assert ledger.try_consume(domain, 7) is ConsumeResult.CONSUMED
        assert ledger.count(Domain.VOTE) == 1

    def test_is_used_has_no_side_effect(self, ledger: NullifierLedger) -> None:
        """Querying never consumes."""
        assert not ledger.is_used(Domain.ADMIN, 99)
        assert not ledger.is_used(Domain.ADMIN, 99)
        assert ledger.try_consume(Domain.ADMIN, 99) is ConsumeResult.CONSUMED
        assert ledger.is_used(Domain.ADMIN, 99)

    def test_large_field_elements(self, ledger: NullifierLedger) -> None:
        """Values wider than 64 bits are stored exactly."""
        assert ledger.try_consume(Domain.VOTE, BIG) is ConsumeResult.CONSUMED
        assert ledger.is_used(Domain.VOTE, BIG)
        assert not ledger.is_used(Domain.VOTE, BIG - 1)

    def test_decimal_string_same_as_int(self, ledger: NullifierLedger) -> None:
        """A decimal string names the same nullifier as its integer."""
        ledger.try_consume(Domain.AUTH, 1234)
        assert ledger.try_consume(Domain.AUTH, "1234") is ConsumeResult.ALREADY_USED

    def test_invalid_input(self, ledger: NullifierLedger) -> None:
        """Out-of-field values and unknown domains are rejected."""
        with pytest.raises(ValueError):
            ledger.try_consume(Domain.AUTH, FIELD_MODULUS)
        with pytest.raises(ValueError):
            ledger.try_consume("ballot", 1)
        assert ledger.count(Domain.AUTH) == 0

    def test_concurrent_consumers(self, ledger: NullifierLedger) -> None:
        """Exactly one of many concurrent consumers wins."""
        with ThreadPoolExecutor(max_workers=16) as pool:
            results = list(pool.map(lambda _: ledger.try_consume(Domain.VOTE, BIG), range(64)))

        assert results.count(ConsumeResult.CONSUMED) == 1
        assert results.count(ConsumeResult.ALREADY_USED) == 63

    def test_concurrent_distinct(self, ledger: NullifierLedger) -> None:
        """Distinct nullifiers never interfere."""
        with ThreadPoolExecutor(max_workers=8) as pool:
            results = list(pool.map(lambda n: ledger.try_consume(Domain.AUTH, n), range(100)))

        assert all(r is ConsumeResult.CONSUMED for r in results)
        assert ledger.count(Domain.AUTH) == 100


class TestSQLiteDurability:
    """Tests specific to the SQLite ledger."""

    def test_survives_reopen(self, tmp_path) -> None:
        """Consumed nullifiers persist across connections."""
        path = tmp_path / "ledger.db"
        db = SQLiteDatabase(path)
        SQLiteNullifierLedger(db).try_consume(Domain.AUTH, BIG)
        db.close()

        reopened = SQLiteDatabase(path)
        try:
            ledger = SQLiteNullifierLedger(reopened)
            assert ledger.try_consume(Domain.AUTH, BIG) is ConsumeResult.ALREADY_USED
        finally:
            reopened.close()

    def test_two_connections_one_winner(self, tmp_path) -> None:
        """Separate connections to one file still consume exactly once."""
        path = tmp_path / "shared.db"
        first, second = SQLiteDatabase(path), SQLiteDatabase(path)
        try:
            a, b = SQLiteNullifierLedger(first), SQLiteNullifierLedger(second)
            assert a.try_consume(Domain.VOTE, 5) is ConsumeResult.CONSUMED
            assert b.try_consume(Domain.VOTE, 5) is ConsumeResult.ALREADY_USED
        finally:
            first.close()
            second.close()
