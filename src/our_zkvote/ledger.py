"""Nullifier ledger: exactly-once consumption of nullifiers per domain.

A nullifier is a public field element derived from a holder's secrets. Each
(domain, nullifier) pair may be consumed once; ``try_consume`` is the only
mutation and is linearizable, so among any number of concurrent calls for the
same pair exactly one observes CONSUMED.

Entries are never removed.
"""

from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from contextlib import AbstractContextManager, nullcontext
from enum import Enum
from typing import TYPE_CHECKING, Union

from our_zkvote._primitives import to_field
from our_zkvote.hashing import Domain

if TYPE_CHECKING:
    from our_zkvote.store import ActionLog

DomainLike = Union[Domain, str]


class ConsumeResult(Enum):
    """Outcome of a consumption attempt."""

    CONSUMED = "consumed"
    """This call consumed the nullifier."""

    ALREADY_USED = "already_used"
    """The nullifier had been consumed before."""


def domain_name(domain: DomainLike) -> str:
    """Validated partition name of a ledger domain."""
    return Domain(domain).value if isinstance(domain, str) else domain.value


class NullifierLedger(ABC):
    """Abstract nullifier ledger."""

    @abstractmethod
    def try_consume(self, domain: DomainLike, nullifier: int) -> ConsumeResult:
        """Atomically record a nullifier as used.

        Args:
            domain: Ledger partition (auth, vote, admin)
            nullifier: Field element to consume

        Returns:
            CONSUMED if this call recorded it, ALREADY_USED otherwise

        Raises:
            ValueError: If the domain or nullifier is invalid
        """
        pass

    @abstractmethod
    def is_used(self, domain: DomainLike, nullifier: int) -> bool:
        """Whether a nullifier has been consumed. No side effects."""
        pass

    @abstractmethod
    def count(self, domain: DomainLike) -> int:
        """Number of nullifiers consumed in a domain."""
        pass

    def atomic_with(self, action_log: ActionLog) -> AbstractContextManager[object]:
        """Scope in which consumption and ``action_log`` writes commit together.

        The default is no joint scope: each call commits on its own.
        """
        return nullcontext()


class InMemoryNullifierLedger(NullifierLedger):
    """Process-local ledger: one lock around membership test and insert."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._used: dict[str, set[int]] = {d.value: set() for d in Domain}

    def try_consume(self, domain: DomainLike, nullifier: int) -> ConsumeResult:
        name = domain_name(domain)
        value = to_field(nullifier, "nullifier")
        with self._lock:
            used = self._used[name]
            if value in used:
                return ConsumeResult.ALREADY_USED
            used.add(value)
            return ConsumeResult.CONSUMED

    def is_used(self, domain: DomainLike, nullifier: int) -> bool:
        name = domain_name(domain)
        value = to_field(nullifier, "nullifier")
        with self._lock:
            return value in self._used[name]

    def count(self, domain: DomainLike) -> int:
        name = domain_name(domain)
        with self._lock:
            return len(self._used[name])
