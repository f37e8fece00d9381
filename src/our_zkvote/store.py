"""External collaborators of the protocol orchestrator.

The orchestrator only needs three narrow capabilities from the rest of the
application:

- IdentityRegistry: the set of registered identity commitments
- ActionLog: durable record of accepted actions, keyed by (domain, nullifier)
- ReceiptSink: best-effort external receipts (e.g. an append-only public log)

In-memory implementations live here; SQLite ones in ``our_zkvote.sqlite``.
None of these ever receives a private secret: commitments, nullifiers and
caller metadata only.
"""

from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from our_zkvote._primitives import canonical_json, labelled_hash, to_field
from our_zkvote.ledger import DomainLike, domain_name

_LABEL_RECEIPT = b"our-zkvote-receipt-v1"

# =============================================================================
# Data classes
# =============================================================================


@dataclass
class ActionRecord:
    """One accepted action.

    Attributes:
        domain: Ledger domain the action consumed a nullifier in
        nullifier: The consumed nullifier
        action_commitment: Choice commitment (vote) or action hash (admin)
        metadata: Caller-supplied, non-secret metadata
        recorded_at: When the action was persisted
    """

    domain: str
    nullifier: int
    action_commitment: int
    metadata: dict[str, Any] = field(default_factory=dict)
    recorded_at: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "domain": self.domain,
            "nullifier": str(self.nullifier),
            "action_commitment": str(self.action_commitment),
            "metadata": self.metadata,
            "recorded_at": self.recorded_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ActionRecord:
        """Create from dictionary."""
        return cls(
            domain=data["domain"],
            nullifier=int(data["nullifier"]),
            action_commitment=int(data["action_commitment"]),
            metadata=data.get("metadata") or {},
            recorded_at=(datetime.fromisoformat(data["recorded_at"]) if data.get("recorded_at") else datetime.now()),
        )


@dataclass
class Receipt:
    """One link of a hash-chained receipt log."""

    index: int
    nullifier: int
    action_commitment: int
    previous: str
    digest: str
    submitted_at: datetime = field(default_factory=datetime.now)


# =============================================================================
# Abstract Interfaces
# =============================================================================


class IdentityRegistry(ABC):
    """Registered identity commitments."""

    @abstractmethod
    def add(self, commitment: int) -> bool:
        """Register a commitment.

        Returns:
            True if added, False if it was already registered
        """
        pass

    @abstractmethod
    def contains(self, commitment: int) -> bool:
        """Whether a commitment is registered."""
        pass

    @abstractmethod
    def count(self) -> int:
        pass


class ActionLog(ABC):
    """Durable log of accepted actions."""

    @abstractmethod
    def persist(
        self,
        domain: DomainLike,
        nullifier: int,
        action_commitment: int,
        metadata: dict[str, Any] | None = None,
    ) -> ActionRecord:
        """Record an accepted action.

        Raises:
            Exception: Storage failures propagate to the orchestrator
        """
        pass

    @abstractmethod
    def get(self, domain: DomainLike, nullifier: int) -> ActionRecord | None:
        pass

    @abstractmethod
    def records(self, domain: DomainLike) -> list[ActionRecord]:
        """All records of a domain, in insertion order."""
        pass


class ReceiptSink(ABC):
    """Best-effort destination for action receipts."""

    @abstractmethod
    def submit(self, nullifier: int, action_commitment: int) -> str:
        """Submit a receipt.

        Returns:
            Receipt identifier
        """
        pass


# =============================================================================
# In-memory implementations
# =============================================================================


class InMemoryIdentityRegistry(IdentityRegistry):
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._commitments: set[int] = set()

    def add(self, commitment: int) -> bool:
        value = to_field(commitment, "identity_commitment")
        with self._lock:
            if value in self._commitments:
                return False
            self._commitments.add(value)
            return True

    def contains(self, commitment: int) -> bool:
        value = to_field(commitment, "identity_commitment")
        with self._lock:
            return value in self._commitments

    def count(self) -> int:
        with self._lock:
            return len(self._commitments)


class InMemoryActionLog(ActionLog):
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._records: dict[tuple[str, int], ActionRecord] = {}

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
        key = (record.domain, record.nullifier)
        with self._lock:
            if key in self._records:
                raise ValueError(f"Action already recorded for this nullifier in domain {record.domain!r}")
            self._records[key] = record
        return record

    def get(self, domain: DomainLike, nullifier: int) -> ActionRecord | None:
        key = (domain_name(domain), to_field(nullifier, "nullifier"))
        with self._lock:
            return self._records.get(key)

    def records(self, domain: DomainLike) -> list[ActionRecord]:
        name = domain_name(domain)
        with self._lock:
            return [r for (d, _), r in self._records.items() if d == name]


class HashChainReceiptSink(ReceiptSink):
    """Append-only, hash-chained receipt log.

    Each receipt digest covers the previous digest, so removing or altering
    any receipt breaks every later link. The receipt id is the digest.
    """

    GENESIS = "0" * 64

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._chain: list[Receipt] = []

    def submit(self, nullifier: int, action_commitment: int) -> str:
        with self._lock:
            previous = self._chain[-1].digest if self._chain else self.GENESIS
            index = len(self._chain)
            digest = self._link(index, previous, nullifier, action_commitment)
            self._chain.append(
                Receipt(
                    index=index,
                    nullifier=nullifier,
                    action_commitment=action_commitment,
                    previous=previous,
                    digest=digest,
                )
            )
            return digest

    @staticmethod
    def _link(index: int, previous: str, nullifier: int, action_commitment: int) -> str:
        payload = canonical_json([index, previous, str(nullifier), str(action_commitment)])
        return labelled_hash(_LABEL_RECEIPT, payload).hex()

    @property
    def receipts(self) -> list[Receipt]:
        with self._lock:
            return list(self._chain)

    def verify_chain(self) -> bool:
        """Recompute every link; False if any receipt was altered."""
        previous = self.GENESIS
        for index, receipt in enumerate(self.receipts):
            if receipt.index != index or receipt.previous != previous:
                return False
            if receipt.digest != self._link(index, previous, receipt.nullifier, receipt.action_commitment):
                return False
            previous = receipt.digest
        return True
