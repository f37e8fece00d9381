"""Versioned verification-key management.

The key manager is the trust anchor's only source of verification keys. Each
circuit has at most one active version; rotation installs a new active
version and retires the previous one. Version strings are never reused, so a
retired version cannot be brought back under the same name.

Rotation is serialized against verification with a readers-writer lock:
verifications hold the shared side for as long as they use a key, rotation
and retirement take the exclusive side. A rotation therefore waits for
in-flight verifications, and any verification that starts after it returns
sees the new key set.

Example:
    >>> manager = KeyManager()
    >>> manager.rotate(CircuitKind.IDENTITY, keys_v1.verification_key)
    'v1'
    >>> with manager.reading():
    ...     vk = manager.lookup(CircuitKind.IDENTITY, "v1")
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any

from our_zkvote.circuits import CircuitKind
from our_zkvote.exceptions import KeyVersionConflictError, UnknownCircuitVersionError
from our_zkvote.zkp import VerificationKey

logger = logging.getLogger(__name__)


class ReadWriteLock:
    """Writer-preferring readers-writer lock.

    The read side is reentrant per thread; the write side is not, and must
    not be requested while holding the read side.
    """

    def __init__(self) -> None:
        self._cond = threading.Condition(threading.Lock())
        self._readers: dict[int, int] = {}
        self._writer = False
        self._waiting_writers = 0

    @contextmanager
    def read(self) -> Iterator[None]:
        me = threading.get_ident()
        with self._cond:
            if me not in self._readers:
                while self._writer or self._waiting_writers:
                    self._cond.wait()
            self._readers[me] = self._readers.get(me, 0) + 1
        try:
            yield
        finally:
            with self._cond:
                self._readers[me] -= 1
                if not self._readers[me]:
                    del self._readers[me]
                if not self._readers:
                    self._cond.notify_all()

    @contextmanager
    def write(self) -> Iterator[None]:
        with self._cond:
            self._waiting_writers += 1
            try:
                while self._writer or self._readers:
                    self._cond.wait()
            finally:
                self._waiting_writers -= 1
            self._writer = True
        try:
            yield
        finally:
            with self._cond:
                self._writer = False
                self._cond.notify_all()


class KeyStatus(Enum):
    """Lifecycle state of one installed key version."""

    ACTIVE = "active"
    """Accepted, and handed out by resolve()."""

    RETIRED = "retired"
    """Kept for audit only; proofs against it are refused."""


@dataclass
class KeyRecord:
    """One installed verification key and its lifecycle timestamps."""

    verification_key: VerificationKey
    status: KeyStatus = KeyStatus.ACTIVE
    installed_at: datetime = field(default_factory=datetime.now)
    retired_at: datetime | None = None

    @property
    def version(self) -> str:
        return self.verification_key.version

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "version": self.version,
            "status": self.status.value,
            "fingerprint": self.verification_key.fingerprint.hex(),
            "installed_at": self.installed_at.isoformat(),
            "retired_at": self.retired_at.isoformat() if self.retired_at else None,
        }


class KeyManager:
    """Holds verification keys per circuit version.

    Only verification keys are stored here; proving keys stay with holders.
    """

    def __init__(self) -> None:
        self._lock = ReadWriteLock()
        self._records: dict[CircuitKind, dict[str, KeyRecord]] = {kind: {} for kind in CircuitKind}
        self._active: dict[CircuitKind, str] = {}

    @contextmanager
    def reading(self) -> Iterator[KeyManager]:
        """Hold the shared side of the rotation lock.

        Lookups are consistent with each other for the duration of the block,
        and no rotation completes while it is held.
        """
        with self._lock.read():
            yield self

    def rotate(self, kind: CircuitKind, verification_key: VerificationKey) -> str:
        """Install a new active version, retiring the current one.

        Args:
            kind: Circuit the key belongs to
            verification_key: New key; its ``version`` names the new version

        Returns:
            The newly active version

        Raises:
            KeyVersionConflictError: If the version was ever installed before
            ValueError: If the key is for a different circuit
        """
        if verification_key.circuit != kind:
            raise ValueError(f"Key is for {verification_key.circuit.value}, not {kind.value}")
        version = verification_key.version
        with self._lock.write():
            records = self._records[kind]
            if version in records:
                raise KeyVersionConflictError(f"Version {version!r} of {kind.value} was already installed")
            previous = self._active.get(kind)
            if previous is not None:
                self._retire_locked(kind, previous)
            records[version] = KeyRecord(verification_key=verification_key)
            self._active[kind] = version
        logger.info(f"Rotated {kind.value} verification key: {previous} -> {version}")
        return version

    def retire(self, kind: CircuitKind, version: str) -> None:
        """Stop accepting a version without installing a replacement.

        Raises:
            UnknownCircuitVersionError: If the version was never installed
        """
        with self._lock.write():
            if version not in self._records[kind]:
                raise UnknownCircuitVersionError(f"Unknown {kind.value} version {version!r}")
            self._retire_locked(kind, version)
        logger.info(f"Retired {kind.value} verification key {version}")

    def _retire_locked(self, kind: CircuitKind, version: str) -> None:
        record = self._records[kind][version]
        if record.status is KeyStatus.ACTIVE:
            record.status = KeyStatus.RETIRED
            record.retired_at = datetime.now()
        if self._active.get(kind) == version:
            del self._active[kind]

    def resolve(self, kind: CircuitKind) -> tuple[VerificationKey, str]:
        """The active key and version for a circuit.

        Raises:
            UnknownCircuitVersionError: If no version is active
        """
        with self._lock.read():
            version = self._active.get(kind)
            if version is None:
                raise UnknownCircuitVersionError(f"No active {kind.value} verification key")
            return self._records[kind][version].verification_key, version

    def lookup(self, kind: CircuitKind, version: str) -> VerificationKey:
        """The key for a version, provided it is still accepted.

        Raises:
            UnknownCircuitVersionError: If the version is unknown or retired
        """
        with self._lock.read():
            record = self._records[kind].get(version)
            if record is None or record.status is not KeyStatus.ACTIVE:
                raise UnknownCircuitVersionError(f"{kind.value} version {version!r} is not accepted")
            return record.verification_key

    def accepted_versions(self, kind: CircuitKind) -> list[str]:
        with self._lock.read():
            return [v for v, r in self._records[kind].items() if r.status is KeyStatus.ACTIVE]

    def history(self, kind: CircuitKind) -> list[KeyRecord]:
        """Every version ever installed for a circuit, oldest first."""
        with self._lock.read():
            return list(self._records[kind].values())

    def load_directory(self, path: str | Path) -> dict[CircuitKind, str]:
        """Install snarkjs keys laid out as ``<kind>/<version>/verification_key.json``.

        Versions are installed in sorted order, so the last one sorted becomes
        active for each circuit.

        Returns:
            Active version per circuit that had keys
        """
        from our_zkvote.groth16 import VKEY_FILE, load_verification_key

        root = Path(path)
        active = {}
        for kind in CircuitKind:
            kind_dir = root / kind.value
            if not kind_dir.is_dir():
                continue
            for version_dir in sorted(p for p in kind_dir.iterdir() if (p / VKEY_FILE).is_file()):
                key = load_verification_key(version_dir / VKEY_FILE, kind, version_dir.name)
                active[kind] = self.rotate(kind, key)
        return active
