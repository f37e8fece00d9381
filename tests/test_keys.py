"""Tests for versioned verification-key management."""

from __future__ import annotations

import json
import threading
import time
from pathlib import Path

import pytest

from our_zkvote.circuits import CircuitKind
from our_zkvote.exceptions import KeyVersionConflictError, UnknownCircuitVersionError
from our_zkvote.keys import KeyManager, KeyStatus, ReadWriteLock
from our_zkvote.zkp import MockProvingSystem


@pytest.fixture
def system() -> MockProvingSystem:
    return MockProvingSystem()


def _vk(system: MockProvingSystem, version: str, kind: CircuitKind = CircuitKind.IDENTITY):
    return system.setup(kind, version).verification_key


class TestRotation:
    """Tests for installing and rotating versions."""

    def test_rotate_installs_active(self, system: MockProvingSystem) -> None:
        """The first rotation makes a version active."""
        manager = KeyManager()
        vk = _vk(system, "v1")

        assert manager.rotate(CircuitKind.IDENTITY, vk) == "v1"
        assert manager.resolve(CircuitKind.IDENTITY) == (vk, "v1")
        assert manager.lookup(CircuitKind.IDENTITY, "v1") is vk

    def test_rotate_retires_previous(self, system: MockProvingSystem) -> None:
        """Rotating to v2 stops v1 being accepted."""
        manager = KeyManager()
        manager.rotate(CircuitKind.IDENTITY, _vk(system, "v1"))
        manager.rotate(CircuitKind.IDENTITY, _vk(system, "v2"))

        assert manager.accepted_versions(CircuitKind.IDENTITY) == ["v2"]
        with pytest.raises(UnknownCircuitVersionError):
            manager.lookup(CircuitKind.IDENTITY, "v1")

        history = manager.history(CircuitKind.IDENTITY)
        assert [r.version for r in history] == ["v1", "v2"]
        assert history[0].status is KeyStatus.RETIRED
        assert history[0].retired_at is not None
        assert history[1].status is KeyStatus.ACTIVE

    def test_version_names_never_reused(self, system: MockProvingSystem) -> None:
        """A retired version cannot come back under the same name."""
        manager = KeyManager()
        manager.rotate(CircuitKind.IDENTITY, _vk(system, "v1"))
        manager.rotate(CircuitKind.IDENTITY, _vk(system, "v2"))

        with pytest.raises(KeyVersionConflictError):
            manager.rotate(CircuitKind.IDENTITY, _vk(system, "v1"))
        assert manager.resolve(CircuitKind.IDENTITY)[1] == "v2"

    def test_circuits_are_independent(self, system: MockProvingSystem) -> None:
        """Versions are per circuit."""
        manager = KeyManager()
        manager.rotate(CircuitKind.IDENTITY, _vk(system, "v1"))
        manager.rotate(CircuitKind.VOTE_CAST, _vk(system, "v1", CircuitKind.VOTE_CAST))
        manager.rotate(CircuitKind.IDENTITY, _vk(system, "v2"))

        assert manager.accepted_versions(CircuitKind.VOTE_CAST) == ["v1"]

    def test_rotate_wrong_circuit(self, system: MockProvingSystem) -> None:
        """A key for another circuit is refused."""
        with pytest.raises(ValueError, match="vote_cast"):
            KeyManager().rotate(CircuitKind.IDENTITY, _vk(system, "v1", CircuitKind.VOTE_CAST))

    def test_record_to_dict(self, system: MockProvingSystem) -> None:
        """Records serialize status and fingerprint."""
        manager = KeyManager()
        vk = _vk(system, "v1")
        manager.rotate(CircuitKind.IDENTITY, vk)

        data = manager.history(CircuitKind.IDENTITY)[0].to_dict()
        assert data["status"] == "active"
        assert data["fingerprint"] == vk.fingerprint.hex()
        assert data["retired_at"] is None


class TestRetire:
    """Tests for retirement without replacement."""

    def test_retire_active(self, system: MockProvingSystem) -> None:
        """Retiring the active version leaves nothing to resolve."""
        manager = KeyManager()
        manager.rotate(CircuitKind.ADMIN_ACTION, _vk(system, "v1", CircuitKind.ADMIN_ACTION))
        manager.retire(CircuitKind.ADMIN_ACTION, "v1")

        with pytest.raises(UnknownCircuitVersionError):
            manager.resolve(CircuitKind.ADMIN_ACTION)
        assert manager.accepted_versions(CircuitKind.ADMIN_ACTION) == []

    def test_retire_unknown(self) -> None:
        """Unknown versions cannot be retired."""
        with pytest.raises(UnknownCircuitVersionError):
            KeyManager().retire(CircuitKind.IDENTITY, "v9")

    def test_lookup_never_installed(self) -> None:
        """Lookups of unknown versions fail."""
        with pytest.raises(UnknownCircuitVersionError):
            KeyManager().lookup(CircuitKind.IDENTITY, "v1")


class TestLoadDirectory:
    """Tests for loading snarkjs keys from an artifacts tree."""

    def test_load_directory(self, tmp_path: Path) -> None:
        """Each circuit's last sorted version becomes active."""
        for kind, version in [
            (CircuitKind.IDENTITY, "v1"),
            (CircuitKind.IDENTITY, "v2"),
            (CircuitKind.VOTE_CAST, "v1"),
        ]:
            directory = tmp_path / kind.value / version
            directory.mkdir(parents=True)
            (directory / "verification_key.json").write_text(json.dumps({"protocol": "groth16", "nPublic": 2}))
        (tmp_path / "admin_action" / "v1").mkdir(parents=True)

        manager = KeyManager()
        active = manager.load_directory(tmp_path)

        assert active == {CircuitKind.IDENTITY: "v2", CircuitKind.VOTE_CAST: "v1"}
        assert manager.accepted_versions(CircuitKind.IDENTITY) == ["v2"]
        assert manager.lookup(CircuitKind.VOTE_CAST, "v1").backend == "groth16"
        assert manager.accepted_versions(CircuitKind.ADMIN_ACTION) == []


class TestReadWriteLock:
    """Tests for the rotation lock."""

    def test_reads_are_reentrant(self) -> None:
        """A thread may nest reads even while a writer waits."""
        lock = ReadWriteLock()
        entered = threading.Event()
        written = threading.Event()

        def writer() -> None:
            entered.wait()
            with lock.write():
                written.set()

        thread = threading.Thread(target=writer)
        thread.start()
        with lock.read():
            entered.set()
            time.sleep(0.05)
            with lock.read():
                assert not written.is_set()
        thread.join(timeout=5)
        assert written.is_set()

    def test_rotation_waits_for_readers(self, system: MockProvingSystem) -> None:
        """A rotation does not complete while a verification holds the key set."""
        manager = KeyManager()
        manager.rotate(CircuitKind.IDENTITY, _vk(system, "v1"))
        v2 = _vk(system, "v2")
        rotated = threading.Event()

        def rotate() -> None:
            manager.rotate(CircuitKind.IDENTITY, v2)
            rotated.set()

        with manager.reading():
            thread = threading.Thread(target=rotate)
            thread.start()
            time.sleep(0.05)
            assert not rotated.is_set()
            assert manager.lookup(CircuitKind.IDENTITY, "v1") is not None
        thread.join(timeout=5)

        assert rotated.is_set()
        assert manager.accepted_versions(CircuitKind.IDENTITY) == ["v2"]
