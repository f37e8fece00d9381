"""Shared test fixtures for our-zkvote."""

from __future__ import annotations

import logging
from collections.abc import Iterator

import pytest

from our_zkvote.circuits import CircuitKind
from our_zkvote.holder import AdminCredential
from our_zkvote.keys import KeyManager
from our_zkvote.ledger import InMemoryNullifierLedger, NullifierLedger
from our_zkvote.orchestrator import ProtocolOrchestrator
from our_zkvote.sqlite import SQLiteDatabase, SQLiteNullifierLedger
from our_zkvote.store import HashChainReceiptSink, InMemoryActionLog, InMemoryIdentityRegistry
from our_zkvote.verifier import ProofVerifier
from our_zkvote.zkp import KeyPair, MockProvingSystem


def pytest_configure(config: pytest.Config) -> None:
    config.addinivalue_line("markers", "unit: Unit tests (no external dependencies)")
    config.addinivalue_line("markers", "integration: Integration tests (require external services)")
    config.addinivalue_line("markers", "slow: Slow tests (>5s)")


# =============================================================================
# Parameterized backend fixtures (memory vs SQLite)
# =============================================================================


@pytest.fixture
def sqlite_db(tmp_path) -> Iterator[SQLiteDatabase]:
    """File-backed SQLite database in a temporary directory."""
    db = SQLiteDatabase(tmp_path / "zkvote.db")
    yield db
    db.close()


@pytest.fixture(params=["memory", "sqlite"], ids=["ledger-memory", "ledger-sqlite"])
def ledger(request: pytest.FixtureRequest, tmp_path) -> Iterator[NullifierLedger]:
    """Parameterized nullifier ledger fixture (in-memory and SQLite)."""
    if request.param == "memory":
        yield InMemoryNullifierLedger()
    else:
        db = SQLiteDatabase(tmp_path / "ledger.db")
        yield SQLiteNullifierLedger(db)
        db.close()


@pytest.fixture
def restore_root_logger() -> Iterator[None]:
    """Undo configure_logging() so handlers do not leak between tests."""
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    for handler in root.handlers:
        if handler not in handlers:
            handler.close()
    root.handlers[:] = handlers
    root.setLevel(level)


# =============================================================================
# Protocol fixtures
# =============================================================================


@pytest.fixture
def proving_system() -> MockProvingSystem:
    return MockProvingSystem()


@pytest.fixture
def key_pairs(proving_system: MockProvingSystem) -> dict[CircuitKind, KeyPair]:
    """Mock key pairs for every circuit at version v1."""
    return proving_system.setup_all("v1")


@pytest.fixture
def key_manager(key_pairs: dict[CircuitKind, KeyPair]) -> KeyManager:
    manager = KeyManager()
    for kind, pair in key_pairs.items():
        manager.rotate(kind, pair.verification_key)
    return manager


@pytest.fixture
def provers(proving_system: MockProvingSystem, key_pairs: dict[CircuitKind, KeyPair]):
    """Holder-side provers for every circuit at version v1."""
    return {kind: proving_system.create_prover(pair.proving_key) for kind, pair in key_pairs.items()}


@pytest.fixture
def proof_verifier(key_manager: KeyManager, proving_system: MockProvingSystem) -> ProofVerifier:
    return ProofVerifier(key_manager, proving_system)


@pytest.fixture
def admin() -> AdminCredential:
    return AdminCredential(424242424242)


@pytest.fixture
def receipt_sink() -> HashChainReceiptSink:
    return HashChainReceiptSink()


@pytest.fixture
def orchestrator(
    proof_verifier: ProofVerifier,
    ledger: NullifierLedger,
    admin: AdminCredential,
    receipt_sink: HashChainReceiptSink,
) -> ProtocolOrchestrator:
    """Orchestrator over mock keys, parameterized by ledger backend."""
    return ProtocolOrchestrator(
        verifier=proof_verifier,
        ledger=ledger,
        registry=InMemoryIdentityRegistry(),
        action_log=InMemoryActionLog(),
        receipt_sink=receipt_sink,
        admin_commitments=[admin.commitment],
    )
