"""Tests for YAML configuration and orchestrator wiring."""

from __future__ import annotations

import json
import logging
from datetime import timedelta
from pathlib import Path

import pytest
import yaml

from our_zkvote import create_proving_system
from our_zkvote.circuits import CircuitKind
from our_zkvote.config import (
    ProtocolConfig,
    ProvingConfig,
    StorageConfig,
    configure_logging,
    create_orchestrator,
    load_config,
    save_config,
)
from our_zkvote.hashing import Domain
from our_zkvote.holder import AdminCredential, IdentityCredential
from our_zkvote.keys import KeyManager
from our_zkvote.sqlite import SQLiteNullifierLedger
from our_zkvote.store import HashChainReceiptSink
from our_zkvote.zkp import MockProvingSystem

pytestmark = pytest.mark.usefixtures("restore_root_logger")


class TestLoadConfig:
    """Tests for reading and writing configuration files."""

    def test_missing_file_defaults(self, tmp_path: Path) -> None:
        """A missing file yields the default configuration."""
        config = load_config(tmp_path / "absent.yaml")

        assert config.proving.backend == "mock"
        assert config.storage.database is None
        assert config.session_ttl == timedelta(hours=1)
        assert config.receipts is True

    def test_yaml_roundtrip(self, tmp_path: Path) -> None:
        """Saved configuration loads back unchanged."""
        path = tmp_path / "conf" / "zkvote.yaml"
        config = ProtocolConfig(
            proving=ProvingConfig(backend="groth16", artifacts_dir=Path("keys"), proof_timeout=30),
            storage=StorageConfig(database=tmp_path / "db.sqlite"),
            session_ttl_seconds=600,
            admin_commitments=[2**200],
            receipts=False,
        )
        save_config(config, path)

        loaded = load_config(path)
        assert loaded == config
        assert yaml.safe_load(path.read_text())["admin_commitments"] == [str(2**200)]

    def test_partial_file(self, tmp_path: Path) -> None:
        """Omitted keys take their defaults."""
        path = tmp_path / "zkvote.yaml"
        path.write_text("session_ttl_seconds: 90\nstorage:\n  database: data/z.db\n")

        config = load_config(path)
        assert config.session_ttl == timedelta(seconds=90)
        assert config.storage.database == Path("data/z.db")
        assert config.proving.snarkjs_bin == "snarkjs"

    def test_empty_file(self, tmp_path: Path) -> None:
        """An empty file is the default configuration."""
        path = tmp_path / "zkvote.yaml"
        path.write_text("")
        assert load_config(path) == ProtocolConfig()

    def test_non_mapping_rejected(self, tmp_path: Path) -> None:
        """The document must be a mapping."""
        path = tmp_path / "zkvote.yaml"
        path.write_text("- just\n- a list\n")
        with pytest.raises(ValueError, match="mapping"):
            load_config(path)

    def test_unknown_backend(self) -> None:
        """Only mock and groth16 backends exist."""
        with pytest.raises(ValueError, match="Unknown proving backend"):
            ProvingConfig(backend="plonk")


class TestConfigureLogging:
    """Tests for logging setup."""

    def test_file_handler(self, tmp_path: Path) -> None:
        """Log records reach the configured file."""
        log_file = tmp_path / "logs" / "zkvote.log"
        configure_logging("DEBUG", log_file)
        logging.getLogger("our_zkvote.test").debug("hello from test")
        for handler in logging.getLogger().handlers:
            handler.flush()

        assert "hello from test" in log_file.read_text()
        assert " - our_zkvote.test - DEBUG - " in log_file.read_text()


class TestCreateOrchestrator:
    """Tests for wiring an orchestrator from configuration."""

    def test_mock_in_memory(self) -> None:
        """The default configuration wires mock keys for every circuit."""
        orchestrator = create_orchestrator(ProtocolConfig())

        for kind in CircuitKind:
            assert orchestrator.verifier.key_manager.accepted_versions(kind) == ["v1"]
        assert isinstance(orchestrator.receipt_sink, HashChainReceiptSink)

    def test_sqlite_storage(self, tmp_path: Path) -> None:
        """A database path selects SQLite storage and receipts can be disabled."""
        config = ProtocolConfig(storage=StorageConfig(database=tmp_path / "z.db"), receipts=False)
        orchestrator = create_orchestrator(config)

        assert isinstance(orchestrator.ledger, SQLiteNullifierLedger)
        assert orchestrator.receipt_sink is None
        assert (tmp_path / "z.db").exists()
        orchestrator.ledger.db.close()

    def test_full_flow_with_shared_keys(self) -> None:
        """An orchestrator over a caller's key manager accepts that system's proofs."""
        system = MockProvingSystem()
        pairs = system.setup_all("v1")
        manager = KeyManager()
        for kind, pair in pairs.items():
            manager.rotate(kind, pair.verification_key)
        admin = AdminCredential.generate()
        orchestrator = create_orchestrator(ProtocolConfig(admin_commitments=[admin.commitment]), key_manager=manager)
        provers = {kind: system.create_prover(pair.proving_key) for kind, pair in pairs.items()}

        session = IdentityCredential.generate().new_session()
        orchestrator.register(session.credential.commitment)
        orchestrator.authenticate(*session.prove_identity(provers[CircuitKind.IDENTITY]))

        assert orchestrator.act(Domain.VOTE, *session.prove_vote(provers[CircuitKind.VOTE_CAST], 4)).accepted
        assert orchestrator.act(Domain.ADMIN, *admin.authorize(provers[CircuitKind.ADMIN_ACTION], "open")).accepted

    def test_groth16_loads_artifact_keys(self, tmp_path: Path) -> None:
        """The groth16 backend installs keys found under artifacts_dir."""
        directory = tmp_path / "identity" / "v3"
        directory.mkdir(parents=True)
        (directory / "verification_key.json").write_text(json.dumps({"protocol": "groth16", "nPublic": 2}))
        config = ProtocolConfig(proving=ProvingConfig(backend="groth16", artifacts_dir=tmp_path))

        orchestrator = create_orchestrator(config)

        assert orchestrator.verifier.key_manager.accepted_versions(CircuitKind.IDENTITY) == ["v3"]
        assert orchestrator.verifier.key_manager.accepted_versions(CircuitKind.VOTE_CAST) == []


class TestCreateProvingSystem:
    """Tests for the backend factory."""

    def test_backends(self, tmp_path: Path) -> None:
        """Both backends are available by name."""
        assert create_proving_system("mock").name == "mock"
        assert create_proving_system("groth16", artifacts_dir=tmp_path).name == "groth16"

    def test_unknown(self) -> None:
        """Unknown names are rejected."""
        with pytest.raises(ValueError, match="Unknown proving backend"):
            create_proving_system("bulletproofs")
