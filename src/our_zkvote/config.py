"""Configuration, logging setup and orchestrator wiring.

Configuration lives in a YAML file:

    proving:
      backend: groth16          # or "mock"
      artifacts_dir: artifacts
      snarkjs_bin: snarkjs
      proof_timeout: 120
    storage:
      database: data/zkvote.db  # omit for in-memory storage
    session_ttl_seconds: 3600
    admin_commitments:
      - "1234..."
    receipts: true
    log_level: INFO
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import timedelta
from pathlib import Path
from typing import Any

import yaml

from our_zkvote.circuits import CircuitKind
from our_zkvote.keys import KeyManager
from our_zkvote.ledger import InMemoryNullifierLedger
from our_zkvote.orchestrator import ProtocolOrchestrator
from our_zkvote.sqlite import SQLiteActionLog, SQLiteDatabase, SQLiteIdentityRegistry, SQLiteNullifierLedger
from our_zkvote.store import HashChainReceiptSink, InMemoryActionLog, InMemoryIdentityRegistry
from our_zkvote.verifier import ProofVerifier

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path("zkvote.yaml")
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


@dataclass
class ProvingConfig:
    backend: str = "mock"
    artifacts_dir: Path = field(default_factory=lambda: Path("artifacts"))
    snarkjs_bin: str = "snarkjs"
    proof_timeout: float = 120.0
    mock_version: str = "v1"

    def __post_init__(self):
        self.artifacts_dir = Path(self.artifacts_dir)
        if self.backend not in ("mock", "groth16"):
            raise ValueError(f"Unknown proving backend: {self.backend!r}. Use 'mock' or 'groth16'.")


@dataclass
class StorageConfig:
    database: Path | None = None

    def __post_init__(self):
        if self.database is not None:
            self.database = Path(self.database)


@dataclass
class ProtocolConfig:
    proving: ProvingConfig = field(default_factory=ProvingConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    session_ttl_seconds: int = 3600
    admin_commitments: list[int] = field(default_factory=list)
    receipts: bool = True
    log_level: str = "INFO"
    log_file: Path | None = None

    def __post_init__(self):
        self.admin_commitments = [int(c) for c in self.admin_commitments]
        if self.log_file is not None:
            self.log_file = Path(self.log_file)

    @property
    def session_ttl(self) -> timedelta:
        return timedelta(seconds=self.session_ttl_seconds)

    def to_dict(self) -> dict[str, Any]:
        """Convert to the YAML document layout."""
        return {
            "proving": {
                "backend": self.proving.backend,
                "artifacts_dir": str(self.proving.artifacts_dir),
                "snarkjs_bin": self.proving.snarkjs_bin,
                "proof_timeout": self.proving.proof_timeout,
                "mock_version": self.proving.mock_version,
            },
            "storage": {
                "database": str(self.storage.database) if self.storage.database else None,
            },
            "session_ttl_seconds": self.session_ttl_seconds,
            "admin_commitments": [str(c) for c in self.admin_commitments],
            "receipts": self.receipts,
            "log_level": self.log_level,
            "log_file": str(self.log_file) if self.log_file else None,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ProtocolConfig:
        """Create from the YAML document layout."""
        proving = data.get("proving") or {}
        storage = data.get("storage") or {}
        return cls(
            proving=ProvingConfig(
                backend=proving.get("backend", "mock"),
                artifacts_dir=Path(proving.get("artifacts_dir", "artifacts")),
                snarkjs_bin=proving.get("snarkjs_bin", "snarkjs"),
                proof_timeout=float(proving.get("proof_timeout", 120.0)),
                mock_version=proving.get("mock_version", "v1"),
            ),
            storage=StorageConfig(database=storage.get("database")),
            session_ttl_seconds=int(data.get("session_ttl_seconds", 3600)),
            admin_commitments=list(data.get("admin_commitments") or []),
            receipts=bool(data.get("receipts", True)),
            log_level=data.get("log_level", "INFO"),
            log_file=data.get("log_file"),
        )


def load_config(config_path: Path | None = None) -> ProtocolConfig:
    """Load configuration from file or return default."""
    if config_path is None:
        config_path = DEFAULT_CONFIG_PATH
    config_path = Path(config_path)
    if not config_path.exists():
        logger.info(f"No config file at {config_path}, using defaults")
        return ProtocolConfig()

    with open(config_path) as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"Config file {config_path} must contain a mapping")
    return ProtocolConfig.from_dict(data)


def save_config(config: ProtocolConfig, config_path: Path | None = None) -> None:
    """Save configuration to YAML file."""
    if config_path is None:
        config_path = DEFAULT_CONFIG_PATH
    config_path = Path(config_path)
    config_path.parent.mkdir(parents=True, exist_ok=True)
    with open(config_path, "w") as f:
        yaml.safe_dump(config.to_dict(), f, default_flow_style=False, sort_keys=False)


def configure_logging(level: str | int = "INFO", log_file: Path | None = None) -> None:
    """Install the package log format on the root logger."""
    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if log_file is not None:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_file))
    logging.basicConfig(level=level, format=LOG_FORMAT, handlers=handlers, force=True)


def create_orchestrator(config: ProtocolConfig, key_manager: KeyManager | None = None) -> ProtocolOrchestrator:
    """Wire an orchestrator from configuration.

    Args:
        config: Protocol configuration
        key_manager: Pre-populated key manager; when omitted, groth16 keys are
            loaded from ``artifacts_dir`` and the mock backend is set up fresh
            at ``mock_version``

    Returns:
        Ready-to-use ProtocolOrchestrator
    """
    from our_zkvote import create_proving_system

    proving = config.proving
    system = create_proving_system(
        proving.backend,
        artifacts_dir=proving.artifacts_dir,
        snarkjs_bin=proving.snarkjs_bin,
        timeout=proving.proof_timeout,
    )

    if key_manager is None:
        key_manager = KeyManager()
        if proving.backend == "groth16":
            key_manager.load_directory(proving.artifacts_dir)
        else:
            for kind, key_pair in system.setup_all(proving.mock_version).items():
                key_manager.rotate(kind, key_pair.verification_key)
    missing = [kind.value for kind in CircuitKind if not key_manager.accepted_versions(kind)]
    if missing:
        logger.warning(f"No accepted verification keys for: {missing}")

    if config.storage.database is None:
        ledger, registry, action_log = InMemoryNullifierLedger(), InMemoryIdentityRegistry(), InMemoryActionLog()
    else:
        db = SQLiteDatabase(config.storage.database)
        ledger, registry, action_log = SQLiteNullifierLedger(db), SQLiteIdentityRegistry(db), SQLiteActionLog(db)

    return ProtocolOrchestrator(
        verifier=ProofVerifier(key_manager, system),
        ledger=ledger,
        registry=registry,
        action_log=action_log,
        receipt_sink=HashChainReceiptSink() if config.receipts else None,
        admin_commitments=config.admin_commitments,
        session_ttl=config.session_ttl,
    )
