"""Public interface for our-zkvote.

This module re-exports the primary public API: abstract interfaces,
core types, mock and real implementations, storage backends, exceptions,
and factory functions.

Usage:
    from our_zkvote.interface import ProvingSystem, NullifierLedger, ProtocolOrchestrator
    from our_zkvote.interface import MockProvingSystem, Groth16ProvingSystem
    from our_zkvote.interface import create_proving_system, create_orchestrator
"""

from our_zkvote import create_proving_system
from our_zkvote.circuits import CircuitKind, PublicSignals, get_circuit
from our_zkvote.config import ProtocolConfig, configure_logging, create_orchestrator, load_config, save_config
from our_zkvote.exceptions import (
    DuplicateIdentityError,
    KeyVersionConflictError,
    NullifierAlreadyUsedError,
    UnknownCircuitVersionError,
    VerificationFailedError,
    WitnessInvalidError,
    ZKPError,
    ZKPProvingError,
)
from our_zkvote.groth16 import Groth16ProvingSystem, Groth16Verifier, SnarkjsProver
from our_zkvote.hashing import Domain
from our_zkvote.holder import AdminCredential, AuthSession, IdentityCredential
from our_zkvote.keys import KeyManager
from our_zkvote.ledger import ConsumeResult, InMemoryNullifierLedger, NullifierLedger
from our_zkvote.orchestrator import ActionRejection, ActionResult, HolderState, ProtocolOrchestrator
from our_zkvote.sqlite import SQLiteActionLog, SQLiteDatabase, SQLiteIdentityRegistry, SQLiteNullifierLedger
from our_zkvote.store import ActionLog, HashChainReceiptSink, IdentityRegistry, ReceiptSink
from our_zkvote.verifier import ProofVerifier
from our_zkvote.zkp import (
    MockProvingSystem,
    Proof,
    Prover,
    ProvingSystem,
    RejectReason,
    VerificationKey,
    VerificationResult,
    Verifier,
)

__all__ = [
    # Interfaces
    "Prover",
    "Verifier",
    "ProvingSystem",
    "NullifierLedger",
    "IdentityRegistry",
    "ActionLog",
    "ReceiptSink",
    # Types
    "CircuitKind",
    "Domain",
    "PublicSignals",
    "Proof",
    "VerificationKey",
    "VerificationResult",
    "RejectReason",
    "ConsumeResult",
    "HolderState",
    "ActionRejection",
    "ActionResult",
    # Implementations
    "MockProvingSystem",
    "Groth16ProvingSystem",
    "Groth16Verifier",
    "SnarkjsProver",
    "KeyManager",
    "ProofVerifier",
    "InMemoryNullifierLedger",
    "SQLiteDatabase",
    "SQLiteNullifierLedger",
    "SQLiteIdentityRegistry",
    "SQLiteActionLog",
    "HashChainReceiptSink",
    "ProtocolOrchestrator",
    "IdentityCredential",
    "AuthSession",
    "AdminCredential",
    # Exceptions
    "ZKPError",
    "WitnessInvalidError",
    "ZKPProvingError",
    "UnknownCircuitVersionError",
    "KeyVersionConflictError",
    "DuplicateIdentityError",
    "VerificationFailedError",
    "NullifierAlreadyUsedError",
    # Configuration and factories
    "ProtocolConfig",
    "load_config",
    "save_config",
    "configure_logging",
    "create_proving_system",
    "create_orchestrator",
    "get_circuit",
]
