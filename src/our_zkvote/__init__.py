"""our-zkvote -- Anonymous credentials and nullifiers over zero-knowledge proofs.

This package provides:
- A Poseidon-style commitment/nullifier hash over the BN254 scalar field
- Circuit contracts for identity, vote casting and admin actions
- Proving systems: a mock backend (for testing) and Groth16 (snarkjs
  proving, native py_ecc verification)
- Versioned verification-key management and proof verification
- A nullifier ledger (in-memory or SQLite) with exactly-once consumption
- The protocol orchestrator state machine tying them together
"""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING

__version__ = "0.1.0"

from our_zkvote.circuits import (
    ADMIN_ACTION,
    CIRCUITS,
    IDENTITY,
    VOTE_CAST,
    Circuit,
    CircuitKind,
    PublicSignals,
    get_circuit,
)
from our_zkvote.exceptions import (
    CircuitBuildError,
    DuplicateIdentityError,
    KeyManagerError,
    KeyVersionConflictError,
    NullifierAlreadyUsedError,
    ProtocolError,
    UnknownCircuitVersionError,
    VerificationFailedError,
    WitnessInvalidError,
    ZKPCircuitNotFoundError,
    ZKPError,
    ZKPInputError,
    ZKPInvalidProofError,
    ZKPProvingError,
    ZKPVerificationError,
)
from our_zkvote.hashing import (
    Domain,
    action_hash,
    admin_commitment,
    choice_commitment,
    encode_action_data,
    encode_choice,
    field_hash,
    identity_commitment,
    nullifier_hash,
)
from our_zkvote.holder import AdminCredential, AuthSession, IdentityCredential
from our_zkvote.keys import KeyManager, KeyRecord, KeyStatus
from our_zkvote.ledger import ConsumeResult, InMemoryNullifierLedger, NullifierLedger
from our_zkvote.orchestrator import ActionRejection, ActionResult, HolderState, ProtocolOrchestrator, Session
from our_zkvote.store import (
    ActionLog,
    ActionRecord,
    HashChainReceiptSink,
    IdentityRegistry,
    InMemoryActionLog,
    InMemoryIdentityRegistry,
    ReceiptSink,
)
from our_zkvote.verifier import ProofVerifier
from our_zkvote.zkp import (
    KeyPair,
    MockProver,
    MockProvingSystem,
    MockVerifier,
    Proof,
    Prover,
    ProvingKey,
    ProvingSystem,
    RejectReason,
    VerificationKey,
    VerificationResult,
    Verifier,
    hash_public_signals,
)

if TYPE_CHECKING:
    from our_zkvote.groth16 import Groth16ProvingSystem as Groth16ProvingSystem
    from our_zkvote.groth16 import Groth16Verifier as Groth16Verifier
    from our_zkvote.groth16 import SnarkjsProver as SnarkjsProver


# =============================================================================
# Factory Functions (lazy imports for real backends)
# =============================================================================


def create_proving_system(
    backend: str = "mock",
    artifacts_dir: str | Path = "artifacts",
    snarkjs_bin: str = "snarkjs",
    timeout: float = 120.0,
) -> ProvingSystem:
    """Create a proving system.

    Args:
        backend: "mock" for testing, "groth16" for real proofs
        artifacts_dir: Root of the Groth16 setup artifacts
        snarkjs_bin: snarkjs executable for Groth16 proving
        timeout: Seconds allowed per Groth16 proof

    Returns:
        ProvingSystem instance
    """
    if backend == "mock":
        return MockProvingSystem()
    elif backend == "groth16":
        from our_zkvote.groth16 import Groth16ProvingSystem

        return Groth16ProvingSystem(artifacts_dir, snarkjs_bin=snarkjs_bin, timeout=timeout)
    else:
        raise ValueError(f"Unknown proving backend: {backend!r}. Use 'mock' or 'groth16'.")


__all__ = [
    # Hashing
    "Domain",
    "field_hash",
    "identity_commitment",
    "nullifier_hash",
    "choice_commitment",
    "admin_commitment",
    "action_hash",
    "encode_action_data",
    "encode_choice",
    # Circuits
    "CircuitKind",
    "Circuit",
    "PublicSignals",
    "IDENTITY",
    "VOTE_CAST",
    "ADMIN_ACTION",
    "CIRCUITS",
    "get_circuit",
    # ZKP Exceptions
    "ZKPError",
    "ZKPInputError",
    "WitnessInvalidError",
    "ZKPCircuitNotFoundError",
    "ZKPProvingError",
    "ZKPVerificationError",
    "ZKPInvalidProofError",
    "CircuitBuildError",
    # ZKP Types
    "RejectReason",
    "ProvingKey",
    "VerificationKey",
    "KeyPair",
    "Proof",
    "VerificationResult",
    # ZKP Interfaces
    "Prover",
    "Verifier",
    "ProvingSystem",
    # ZKP Mock Implementations
    "MockProver",
    "MockVerifier",
    "MockProvingSystem",
    # ZKP Utilities
    "hash_public_signals",
    # Key management
    "KeyManagerError",
    "UnknownCircuitVersionError",
    "KeyVersionConflictError",
    "KeyManager",
    "KeyRecord",
    "KeyStatus",
    "ProofVerifier",
    # Ledger and stores
    "ConsumeResult",
    "NullifierLedger",
    "InMemoryNullifierLedger",
    "IdentityRegistry",
    "ActionLog",
    "ActionRecord",
    "ReceiptSink",
    "InMemoryIdentityRegistry",
    "InMemoryActionLog",
    "HashChainReceiptSink",
    # Holder
    "IdentityCredential",
    "AuthSession",
    "AdminCredential",
    # Protocol
    "ProtocolError",
    "DuplicateIdentityError",
    "VerificationFailedError",
    "NullifierAlreadyUsedError",
    "HolderState",
    "ActionRejection",
    "ActionResult",
    "Session",
    "ProtocolOrchestrator",
    # Factory Functions
    "create_proving_system",
]
