"""Zero-Knowledge Proof Abstraction Layer for anonymous credentials.

Provides a Python interface for proofs over the protocol circuits (see
``our_zkvote.circuits``). This module defines the abstract interface that can
be backed by different implementations:
- MockProvingSystem: For testing (Ed25519 attestations, not zero-knowledge)
- Groth16ProvingSystem: snarkjs proving with native BN254 verification
  (see ``our_zkvote.groth16``)

Proof lifecycle:
- setup(kind, version) yields a KeyPair; only the VerificationKey ever
  reaches the trust anchor
- a Prover turns (witness, declared public signals) into a Proof, refusing
  witnesses that do not satisfy the circuit
- a Verifier checks a Proof against the public signals and reports either
  acceptance or a RejectReason

Example:
    >>> system = MockProvingSystem()
    >>> keys = system.setup(CircuitKind.IDENTITY, "v1")
    >>> prover = system.create_prover(keys.proving_key)
    >>> signals = IDENTITY.public_signals(witness)
    >>> proof = prover.prove(witness, signals)
    >>> verifier = system.create_verifier(keys.verification_key)
    >>> assert verifier.verify(proof, signals).valid
"""

from __future__ import annotations

import time
from abc import ABC, abstractmethod
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from our_zkvote._primitives import canonical_json, generate_signing_key, labelled_hash, sign_statement, statement_signed
from our_zkvote.circuits import Circuit, CircuitKind, PublicSignals, SignalsLike, get_circuit
from our_zkvote.exceptions import (
    WitnessInvalidError,
    ZKPCircuitNotFoundError,
    ZKPError,
    ZKPInputError,
    ZKPInvalidProofError,
    ZKPProvingError,
    ZKPVerificationError,
)

# Domain separation labels
_LABEL_SIGNALS = b"our-zkvote-public-signals-v1"
_LABEL_FINGERPRINT = b"our-zkvote-vk-fingerprint-v1"
_LABEL_MOCK_PROOF = "our-zkvote-mock-proof-v1"

MOCK_BACKEND = "mock"

# Version label of the fixed material returned by ProvingSystem.placeholder()
PLACEHOLDER_VERSION = "placeholder"

# =============================================================================
# Enums and Types
# =============================================================================


class RejectReason(Enum):
    """Why a verifier refused a proof.

    Precise reasons stay inside the trust anchor (logs, tests). Callers of
    the orchestrator only ever see a generic verification failure.
    """

    UNKNOWN_CIRCUIT_VERSION = "unknown_circuit_version"
    """The claimed circuit version is not (or no longer) accepted."""

    MALFORMED_PROOF = "malformed_proof"
    """The proof or public signals could not be parsed."""

    CONSTRAINT_VIOLATION = "constraint_violation"
    """The proof does not verify against the public signals."""


def _parse_time(value: str | None) -> datetime:
    return datetime.fromisoformat(value) if value else datetime.now()


@dataclass
class ProvingKey:
    """Holder-side key material for one circuit version.

    Attributes:
        circuit: The circuit this key proves
        version: Circuit version label (e.g. "v1")
        backend: Name of the proving system that produced it
        key_data: Backend-specific material (paths, secret key bytes)
        created_at: When setup produced this key
    """

    circuit: CircuitKind
    version: str
    backend: str
    key_data: dict[str, Any]
    created_at: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "circuit": self.circuit.value,
            "version": self.version,
            "backend": self.backend,
            "key_data": self.key_data,
            "created_at": self.created_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ProvingKey:
        """Create from dictionary."""
        return cls(
            circuit=CircuitKind(data["circuit"]),
            version=data["version"],
            backend=data["backend"],
            key_data=dict(data["key_data"]),
            created_at=_parse_time(data.get("created_at")),
        )


@dataclass
class VerificationKey:
    """Public verification key for one circuit version.

    This is the only key material the trust anchor holds.

    Attributes:
        circuit: The circuit this key verifies
        version: Circuit version label
        backend: Name of the proving system that produced it
        key_data: Backend-specific public material (JSON-serializable)
        created_at: When setup produced this key
    """

    circuit: CircuitKind
    version: str
    backend: str
    key_data: dict[str, Any]
    created_at: datetime = field(default_factory=datetime.now)

    @property
    def fingerprint(self) -> bytes:
        """32-byte hash identifying this exact key material."""
        material = {
            "circuit": self.circuit.value,
            "version": self.version,
            "backend": self.backend,
            "key_data": self.key_data,
        }
        return labelled_hash(_LABEL_FINGERPRINT, canonical_json(material))

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "circuit": self.circuit.value,
            "version": self.version,
            "backend": self.backend,
            "key_data": self.key_data,
            "created_at": self.created_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> VerificationKey:
        """Create from dictionary."""
        return cls(
            circuit=CircuitKind(data["circuit"]),
            version=data["version"],
            backend=data["backend"],
            key_data=dict(data["key_data"]),
            created_at=_parse_time(data.get("created_at")),
        )


@dataclass
class KeyPair:
    """Output of setup: a proving key and its verification key."""

    proving_key: ProvingKey
    verification_key: VerificationKey

    @property
    def circuit(self) -> CircuitKind:
        return self.verification_key.circuit

    @property
    def version(self) -> str:
        return self.verification_key.version


@dataclass
class Proof:
    """A proof for one circuit version.

    Attributes:
        circuit: Circuit the proof claims to satisfy
        version: Circuit version the proof was generated against
        backend: Proving system name
        proof_data: Backend-specific proof (snarkjs proof JSON for groth16)
        created_at: When the proof was generated
        metadata: Additional non-secret metadata
    """

    circuit: CircuitKind
    version: str
    backend: str
    proof_data: dict[str, Any]
    created_at: datetime = field(default_factory=datetime.now)
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "circuit": self.circuit.value,
            "version": self.version,
            "backend": self.backend,
            "proof_data": self.proof_data,
            "created_at": self.created_at.isoformat(),
            "metadata": self.metadata,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Proof:
        """Create from dictionary.

        Raises:
            ZKPInputError: If required fields are missing or invalid
        """
        try:
            return cls(
                circuit=CircuitKind(data["circuit"]),
                version=str(data["version"]),
                backend=str(data["backend"]),
                proof_data=dict(data["proof_data"]),
                created_at=_parse_time(data.get("created_at")),
                metadata=dict(data.get("metadata") or {}),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise ZKPInputError(f"Malformed proof: {e}") from e


@dataclass
class VerificationResult:
    """Result of proof verification.

    Attributes:
        valid: Whether the proof is valid
        circuit: Circuit the proof was checked against
        version: Circuit version the proof claimed
        reason: Why the proof was rejected (None when valid)
        public_signals_hash: Hash of the public signals checked
        verified_at: When verification was performed
        error_message: Diagnostic detail for logs, never for callers
        verification_time_ms: Time taken to verify in milliseconds
    """

    valid: bool
    circuit: CircuitKind
    version: str
    reason: RejectReason | None = None
    public_signals_hash: bytes = b""
    verified_at: datetime = field(default_factory=datetime.now)
    error_message: str | None = None
    verification_time_ms: float = 0.0

    @classmethod
    def accept(cls, circuit: CircuitKind, version: str, signals_hash: bytes, started: float) -> VerificationResult:
        return cls(
            valid=True,
            circuit=circuit,
            version=version,
            public_signals_hash=signals_hash,
            verification_time_ms=(time.time() - started) * 1000,
        )

    @classmethod
    def reject(
        cls,
        circuit: CircuitKind,
        version: str,
        reason: RejectReason,
        message: str,
        started: float,
        signals_hash: bytes = b"",
    ) -> VerificationResult:
        return cls(
            valid=False,
            circuit=circuit,
            version=version,
            reason=reason,
            public_signals_hash=signals_hash,
            error_message=message,
            verification_time_ms=(time.time() - started) * 1000,
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "valid": self.valid,
            "circuit": self.circuit.value,
            "version": self.version,
            "reason": self.reason.value if self.reason else None,
            "public_signals_hash": self.public_signals_hash.hex(),
            "verified_at": self.verified_at.isoformat(),
            "error_message": self.error_message,
            "verification_time_ms": self.verification_time_ms,
        }


# =============================================================================
# Abstract Interfaces
# =============================================================================


class Prover(ABC):
    """Abstract prover interface for one circuit version.

    Provers take a private witness and the declared public signals and
    produce a proof that the signals satisfy the circuit relation. The
    witness is never persisted or transmitted.
    """

    @property
    @abstractmethod
    def circuit(self) -> Circuit:
        """The circuit this prover generates proofs for."""
        pass

    @property
    @abstractmethod
    def version(self) -> str:
        """Circuit version of the proving key."""
        pass

    @abstractmethod
    def prove(self, witness: Mapping[str, Any], public_signals: SignalsLike) -> Proof:
        """Generate a proof.

        Args:
            witness: Private inputs (identity secret, nullifier secret, ...)
            public_signals: Declared public signal vector

        Returns:
            A Proof that can be verified against the same signals

        Raises:
            WitnessInvalidError: If the witness does not satisfy the circuit
                for the declared signals (raised before any proving work)
            ZKPProvingError: If proof generation fails
        """
        pass

    def validate_inputs(self, witness: Mapping[str, Any], public_signals: SignalsLike) -> PublicSignals:
        """Check the witness against the declared signals.

        Returns:
            The public signals implied by the witness

        Raises:
            WitnessInvalidError: If the relation does not hold
        """
        return self.circuit.check(witness, public_signals)


class Verifier(ABC):
    """Abstract verifier interface for one circuit version.

    Verifiers check that a proof is valid given the public signals,
    without access to the witness.
    """

    @property
    @abstractmethod
    def circuit(self) -> Circuit:
        """The circuit this verifier checks."""
        pass

    @property
    @abstractmethod
    def verification_key(self) -> VerificationKey:
        """Key this verifier was created from."""
        pass

    @abstractmethod
    def verify(self, proof: Proof, public_signals: SignalsLike) -> VerificationResult:
        """Verify a proof.

        Malformed input is reported as a rejection, never raised.

        Args:
            proof: The proof to verify
            public_signals: Public signals (must match what was proven)

        Returns:
            VerificationResult indicating acceptance or the reject reason
        """
        pass


class ProvingSystem(ABC):
    """Abstract proving system.

    The proving system manages setup artifacts and creates provers and
    verifiers for specific circuit versions.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Backend name recorded in keys and proofs."""
        pass

    @abstractmethod
    def setup(self, kind: CircuitKind, version: str = "v1") -> KeyPair:
        """Produce (or load) the key pair for a circuit version.

        Args:
            kind: Circuit to set up
            version: Version label for the resulting keys

        Returns:
            KeyPair for that circuit version

        Raises:
            ZKPError: If setup fails
        """
        pass

    @abstractmethod
    def create_prover(self, proving_key: ProvingKey) -> Prover:
        """Create a prover from a proving key.

        Raises:
            ZKPCircuitNotFoundError: If the key's artifacts are unavailable
        """
        pass

    @abstractmethod
    def create_verifier(self, verification_key: VerificationKey) -> Verifier:
        """Create a verifier from a verification key.

        Raises:
            ZKPVerificationError: If the key is not usable by this backend
        """
        pass

    @abstractmethod
    def placeholder(self, kind: CircuitKind) -> tuple[Verifier, Proof, PublicSignals]:
        """Fixed verifier, proof and signals for ``kind``.

        Verifying the proof costs what a full verification of a real proof
        costs. ProofVerifier runs it for rejects decided before the backend
        check, so every reject reason takes comparable time.
        """
        pass

    def get_key_pair(self, kind: CircuitKind, version: str) -> KeyPair | None:
        """Key pair from a previous setup() call, if any."""
        return None

    def setup_all(self, version: str = "v1") -> dict[CircuitKind, KeyPair]:
        """Convenience method to set up all circuits at one version.

        Returns:
            Dictionary mapping circuit kinds to their key pairs
        """
        return {kind: self.setup(kind, version) for kind in CircuitKind}


# =============================================================================
# Utility Functions
# =============================================================================


def hash_public_signals(signals: PublicSignals) -> bytes:
    """Hash a public signal vector deterministically.

    Args:
        signals: Ordered public signals

    Returns:
        32-byte hash of the circuit name and the vector
    """
    return labelled_hash(_LABEL_SIGNALS, canonical_json([signals.circuit.value, signals.to_list()]))


def coerce_signals(circuit: Circuit, public_signals: SignalsLike) -> PublicSignals:
    """Coerce signals for a verifier, turning bad input into ZKPInputError."""
    try:
        return circuit.coerce_signals(public_signals)
    except (TypeError, ValueError) as e:
        raise ZKPInputError(f"Malformed public signals: {e}") from e


# =============================================================================
# Mock Implementation
# =============================================================================


def _mock_message(circuit: Circuit, version: str, public_key_hex: str, signals: PublicSignals) -> bytes:
    return canonical_json(
        {
            "label": _LABEL_MOCK_PROOF,
            "circuit": circuit.kind.value,
            "circuit_digest": circuit.digest.hex(),
            "version": version,
            "public_key": public_key_hex,
            "signals": signals.to_list(),
        }
    )


class MockProver(Prover):
    """Mock prover for testing.

    Checks the witness exactly like a real prover, then attests to the
    public signals with the version's Ed25519 key. It does NOT provide
    zero-knowledge soundness: anyone holding the proving key can attest to
    arbitrary signals. Use only for testing.
    """

    def __init__(self, proving_key: ProvingKey):
        """Initialize mock prover.

        Args:
            proving_key: Key from MockProvingSystem.setup()
        """
        self._key = proving_key
        self._circuit = get_circuit(proving_key.circuit)
        self._private = bytes.fromhex(proving_key.key_data["private_key"])
        self._public_hex = proving_key.key_data["public_key"]

    @property
    def circuit(self) -> Circuit:
        """The circuit this prover generates proofs for."""
        return self._circuit

    @property
    def version(self) -> str:
        return self._key.version

    def prove(self, witness: Mapping[str, Any], public_signals: SignalsLike) -> Proof:
        """Generate a mock proof.

        The mock proof is deterministic in the key and the public signals.
        """
        signals = self.validate_inputs(witness, public_signals)
        message = _mock_message(self._circuit, self._key.version, self._public_hex, signals)
        signature = sign_statement(self._private, message)
        return Proof(
            circuit=self._circuit.kind,
            version=self._key.version,
            backend=MOCK_BACKEND,
            proof_data={"signature": signature.hex()},
            metadata={"mock": True},
        )


class MockVerifier(Verifier):
    """Mock verifier for testing.

    Checks the Ed25519 attestation over the circuit digest, version and
    public signals. A proof made with another version's key, or for other
    signals, is rejected.
    """

    def __init__(self, verification_key: VerificationKey):
        """Initialize mock verifier.

        Args:
            verification_key: Key from MockProvingSystem.setup()

        Raises:
            ZKPVerificationError: If the key is not a mock key
        """
        if verification_key.backend != MOCK_BACKEND:
            raise ZKPVerificationError(f"Not a mock verification key: backend {verification_key.backend!r}")
        self._key = verification_key
        self._circuit = get_circuit(verification_key.circuit)
        self._public_hex = verification_key.key_data["public_key"]

    @property
    def circuit(self) -> Circuit:
        """The circuit this verifier checks."""
        return self._circuit

    @property
    def verification_key(self) -> VerificationKey:
        return self._key

    def verify(self, proof: Proof, public_signals: SignalsLike) -> VerificationResult:
        """Verify a mock proof.

        For mock verification, we check:
        1. Proof circuit, backend and version match the key
        2. Public signals are well formed for the circuit
        3. The key was made for this circuit digest
        4. The signature covers exactly these signals
        """
        start_time = time.time()
        kind, version = self._circuit.kind, self._key.version

        if proof.circuit != kind or proof.backend != MOCK_BACKEND:
            return VerificationResult.reject(
                kind, proof.version, RejectReason.MALFORMED_PROOF, "Proof circuit or backend mismatch", start_time
            )
        if proof.version != version:
            return VerificationResult.reject(
                kind, proof.version, RejectReason.UNKNOWN_CIRCUIT_VERSION, "Proof version mismatch", start_time
            )

        try:
            signals = coerce_signals(self._circuit, public_signals)
            signature = bytes.fromhex(proof.proof_data["signature"])
        except (ZKPInputError, KeyError, TypeError, ValueError) as e:
            return VerificationResult.reject(kind, version, RejectReason.MALFORMED_PROOF, str(e), start_time)

        signals_hash = hash_public_signals(signals)
        if self._key.key_data.get("circuit_digest") != self._circuit.digest.hex():
            return VerificationResult.reject(
                kind, version, RejectReason.CONSTRAINT_VIOLATION, "Circuit digest mismatch", start_time, signals_hash
            )

        message = _mock_message(self._circuit, version, self._public_hex, signals)
        if not statement_signed(bytes.fromhex(self._public_hex), message, signature):
            return VerificationResult.reject(
                kind, version, RejectReason.CONSTRAINT_VIOLATION, "Signature check failed", start_time, signals_hash
            )

        return VerificationResult.accept(kind, version, signals_hash, start_time)


class MockProvingSystem(ProvingSystem):
    """Mock proving system for testing.

    Every setup() generates a fresh Ed25519 key pair, so different
    versions of the same circuit never accept each other's proofs.

    Example:
        >>> system = MockProvingSystem()
        >>> keys = system.setup(CircuitKind.ADMIN_ACTION, "v1")
        >>> prover = system.create_prover(keys.proving_key)
        >>> verifier = system.create_verifier(keys.verification_key)
    """

    def __init__(self) -> None:
        """Initialize mock proving system."""
        self._key_pairs: dict[tuple[CircuitKind, str], KeyPair] = {}

    @property
    def name(self) -> str:
        return MOCK_BACKEND

    def setup(self, kind: CircuitKind, version: str = "v1") -> KeyPair:
        """Perform mock setup with a fresh signing key."""
        key_pair = self._generate(kind, version)
        self._key_pairs[(kind, version)] = key_pair
        return key_pair

    def _generate(self, kind: CircuitKind, version: str) -> KeyPair:
        circuit = get_circuit(kind)
        private_bytes, public_bytes = generate_signing_key()
        created_at = datetime.now()
        public_data = {"public_key": public_bytes.hex(), "circuit_digest": circuit.digest.hex()}

        return KeyPair(
            proving_key=ProvingKey(
                circuit=kind,
                version=version,
                backend=MOCK_BACKEND,
                key_data={"private_key": private_bytes.hex(), **public_data},
                created_at=created_at,
            ),
            verification_key=VerificationKey(
                circuit=kind,
                version=version,
                backend=MOCK_BACKEND,
                key_data=public_data,
                created_at=created_at,
            ),
        )

    def create_prover(self, proving_key: ProvingKey) -> Prover:
        """Create a mock prover."""
        if proving_key.backend != MOCK_BACKEND or "private_key" not in proving_key.key_data:
            raise ZKPCircuitNotFoundError(
                f"No setup found for {proving_key.circuit.value} {proving_key.version}. Call setup() first."
            )
        return MockProver(proving_key)

    def create_verifier(self, verification_key: VerificationKey) -> Verifier:
        """Create a mock verifier."""
        return MockVerifier(verification_key)

    def placeholder(self, kind: CircuitKind) -> tuple[Verifier, Proof, PublicSignals]:
        """Mock material under a throwaway key; the proof verifies."""
        key_pair = self._generate(kind, PLACEHOLDER_VERSION)
        circuit = get_circuit(kind)
        witness = {name: 1 for name in circuit.private_inputs}
        signals = circuit.public_signals(witness)
        proof = MockProver(key_pair.proving_key).prove(witness, signals)
        return MockVerifier(key_pair.verification_key), proof, signals

    def get_key_pair(self, kind: CircuitKind, version: str) -> KeyPair | None:
        """Get the key pair from a previous setup."""
        return self._key_pairs.get((kind, version))


__all__ = [
    "MOCK_BACKEND",
    "PLACEHOLDER_VERSION",
    "KeyPair",
    "MockProver",
    "MockProvingSystem",
    "MockVerifier",
    "Proof",
    "Prover",
    "ProvingKey",
    "ProvingSystem",
    "RejectReason",
    "VerificationKey",
    "VerificationResult",
    "Verifier",
    "WitnessInvalidError",
    "ZKPCircuitNotFoundError",
    "ZKPError",
    "ZKPInputError",
    "ZKPInvalidProofError",
    "ZKPProvingError",
    "ZKPVerificationError",
    "coerce_signals",
    "hash_public_signals",
]
