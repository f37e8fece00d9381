"""Exception hierarchy for our-zkvote.

Three families, one per concern:

- ``ZKPError``: circuits, provers, verifiers and proving backends
- ``KeyManagerError``: verification-key lifecycle
- ``ProtocolError``: orchestrator outcomes that reach the untrusted caller

Verification failures are deliberately coarse at the protocol level:
``VerificationFailedError`` never says which check failed.
"""

from __future__ import annotations

from typing import Any

# =============================================================================
# Proof system
# =============================================================================


class ZKPError(Exception):
    """Base exception for ZKP operations."""

    pass


class ZKPInputError(ZKPError):
    """Raised when inputs are malformed or missing."""

    pass


class WitnessInvalidError(ZKPInputError):
    """Raised when a private witness does not satisfy the circuit relation.

    Prover-side caller error; it never reaches the trust boundary.
    """

    pass


class ZKPCircuitNotFoundError(ZKPError):
    """Raised when a circuit or its setup artifacts are not found."""

    pass


class ZKPProvingError(ZKPError):
    """Raised when proof generation fails."""

    pass


class ZKPVerificationError(ZKPError):
    """Raised when proof verification encounters an error."""

    pass


class ZKPInvalidProofError(ZKPError):
    """Raised when a proof fails verification.

    Attributes:
        reason: The verifier's RejectReason, for trust-anchor logs only
    """

    def __init__(self, message: str = "Invalid proof", reason: Any = None) -> None:
        super().__init__(message)
        self.reason = reason


class CircuitBuildError(ZKPError):
    """Raised when compiling a circuit or producing its setup artifacts fails."""

    pass


# =============================================================================
# Key management
# =============================================================================


class KeyManagerError(Exception):
    """Base exception for verification-key lifecycle operations."""

    pass


class UnknownCircuitVersionError(KeyManagerError):
    """Raised when no currently trusted key exists for a circuit version."""

    pass


class KeyVersionConflictError(KeyManagerError):
    """Raised when installing a version string that was already used."""

    pass


# =============================================================================
# Protocol
# =============================================================================


class ProtocolError(Exception):
    """Base exception for orchestrator state transitions."""

    pass


class DuplicateIdentityError(ProtocolError):
    """Raised when registering an identity commitment that already exists."""

    pass


class VerificationFailedError(ProtocolError):
    """Raised when a proof is rejected, for any reason."""

    def __init__(self, message: str = "Verification failed") -> None:
        super().__init__(message)


class NullifierAlreadyUsedError(ProtocolError):
    """Raised when a nullifier is replayed within its domain."""

    def __init__(self, domain: str, nullifier: int) -> None:
        self.domain = domain
        self.nullifier = nullifier
        super().__init__(f"Nullifier already used in domain {domain!r}")
