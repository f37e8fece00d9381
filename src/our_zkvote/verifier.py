"""Trust-anchor proof verification.

ProofVerifier ties the key manager to a proving system: it resolves the
claimed circuit version under the key manager's read lock, checks that the
proof's own claims are consistent with what it is being verified as, and
runs the backend check. The result always carries one RejectReason when the
proof is refused; turning that into a generic failure for callers is the
orchestrator's job.
"""

from __future__ import annotations

import hmac
import logging
import threading
import time
from collections.abc import Mapping
from typing import Any

from our_zkvote.circuits import CircuitKind, PublicSignals, SignalsLike, get_circuit
from our_zkvote.exceptions import (
    UnknownCircuitVersionError,
    ZKPInputError,
    ZKPInvalidProofError,
    ZKPVerificationError,
)
from our_zkvote.keys import KeyManager
from our_zkvote.zkp import (
    Proof,
    ProvingSystem,
    RejectReason,
    VerificationKey,
    VerificationResult,
    Verifier,
    coerce_signals,
    hash_public_signals,
)

logger = logging.getLogger(__name__)


class ProofVerifier:
    """Verifies proofs against the currently accepted verification keys.

    Backend verifiers are cached per (circuit, version, key fingerprint), so
    a rotated key never reuses a stale verifier.

    A reject decided before the backend check (unknown version, malformed
    input, claim mismatch) still pays for one backend verification of the
    proving system's placeholder proof, so rejects cost about the same
    whatever their reason.
    """

    def __init__(self, key_manager: KeyManager, proving_system: ProvingSystem):
        self.key_manager = key_manager
        self.proving_system = proving_system
        self._cache: dict[tuple[CircuitKind, str, bytes], Verifier] = {}
        self._cache_lock = threading.Lock()
        self._placeholders: dict[CircuitKind, tuple[Verifier, Proof, PublicSignals]] = {}

    def _verifier_for(self, key: VerificationKey) -> Verifier:
        fingerprint = key.fingerprint
        cache_key = (key.circuit, key.version, fingerprint)
        with self._cache_lock:
            verifier = self._cache.get(cache_key)
        if verifier is not None and hmac.compare_digest(verifier.verification_key.fingerprint, fingerprint):
            return verifier
        verifier = self.proving_system.create_verifier(key)
        with self._cache_lock:
            self._cache[cache_key] = verifier
        return verifier

    def _verify_placeholder(self, kind: CircuitKind) -> None:
        with self._cache_lock:
            placeholder = self._placeholders.get(kind)
        if placeholder is None:
            placeholder = self.proving_system.placeholder(kind)
            with self._cache_lock:
                placeholder = self._placeholders.setdefault(kind, placeholder)
        verifier, proof, signals = placeholder
        verifier.verify(proof, signals)

    def verify(
        self,
        kind: CircuitKind,
        version: str,
        proof: Proof | Mapping[str, Any],
        public_signals: SignalsLike,
    ) -> VerificationResult:
        """Verify a proof as a proof of ``kind`` at ``version``.

        Never raises for malformed input: every failure is a rejection.

        Args:
            kind: Circuit the caller expects
            version: Circuit version the proof claims
            proof: Proof object or its dict form
            public_signals: Public signals to verify against

        Returns:
            VerificationResult; ``reason`` is set when ``valid`` is False
        """
        start_time = time.time()
        circuit = get_circuit(kind)
        reasons: list[tuple[RejectReason, str]] = []
        signals_hash = b""

        # Parse everything first so unknown versions and malformed input
        # take comparable paths.
        try:
            if not isinstance(proof, Proof):
                proof = Proof.from_dict(dict(proof))
            signals = coerce_signals(circuit, public_signals)
            signals_hash = hash_public_signals(signals)
        except (ZKPInputError, TypeError, ValueError) as e:
            reasons.append((RejectReason.MALFORMED_PROOF, str(e)))
            signals = None

        with self.key_manager.reading():
            try:
                key = self.key_manager.lookup(kind, version)
            except UnknownCircuitVersionError as e:
                key = None
                reasons.insert(0, (RejectReason.UNKNOWN_CIRCUIT_VERSION, str(e)))

            if signals is not None and (proof.circuit != kind or proof.version != version):
                reasons.append((RejectReason.MALFORMED_PROOF, "Proof claims a different circuit or version"))

            result = None
            if key is not None and not reasons:
                try:
                    result = self._verifier_for(key).verify(proof, signals)
                except ZKPVerificationError as e:
                    logger.error(f"Unusable {kind.value} {version} verification key: {e}")
                    reasons.append((RejectReason.UNKNOWN_CIRCUIT_VERSION, str(e)))

        if result is None or result.reason not in (None, RejectReason.CONSTRAINT_VIOLATION):
            self._verify_placeholder(kind)
        if result is None:
            reason, message = reasons[0]
            result = VerificationResult.reject(kind, version, reason, message, start_time, signals_hash)

        if result.valid:
            logger.debug(f"Accepted {kind.value} {version} proof")
        else:
            logger.debug(f"Rejected {kind.value} {version} proof: {result.reason.value}: {result.error_message}")
        return result

    def require(
        self,
        kind: CircuitKind,
        version: str,
        proof: Proof | Mapping[str, Any],
        public_signals: SignalsLike,
    ) -> PublicSignals:
        """Verify and return the accepted public signals.

        Raises:
            ZKPInvalidProofError: If the proof is rejected; ``reason`` holds
                the RejectReason
        """
        result = self.verify(kind, version, proof, public_signals)
        if not result.valid:
            raise ZKPInvalidProofError(f"{kind.value} proof rejected", reason=result.reason)
        return get_circuit(kind).coerce_signals(public_signals)
