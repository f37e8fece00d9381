"""Protocol orchestrator: the trust anchor's state machine.

Ties proof verification and nullifier consumption into the protocol's state
transitions:

    UNREGISTERED --register--> REGISTERED --authenticate--> AUTHENTICATED --act--> ACTED

- register(commitment): add an identity commitment to the registry
- authenticate(proof, signals): verify an Identity proof for a registered
  commitment and consume its auth nullifier; returns an opaque session token
- act(domain, proof, signals): verify a VoteCast or AdminAction proof,
  consume its nullifier, persist the action and submit a best-effort receipt

Consuming the nullifier is the commit point of every transition. When the
ledger and the action log share one SQLite database, consumption and the
action record commit in one transaction, and a failed write leaves the
nullifier unused. Otherwise a persist failure propagates with the nullifier
consumed: it never opens a replay window, and the holder starts over with a
fresh session.

Verification failures are collapsed into one generic outcome before they
reach the caller. Replays and registration conflicts are reported precisely.

Example:
    >>> orchestrator = ProtocolOrchestrator(verifier, InMemoryNullifierLedger(), ...)
    >>> orchestrator.register(credential.commitment)
    >>> token = orchestrator.authenticate(proof, signals)
    >>> result = orchestrator.act(Domain.VOTE, vote_proof, vote_signals)
    >>> assert result.accepted
"""

from __future__ import annotations

import logging
import secrets
import threading
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any

from our_zkvote._primitives import to_field
from our_zkvote.circuits import ADMIN_ACTION, IDENTITY, VOTE_CAST, Circuit, CircuitKind, PublicSignals, SignalsLike
from our_zkvote.exceptions import (
    DuplicateIdentityError,
    NullifierAlreadyUsedError,
    VerificationFailedError,
    ZKPInvalidProofError,
)
from our_zkvote.hashing import Domain
from our_zkvote.ledger import ConsumeResult, DomainLike, NullifierLedger
from our_zkvote.store import ActionLog, IdentityRegistry, ReceiptSink
from our_zkvote.verifier import ProofVerifier
from our_zkvote.zkp import Proof

logger = logging.getLogger(__name__)

DEFAULT_SESSION_TTL = timedelta(hours=1)

_ACTION_CIRCUITS: dict[Domain, Circuit] = {
    Domain.VOTE: VOTE_CAST,
    Domain.ADMIN: ADMIN_ACTION,
}


class HolderState(Enum):
    """Protocol state of a holder within one domain."""

    UNREGISTERED = "unregistered"
    REGISTERED = "registered"
    AUTHENTICATED = "authenticated"
    ACTED = "acted"
    """Final for the session's nullifier; a new session is required."""


class ActionRejection(Enum):
    """Caller-visible reasons an action was refused."""

    VERIFICATION_FAILED = "verification_failed"
    """The proof did not verify (the precise reason is not disclosed)."""

    ALREADY_USED = "already_used"
    """The action's nullifier was consumed before."""

    NOT_AUTHENTICATED = "not_authenticated"
    """The vote does not belong to a live, unused session."""

    UNAUTHORIZED_ADMIN = "unauthorized_admin"
    """The admin commitment is not in the configured admin set."""

    DOMAIN_MISMATCH = "domain_mismatch"
    """The proof is not for the requested action domain."""


@dataclass
class Session:
    """A live authentication session, bound to one auth nullifier."""

    token: str = field(repr=False)
    auth_nullifier: int
    identity_commitment: int
    created_at: datetime
    expires_at: datetime
    state: HolderState = HolderState.AUTHENTICATED
    acted_at: datetime | None = None

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at


@dataclass
class ActionResult:
    """Outcome of act().

    Attributes:
        accepted: Whether the action was committed
        domain: Action domain
        nullifier: Nullifier consumed (or presented, when rejected after
            verification)
        action_commitment: Choice commitment (vote) or action hash (admin)
        receipt_id: Receipt identifier, when the receipt sink accepted it
        reason: Why the action was refused (None when accepted)
    """

    accepted: bool
    domain: str
    nullifier: int | None = None
    action_commitment: int | None = None
    receipt_id: str | None = None
    reason: ActionRejection | None = None

    @classmethod
    def rejected(cls, domain: str, reason: ActionRejection, nullifier: int | None = None) -> ActionResult:
        return cls(accepted=False, domain=domain, nullifier=nullifier, reason=reason)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "accepted": self.accepted,
            "domain": self.domain,
            "nullifier": str(self.nullifier) if self.nullifier is not None else None,
            "action_commitment": str(self.action_commitment) if self.action_commitment is not None else None,
            "receipt_id": self.receipt_id,
            "reason": self.reason.value if self.reason else None,
        }


class ProtocolOrchestrator:
    """Trust-anchor state machine over the verifier, ledger and stores.

    Args:
        verifier: Proof verifier bound to the key manager
        ledger: Nullifier ledger
        registry: Identity commitment registry
        action_log: Durable action log
        receipt_sink: Optional best-effort receipt destination
        admin_commitments: Admin commitments allowed to authorize actions
        session_ttl: Lifetime of an authentication session
        clock: Source of the current time
    """

    def __init__(
        self,
        verifier: ProofVerifier,
        ledger: NullifierLedger,
        registry: IdentityRegistry,
        action_log: ActionLog,
        receipt_sink: ReceiptSink | None = None,
        admin_commitments: Iterable[int] = (),
        session_ttl: timedelta = DEFAULT_SESSION_TTL,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.verifier = verifier
        self.ledger = ledger
        self.registry = registry
        self.action_log = action_log
        self.receipt_sink = receipt_sink
        self.admin_commitments = frozenset(to_field(c, "admin_commitment") for c in admin_commitments)
        self.session_ttl = session_ttl
        self._clock = clock
        self._lock = threading.Lock()
        self._sessions: dict[str, Session] = {}
        self._by_nullifier: dict[int, Session] = {}

    # =========================================================================
    # Transitions
    # =========================================================================

    def register(self, identity_commitment: int) -> None:
        """Register an identity commitment.

        Raises:
            DuplicateIdentityError: If the commitment is already registered
            ValueError: If the commitment is not a field element
        """
        if not self.registry.add(to_field(identity_commitment, "identity_commitment")):
            raise DuplicateIdentityError("Identity commitment already registered")
        logger.info("Registered identity commitment")

    def authenticate(self, proof: Proof | Mapping[str, Any], public_signals: SignalsLike) -> str:
        """Open a session from an Identity proof.

        Returns:
            Opaque session token

        Raises:
            VerificationFailedError: If the proof does not verify or the
                identity is not registered
            NullifierAlreadyUsedError: If the auth nullifier was consumed before
        """
        signals = self._verified_signals(IDENTITY, proof, public_signals)
        if signals is None:
            raise VerificationFailedError()
        if not self.registry.contains(signals["identity_commitment"]):
            logger.warning("Authentication rejected: identity not registered")
            raise VerificationFailedError()

        nullifier = signals["nullifier_hash"]
        if self.ledger.try_consume(Domain.AUTH, nullifier) is ConsumeResult.ALREADY_USED:
            logger.warning("Authentication rejected: auth nullifier already used")
            raise NullifierAlreadyUsedError(Domain.AUTH.value, nullifier)

        now = self._clock()
        session = Session(
            token=secrets.token_urlsafe(32),
            auth_nullifier=nullifier,
            identity_commitment=signals["identity_commitment"],
            created_at=now,
            expires_at=now + self.session_ttl,
        )
        with self._lock:
            self._purge_expired(now)
            self._sessions[session.token] = session
            self._by_nullifier[nullifier] = session
        logger.info("Authenticated new session")
        return session.token

    def act(
        self,
        domain: DomainLike,
        proof: Proof | Mapping[str, Any],
        public_signals: SignalsLike,
        metadata: dict[str, Any] | None = None,
    ) -> ActionResult:
        """Commit a vote or an admin action.

        Args:
            domain: Domain.VOTE or Domain.ADMIN
            proof: VoteCast or AdminAction proof
            public_signals: The proof's public signals
            metadata: Non-secret metadata stored with the action

        Returns:
            ActionResult; rejected results carry an ActionRejection

        Raises:
            Exception: Action log failures propagate. The nullifier stays
                consumed unless the ledger rolled it back with the record
        """
        try:
            domain = Domain(domain) if isinstance(domain, str) else domain
        except ValueError:
            return ActionResult.rejected(str(domain), ActionRejection.DOMAIN_MISMATCH)
        circuit = _ACTION_CIRCUITS.get(domain)
        if circuit is None or self._claimed_circuit(proof) not in (None, circuit.kind):
            logger.warning(f"Action rejected: proof does not match domain {domain.value}")
            return ActionResult.rejected(domain.value, ActionRejection.DOMAIN_MISMATCH)

        signals = self._verified_signals(circuit, proof, public_signals)
        if signals is None:
            return ActionResult.rejected(domain.value, ActionRejection.VERIFICATION_FAILED)

        if domain is Domain.VOTE:
            return self._cast_vote(signals, metadata)
        return self._admin_action(signals, metadata)

    def _cast_vote(self, signals: PublicSignals, metadata: dict[str, Any] | None) -> ActionResult:
        nullifier = signals["nullifier_hash"]
        commitment = signals["choice_commitment"]
        now = self._clock()
        session = None

        try:
            with self.ledger.atomic_with(self.action_log):
                with self._lock:
                    candidate = self._by_nullifier.get(signals["auth_nullifier_hash"])
                    if (
                        candidate is None
                        or candidate.state is not HolderState.AUTHENTICATED
                        or candidate.is_expired(now)
                    ):
                        logger.warning("Vote rejected: no live authenticated session")
                        return ActionResult.rejected(Domain.VOTE.value, ActionRejection.NOT_AUTHENTICATED, nullifier)
                    if self.ledger.try_consume(Domain.VOTE, nullifier) is ConsumeResult.ALREADY_USED:
                        logger.warning("Vote rejected: vote nullifier already used")
                        return ActionResult.rejected(Domain.VOTE.value, ActionRejection.ALREADY_USED, nullifier)
                    session = candidate
                    session.state = HolderState.ACTED
                    session.acted_at = now
                self.action_log.persist(Domain.VOTE, nullifier, commitment, metadata)
        except Exception:
            # A rolled-back consumption leaves the session free to vote again.
            if session is not None and not self.ledger.is_used(Domain.VOTE, nullifier):
                with self._lock:
                    session.state = HolderState.AUTHENTICATED
                    session.acted_at = None
            raise

        return self._accepted(Domain.VOTE, nullifier, commitment)

    def _admin_action(self, signals: PublicSignals, metadata: dict[str, Any] | None) -> ActionResult:
        action_hash = signals["action_hash"]
        if signals["admin_commitment"] not in self.admin_commitments:
            logger.warning("Admin action rejected: unknown admin commitment")
            return ActionResult.rejected(Domain.ADMIN.value, ActionRejection.UNAUTHORIZED_ADMIN, action_hash)
        with self.ledger.atomic_with(self.action_log):
            if self.ledger.try_consume(Domain.ADMIN, action_hash) is ConsumeResult.ALREADY_USED:
                logger.warning("Admin action rejected: action hash already used")
                return ActionResult.rejected(Domain.ADMIN.value, ActionRejection.ALREADY_USED, action_hash)
            self.action_log.persist(Domain.ADMIN, action_hash, action_hash, metadata)
        return self._accepted(Domain.ADMIN, action_hash, action_hash)

    def _accepted(self, domain: Domain, nullifier: int, action_commitment: int) -> ActionResult:
        receipt_id = None
        if self.receipt_sink is not None:
            try:
                receipt_id = self.receipt_sink.submit(nullifier, action_commitment)
            except Exception as e:
                logger.warning(f"Receipt submission failed for {domain.value} action: {e}")

        logger.info(f"Accepted {domain.value} action")
        return ActionResult(
            accepted=True,
            domain=domain.value,
            nullifier=nullifier,
            action_commitment=action_commitment,
            receipt_id=receipt_id,
        )

    # =========================================================================
    # Verification
    # =========================================================================

    @staticmethod
    def _claimed_circuit(proof: Proof | Mapping[str, Any]) -> CircuitKind | None:
        if isinstance(proof, Proof):
            return proof.circuit
        try:
            return CircuitKind(proof.get("circuit"))
        except (AttributeError, ValueError):
            return None

    @staticmethod
    def _claimed_version(proof: Proof | Mapping[str, Any]) -> str:
        if isinstance(proof, Proof):
            return proof.version
        try:
            return str(proof.get("version", ""))
        except AttributeError:
            return ""

    def _verified_signals(
        self,
        circuit: Circuit,
        proof: Proof | Mapping[str, Any],
        public_signals: SignalsLike,
    ) -> PublicSignals | None:
        """Public signals of an accepted proof, or None for any rejection."""
        try:
            return self.verifier.require(circuit.kind, self._claimed_version(proof), proof, public_signals)
        except ZKPInvalidProofError:
            logger.warning(f"{circuit.kind.value} proof rejected: verification failed")
            return None

    # =========================================================================
    # Inspection
    # =========================================================================

    def is_nullifier_used(self, domain: DomainLike, nullifier: int) -> bool:
        """Read-only ledger status check."""
        return self.ledger.is_used(domain, nullifier)

    def session_state(self, token: str) -> HolderState | None:
        """State of a session, or None for an unknown token.

        An expired, unused session reports REGISTERED: the holder must
        authenticate again.
        """
        with self._lock:
            session = self._sessions.get(token)
            if session is None:
                return None
            if session.state is HolderState.AUTHENTICATED and session.is_expired(self._clock()):
                return HolderState.REGISTERED
            return session.state

    def identity_state(self, identity_commitment: int) -> HolderState:
        """Most advanced live state of an identity across its sessions."""
        if not self.registry.contains(identity_commitment):
            return HolderState.UNREGISTERED
        now = self._clock()
        state = HolderState.REGISTERED
        with self._lock:
            for session in self._sessions.values():
                if session.identity_commitment != identity_commitment or session.is_expired(now):
                    continue
                if session.state is HolderState.AUTHENTICATED:
                    return HolderState.AUTHENTICATED
                state = HolderState.ACTED
        return state

    def _purge_expired(self, now: datetime) -> None:
        expired = [token for token, s in self._sessions.items() if s.is_expired(now)]
        for token in expired:
            session = self._sessions.pop(token)
            self._by_nullifier.pop(session.auth_nullifier, None)
