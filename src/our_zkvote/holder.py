"""Holder-side credential helpers.

Everything here runs on the holder's device: secrets are generated and kept
here, witnesses are assembled here, and only proofs and public signals leave.

Example:
    >>> credential = IdentityCredential.generate()
    >>> orchestrator.register(credential.commitment)
    >>> session = credential.new_session()
    >>> proof, signals = session.prove_identity(identity_prover)
    >>> token = orchestrator.authenticate(proof, signals)
    >>> proof, signals = session.prove_vote(vote_prover, "candidate-7")
    >>> result = orchestrator.act(Domain.VOTE, proof, signals)
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from our_zkvote import hashing
from our_zkvote._primitives import random_field_element, to_field
from our_zkvote.circuits import ADMIN_ACTION, IDENTITY, VOTE_CAST, CircuitKind, PublicSignals
from our_zkvote.exceptions import ZKPInputError
from our_zkvote.zkp import Proof, Prover


def _require(prover: Prover, kind: CircuitKind) -> None:
    if prover.circuit.kind is not kind:
        raise ZKPInputError(f"Expected a {kind.value} prover, got {prover.circuit.kind.value}")


@dataclass(frozen=True)
class IdentityCredential:
    """A holder's long-lived identity secret."""

    identity_secret: int = field(repr=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "identity_secret", to_field(self.identity_secret, "identity_secret"))

    @classmethod
    def generate(cls) -> IdentityCredential:
        return cls(random_field_element())

    @property
    def commitment(self) -> int:
        """Public identity commitment to register."""
        return hashing.identity_commitment(self.identity_secret)

    def new_session(self, nullifier_secret: int | None = None) -> AuthSession:
        """Start an authentication session with a fresh nullifier secret.

        A fresh nullifier secret gives a fresh, unlinkable auth nullifier.
        """
        if nullifier_secret is None:
            nullifier_secret = random_field_element()
        return AuthSession(self, to_field(nullifier_secret, "nullifier_secret"))


@dataclass(frozen=True)
class AuthSession:
    """One authentication session: an identity plus a nullifier secret."""

    credential: IdentityCredential = field(repr=False)
    nullifier_secret: int = field(repr=False)

    def identity_witness(self) -> dict[str, int]:
        return {
            "identity_secret": self.credential.identity_secret,
            "nullifier_secret": self.nullifier_secret,
        }

    def identity_signals(self) -> PublicSignals:
        return IDENTITY.public_signals(self.identity_witness())

    @property
    def auth_nullifier(self) -> int:
        return self.identity_signals()["nullifier_hash"]

    def vote_witness(self, choice: Any) -> dict[str, int]:
        """Witness for a vote; ``choice`` goes through hashing.encode_choice()."""
        return {**self.identity_witness(), "choice": hashing.encode_choice(choice)}

    def vote_signals(self, choice: Any) -> PublicSignals:
        return VOTE_CAST.public_signals(self.vote_witness(choice))

    def prove_identity(self, prover: Prover) -> tuple[Proof, PublicSignals]:
        """Prove knowledge of the registered identity for this session."""
        _require(prover, CircuitKind.IDENTITY)
        signals = self.identity_signals()
        return prover.prove(self.identity_witness(), signals), signals

    def prove_vote(self, prover: Prover, choice: Any) -> tuple[Proof, PublicSignals]:
        """Prove a vote bound to this session's auth nullifier."""
        _require(prover, CircuitKind.VOTE_CAST)
        witness = self.vote_witness(choice)
        signals = VOTE_CAST.public_signals(witness)
        return prover.prove(witness, signals), signals


@dataclass(frozen=True)
class AdminCredential:
    """An administrator's signing secret for admin actions."""

    admin_key: int = field(repr=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "admin_key", to_field(self.admin_key, "admin_key"))

    @classmethod
    def generate(cls) -> AdminCredential:
        return cls(random_field_element())

    @property
    def commitment(self) -> int:
        """Admin commitment to configure on the trust anchor."""
        return hashing.admin_commitment(self.admin_key)

    def action_witness(self, action_data: Any, nonce: int) -> dict[str, int]:
        return {
            "admin_key": self.admin_key,
            "action_data": hashing.encode_action_data(action_data),
            "action_nonce": to_field(nonce, "action_nonce"),
        }

    def authorize(
        self,
        prover: Prover,
        action_data: Any,
        nonce: int | None = None,
    ) -> tuple[Proof, PublicSignals]:
        """Prove authorization for one admin action.

        Args:
            prover: AdminAction prover
            action_data: The action payload (see hashing.encode_action_data())
            nonce: Single-use nonce; a random one is drawn when omitted

        Returns:
            (proof, public signals)
        """
        _require(prover, CircuitKind.ADMIN_ACTION)
        if nonce is None:
            nonce = random_field_element()
        witness = self.action_witness(action_data, nonce)
        signals = ADMIN_ACTION.public_signals(witness)
        return prover.prove(witness, signals), signals
