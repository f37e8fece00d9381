"""Tests for holder-side credentials and sessions."""

import pytest

from our_zkvote.circuits import IDENTITY, VOTE_CAST, CircuitKind
from our_zkvote.exceptions import ZKPInputError
from our_zkvote.hashing import Domain, admin_commitment, encode_choice, identity_commitment, nullifier_hash
from our_zkvote.holder import AdminCredential, IdentityCredential


class TestIdentityCredential:
    """Tests for identity credentials and sessions."""

    def test_commitment(self):
        """The commitment is the hash of the identity secret."""
        assert IdentityCredential(12345678).commitment == identity_commitment(12345678)

    def test_secret_not_in_repr(self):
        """Secrets never show up in reprs."""
        session = IdentityCredential(12345678).new_session(87654321)
        assert "12345678" not in repr(session)
        assert "87654321" not in repr(session)

    def test_fresh_sessions_unlinkable(self):
        """Two sessions of one identity have different auth nullifiers."""
        credential = IdentityCredential.generate()
        assert credential.new_session().auth_nullifier != credential.new_session().auth_nullifier

    def test_session_signals(self):
        """Session signals match the identity circuit."""
        session = IdentityCredential(12345678).new_session(87654321)
        signals = session.identity_signals()

        assert signals == IDENTITY.public_signals({"identity_secret": 12345678, "nullifier_secret": 87654321})
        assert session.auth_nullifier == nullifier_hash(12345678, 87654321, Domain.AUTH)

    def test_vote_signals_encode_choice(self):
        """String choices are encoded before entering the witness."""
        session = IdentityCredential(1).new_session(2)
        signals = session.vote_signals("candidate-7")
        expected = VOTE_CAST.public_signals(
            {"identity_secret": 1, "nullifier_secret": 2, "choice": encode_choice("candidate-7")}
        )
        assert signals == expected
        assert signals["auth_nullifier_hash"] == session.auth_nullifier

    def test_invalid_secret(self):
        """Secrets must be field elements."""
        with pytest.raises(ValueError):
            IdentityCredential(-1)


class TestProving:
    """Tests for proving through holder helpers."""

    def test_prove_identity_and_vote(self, provers, proof_verifier):
        """Identity and vote proofs verify for the same session."""
        session = IdentityCredential.generate().new_session()

        proof, signals = session.prove_identity(provers[CircuitKind.IDENTITY])
        assert proof_verifier.verify(CircuitKind.IDENTITY, "v1", proof, signals).valid

        proof, signals = session.prove_vote(provers[CircuitKind.VOTE_CAST], 3)
        assert proof_verifier.verify(CircuitKind.VOTE_CAST, "v1", proof, signals).valid

    def test_wrong_prover(self, provers):
        """Using another circuit's prover is an input error."""
        session = IdentityCredential(5).new_session(6)
        with pytest.raises(ZKPInputError, match="identity"):
            session.prove_identity(provers[CircuitKind.VOTE_CAST])

    def test_admin_authorize(self, provers, admin):
        """Admin proofs carry the admin commitment and a per-nonce action hash."""
        prover = provers[CircuitKind.ADMIN_ACTION]
        _, first = admin.authorize(prover, "add-candidate:X", nonce=1)
        _, second = admin.authorize(prover, "add-candidate:X", nonce=2)

        assert first["admin_commitment"] == admin_commitment(424242424242) == admin.commitment
        assert first["action_hash"] != second["action_hash"]

    def test_admin_random_nonce(self, provers):
        """Omitting the nonce draws a fresh one."""
        credential = AdminCredential.generate()
        prover = provers[CircuitKind.ADMIN_ACTION]
        _, a = credential.authorize(prover, {"op": "close-poll"})
        _, b = credential.authorize(prover, {"op": "close-poll"})

        assert a["action_hash"] != b["action_hash"]
