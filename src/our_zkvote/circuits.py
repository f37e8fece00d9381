"""Circuit contracts for anonymous authentication, voting and admin actions.

Each circuit is a fixed relation between private inputs (the witness) and an
ordered vector of public signals. The Python definitions here are the
authoritative contract: provers check witnesses against them before any
proving work, and the circom sources are rendered from them.

Circuits:
- IDENTITY: prove knowledge of the secret behind a registered commitment,
  emitting a fresh auth-domain nullifier
- VOTE_CAST: bind a hidden choice to the session opened by an IDENTITY proof
- ADMIN_ACTION: authorize one specific admin mutation with a single-use nonce
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Union

from our_zkvote import hashing
from our_zkvote._primitives import canonical_json, labelled_hash, to_field
from our_zkvote.exceptions import WitnessInvalidError, ZKPCircuitNotFoundError, ZKPInputError
from our_zkvote.hashing import Domain

_LABEL_CIRCUIT = b"our-zkvote-circuit-v1"


class CircuitKind(Enum):
    """The three circuit relations of the protocol."""

    IDENTITY = "identity"
    """Private: identity_secret, nullifier_secret
    Public: identity_commitment, nullifier_hash
    """

    VOTE_CAST = "vote_cast"
    """Private: identity_secret, nullifier_secret, choice
    Public: nullifier_hash, choice_commitment, auth_nullifier_hash
    """

    ADMIN_ACTION = "admin_action"
    """Private: admin_key, action_data, action_nonce
    Public: action_hash, admin_commitment
    """

    @property
    def domain(self) -> Domain:
        """Nullifier ledger domain consumed by proofs of this kind."""
        return _DOMAINS[self]


_DOMAINS = {
    CircuitKind.IDENTITY: Domain.AUTH,
    CircuitKind.VOTE_CAST: Domain.VOTE,
    CircuitKind.ADMIN_ACTION: Domain.ADMIN,
}


@dataclass(frozen=True)
class PublicSignals:
    """Ordered public signal vector of one circuit.

    The order matches the circuit's ``public_inputs`` and the order snarkjs
    writes to ``public.json``.
    """

    circuit: CircuitKind
    values: tuple[int, ...]

    def __post_init__(self) -> None:
        names = get_circuit(self.circuit).public_inputs
        if len(self.values) != len(names):
            raise ZKPInputError(
                f"{self.circuit.value} expects {len(names)} public signals, got {len(self.values)}"
            )
        try:
            normalized = tuple(to_field(v, name) for v, name in zip(self.values, names))
        except ValueError as e:
            raise ZKPInputError(str(e)) from e
        object.__setattr__(self, "values", normalized)

    @property
    def names(self) -> tuple[str, ...]:
        return get_circuit(self.circuit).public_inputs

    def __getitem__(self, name: str) -> int:
        try:
            return self.values[self.names.index(name)]
        except ValueError:
            raise KeyError(name) from None

    def as_dict(self) -> dict[str, int]:
        return dict(zip(self.names, self.values))

    def to_list(self) -> list[str]:
        """Decimal-string vector in snarkjs ``public.json`` form."""
        return [str(v) for v in self.values]

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "circuit": self.circuit.value,
            "signals": {name: str(value) for name, value in self.as_dict().items()},
        }

    @classmethod
    def from_list(cls, circuit: CircuitKind, values: list[Any]) -> PublicSignals:
        return cls(circuit=circuit, values=tuple(values))

    @classmethod
    def from_mapping(cls, circuit: CircuitKind, values: Mapping[str, Any]) -> PublicSignals:
        names = get_circuit(circuit).public_inputs
        missing = set(names) - set(values)
        extra = set(values) - set(names)
        if missing or extra:
            raise ZKPInputError(f"Public signal names mismatch (missing={sorted(missing)}, extra={sorted(extra)})")
        return cls(circuit=circuit, values=tuple(values[name] for name in names))

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> PublicSignals:
        """Create from dictionary."""
        return cls.from_mapping(CircuitKind(data["circuit"]), data["signals"])


SignalsLike = Union[PublicSignals, Mapping[str, Any]]


@dataclass(frozen=True)
class Circuit:
    """Declarative constraint contract of one circuit kind.

    Attributes:
        kind: Which circuit this is
        private_inputs: Witness names, in circuit declaration order
        public_inputs: Public signal names, in public vector order
        nullifier_signal: Public signal consumed in the nullifier ledger
        derive: Computes the public signals from a normalized witness
    """

    kind: CircuitKind
    private_inputs: tuple[str, ...]
    public_inputs: tuple[str, ...]
    nullifier_signal: str
    derive: Callable[[dict[str, int]], dict[str, int]] = field(repr=False, compare=False)

    @property
    def domain(self) -> Domain:
        return self.kind.domain

    @property
    def digest(self) -> bytes:
        """32-byte identifier of this circuit's schema and hash parameters."""
        description = {
            "circuit": self.kind.value,
            "private": list(self.private_inputs),
            "public": list(self.public_inputs),
            "hash": {
                "width": hashing.WIDTH,
                "full_rounds": hashing.FULL_ROUNDS,
                "partial_rounds": hashing.PARTIAL_ROUNDS,
                "seed": hashing._CONSTANTS_SEED.hex(),
            },
        }
        return labelled_hash(_LABEL_CIRCUIT, canonical_json(description))

    def normalize_witness(self, witness: Mapping[str, Any]) -> dict[str, int]:
        """Check witness names and coerce every value to a field element.

        Raises:
            WitnessInvalidError: Missing, unexpected or out-of-range inputs
        """
        missing = set(self.private_inputs) - set(witness)
        if missing:
            raise WitnessInvalidError(f"Missing private inputs: {sorted(missing)}")
        extra = set(witness) - set(self.private_inputs)
        if extra:
            raise WitnessInvalidError(f"Unexpected private inputs: {sorted(extra)}")
        try:
            return {name: to_field(witness[name], name) for name in self.private_inputs}
        except ValueError as e:
            raise WitnessInvalidError(str(e)) from e

    def public_signals(self, witness: Mapping[str, Any]) -> PublicSignals:
        """Compute the public signal vector implied by a private witness."""
        derived = self.derive(self.normalize_witness(witness))
        return PublicSignals(self.kind, tuple(derived[name] for name in self.public_inputs))

    def coerce_signals(self, signals: SignalsLike) -> PublicSignals:
        if isinstance(signals, PublicSignals):
            if signals.circuit is not self.kind:
                raise ZKPInputError(f"Signals belong to {signals.circuit.value}, not {self.kind.value}")
            return signals
        return PublicSignals.from_mapping(self.kind, signals)

    def check(self, witness: Mapping[str, Any], declared: SignalsLike) -> PublicSignals:
        """Ensure the declared public signals are exactly what the witness implies.

        Returns:
            The derived PublicSignals

        Raises:
            WitnessInvalidError: If the witness is malformed or the relation
                does not hold for the declared vector
        """
        derived = self.public_signals(witness)
        try:
            declared_signals = self.coerce_signals(declared)
        except ZKPInputError as e:
            raise WitnessInvalidError(str(e)) from e
        mismatched = [
            name for name, want, got in zip(self.public_inputs, derived.values, declared_signals.values) if want != got
        ]
        if mismatched:
            # Names only: values may be correlated with the witness.
            raise WitnessInvalidError(f"Declared public signals do not satisfy the relation: {mismatched}")
        return derived

    def nullifier(self, signals: SignalsLike) -> int:
        """Value consumed in the nullifier ledger for these signals."""
        return self.coerce_signals(signals)[self.nullifier_signal]


def _derive_identity(w: dict[str, int]) -> dict[str, int]:
    secret, nullifier_secret = w["identity_secret"], w["nullifier_secret"]
    return {
        "identity_commitment": hashing.identity_commitment(secret),
        "nullifier_hash": hashing.nullifier_hash(secret, nullifier_secret, Domain.AUTH),
    }


def _derive_vote_cast(w: dict[str, int]) -> dict[str, int]:
    secret, nullifier_secret = w["identity_secret"], w["nullifier_secret"]
    return {
        "nullifier_hash": hashing.nullifier_hash(secret, nullifier_secret, Domain.VOTE),
        "choice_commitment": hashing.choice_commitment(w["choice"], nullifier_secret),
        "auth_nullifier_hash": hashing.nullifier_hash(secret, nullifier_secret, Domain.AUTH),
    }


def _derive_admin_action(w: dict[str, int]) -> dict[str, int]:
    return {
        "action_hash": hashing.action_hash(w["admin_key"], w["action_data"], w["action_nonce"]),
        "admin_commitment": hashing.admin_commitment(w["admin_key"]),
    }


IDENTITY = Circuit(
    kind=CircuitKind.IDENTITY,
    private_inputs=("identity_secret", "nullifier_secret"),
    public_inputs=("identity_commitment", "nullifier_hash"),
    nullifier_signal="nullifier_hash",
    derive=_derive_identity,
)

VOTE_CAST = Circuit(
    kind=CircuitKind.VOTE_CAST,
    private_inputs=("identity_secret", "nullifier_secret", "choice"),
    public_inputs=("nullifier_hash", "choice_commitment", "auth_nullifier_hash"),
    nullifier_signal="nullifier_hash",
    derive=_derive_vote_cast,
)

ADMIN_ACTION = Circuit(
    kind=CircuitKind.ADMIN_ACTION,
    private_inputs=("admin_key", "action_data", "action_nonce"),
    public_inputs=("action_hash", "admin_commitment"),
    nullifier_signal="action_hash",
    derive=_derive_admin_action,
)

CIRCUITS: dict[CircuitKind, Circuit] = {c.kind: c for c in (IDENTITY, VOTE_CAST, ADMIN_ACTION)}


def get_circuit(kind: CircuitKind) -> Circuit:
    """Look up the contract for a circuit kind."""
    try:
        return CIRCUITS[kind]
    except KeyError:
        raise ZKPCircuitNotFoundError(f"No circuit defined for {kind!r}") from None
