"""Commitment and nullifier hash over the BN254 scalar field.

Every commitment and nullifier in the protocol comes from one algebraic hash,
a Poseidon-style (HADES) permutation sized for Groth16 circuits:

- State width t = 4 (capacity 1, rate 3), S-box x^5
- 8 full rounds, 56 partial rounds
- Round constants and a Cauchy MDS matrix derived from SHAKE-256 over a
  fixed seed, by rejection sampling into the field

The constants are not circomlib's. Circuit sources are rendered from this
module (see ``our_zkvote.circom``), so the in-circuit hash and this one agree
by construction.

Domain separation:
    Nullifiers mix in a ``Domain`` tag (auth / vote / admin), so the same pair
    of secrets yields unrelated nullifiers per circuit kind. The sponge
    capacity element carries the input count, which separates arities.

Example:
    >>> commitment = identity_commitment(12345678)
    >>> nullifier = nullifier_hash(12345678, 87654321, Domain.AUTH)
"""

from __future__ import annotations

import functools
import hashlib
from collections.abc import Iterator, Mapping
from dataclasses import dataclass
from enum import Enum
from typing import Any

from our_zkvote._primitives import FIELD_BYTES, FIELD_MODULUS, bytes_to_field, canonical_json, to_field

# Permutation parameters
WIDTH = 4
RATE = WIDTH - 1
FULL_ROUNDS = 8
PARTIAL_ROUNDS = 56
ROUNDS = FULL_ROUNDS + PARTIAL_ROUNDS
SBOX_EXPONENT = 5

_CONSTANTS_SEED = b"our-zkvote/poseidon/bn254/t4/rf8/rp56/v1"

# Labels for hashing non-integer values into the field
_LABEL_ACTION_DATA = b"our-zkvote-action-data-v1"
_LABEL_CHOICE = b"our-zkvote-choice-v1"


class Domain(Enum):
    """Nullifier domains, one per circuit kind.

    The value doubles as the persisted partition name in the nullifier
    ledger.
    """

    AUTH = "auth"
    VOTE = "vote"
    ADMIN = "admin"

    @property
    def tag(self) -> int:
        """Field element mixed into nullifier derivations for this domain."""
        return int.from_bytes(self.value.encode("ascii"), "big")


@dataclass(frozen=True)
class HashParameters:
    """Round constants (one row per round) and MDS matrix of the permutation."""

    round_constants: tuple[tuple[int, ...], ...]
    mds: tuple[tuple[int, ...], ...]


def _field_elements(seed: bytes) -> Iterator[int]:
    """Endless stream of field elements from SHAKE-256 in counter mode."""
    mask = (1 << FIELD_MODULUS.bit_length()) - 1
    counter = 0
    while True:
        block = hashlib.shake_256(seed + counter.to_bytes(8, "big")).digest(FIELD_BYTES)
        counter += 1
        candidate = int.from_bytes(block, "big") & mask
        if candidate < FIELD_MODULUS:
            yield candidate


@functools.lru_cache(maxsize=1)
def parameters() -> HashParameters:
    """Derive (once) the permutation constants."""
    stream = _field_elements(_CONSTANTS_SEED)
    round_constants = tuple(tuple(next(stream) for _ in range(WIDTH)) for _ in range(ROUNDS))

    # Cauchy matrix M[i][j] = 1 / (x_i + y_j) is MDS when all x, y are distinct
    # and no x_i + y_j vanishes.
    while True:
        xs = [next(stream) for _ in range(WIDTH)]
        ys = [next(stream) for _ in range(WIDTH)]
        if len(set(xs + ys)) != 2 * WIDTH:
            continue
        if any((x + y) % FIELD_MODULUS == 0 for x in xs for y in ys):
            continue
        break
    mds = tuple(tuple(pow(x + y, -1, FIELD_MODULUS) for y in ys) for x in xs)
    return HashParameters(round_constants=round_constants, mds=mds)


def permute(state: list[int]) -> list[int]:
    """Apply the full permutation to a width-4 state."""
    if len(state) != WIDTH:
        raise ValueError(f"State must have {WIDTH} elements, got {len(state)}")
    params = parameters()
    half = FULL_ROUNDS // 2
    p = FIELD_MODULUS
    for r in range(ROUNDS):
        state = [(s + c) % p for s, c in zip(state, params.round_constants[r])]
        if r < half or r >= half + PARTIAL_ROUNDS:
            state = [pow(s, SBOX_EXPONENT, p) for s in state]
        else:
            state[0] = pow(state[0], SBOX_EXPONENT, p)
        state = [sum(m * s for m, s in zip(row, state)) % p for row in params.mds]
    return state


def field_hash(*inputs: Any) -> int:
    """Hash one or more field elements to a field element.

    Fixed-length sponge: the capacity element starts at the number of
    inputs, inputs are absorbed three at a time, output is state[1].

    Raises:
        ValueError: If no inputs are given or an input is not a field element
    """
    if not inputs:
        raise ValueError("field_hash requires at least one input")
    elements = [to_field(value, f"input[{i}]") for i, value in enumerate(inputs)]

    state = [len(elements)] + [0] * RATE
    for start in range(0, len(elements), RATE):
        for offset, element in enumerate(elements[start : start + RATE]):
            state[1 + offset] = (state[1 + offset] + element) % FIELD_MODULUS
        state = permute(state)
    return state[1]


# =============================================================================
# Protocol derivations
# =============================================================================


def identity_commitment(identity_secret: Any) -> int:
    """H(identity_secret): the public, registered form of an identity."""
    return field_hash(identity_secret)


def nullifier_hash(identity_secret: Any, nullifier_secret: Any, domain: Domain) -> int:
    """H(identity_secret, nullifier_secret, tag(domain))."""
    return field_hash(identity_secret, nullifier_secret, domain.tag)


def choice_commitment(choice: Any, nullifier_secret: Any) -> int:
    """H(choice, nullifier_secret): hides a ballot choice, bound to a session."""
    return field_hash(choice, nullifier_secret)


def admin_commitment(admin_key: Any) -> int:
    """H(admin_key): published so auditors can attribute admin actions."""
    return field_hash(admin_key)


def action_hash(admin_key: Any, action_data: Any, action_nonce: Any) -> int:
    """H(admin_key, action_data, action_nonce): single-use admin authorization."""
    return field_hash(admin_key, action_data, action_nonce)


# =============================================================================
# Canonical encodings
# =============================================================================


def _encode(value: Any, label: bytes, name: str) -> int:
    if isinstance(value, int) and not isinstance(value, bool):
        return to_field(value, name)
    if isinstance(value, str):
        data = value.encode("utf-8")
    elif isinstance(value, (bytes, bytearray)):
        data = bytes(value)
    elif isinstance(value, Mapping):
        data = canonical_json(dict(value))
    else:
        raise TypeError(f"Cannot encode {type(value).__name__} as {name}")
    return bytes_to_field(data, label)


def encode_action_data(action_data: Any) -> int:
    """Canonical field encoding of an admin action payload.

    Integers are used as-is (range checked). Strings (UTF-8), bytes and
    mappings (compact sorted-key JSON) are hashed into the field. Note that
    ``"987654321"`` and ``987654321`` therefore encode differently.
    """
    return _encode(action_data, _LABEL_ACTION_DATA, "action_data")


def encode_choice(choice: Any) -> int:
    """Canonical field encoding of a ballot choice (candidate id)."""
    return _encode(choice, _LABEL_CHOICE, "choice")
