"""Shared primitives for the proof backends and the hash layer.

Field-element handling for the BN254 scalar field, which is the field circom
and snarkjs Groth16 circuits work in. Also labelled SHA-256, and raw-byte
Ed25519 helpers on top of PyCA `cryptography`.
"""

from __future__ import annotations

import hashlib
import json
import secrets
from typing import Any

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey, Ed25519PublicKey

# BN254 / alt_bn128 scalar field (order of G1)
FIELD_MODULUS = 21888242871839275222246405745257275088548364400416034343698204186575808495617

# Bytes needed to hold a field element
FIELD_BYTES = 32


def to_field(value: Any, name: str = "value") -> int:
    """Coerce an integer or decimal string into a field element.

    Circuit inputs travel as decimal strings in snarkjs JSON, so both forms
    are accepted. Booleans and anything outside ``[0, p)`` are rejected.

    Raises:
        ValueError: If the value is not a canonical field element
    """
    if isinstance(value, bool):
        raise ValueError(f"{name} must be an integer field element, got bool")
    if isinstance(value, str):
        text = value.strip()
        if not (text.isascii() and text.isdigit()):
            raise ValueError(f"{name} must be a decimal integer string, got {value!r}")
        value = int(text)
    if not isinstance(value, int):
        raise ValueError(f"{name} must be an integer field element, got {type(value).__name__}")
    if not 0 <= value < FIELD_MODULUS:
        raise ValueError(f"{name} is outside the scalar field")
    return value



def labelled_hash(label: bytes, data: bytes) -> bytes:
    """SHA-256 over ``label || 0x00 || data``.

    Every caller passes its own label, so digests from different contexts
    (fingerprints, signal hashes, receipts) never collide.
    """
    return hashlib.sha256(label + b"\x00" + data).digest()


def bytes_to_field(data: bytes, label: bytes) -> int:
    """Map arbitrary bytes to a field element via a labelled hash."""
    return int.from_bytes(labelled_hash(label, data), "big") % FIELD_MODULUS


def canonical_json(value: Any) -> bytes:
    """Compact, sorted-key JSON used wherever bytes must be reproducible."""
    return json.dumps(value, sort_keys=True, separators=(",", ":"), ensure_ascii=False).encode("utf-8")


def random_field_element() -> int:
    """Uniform non-zero field element from the OS CSPRNG."""
    return secrets.randbelow(FIELD_MODULUS - 1) + 1


# Ed25519 attestation keys for the mock backend. Keys and signatures travel
# as raw bytes (32-byte keys, 64-byte signatures) inside JSON key material.


def generate_signing_key() -> tuple[bytes, bytes]:
    """Fresh (private, public) Ed25519 key pair as raw bytes."""
    key = Ed25519PrivateKey.generate()
    return key.private_bytes_raw(), key.public_key().public_bytes_raw()


def sign_statement(private_key: bytes, statement: bytes) -> bytes:
    return Ed25519PrivateKey.from_private_bytes(private_key).sign(statement)


def statement_signed(public_key: bytes, statement: bytes, signature: bytes) -> bool:
    """Check an attestation signature.

    Malformed keys count as a bad signature, never an error.
    """
    try:
        Ed25519PublicKey.from_public_bytes(public_key).verify(signature, statement)
    except (InvalidSignature, ValueError):
        return False
    return True
