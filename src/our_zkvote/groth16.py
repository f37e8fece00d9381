"""Groth16 Proving System over BN254.

Proving is delegated to the ``snarkjs`` CLI (``groth16 fullprove``), which
computes the witness from the circuit's WASM and produces a proof with the
circuit's final zkey. Verification is native: snarkjs JSON is parsed into
``py_ecc.optimized_bn128`` points and the Groth16 pairing equation is checked
with a single final exponentiation:

    e(-A, B) * e(alpha, beta) * e(vk_x, gamma) * e(C, delta) == 1
    vk_x = IC[0] + sum(s_i * IC[i + 1])

Setup artifacts are produced externally (see ``our_zkvote.circom``) and laid
out per circuit version:

    <artifacts_dir>/<circuit>/<version>/circuit.wasm
    <artifacts_dir>/<circuit>/<version>/circuit_final.zkey
    <artifacts_dir>/<circuit>/<version>/verification_key.json

Example:
    >>> system = Groth16ProvingSystem("artifacts")
    >>> keys = system.setup(CircuitKind.IDENTITY, "v1")
    >>> verifier = system.create_verifier(keys.verification_key)
    >>> result = verifier.verify(proof, signals)
"""

from __future__ import annotations

import json
import logging
import os
import subprocess
import tempfile
import time
from collections.abc import Mapping
from pathlib import Path
from typing import Any

from py_ecc.optimized_bn128 import (
    FQ,
    FQ2,
    FQ12,
    G1,
    G2,
    add,
    b,
    b2,
    curve_order,
    field_modulus,
    final_exponentiate,
    is_inf,
    is_on_curve,
    multiply,
    neg,
    normalize,
    pairing,
)

from our_zkvote._primitives import FIELD_MODULUS
from our_zkvote.circuits import Circuit, CircuitKind, PublicSignals, SignalsLike, get_circuit
from our_zkvote.zkp import (
    KeyPair,
    PLACEHOLDER_VERSION,
    Proof,
    Prover,
    ProvingKey,
    ProvingSystem,
    RejectReason,
    VerificationKey,
    VerificationResult,
    Verifier,
    ZKPCircuitNotFoundError,
    ZKPInputError,
    ZKPProvingError,
    ZKPVerificationError,
    coerce_signals,
    hash_public_signals,
)

logger = logging.getLogger(__name__)

GROTH16_BACKEND = "groth16"

WASM_FILE = "circuit.wasm"
ZKEY_FILE = "circuit_final.zkey"
VKEY_FILE = "verification_key.json"

DEFAULT_PROOF_TIMEOUT = 120.0

# =============================================================================
# Point encoding
# =============================================================================


def _int_of(x: Any) -> int:
    if hasattr(x, "n"):
        return int(x.n)
    return int(x)


def _coordinate(value: Any) -> int:
    """Parse one base-field coordinate from a snarkjs decimal string."""
    if isinstance(value, bool) or not isinstance(value, (str, int)):
        raise ValueError(f"coordinate must be a decimal string, got {type(value).__name__}")
    n = int(value)
    if not 0 <= n < field_modulus:
        raise ValueError("coordinate outside the base field")
    return n


def parse_g1(data: Any) -> tuple[FQ, FQ, FQ]:
    """Parse a snarkjs G1 point ``[x, y, z]`` and check it is on the curve.

    Raises:
        ValueError: If the point is malformed or not on the curve
    """
    if not isinstance(data, (list, tuple)) or len(data) != 3:
        raise ValueError("G1 point must have 3 coordinates")
    point = tuple(FQ(_coordinate(c)) for c in data)
    if not is_on_curve(point, b):
        raise ValueError("G1 point is not on the curve")
    return point


def parse_g2(data: Any) -> tuple[FQ2, FQ2, FQ2]:
    """Parse a snarkjs G2 point ``[[x0, x1], [y0, y1], [z0, z1]]``.

    Checks curve membership and membership of the prime-order subgroup.

    Raises:
        ValueError: If the point is malformed, off the curve or outside G2
    """
    if not isinstance(data, (list, tuple)) or len(data) != 3:
        raise ValueError("G2 point must have 3 coordinates")
    coords = []
    for pair in data:
        if not isinstance(pair, (list, tuple)) or len(pair) != 2:
            raise ValueError("G2 coordinate must have 2 components")
        coords.append(FQ2([_coordinate(pair[0]), _coordinate(pair[1])]))
    point = tuple(coords)
    if not is_on_curve(point, b2):
        raise ValueError("G2 point is not on the curve")
    if not is_inf(multiply(point, curve_order)):
        raise ValueError("G2 point is not in the prime-order subgroup")
    return point


def g1_to_json(point: Any) -> list[str]:
    """Encode a G1 point in snarkjs affine form."""
    if is_inf(point):
        return ["0", "1", "0"]
    x, y = normalize(point)
    return [str(_int_of(x)), str(_int_of(y)), "1"]


def g2_to_json(point: Any) -> list[list[str]]:
    """Encode a G2 point in snarkjs affine form."""
    if is_inf(point):
        return [["0", "0"], ["1", "0"], ["0", "0"]]
    x, y = normalize(point)
    return [
        [str(_int_of(c)) for c in x.coeffs],
        [str(_int_of(c)) for c in y.coeffs],
        ["1", "0"],
    ]


# =============================================================================
# Verification
# =============================================================================


class _ParsedKey:
    """Verification key points, parsed and checked once."""

    def __init__(self, data: Mapping[str, Any], n_public: int):
        if data.get("protocol", GROTH16_BACKEND) != GROTH16_BACKEND:
            raise ValueError(f"Unsupported protocol: {data.get('protocol')!r}")
        if data.get("curve", "bn128") != "bn128":
            raise ValueError(f"Unsupported curve: {data.get('curve')!r}")
        if int(data["nPublic"]) != n_public:
            raise ValueError(f"nPublic is {data['nPublic']}, circuit has {n_public} public signals")
        ic = data["IC"]
        if len(ic) != n_public + 1:
            raise ValueError(f"IC has {len(ic)} points, expected {n_public + 1}")
        self.alpha1 = parse_g1(data["vk_alpha_1"])
        self.beta2 = parse_g2(data["vk_beta_2"])
        self.gamma2 = parse_g2(data["vk_gamma_2"])
        self.delta2 = parse_g2(data["vk_delta_2"])
        self.ic = [parse_g1(point) for point in ic]


def groth16_verify(
    vk: _ParsedKey,
    pi_a: Any,
    pi_b: Any,
    pi_c: Any,
    signals: list[int],
) -> bool:
    """Check the Groth16 pairing equation for parsed key and proof points."""
    vk_x = vk.ic[0]
    for s, point in zip(signals, vk.ic[1:]):
        vk_x = add(vk_x, multiply(point, s))

    product = (
        pairing(pi_b, neg(pi_a), False)
        * pairing(vk.beta2, vk.alpha1, False)
        * pairing(vk.gamma2, vk_x, False)
        * pairing(vk.delta2, pi_c, False)
    )
    return final_exponentiate(product) == FQ12.one()


class Groth16Verifier(Verifier):
    """Native Groth16 verifier for snarkjs proofs."""

    def __init__(self, verification_key: VerificationKey):
        """Initialize verifier, parsing the key's curve points.

        Args:
            verification_key: Key whose key_data is a snarkjs verification_key.json

        Raises:
            ZKPVerificationError: If the key is not a usable Groth16 key
        """
        if verification_key.backend != GROTH16_BACKEND:
            raise ZKPVerificationError(f"Not a groth16 verification key: backend {verification_key.backend!r}")
        self._key = verification_key
        self._circuit = get_circuit(verification_key.circuit)
        try:
            self._parsed = _ParsedKey(verification_key.key_data, len(self._circuit.public_inputs))
        except (KeyError, TypeError, ValueError) as e:
            raise ZKPVerificationError(f"Invalid verification key: {e}") from e

    @property
    def circuit(self) -> Circuit:
        """The circuit this verifier checks."""
        return self._circuit

    @property
    def verification_key(self) -> VerificationKey:
        return self._key

    def verify(self, proof: Proof, public_signals: SignalsLike) -> VerificationResult:
        """Verify a Groth16 proof against the public signals."""
        start_time = time.time()
        kind, version = self._circuit.kind, self._key.version

        if proof.circuit != kind or proof.backend != GROTH16_BACKEND:
            return VerificationResult.reject(
                kind, proof.version, RejectReason.MALFORMED_PROOF, "Proof circuit or backend mismatch", start_time
            )
        if proof.version != version:
            return VerificationResult.reject(
                kind, proof.version, RejectReason.UNKNOWN_CIRCUIT_VERSION, "Proof version mismatch", start_time
            )

        try:
            signals = coerce_signals(self._circuit, public_signals)
            data = proof.proof_data
            pi_a = parse_g1(data["pi_a"])
            pi_b = parse_g2(data["pi_b"])
            pi_c = parse_g1(data["pi_c"])
        except (ZKPInputError, KeyError, TypeError, ValueError) as e:
            return VerificationResult.reject(kind, version, RejectReason.MALFORMED_PROOF, str(e), start_time)

        signals_hash = hash_public_signals(signals)
        if not groth16_verify(self._parsed, pi_a, pi_b, pi_c, list(signals.values)):
            return VerificationResult.reject(
                kind, version, RejectReason.CONSTRAINT_VIOLATION, "Pairing check failed", start_time, signals_hash
            )
        return VerificationResult.accept(kind, version, signals_hash, start_time)


# =============================================================================
# Proving
# =============================================================================


def _write_private_json(path: Path, data: Any) -> None:
    fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o600)
    with os.fdopen(fd, "w") as f:
        json.dump(data, f)


class SnarkjsProver(Prover):
    """Groth16 prover that shells out to ``snarkjs groth16 fullprove``.

    The witness only ever exists in a private temporary directory that is
    removed when proving ends, successful or not.
    """

    def __init__(
        self,
        proving_key: ProvingKey,
        snarkjs_bin: str = "snarkjs",
        timeout: float = DEFAULT_PROOF_TIMEOUT,
    ):
        """Initialize prover.

        Args:
            proving_key: Key whose key_data names the wasm and zkey files
            snarkjs_bin: snarkjs executable
            timeout: Seconds before proof generation is abandoned
        """
        self._key = proving_key
        self._circuit = get_circuit(proving_key.circuit)
        self._wasm = Path(proving_key.key_data["wasm"])
        self._zkey = Path(proving_key.key_data["zkey"])
        self._snarkjs = snarkjs_bin
        self._timeout = timeout

    @property
    def circuit(self) -> Circuit:
        """The circuit this prover generates proofs for."""
        return self._circuit

    @property
    def version(self) -> str:
        return self._key.version

    def prove(self, witness: Mapping[str, Any], public_signals: SignalsLike) -> Proof:
        """Generate a Groth16 proof with snarkjs.

        Raises:
            WitnessInvalidError: If the witness does not satisfy the circuit
            ZKPProvingError: If snarkjs is missing, fails or times out, or
                returns public signals other than the declared ones
        """
        signals = self.validate_inputs(witness, public_signals)
        normalized = self._circuit.normalize_witness(witness)
        start_time = time.time()

        with tempfile.TemporaryDirectory(prefix="our-zkvote-") as temp_dir:
            temp_path = Path(temp_dir)
            input_file = temp_path / "input.json"
            proof_file = temp_path / "proof.json"
            public_file = temp_path / "public.json"
            _write_private_json(input_file, {name: str(value) for name, value in normalized.items()})

            cmd = [
                self._snarkjs,
                "groth16",
                "fullprove",
                str(input_file),
                str(self._wasm),
                str(self._zkey),
                str(proof_file),
                str(public_file),
            ]
            try:
                result = subprocess.run(cmd, capture_output=True, text=True, timeout=self._timeout)
            except FileNotFoundError as e:
                raise ZKPProvingError(f"snarkjs executable not found: {self._snarkjs!r}") from e
            except subprocess.TimeoutExpired as e:
                raise ZKPProvingError(f"Proof generation timed out after {self._timeout}s") from e
            if result.returncode != 0:
                raise ZKPProvingError(f"snarkjs fullprove failed with exit code {result.returncode}")

            try:
                proof_data = json.loads(proof_file.read_text())
                produced = PublicSignals.from_list(self._circuit.kind, json.loads(public_file.read_text()))
            except (OSError, ValueError, ZKPInputError) as e:
                raise ZKPProvingError(f"Could not read snarkjs output: {e}") from e

        if produced != signals:
            raise ZKPProvingError("snarkjs public signals differ from the circuit contract")

        generation_time = time.time() - start_time
        logger.info(f"Generated {self._circuit.kind.value} proof in {generation_time:.2f}s")
        return Proof(
            circuit=self._circuit.kind,
            version=self._key.version,
            backend=GROTH16_BACKEND,
            proof_data=proof_data,
            metadata={"generation_time_ms": generation_time * 1000},
        )


# =============================================================================
# Proving system
# =============================================================================


def load_verification_key(path: str | Path, kind: CircuitKind, version: str) -> VerificationKey:
    """Load a snarkjs ``verification_key.json`` as a VerificationKey.

    Raises:
        ZKPCircuitNotFoundError: If the file does not exist
        ZKPVerificationError: If it is not valid JSON
    """
    path = Path(path)
    if not path.is_file():
        raise ZKPCircuitNotFoundError(f"Verification key not found: {path}")
    try:
        data = json.loads(path.read_text())
    except ValueError as e:
        raise ZKPVerificationError(f"Invalid verification key file {path}: {e}") from e
    return VerificationKey(circuit=kind, version=version, backend=GROTH16_BACKEND, key_data=data)


class Groth16ProvingSystem(ProvingSystem):
    """Groth16 proving system over externally produced setup artifacts.

    setup() does not run a ceremony; it loads the artifacts of one circuit
    version from ``artifacts_dir``.
    """

    def __init__(
        self,
        artifacts_dir: str | Path,
        snarkjs_bin: str = "snarkjs",
        timeout: float = DEFAULT_PROOF_TIMEOUT,
    ) -> None:
        """Initialize proving system.

        Args:
            artifacts_dir: Root of the per-circuit, per-version artifacts
            snarkjs_bin: snarkjs executable used for proving
            timeout: Seconds allowed per proof
        """
        self.artifacts_dir = Path(artifacts_dir)
        self.snarkjs_bin = snarkjs_bin
        self.timeout = timeout
        self._key_pairs: dict[tuple[CircuitKind, str], KeyPair] = {}

    @property
    def name(self) -> str:
        return GROTH16_BACKEND

    def artifact_dir(self, kind: CircuitKind, version: str) -> Path:
        return self.artifacts_dir / kind.value / version

    def setup(self, kind: CircuitKind, version: str = "v1") -> KeyPair:
        """Load the artifacts of one circuit version.

        Raises:
            ZKPCircuitNotFoundError: If any artifact is missing
        """
        directory = self.artifact_dir(kind, version)
        wasm, zkey = directory / WASM_FILE, directory / ZKEY_FILE
        missing = [p.name for p in (wasm, zkey, directory / VKEY_FILE) if not p.is_file()]
        if missing:
            raise ZKPCircuitNotFoundError(f"Missing artifacts for {kind.value} {version} in {directory}: {missing}")

        verification_key = load_verification_key(directory / VKEY_FILE, kind, version)
        key_pair = KeyPair(
            proving_key=ProvingKey(
                circuit=kind,
                version=version,
                backend=GROTH16_BACKEND,
                key_data={"wasm": str(wasm), "zkey": str(zkey)},
            ),
            verification_key=verification_key,
        )
        self._key_pairs[(kind, version)] = key_pair
        logger.info(f"Loaded groth16 artifacts for {kind.value} {version}")
        return key_pair

    def create_prover(self, proving_key: ProvingKey) -> Prover:
        """Create a snarkjs prover."""
        if proving_key.backend != GROTH16_BACKEND:
            raise ZKPCircuitNotFoundError(f"Not a groth16 proving key: backend {proving_key.backend!r}")
        for name in ("wasm", "zkey"):
            path = proving_key.key_data.get(name)
            if not path or not Path(path).is_file():
                raise ZKPCircuitNotFoundError(
                    f"No setup found for {proving_key.circuit.value} {proving_key.version}. Call setup() first."
                )
        return SnarkjsProver(proving_key, self.snarkjs_bin, self.timeout)

    def create_verifier(self, verification_key: VerificationKey) -> Verifier:
        """Create a native Groth16 verifier."""
        return Groth16Verifier(verification_key)

    def placeholder(self, kind: CircuitKind) -> tuple[Verifier, Proof, PublicSignals]:
        """Generator-point key and proof for ``kind``.

        The pairing check fails, but it runs in full: the proof points go
        through the same parsing and subgroup checks, and every public signal
        is a full-width scalar. Every point is a generator and each signal is
        -2, so the pairing exponents sum to 2 - 2n, nonzero for n >= 2.
        """
        n_public = len(get_circuit(kind).public_inputs)
        g1, g2 = g1_to_json(G1), g2_to_json(G2)
        key_data = {
            "protocol": GROTH16_BACKEND,
            "curve": "bn128",
            "nPublic": n_public,
            "vk_alpha_1": g1,
            "vk_beta_2": g2,
            "vk_gamma_2": g2,
            "vk_delta_2": g2,
            "IC": [g1] * (n_public + 1),
        }
        verifier = Groth16Verifier(VerificationKey(kind, PLACEHOLDER_VERSION, GROTH16_BACKEND, key_data))
        proof = Proof(
            circuit=kind,
            version=PLACEHOLDER_VERSION,
            backend=GROTH16_BACKEND,
            proof_data={"pi_a": g1, "pi_b": g2, "pi_c": g1, "protocol": GROTH16_BACKEND},
        )
        signals = PublicSignals.from_list(kind, [FIELD_MODULUS - 2] * n_public)
        return verifier, proof, signals

    def get_key_pair(self, kind: CircuitKind, version: str) -> KeyPair | None:
        """Get the key pair from a previous setup."""
        return self._key_pairs.get((kind, version))
