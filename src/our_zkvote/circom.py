"""Circom sources and developer setup artifacts for the protocol circuits.

The circom sources are rendered from the Python hash parameters, so the
in-circuit permutation uses exactly the round constants and MDS matrix of
``our_zkvote.hashing``. Each main template declares its outputs in the
public-signal order of ``our_zkvote.circuits``, which is the order snarkjs
writes to ``public.json``.

build_artifacts() runs the single-contributor development setup (compile,
zkey new, one contribution, beacon, verification key export). It is a
developer convenience, not a trusted-setup ceremony.

Example:
    >>> write_circuits("build/circuits")
    >>> build_artifacts(CircuitKind.IDENTITY, "v1", "pot15_final.ptau", "artifacts")
"""

from __future__ import annotations

import logging
import secrets
import shutil
import subprocess
import tempfile
from pathlib import Path
from typing import Union

from our_zkvote import hashing
from our_zkvote.circuits import CircuitKind, get_circuit
from our_zkvote.exceptions import CircuitBuildError
from our_zkvote.groth16 import VKEY_FILE, WASM_FILE, ZKEY_FILE
from our_zkvote.hashing import Domain

logger = logging.getLogger(__name__)

CIRCOM_VERSION = "2.0.0"
DEFAULT_BUILD_TIMEOUT = 600.0

# A hash input is either a private signal name or a constant field element.
HashInput = Union[str, int]

# Public outputs per circuit, in public-signal order, with their hash inputs.
_OUTPUTS: dict[CircuitKind, tuple[tuple[str, tuple[HashInput, ...]], ...]] = {
    CircuitKind.IDENTITY: (
        ("identity_commitment", ("identity_secret",)),
        ("nullifier_hash", ("identity_secret", "nullifier_secret", Domain.AUTH.tag)),
    ),
    CircuitKind.VOTE_CAST: (
        ("nullifier_hash", ("identity_secret", "nullifier_secret", Domain.VOTE.tag)),
        ("choice_commitment", ("choice", "nullifier_secret")),
        ("auth_nullifier_hash", ("identity_secret", "nullifier_secret", Domain.AUTH.tag)),
    ),
    CircuitKind.ADMIN_ACTION: (
        ("action_hash", ("admin_key", "action_data", "action_nonce")),
        ("admin_commitment", ("admin_key",)),
    ),
}


def circuit_outputs(kind: CircuitKind) -> tuple[tuple[str, tuple[HashInput, ...]], ...]:
    """Public outputs of a rendered circuit and the hash inputs of each."""
    return _OUTPUTS[kind]


def template_name(kind: CircuitKind) -> str:
    return "".join(part.capitalize() for part in kind.value.split("_"))


def _matrix(rows: tuple[tuple[int, ...], ...], indent: str = "        ") -> str:
    lines = [indent + "[" + ", ".join(str(v) for v in row) + "]" for row in rows]
    return "[\n" + ",\n".join(lines) + "\n    ]"


def _hash_library() -> str:
    params = hashing.parameters()
    half = hashing.FULL_ROUNDS // 2
    width = hashing.WIDTH
    return f"""\
function ROUND_CONSTANTS() {{
    return {_matrix(params.round_constants)};
}}

function MDS() {{
    return {_matrix(params.mds)};
}}

template Sigma() {{
    signal input in;
    signal output out;
    signal in2;
    signal in4;
    in2 <== in * in;
    in4 <== in2 * in2;
    out <== in4 * in;
}}

template Permutation() {{
    signal input in[{width}];
    signal output out[{width}];
    var C[{hashing.ROUNDS}][{width}] = ROUND_CONSTANTS();
    var M[{width}][{width}] = MDS();
    component full[{hashing.FULL_ROUNDS}][{width}];
    component partial[{hashing.PARTIAL_ROUNDS}];
    var state[{width}];
    var mixed[{width}];
    for (var i = 0; i < {width}; i++) {{
        state[i] = in[i];
    }}
    for (var r = 0; r < {hashing.ROUNDS}; r++) {{
        for (var i = 0; i < {width}; i++) {{
            state[i] = state[i] + C[r][i];
        }}
        if (r < {half} || r >= {half + hashing.PARTIAL_ROUNDS}) {{
            var f = r < {half} ? r : r - {hashing.PARTIAL_ROUNDS};
            for (var i = 0; i < {width}; i++) {{
                full[f][i] = Sigma();
                full[f][i].in <== state[i];
                state[i] = full[f][i].out;
            }}
        }} else {{
            partial[r - {half}] = Sigma();
            partial[r - {half}].in <== state[0];
            state[0] = partial[r - {half}].out;
        }}
        for (var i = 0; i < {width}; i++) {{
            mixed[i] = 0;
            for (var j = 0; j < {width}; j++) {{
                mixed[i] += M[i][j] * state[j];
            }}
        }}
        for (var i = 0; i < {width}; i++) {{
            state[i] = mixed[i];
        }}
    }}
    for (var i = 0; i < {width}; i++) {{
        out[i] <== state[i];
    }}
}}

template FieldHash(nInputs) {{
    signal input inputs[nInputs];
    signal output out;
    component perm = Permutation();
    perm.in[0] <== nInputs;
    for (var i = 0; i < {hashing.RATE}; i++) {{
        if (i < nInputs) {{
            perm.in[i + 1] <== inputs[i];
        }} else {{
            perm.in[i + 1] <== 0;
        }}
    }}
    out <== perm.out[1];
}}
"""


def render_circuit(kind: CircuitKind) -> str:
    """Render the complete circom 2 source of one circuit."""
    circuit = get_circuit(kind)
    name = template_name(kind)
    body = []
    for name_in in circuit.private_inputs:
        body.append(f"    signal input {name_in};")
    for output, _ in _OUTPUTS[kind]:
        body.append(f"    signal output {output};")
    for output, inputs in _OUTPUTS[kind]:
        if len(inputs) > hashing.RATE:
            raise CircuitBuildError(f"{output} hashes {len(inputs)} inputs, at most {hashing.RATE} supported")
        component = f"{output}_hash"
        body.append("")
        body.append(f"    component {component} = FieldHash({len(inputs)});")
        for i, value in enumerate(inputs):
            body.append(f"    {component}.inputs[{i}] <== {value};")
        body.append(f"    {output} <== {component}.out;")

    lines = [
        f"pragma circom {CIRCOM_VERSION};",
        "",
        f"// {kind.value}: generated by our-zkvote, do not edit.",
        f"// Hash: t={hashing.WIDTH}, R_F={hashing.FULL_ROUNDS}, R_P={hashing.PARTIAL_ROUNDS}, "
        f"x^{hashing.SBOX_EXPONENT}",
        "",
        _hash_library(),
        f"template {name}() {{",
        *body,
        "}",
        "",
        f"component main = {name}();",
        "",
    ]
    return "\n".join(lines)


def write_circuits(directory: str | Path) -> dict[CircuitKind, Path]:
    """Write the circom source of every circuit to ``<directory>/<kind>.circom``."""
    directory = Path(directory)
    directory.mkdir(parents=True, exist_ok=True)
    written = {}
    for kind in CircuitKind:
        path = directory / f"{kind.value}.circom"
        path.write_text(render_circuit(kind))
        written[kind] = path
        logger.info(f"Wrote {path}")
    return written


def _run(cmd: list[str], timeout: float) -> None:
    logger.info(f"Running {cmd[0]} {cmd[1]}")
    try:
        result = subprocess.run(cmd, capture_output=True, text=True, timeout=timeout)
    except FileNotFoundError as e:
        raise CircuitBuildError(f"Executable not found: {cmd[0]!r}") from e
    except subprocess.TimeoutExpired as e:
        raise CircuitBuildError(f"{cmd[0]} {cmd[1]} timed out after {timeout}s") from e
    if result.returncode != 0:
        raise CircuitBuildError(f"{cmd[0]} {cmd[1]} failed: {result.stderr.strip()}")


def build_artifacts(
    kind: CircuitKind,
    version: str,
    ptau: str | Path,
    out_dir: str | Path,
    circom_bin: str = "circom",
    snarkjs_bin: str = "snarkjs",
    timeout: float = DEFAULT_BUILD_TIMEOUT,
) -> Path:
    """Compile one circuit and produce development Groth16 artifacts.

    Args:
        kind: Circuit to build
        version: Version label; artifacts go to ``<out_dir>/<kind>/<version>``
        ptau: Powers of Tau file large enough for the circuit
        out_dir: Artifacts root (the Groth16ProvingSystem ``artifacts_dir``)
        circom_bin: circom executable
        snarkjs_bin: snarkjs executable
        timeout: Seconds allowed per external step

    Returns:
        Directory holding circuit.wasm, circuit_final.zkey and
        verification_key.json

    Raises:
        CircuitBuildError: If the target exists, the ptau file is missing,
            or any external step fails
    """
    ptau = Path(ptau)
    if not ptau.is_file():
        raise CircuitBuildError(f"Powers of Tau file not found: {ptau}")
    target = Path(out_dir) / kind.value / version
    if target.exists():
        raise CircuitBuildError(f"Artifacts for {kind.value} {version} already exist at {target}")

    with tempfile.TemporaryDirectory(prefix="our-zkvote-build-") as build:
        build_dir = Path(build)
        source = build_dir / f"{kind.value}.circom"
        source.write_text(render_circuit(kind))
        r1cs = build_dir / f"{kind.value}.r1cs"
        wasm = build_dir / f"{kind.value}_js" / f"{kind.value}.wasm"
        zkey_0 = build_dir / "circuit_0000.zkey"
        zkey_1 = build_dir / "circuit_0001.zkey"
        zkey_final = build_dir / ZKEY_FILE
        vkey = build_dir / VKEY_FILE

        _run([circom_bin, str(source), "--r1cs", "--wasm", "--output", str(build_dir)], timeout)
        _run([snarkjs_bin, "zkey", "new", str(r1cs), str(ptau), str(zkey_0)], timeout)
        _run(
            [
                snarkjs_bin,
                "zkey",
                "contribute",
                str(zkey_0),
                str(zkey_1),
                "-n=Development contribution",
                f"-e={secrets.token_hex(32)}",
            ],
            timeout,
        )
        _run(
            [
                snarkjs_bin,
                "zkey",
                "beacon",
                str(zkey_1),
                str(zkey_final),
                secrets.token_hex(32),
                "10",
                "-n=Final Beacon phase2",
            ],
            timeout,
        )
        _run([snarkjs_bin, "zkey", "export", "verificationkey", str(zkey_final), str(vkey)], timeout)

        target.mkdir(parents=True)
        shutil.copyfile(wasm, target / WASM_FILE)
        shutil.copyfile(zkey_final, target / ZKEY_FILE)
        shutil.copyfile(vkey, target / VKEY_FILE)

    logger.info(f"Built {kind.value} {version} artifacts in {target}")
    return target
