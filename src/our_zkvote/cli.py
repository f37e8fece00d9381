"""Developer command line.

    our-zkvote signals identity --identity-secret 12345678 --nullifier-secret 87654321
    our-zkvote signals vote --identity-secret ... --nullifier-secret ... --choice candidate-7
    our-zkvote signals admin --admin-key ... --action-data add-candidate:X --nonce 555444333
    our-zkvote render-circuits --out build/circuits
    our-zkvote build-artifacts --circuit identity --version v1 --ptau pot15_final.ptau --out artifacts
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Any

from our_zkvote import hashing
from our_zkvote.circom import build_artifacts, write_circuits
from our_zkvote.circuits import ADMIN_ACTION, IDENTITY, VOTE_CAST, CircuitKind, PublicSignals
from our_zkvote.config import configure_logging
from our_zkvote.exceptions import ZKPError

logger = logging.getLogger(__name__)


def _value(text: str) -> Any:
    """Decimal strings are field elements; anything else is hashed as text."""
    return int(text) if text.isascii() and text.isdigit() else text


def _signals(args: argparse.Namespace) -> PublicSignals:
    if args.circuit == "identity":
        return IDENTITY.public_signals(
            {"identity_secret": args.identity_secret, "nullifier_secret": args.nullifier_secret}
        )
    if args.circuit == "vote":
        return VOTE_CAST.public_signals(
            {
                "identity_secret": args.identity_secret,
                "nullifier_secret": args.nullifier_secret,
                "choice": hashing.encode_choice(_value(args.choice)),
            }
        )
    return ADMIN_ACTION.public_signals(
        {
            "admin_key": args.admin_key,
            "action_data": hashing.encode_action_data(_value(args.action_data)),
            "action_nonce": args.nonce,
        }
    )


def cmd_signals(args: argparse.Namespace) -> int:
    signals = _signals(args)
    output = {**signals.to_dict(), "public": signals.to_list()}
    print(json.dumps(output, indent=2))
    return 0


def cmd_render_circuits(args: argparse.Namespace) -> int:
    for kind, path in write_circuits(args.out).items():
        print(f"{kind.value}: {path}")
    return 0


def cmd_build_artifacts(args: argparse.Namespace) -> int:
    target = build_artifacts(
        CircuitKind(args.circuit),
        args.version,
        args.ptau,
        args.out,
        circom_bin=args.circom,
        snarkjs_bin=args.snarkjs,
    )
    print(target)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="our-zkvote", description="Anonymous credential and nullifier tooling")
    parser.add_argument("--log-level", default="WARNING", help="Logging level")
    sub = parser.add_subparsers(dest="command", required=True)

    signals = sub.add_parser("signals", help="Compute the public signals of a witness")
    circuits = signals.add_subparsers(dest="circuit", required=True)

    identity = circuits.add_parser("identity", help="Identity circuit")
    identity.add_argument("--identity-secret", required=True)
    identity.add_argument("--nullifier-secret", required=True)

    vote = circuits.add_parser("vote", help="VoteCast circuit")
    vote.add_argument("--identity-secret", required=True)
    vote.add_argument("--nullifier-secret", required=True)
    vote.add_argument("--choice", required=True, help="Candidate id (decimal strings are used as field elements)")

    admin = circuits.add_parser("admin", help="AdminAction circuit")
    admin.add_argument("--admin-key", required=True)
    admin.add_argument("--action-data", required=True, help="Action payload (decimal strings are field elements)")
    admin.add_argument("--nonce", required=True)
    signals.set_defaults(func=cmd_signals)

    render = sub.add_parser("render-circuits", help="Write circom sources for all circuits")
    render.add_argument("--out", type=Path, required=True)
    render.set_defaults(func=cmd_render_circuits)

    build = sub.add_parser("build-artifacts", help="Compile a circuit and run the development setup")
    build.add_argument("--circuit", choices=[k.value for k in CircuitKind], required=True)
    build.add_argument("--version", required=True)
    build.add_argument("--ptau", type=Path, required=True)
    build.add_argument("--out", type=Path, required=True)
    build.add_argument("--circom", default="circom", help="circom executable")
    build.add_argument("--snarkjs", default="snarkjs", help="snarkjs executable")
    build.set_defaults(func=cmd_build_artifacts)

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging(args.log_level.upper())
    try:
        return args.func(args)
    except (ZKPError, ValueError) as e:
        print(f"error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
