"""Tests for the developer command line."""

from __future__ import annotations

import json
import subprocess
from pathlib import Path

import pytest

from our_zkvote.cli import main
from our_zkvote.hashing import Domain, action_hash, admin_commitment, encode_action_data, encode_choice, nullifier_hash

pytestmark = pytest.mark.usefixtures("restore_root_logger")


class TestSignals:
    """Tests for the signals subcommand."""

    def test_identity(self, capsys: pytest.CaptureFixture[str]) -> None:
        """Identity signals are printed as JSON."""
        code = main(["signals", "identity", "--identity-secret", "12345678", "--nullifier-secret", "87654321"])
        output = json.loads(capsys.readouterr().out)

        assert code == 0
        assert output["circuit"] == "identity"
        assert output["signals"]["nullifier_hash"] == str(nullifier_hash(12345678, 87654321, Domain.AUTH))
        assert output["public"] == list(output["signals"].values())

    def test_vote_text_choice(self, capsys: pytest.CaptureFixture[str]) -> None:
        """Non-numeric choices are encoded before hashing."""
        base = ["signals", "vote", "--identity-secret", "1", "--nullifier-secret", "2", "--choice"]
        main([*base, "candidate-7"])
        text = json.loads(capsys.readouterr().out)
        main([*base, str(encode_choice("candidate-7"))])
        encoded = json.loads(capsys.readouterr().out)

        assert text["signals"] == encoded["signals"]

    def test_admin(self, capsys: pytest.CaptureFixture[str]) -> None:
        """Admin signals include the admin commitment."""
        main(
            [
                "signals",
                "admin",
                "--admin-key",
                "424242424242",
                "--action-data",
                "add-candidate:X",
                "--nonce",
                "555444333",
            ]
        )
        output = json.loads(capsys.readouterr().out)

        assert output["signals"]["admin_commitment"] == str(admin_commitment(424242424242))
        expected = action_hash(424242424242, encode_action_data("add-candidate:X"), 555444333)
        assert output["signals"]["action_hash"] == str(expected)

    def test_invalid_secret(self, capsys: pytest.CaptureFixture[str]) -> None:
        """Out-of-range input exits with status 1 and a message."""
        code = main(["signals", "identity", "--identity-secret", "-1", "--nullifier-secret", "2"])

        assert code == 1
        assert "error:" in capsys.readouterr().err


class TestCircuitCommands:
    """Tests for rendering and building circuits."""

    def test_render_circuits(self, tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
        """All circuits are written to the output directory."""
        assert main(["render-circuits", "--out", str(tmp_path)]) == 0

        assert sorted(p.name for p in tmp_path.iterdir()) == [
            "admin_action.circom",
            "identity.circom",
            "vote_cast.circom",
        ]
        assert "identity:" in capsys.readouterr().out

    def test_build_missing_ptau(self, tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
        """Build errors are reported, not raised."""
        code = main(
            [
                "build-artifacts",
                "--circuit",
                "identity",
                "--version",
                "v1",
                "--ptau",
                str(tmp_path / "missing.ptau"),
                "--out",
                str(tmp_path / "artifacts"),
            ]
        )

        assert code == 1
        assert "Powers of Tau" in capsys.readouterr().err

    def test_build_passes_tool_paths(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        """Custom circom and snarkjs executables are used."""
        ptau = tmp_path / "pot.ptau"
        ptau.write_bytes(b"ptau")
        seen = []

        def run(cmd, **kwargs):
            seen.append(cmd[0])
            return subprocess.CompletedProcess(cmd, 1, "", "stop")

        monkeypatch.setattr(subprocess, "run", run)
        code = main(
            [
                "build-artifacts",
                "--circuit",
                "vote_cast",
                "--version",
                "v1",
                "--ptau",
                str(ptau),
                "--out",
                str(tmp_path / "artifacts"),
                "--circom",
                "/opt/circom",
            ]
        )

        assert code == 1
        assert seen == ["/opt/circom"]
