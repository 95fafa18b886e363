# SPDX-License-Identifier: MPL-2.0
from click.testing import CliRunner

from quantum_shield import __version__
from quantum_shield.cli.main import cli


def test_version():
    result = CliRunner().invoke(cli, ["version"])
    assert result.exit_code == 0
    assert __version__ in result.output


def test_postures_lists_every_state():
    result = CliRunner().invoke(cli, ["postures"])
    assert result.exit_code == 0
    for name in ("CLASSICAL_ONLY", "HYBRID_SIGN", "HYBRID_ENCRYPT", "PQC_PRIMARY", "PQC_ONLY"):
        assert name in result.output
    assert "Ed25519+ML-DSA-65" in result.output
    assert "HYBRID_PREPARE=CLASSICAL_ONLY" in result.output


def test_postures_with_other_parameter_set():
    result = CliRunner().invoke(cli, ["postures", "--signature-algorithm", "ML-DSA-87"])
    assert result.exit_code == 0
    assert "ML-DSA-87" in result.output
