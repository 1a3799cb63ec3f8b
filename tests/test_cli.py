"""Tests for the CLI."""

import numpy as np
import pytest
from click.testing import CliRunner

from noniid_entropy.cli import EXIT_DATA_ERROR, main
from noniid_entropy.numeric import NumericError

# MCV | SA | Lag
FAST = "0x51"


@pytest.fixture
def sample_file(tmp_path):
    path = tmp_path / "samples.bin"
    np.random.default_rng(3).integers(0, 4, size=3000, dtype=np.uint8).tofile(path)
    return str(path)


class TestCLI:
    def test_version(self):
        r = CliRunner().invoke(main, ["--version"])
        assert r.exit_code == 0
        assert "0.1.0" in r.output

    def test_estimators(self):
        r = CliRunner().invoke(main, ["estimators"])
        assert r.exit_code == 0
        assert "0x0001  MCV" in r.output
        assert "NSA_MARKOV" in r.output
        assert "Default mask: 0x1ff" in r.output


class TestAssessCommand:
    def test_file(self, sample_file):
        r = CliRunner().invoke(main, ["assess", sample_file, "--estimators", FAST])
        assert r.exit_code == 0, r.output
        assert "H_original = " in r.output
        assert "H_bitstring = " in r.output
        assert "Assessed min entropy = " in r.output

    def test_raw(self, sample_file):
        r = CliRunner().invoke(main, ["assess", sample_file, "--raw", "--estimators", FAST])
        assert r.exit_code == 0, r.output
        assert "H_original = " in r.output
        assert "H_bitstring = " not in r.output

    def test_random(self):
        r = CliRunner().invoke(main, ["assess", "--random", "2,2000", "--seed", "1", "--estimators", FAST])
        assert r.exit_code == 0, r.output
        # binary symbols are assessed raw
        assert "H_original = " in r.output
        assert "H_bitstring = " not in r.output

    def test_blocks(self, sample_file):
        r = CliRunner().invoke(
            main,
            ["assess", sample_file, "--raw", "--estimators", FAST, "--block-size", "1000", "--large-block"],
        )
        assert r.exit_code == 0, r.output
        lines = r.output.splitlines()
        assert sum(line.startswith("H_original = ") for line in lines) == 3
        assert "Final Assessment = " in r.output

    def test_subset(self, sample_file):
        r = CliRunner().invoke(main, ["assess", sample_file, "--subset", "1,1000", "--estimators", FAST, "-v"])
        assert r.exit_code == 0, r.output
        assert "Assessed min entropy = " in r.output

    def test_constant_file(self, tmp_path):
        path = tmp_path / "constant.bin"
        path.write_bytes(b"\x07" * 100)
        r = CliRunner().invoke(main, ["assess", str(path)])
        assert r.exit_code == 0, r.output
        assert "Assessed min entropy = 0" in r.output

    def test_needs_one_input(self, sample_file):
        r = CliRunner().invoke(main, ["assess"])
        assert r.exit_code == 2
        r = CliRunner().invoke(main, ["assess", sample_file, "--random", "2,100"])
        assert r.exit_code == 2

    def test_exclusive_evaluations(self, sample_file):
        r = CliRunner().invoke(main, ["assess", sample_file, "--raw", "--bitstring"])
        assert r.exit_code == 2
        assert "mutually exclusive" in r.output

    def test_bad_mask(self, sample_file):
        r = CliRunner().invoke(main, ["assess", sample_file, "--estimators", "lots"])
        assert r.exit_code == 2

    def test_config_file(self, sample_file, tmp_path):
        cfg = tmp_path / "assess.yaml"
        cfg.write_text("evaluation: raw\nestimators: '0x01'\n")
        r = CliRunner().invoke(main, ["assess", sample_file, "--config", str(cfg)])
        assert r.exit_code == 0, r.output
        assert "H_bitstring = " not in r.output

    def test_bad_config_file(self, sample_file, tmp_path):
        cfg = tmp_path / "assess.yaml"
        cfg.write_text("colour: blue\n")
        r = CliRunner().invoke(main, ["assess", sample_file, "--config", str(cfg)])
        assert r.exit_code == 2

    def test_empty_file(self, tmp_path):
        path = tmp_path / "empty.bin"
        path.write_bytes(b"")
        r = CliRunner().invoke(main, ["assess", str(path)])
        assert r.exit_code == 1

    def test_report(self, sample_file, tmp_path):
        out = tmp_path / "reports" / "assessment.md"
        r = CliRunner().invoke(main, ["assess", sample_file, "--estimators", FAST, "--report", str(out)])
        assert r.exit_code == 0, r.output
        text = out.read_text(encoding="utf-8")
        assert text.startswith("# Non-IID Min-Entropy Assessment")
        assert sample_file in text

    def test_numeric_error_exit_code(self, sample_file, monkeypatch):
        def explode(*args, **kwargs):
            raise NumericError("Literal", "invalid")

        monkeypatch.setattr("noniid_entropy.assessment.assess", explode)
        r = CliRunner().invoke(main, ["assess", sample_file])
        assert r.exit_code == EXIT_DATA_ERROR


class TestSingleEstimatorCommands:
    def test_markov(self, sample_file):
        r = CliRunner().invoke(main, ["markov", sample_file])
        assert r.exit_code == 0, r.output
        assert "Read in 3000 integers" in r.output
        assert "Assessed min entropy = " in r.output

    def test_markov_constant(self, tmp_path):
        path = tmp_path / "constant.bin"
        path.write_bytes(b"\x00" * 50)
        r = CliRunner().invoke(main, ["markov", str(path)])
        assert r.exit_code == 0
        assert "Assessed min entropy = 0" in r.output

    def test_markov_bad_cutoff(self, sample_file):
        r = CliRunner().invoke(main, ["markov", sample_file, "-p", "1.5"])
        assert r.exit_code == 2

    def test_shannon(self, tmp_path):
        path = tmp_path / "uniform.bin"
        path.write_bytes(bytes(range(256)) * 4)
        r = CliRunner().invoke(main, ["shannon", str(path)])
        assert r.exit_code == 0
        value = float(r.output.split("Assessed Shannon entropy = ")[1].split()[0])
        assert value == pytest.approx(8.0)
