"""Tests for result rendering."""

import numpy as np

from noniid_entropy.assessment import EntropyTestingResult, assess, run_assessment
from noniid_entropy.config import AssessmentConfig, Estimator
from noniid_entropy.report import format_result, generate_markdown_report

FAST = int(Estimator.MCV | Estimator.SA | Estimator.LAG)


def _binary_result(mask=FAST):
    data = np.random.default_rng(9).integers(0, 2, size=5000, dtype=np.uint8)
    return run_assessment(data, 2, AssessmentConfig(estimators=mask), "Bitstring")


class TestFormatResult:
    def test_quiet(self):
        lines = format_result(_binary_result())
        assert lines[0].startswith("Bitstring Most Common Value Estimate: min entropy = ")
        assert any(line.startswith("Bitstring Lag Prediction Estimate: min entropy = ") for line in lines)
        assert all("min entropy" in line for line in lines)

    def test_verbose(self):
        lines = format_result(_binary_result(), verbose=1)
        assert "Bitstring Most Common Value Estimate: Mode count = " in lines[0]
        assert any("Lag Prediction Estimate: P_global = " in line for line in lines)
        assert not any(line.startswith("Test took") for line in lines)

    def test_timing(self):
        lines = format_result(_binary_result(int(Estimator.MCV)), verbose=2)
        assert lines[-1].startswith("Test took ")

    def test_nothing_ran(self):
        assert format_result(EntropyTestingResult()) == []


class TestMarkdownReport:
    def test_single_block(self, tmp_path):
        data = np.random.default_rng(4).integers(0, 4, size=2000, dtype=np.uint8)
        summary = assess(data, AssessmentConfig(estimators=FAST))
        out = tmp_path / "nested" / "report.md"
        text = generate_markdown_report(summary, out, source="samples.bin")
        assert out.read_text(encoding="utf-8") == text
        assert text.startswith("# Non-IID Min-Entropy Assessment")
        assert "**Source:** `samples.bin`" in text
        assert "### Sole block" in text
        assert "#### Literal (2,000 symbols, k = 4)" in text
        assert "#### Bitstring (4,000 symbols, k = 2)" in text
        assert "## Blocks" not in text

    def test_blocks(self):
        data = np.random.default_rng(5).integers(0, 4, size=2000, dtype=np.uint8)
        cfg = AssessmentConfig(estimators=FAST, evaluation="raw", block_size=1000, large_block=True)
        text = generate_markdown_report(assess(data, cfg))
        assert "## Blocks" in text
        assert "### Block 2" in text
        assert "### Large Block Assessment" in text

    def test_degenerate(self):
        text = generate_markdown_report(assess(np.zeros(10, dtype=np.uint8)))
        assert "cannot contain entropy" in text
        assert "Detailed Results" not in text
