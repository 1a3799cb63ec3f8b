"""Tests for the assessment driver and data preparation."""

import math

import numpy as np
import pytest

from noniid_entropy.assessment import (
    active_bits,
    assess,
    load_samples,
    make_bitstring,
    random_samples,
    run_assessment,
    translate,
)
from noniid_entropy.config import AssessmentConfig, Estimator

FAST = int(Estimator.MCV | Estimator.SA | Estimator.LAG)


class TestMakeBitstring:
    def test_msb_first_over_active_bits(self):
        # active bits 0b1010: bit 3 then bit 1
        bits = make_bitstring(np.array([0b1000, 0b0010, 0b1010]))
        assert bits.tolist() == [1, 0, 0, 1, 1, 1]

    def test_little_endian(self):
        bits = make_bitstring(np.array([0b1000, 0b0010, 0b1010]), little_endian=True)
        assert bits.tolist() == [0, 1, 1, 0, 1, 1]

    def test_length_is_samples_times_width(self):
        data = np.random.default_rng(1).integers(0, 256, size=100, dtype=np.uint8)
        active = active_bits(data)
        assert len(make_bitstring(data)) == 100 * bin(active).count("1")

    def test_no_active_bits(self):
        assert len(make_bitstring(np.zeros(5, dtype=np.uint8))) == 0

    def test_wide_samples(self):
        bits = make_bitstring(np.array([0x80000000, 1], dtype=np.uint32))
        assert bits.tolist() == [1, 0, 0, 1]


class TestTranslate:
    def test_dense_relabel(self):
        symbols, k = translate(np.array([40, 10, 40, 250, 10]))
        assert k == 3
        assert symbols.tolist() == [1, 0, 1, 2, 0]

    def test_large_alphabet(self):
        symbols, k = translate(np.arange(1000, dtype=np.uint32) * 7)
        assert k == 1000
        assert symbols.dtype == np.uint32
        assert symbols[-1] == 999


class TestLoadSamples:
    def test_bytes(self, tmp_path):
        path = tmp_path / "data.bin"
        path.write_bytes(bytes([1, 2, 3, 4]))
        assert load_samples(path).tolist() == [1, 2, 3, 4]

    def test_words(self, tmp_path):
        path = tmp_path / "data.bin"
        np.array([70000, 3], dtype=np.uint32).tofile(path)
        assert load_samples(path, width=32).tolist() == [70000, 3]

    def test_trailing_bytes_ignored(self, tmp_path):
        path = tmp_path / "data.bin"
        path.write_bytes(np.array([5, 6], dtype=np.uint32).tobytes() + b"\x01")
        assert load_samples(path, width=32).tolist() == [5, 6]

    def test_subset(self, tmp_path):
        path = tmp_path / "data.bin"
        path.write_bytes(bytes(range(20)))
        assert load_samples(path, index=2, count=5).tolist() == [10, 11, 12, 13, 14]

    def test_empty(self, tmp_path):
        path = tmp_path / "empty.bin"
        path.write_bytes(b"")
        with pytest.raises(ValueError):
            load_samples(path)


class TestRandomSamples:
    def test_seeded(self):
        a = random_samples(4, 1000, seed=7)
        b = random_samples(4, 1000, seed=7)
        assert np.array_equal(a, b)
        assert a.max() < 4

    def test_invalid(self):
        with pytest.raises(ValueError):
            random_samples(1, 100)


class TestRunAssessment:
    def test_binary_runs_everything(self):
        data = random_samples(2, 20000, seed=3)
        result = run_assessment(data, 2, AssessmentConfig(), "Bitstring")
        names = [name for name, _ in result.estimates()]
        assert names == [
            "Most Common Value", "Collision", "Markov", "Compression", "t-Tuple", "LRS",
            "MultiMCW Prediction", "Lag Prediction", "MultiMMC Prediction", "LZ78Y Prediction",
        ]
        assert result.assessed_entropy == min(e for _, e in result.estimates())
        assert 0.0 < result.assessed_entropy <= 1.0
        assert result.mcv.run_time >= 0.0

    def test_binary_only_estimators_skipped(self):
        data = random_samples(4, 6000, seed=4)
        result = run_assessment(data, 4, AssessmentConfig(estimators=0x0F))
        assert result.mcv.done
        assert not result.collision.done
        assert not result.markov.done
        assert not result.compression.done

    def test_mask(self):
        data = random_samples(2, 3000, seed=5)
        result = run_assessment(data, 2, AssessmentConfig(estimators=int(Estimator.MCV)))
        assert [name for name, _ in result.estimates()] == ["Most Common Value"]
        assert result.assessed_entropy == result.mcv.entropy

    def test_not_run_entries_ignored(self):
        # too short for compression and MultiMCW
        data = random_samples(2, 1000, seed=6)
        result = run_assessment(data, 2)
        assert not result.compression.done
        assert not result.mcw.done
        assert result.assessed_entropy >= 0.0

    def test_nsa_markov_opt_in(self):
        data = random_samples(3, 2000, seed=8)
        cfg = AssessmentConfig(estimators=int(Estimator.MCV | Estimator.NSA_MARKOV))
        result = run_assessment(data, 3, cfg)
        assert result.nsa_markov.done
        assert result.assessed_entropy == min(result.mcv.entropy, result.nsa_markov.entropy)

    def test_nothing_enabled(self):
        result = run_assessment(random_samples(2, 100, seed=1), 2, AssessmentConfig(estimators=0))
        assert math.isinf(result.assessed_entropy)


class TestAssess:
    def test_combined(self):
        data = random_samples(4, 4000, seed=10)
        summary = assess(data, AssessmentConfig(estimators=FAST))
        assert summary.k == 4
        assert summary.bit_width == 2
        assert len(summary.blocks) == 1
        block = summary.blocks[0]
        assert block.literal.label == "Literal"
        assert block.bitstring.label == "Bitstring"
        assert block.bitstring.length == 8000
        assert block.min_entropy == min(block.h_original, 2 * block.h_bitstring)
        assert summary.min_entropy == block.min_entropy
        assert 0.0 < block.h_original <= 2.0

    def test_raw_only(self):
        data = random_samples(4, 2000, seed=11)
        summary = assess(data, AssessmentConfig(estimators=FAST, evaluation="raw"))
        assert summary.blocks[0].bitstring is None
        assert summary.blocks[0].min_entropy == summary.blocks[0].h_original

    def test_bitstring_only(self):
        data = random_samples(4, 2000, seed=12)
        summary = assess(data, AssessmentConfig(estimators=FAST, evaluation="bitstring"))
        assert summary.blocks[0].literal is None
        assert summary.blocks[0].h_bitstring is not None

    def test_one_bit_symbols_revert_to_raw(self):
        data = random_samples(2, 2000, seed=13) * 64
        summary = assess(data, AssessmentConfig(estimators=FAST, evaluation="bitstring"))
        assert summary.evaluation == "raw"
        assert summary.bit_width == 1
        assert summary.blocks[0].bitstring is None
        assert summary.blocks[0].literal is not None

    def test_constant_data(self):
        summary = assess(np.full(500, 9, dtype=np.uint8), AssessmentConfig(estimators=FAST))
        assert summary.degenerate
        assert summary.min_entropy == 0.0
        assert summary.blocks == []

    def test_blocks_and_large_block(self):
        data = random_samples(4, 3500, seed=14)
        cfg = AssessmentConfig(estimators=FAST, block_size=1000, large_block=True, evaluation="raw")
        summary = assess(data, cfg)
        assert [b.index for b in summary.blocks] == [1, 2, 3]
        assert all(b.literal.length == 1000 for b in summary.blocks)
        assert summary.large_block.literal.length == 3500
        assert summary.min_entropy == min(
            [b.min_entropy for b in summary.blocks] + [summary.large_block.min_entropy]
        )

    def test_partial_block(self):
        data = random_samples(4, 500, seed=15)
        cfg = AssessmentConfig(estimators=FAST, block_size=1000, large_block=True, evaluation="raw")
        summary = assess(data, cfg)
        assert len(summary.blocks) == 1
        assert summary.block_size == 500
        assert summary.large_block is None

    def test_known_alphabet(self):
        data = random_samples(8, 3000, seed=16)
        summary = assess(data, AssessmentConfig(estimators=FAST), k=8)
        assert summary.k == 8
        assert summary.bit_width == 3
        assert summary.blocks[0].bitstring.length == 9000
