"""Tests for the prediction estimators."""

import math

import numpy as np
import pytest

from noniid_entropy.config import AssessmentConfig
from noniid_entropy.predictors import (
    calc_pglobal_bound,
    calc_plocal,
    calc_prun,
    lag_estimate,
    lz78y_estimate,
    multi_mcw_estimate,
    multi_mmc_estimate,
    prediction_est_fct,
    prediction_estimate_result,
)

PERIOD4 = np.tile(np.array([0, 1, 2, 3], dtype=np.uint8), 2500)
PERIOD4_BITS = np.tile(np.array([0, 0, 1, 1], dtype=np.uint8), 2500)


def _longest_run_probability(p, N, r):
    """P(longest run of successes < r) in N Bernoulli(p) trials, by dynamic programming."""
    # state: length of the current success run
    probs = [1.0] + [0.0] * (r - 1)
    for _ in range(N):
        nxt = [0.0] * r
        total = sum(probs)
        nxt[0] = total * (1 - p)
        for j in range(r - 1):
            nxt[j + 1] = probs[j] * p
        probs = nxt
    return sum(probs)


class TestConfidenceBounds:
    @pytest.mark.parametrize("p,N,r", [(0.5, 1000, 12), (0.3, 500, 4), (0.9, 2000, 60), (0.2, 100, 1)])
    def test_run_probability_matches_exact(self, p, N, r):
        exact = _longest_run_probability(p, N, r)
        assert math.exp(prediction_est_fct(p, N, r)) == pytest.approx(exact, rel=1e-3)

    def test_run_longer_than_data(self):
        assert prediction_est_fct(0.5, 10, 12) == 0.0

    def test_pglobal_bound(self):
        assert calc_pglobal_bound(0.0, 100) == pytest.approx(1.0 - 0.01 ** (1 / 100))
        assert calc_pglobal_bound(1.0, 100) == 1.0
        assert 0.5 < calc_pglobal_bound(0.5, 100) < 0.7

    def test_prun_degenerate(self):
        assert calc_prun(0.0, 100, 3) == 1.0
        assert calc_prun(1.0, 100, 101) == 1.0

    def test_plocal_skipped_when_it_cannot_matter(self):
        # a short longest run cannot push P_local above 0.5
        assert calc_plocal(10000, 5, 2, 0.5) == -1.0

    def test_plocal_long_run(self):
        plocal = calc_plocal(10000, 200, 2, 0.5)
        assert 0.5 < plocal < 1.0
        assert prediction_est_fct(plocal, 10000, 200) == pytest.approx(math.log(0.99), abs=1e-6)

    def test_full_plocal_search(self):
        plocal = calc_plocal(10000, 5, 2, 0.5, no_skip=True)
        assert 0.0 < plocal <= 0.5

    def test_result_uses_largest_probability(self):
        r = prediction_estimate_result(600, 1000, 5, 2)
        assert r.done
        assert r.p_global == 0.6
        assert r.entropy == pytest.approx(-math.log2(max(0.5, r.p_global_bound, r.p_local)))

    def test_result_full_plocal_from_config(self):
        r = prediction_estimate_result(100, 1000, 3, 2, AssessmentConfig(full_plocal_search=True))
        assert r.p_local > 0.0
        assert r.entropy == pytest.approx(1.0)


class TestMultiMCW:
    def test_too_short(self):
        r = multi_mcw_estimate(np.zeros(4095, dtype=np.uint8), 2)
        assert not r.done
        assert r.entropy == -1.0

    def test_constant(self):
        r = multi_mcw_estimate(np.zeros(5000, dtype=np.uint8), 2)
        assert r.correct == r.n == 5000 - 63
        assert r.entropy == 0.0

    def test_biased(self):
        data = (np.random.default_rng(1).random(10000) < 0.1).astype(np.uint8)
        r = multi_mcw_estimate(data, 2)
        assert r.p_global == pytest.approx(0.9, abs=0.02)

    def test_period_has_no_majority(self):
        # the next symbol is always the least frequent one in the window
        r = multi_mcw_estimate(PERIOD4, 4)
        assert r.correct == 0
        assert r.entropy == pytest.approx(2.0)


class TestLag:
    def test_too_short(self):
        assert not lag_estimate(np.array([0, 1]), 2).done

    def test_periodic(self):
        r = lag_estimate(PERIOD4, 4)
        assert r.correct / r.n > 0.99
        assert r.entropy < 0.05

    def test_periodic_bits(self):
        r = lag_estimate(PERIOD4_BITS, 2)
        assert r.correct / r.n > 0.99
        assert r.entropy < 0.05


class TestMultiMMC:
    def test_too_short(self):
        assert not multi_mmc_estimate(np.zeros(17, dtype=np.uint8), 2).done

    def test_periodic_bits(self):
        r = multi_mmc_estimate(PERIOD4_BITS, 2)
        assert r.n == len(PERIOD4_BITS) - 2
        assert r.correct / r.n > 0.99
        assert r.entropy < 0.05

    def test_periodic_symbols(self):
        r = multi_mmc_estimate(PERIOD4, 4)
        assert r.correct / r.n > 0.99
        assert r.entropy < 0.05


class TestLZ78Y:
    def test_too_short(self):
        assert not lz78y_estimate(np.zeros(18, dtype=np.uint8), 2).done

    def test_alternating_bits(self):
        data = np.tile(np.array([0, 1], dtype=np.uint8), 5000)
        r = lz78y_estimate(data, 2)
        assert r.n == len(data) - 17
        assert r.correct / r.n > 0.99
        assert r.entropy < 0.05

    def test_highest_count_wins_over_longest_prefix(self):
        # the one-bit context outvotes the two-bit one on half the phases
        r = lz78y_estimate(PERIOD4_BITS, 2)
        assert r.p_global == pytest.approx(0.5, abs=0.01)

    def test_periodic_symbols(self):
        r = lz78y_estimate(PERIOD4, 4)
        assert r.correct / r.n > 0.99
        assert r.entropy < 0.05


class TestBounds:
    @pytest.mark.parametrize("estimator", [multi_mcw_estimate, lag_estimate, multi_mmc_estimate, lz78y_estimate])
    @pytest.mark.parametrize("k", [2, 5])
    def test_random_data(self, estimator, k):
        data = np.random.default_rng(k).integers(0, k, size=6000)
        r = estimator(data, k)
        assert r.done
        assert 0.0 <= r.entropy <= math.log2(k)
