"""SP 800-90B prediction estimators (6.3.7 - 6.3.10).

Each estimator walks the sequence once, scoring the currently winning
predictor before updating every predictor with the new symbol. All four
feed ``(C, N, r, k)`` into :func:`prediction_estimate_result`, which bounds
the global and local (longest run) prediction probabilities.

MultiMMC and LZ78Y use flat bit-indexed tables for binary data and the
:class:`~noniid_entropy.dictionary.DictionaryTrie` otherwise. Both
interleave prediction and update for each prefix length, reusing the prefix
page located by the prediction for the update.
"""

from __future__ import annotations

import logging
import math
from collections import deque
from dataclasses import dataclass
from typing import Sequence

import numpy as np

from noniid_entropy.config import AssessmentConfig
from noniid_entropy.dictionary import DictionaryTrie
from noniid_entropy.numeric import (
    RELEPSILON,
    ZALPHA,
    finalize_entropy,
    fp_guard,
    monotonic_binary_search,
)

logger = logging.getLogger(__name__)

MCW_WINDOWS = (63, 255, 1023, 4095)
LAG_D = 128
MULTIMMC_D = 16
MULTIMMC_MAX_ENTRIES = 100000
LZ78Y_B = 16
LZ78Y_MAX_DICT = 65536


@dataclass
class PredictorResult:
    done: bool = False
    correct: int = 0
    runs: int = 0
    n: int = 0
    k: int = 0
    p_global: float = -1.0
    p_global_bound: float = -1.0
    p_local: float = -1.0
    p_run: float = -1.0
    entropy: float = -1.0
    run_time: float = 0.0


# ═══════════════════════ CONFIDENCE BOUNDS ═══════════════════════

def prediction_est_fct(p: float, N: int, r: int) -> float:
    """Log of the probability that the longest success run is shorter than ``r``.

    Uses the root of the run-length generating function from Feller, Vol. 1,
    XIII.7 (equation 7.11), found by fixed-point iteration on ``[1, 1/p]``.
    """
    assert 0.0 < p < 1.0
    assert N > 1
    if r > N + 1:
        return 0.0
    assert r > 0
    if r == 1:
        # no success at all in N trials
        return N * math.log1p(-p)

    q = 1.0 - p
    x = 1.0
    x_last = 0.0
    j = 0
    while j < 65 and x - x_last > RELEPSILON * x:
        x_last = x
        x = 1.0 + q * (p * x) ** r * x
        assert x >= x_last
        j += 1
    logger.debug(f"Iterated {j} times to find a root; x = {x:.17g}")
    return math.log(1.0 - p * x) - math.log(q * (1.0 - r * (x - 1.0))) - (N + 1.0) * math.log(x)


def calc_pglobal_bound(p_global: float, N: int) -> float:
    assert 0.0 <= p_global <= 1.0 and N > 1
    if p_global > 0.0:
        bound = min(1.0, p_global + ZALPHA * math.sqrt(p_global * (1.0 - p_global) / (N - 1.0)))
    else:
        bound = 1.0 - 0.01 ** (1.0 / N)
    assert 0.0 <= bound <= 1.0
    return bound


def calc_prun(p_global: float, N: int, r: int) -> float:
    """Probability of a longest run shorter than ``r`` at ``p_global``."""
    # At p_global == 0 the generating function's root is x = 1, giving exp(0)
    if 0.0 < p_global < 1.0:
        return math.exp(prediction_est_fct(p_global, N, r))
    return 1.0


def calc_plocal(N: int, r: int, k: int, running_max: float, rounds: int = 1, no_skip: bool = False) -> float:
    """Search for P_local; ``-1.0`` when it cannot exceed ``running_max``."""
    assert rounds > 0 and k > 0
    target = math.log(0.99) / rounds

    def fct(p: float) -> float:
        return prediction_est_fct(p, N, r)

    if no_skip:
        return monotonic_binary_search(fct, 1.0 / k, 1.0, target, decreasing=True)
    # fct is decreasing, so P_local <= running_max could not change the result
    if running_max < 1.0 and fct(running_max) > target:
        return monotonic_binary_search(fct, running_max, 1.0, target, decreasing=True)
    return -1.0


def prediction_estimate_result(
    correct: int,
    N: int,
    r: int,
    k: int,
    config: AssessmentConfig | None = None,
) -> PredictorResult:
    """Turn a predictor's tallies into a min-entropy bound.

    ``entropy = -log2(max(1/k, P_global_bound, P_local))``.
    """
    config = config or AssessmentConfig()
    assert N > 1 and k > 1
    result = PredictorResult(correct=correct, runs=r, n=N, k=k)

    with fp_guard("Prediction Estimate"):
        running_max = 1.0 / k
        result.p_global = correct / N
        result.p_global_bound = calc_pglobal_bound(result.p_global, N)
        running_max = max(running_max, result.p_global_bound)
        result.p_run = calc_prun(result.p_global, N, r)
        result.p_local = calc_plocal(N, r, k, running_max, 1, config.full_plocal_search)
        running_max = max(running_max, result.p_local)
        result.entropy = finalize_entropy(-math.log2(running_max), "Prediction Estimate")

    logger.debug(
        f"Prediction Estimate: C = {correct}, N = {N}, r = {r}, P_global = {result.p_global:.17g}, "
        f"P_global' = {result.p_global_bound:.17g}, P_local = {result.p_local:.17g}"
    )
    result.done = True
    return result


def _insufficient(name: str, needed: int, got: int) -> PredictorResult:
    logger.warning(f"{name} only defined for data samples of at least {needed} samples (got {got}).")
    return PredictorResult()


def _as_list(symbols: Sequence[int] | np.ndarray) -> list[int]:
    return np.asarray(symbols, dtype=np.int64).tolist()


# ═══════════════════════ MULTIMCW (6.3.7) ═══════════════════════

class _WindowPredictor:
    """Most common value within a sliding window; ties go to the latest seen."""

    def __init__(self, S: list[int], k: int, window: int) -> None:
        self.window = window
        self.k = k
        self.counts = [0] * k
        self.last_seen = [0] * k
        self.correct = 0
        self.counts[S[0]] = 1
        self.prediction = S[0]
        for j in range(1, window):
            sym = S[j]
            self.counts[sym] += 1
            if self.counts[sym] >= self.counts[self.prediction]:
                self.prediction = sym
            self.last_seen[sym] = j

    def rescan(self) -> None:
        counts, last_seen = self.counts, self.last_seen
        for j in range(self.k):
            best = self.prediction
            if counts[j] > counts[best] or (counts[j] == counts[best] and last_seen[j] > last_seen[best]):
                self.prediction = j

    def update(self, S: list[int], i: int) -> None:
        falling_off = S[i - self.window]
        sym = S[i]
        self.counts[falling_off] -= 1
        self.counts[sym] += 1
        self.last_seen[sym] = i
        if self.prediction == falling_off:
            self.rescan()
        elif self.counts[self.prediction] <= self.counts[sym]:
            self.prediction = sym


def multi_mcw_estimate(
    symbols: Sequence[int] | np.ndarray,
    k: int,
    config: AssessmentConfig | None = None,
) -> PredictorResult:
    S = _as_list(symbols)
    L = len(S)
    if L <= MCW_WINDOWS[-1]:
        return _insufficient("MultiMCW", MCW_WINDOWS[-1] + 1, L)

    predictors = [_WindowPredictor(S, k, w) for w in MCW_WINDOWS]
    winner = 0
    run = max_run = correct = 0
    for i in range(MCW_WINDOWS[0], L):
        sym = S[i]
        if sym == predictors[winner].prediction:
            correct += 1
            run += 1
            max_run = max(max_run, run)
        else:
            run = 0

        for j, pred in enumerate(predictors):
            if pred.window <= i and pred.prediction == sym:
                pred.correct += 1
                if pred.correct >= predictors[winner].correct:
                    winner = j

        for pred in predictors:
            if pred.window <= i:
                pred.update(S, i)

    return prediction_estimate_result(correct, L - MCW_WINDOWS[0], max_run + 1, k, config)


# ═══════════════════════ LAG (6.3.8) ═══════════════════════

def lag_estimate(
    symbols: Sequence[int] | np.ndarray,
    k: int,
    config: AssessmentConfig | None = None,
) -> PredictorResult:
    """Lag predictor over offsets 1..128.

    Rather than scanning 128 lags per symbol, each symbol keeps the positions
    of its recent occurrences; only the lags at which the new symbol repeats
    gain a vote.
    """
    S = _as_list(symbols)
    L = len(S)
    if L <= 2:
        return _insufficient("Lag", 3, L)

    scoreboard = [0] * LAG_D
    seen: list[deque[int]] = [deque(maxlen=LAG_D) for _ in range(k)]
    winner = 0
    high_score = 0
    run = max_run = correct = 0

    seen[S[0]].append(0)
    for i in range(1, L):
        sym = S[i]
        if sym == S[i - winner - 1]:
            correct += 1
            run += 1
            max_run = max(max_run, run)
        else:
            run = 0

        positions = seen[sym]
        cutoff = i - LAG_D if i >= LAG_D else 0
        for pos in reversed(positions):
            if pos < cutoff:
                break
            offset = i - pos - 1
            scoreboard[offset] += 1
            if scoreboard[offset] >= high_score:
                winner = offset
                high_score = scoreboard[offset]
        while positions and positions[0] < cutoff:
            positions.popleft()
        positions.append(i)

    return prediction_estimate_result(correct, L - 1, max_run + 1, k, config)


# ═══════════════════════ MULTIMMC (6.3.9) ═══════════════════════

def _binary_multi_mmc(S: list[int], config: AssessmentConfig) -> PredictorResult:
    L = len(S)
    # Depth d holds 2^(d+1) prefixes, each with a pair of postfix counts
    tables = [[0] * (1 << (d + 2)) for d in range(MULTIMMC_D)]
    dict_elems = [0] * MULTIMMC_D
    scoreboard = [0] * MULTIMMC_D
    winner = 0
    run = max_run = correct = 0

    pattern = 0
    for d in range(MULTIMMC_D):
        pattern = (pattern << 1) | (S[d] & 1)
        loc = (pattern & ((1 << (d + 1)) - 1)) << 1
        tables[d][loc + (S[d + 1] & 1)] = 1
        dict_elems[d] = 1

    for i in range(2, L):
        found_x = False
        cur_winner = winner
        pattern = 0
        sym = S[i] & 1
        for d in range(min(MULTIMMC_D, i - 1)):
            # pattern holds S[i-d-1] .. S[i-1], most recent in the low bit
            pattern |= (S[i - d - 1] & 1) << d
            table = tables[d]
            loc = pattern << 1

            if d == 0 or found_x:
                if table[loc] > table[loc + 1]:
                    prediction, count = 0, table[loc]
                else:
                    prediction, count = 1, table[loc + 1]
                found_x = count != 0

            if found_x:
                if prediction == S[i]:
                    scoreboard[d] += 1
                    if scoreboard[d] >= scoreboard[winner]:
                        winner = d
                    if d == cur_winner:
                        correct += 1
                        run += 1
                        max_run = max(max_run, run)
                elif d == cur_winner:
                    run = 0

                if table[loc + sym] != 0:
                    table[loc + sym] += 1
                elif dict_elems[d] < MULTIMMC_MAX_ENTRIES:
                    table[loc + sym] = 1
                    dict_elems[d] += 1
            elif dict_elems[d] < MULTIMMC_MAX_ENTRIES:
                table[loc + sym] = 1
                dict_elems[d] += 1

    return prediction_estimate_result(correct, L - 2, max_run + 1, 2, config)


def _tree_multi_mmc(S: list[int], k: int, config: AssessmentConfig) -> PredictorResult:
    L = len(S)
    trie = DictionaryTrie(k, MULTIMMC_MAX_ENTRIES * MULTIMMC_D)
    dict_elems = [0] * MULTIMMC_D
    scoreboard = [0] * MULTIMMC_D
    winner = 0
    run = max_run = correct = 0

    for d in range(MULTIMMC_D):
        trie.increment(S[: d + 1], S[d + 1], create=True, leaf_counts=True)
        dict_elems[d] = 1

    for i in range(2, L):
        found_x = False
        cur_winner = winner
        sym = S[i]
        for d in range(min(MULTIMMC_D, i - 1)):
            prefix = S[i - d - 1 : i]
            loc = None
            if d == 0 or found_x:
                count, prediction, loc = trie.predict(prefix)
                found_x = count != 0

            if found_x:
                if prediction == sym:
                    scoreboard[d] += 1
                    if scoreboard[d] >= scoreboard[winner]:
                        winner = d
                    if d == cur_winner:
                        correct += 1
                        run += 1
                        max_run = max(max_run, run)
                elif d == cur_winner:
                    run = 0

                make_branches = dict_elems[d] < MULTIMMC_MAX_ENTRIES
                if trie.increment(prefix, sym, make_branches, True, loc) and make_branches:
                    dict_elems[d] += 1
            elif dict_elems[d] < MULTIMMC_MAX_ENTRIES:
                trie.increment(prefix, sym, create=True, leaf_counts=True)
                dict_elems[d] += 1

    for d, elems in enumerate(dict_elems):
        logger.debug(f"Dictionary[{d}]: has {elems} entries")
    trie.delete()
    return prediction_estimate_result(correct, L - 2, max_run + 1, k, config)


def multi_mmc_estimate(
    symbols: Sequence[int] | np.ndarray,
    k: int,
    config: AssessmentConfig | None = None,
) -> PredictorResult:
    config = config or AssessmentConfig()
    S = _as_list(symbols)
    if len(S) <= MULTIMMC_D + 1:
        return _insufficient("MultiMMC", MULTIMMC_D + 2, len(S))
    if k == 2:
        return _binary_multi_mmc(S, config)
    return _tree_multi_mmc(S, k, config)


# ═══════════════════════ LZ78Y (6.3.10) ═══════════════════════

def _binary_lz78y(S: list[int], config: AssessmentConfig) -> PredictorResult:
    L = len(S)
    tables = [[0] * (1 << (j + 2)) for j in range(LZ78Y_B)]
    dict_elems = 0
    run = max_run = correct = 0

    # {(S[15]), S[16]}, {(S[14], S[15]), S[16]}, ..., {(S[0] .. S[15]), S[16]}
    pattern = 0
    for j in range(LZ78Y_B):
        pattern |= (S[LZ78Y_B - j - 1] & 1) << j
        tables[j][(pattern << 1) + (S[LZ78Y_B] & 1)] = 1
        dict_elems += 1

    for i in range(LZ78Y_B + 1, L):
        sym = S[i] & 1
        have_prediction = False
        prediction = 2
        max_count = 0

        pattern = 0
        for j in range(LZ78Y_B):
            pattern |= (S[i - 1 - j] & 1) << j

        for j in range(LZ78Y_B, 0, -1):
            pattern &= (1 << j) - 1
            table = tables[j - 1]
            loc = pattern << 1
            if table[loc] > table[loc + 1]:
                round_prediction, count = 0, table[loc]
            else:
                round_prediction, count = 1, table[loc + 1]

            if count != 0:
                if count > max_count:
                    max_count = count
                    have_prediction = True
                    prediction = round_prediction
                table[loc + sym] += 1
            elif dict_elems < LZ78Y_MAX_DICT:
                table[loc + sym] = 1
                dict_elems += 1

        if have_prediction and prediction == S[i]:
            correct += 1
            run += 1
            max_run = max(max_run, run)
        else:
            run = 0

    return prediction_estimate_result(correct, L - LZ78Y_B - 1, max_run + 1, 2, config)


def _tree_lz78y(S: list[int], k: int, config: AssessmentConfig) -> PredictorResult:
    L = len(S)
    trie = DictionaryTrie(k, LZ78Y_MAX_DICT)
    dict_elems = 0
    run = max_run = correct = 0

    for j in range(1, LZ78Y_B + 1):
        created = trie.increment(S[LZ78Y_B - j : LZ78Y_B], S[LZ78Y_B], create=True, leaf_counts=False)
        assert created
        dict_elems += 1

    for i in range(LZ78Y_B + 1, L):
        sym = S[i]
        have_prediction = False
        prediction = 0
        max_count = 0
        for j in range(LZ78Y_B, 0, -1):
            prefix = S[i - j : i]
            count, round_prediction, loc = trie.predict(prefix)
            if count != 0:
                if count > max_count:
                    max_count = count
                    have_prediction = True
                    prediction = round_prediction
                created = trie.increment(prefix, sym, True, False, loc)
                assert not created
            elif dict_elems < LZ78Y_MAX_DICT:
                created = trie.increment(prefix, sym, True, False, loc)
                assert created
                dict_elems += 1

        if have_prediction and prediction == sym:
            correct += 1
            run += 1
            max_run = max(max_run, run)
        else:
            run = 0

    logger.debug(f"Dictionary: has {dict_elems} entries")
    trie.delete()
    return prediction_estimate_result(correct, L - LZ78Y_B - 1, max_run + 1, k, config)


def lz78y_estimate(
    symbols: Sequence[int] | np.ndarray,
    k: int,
    config: AssessmentConfig | None = None,
) -> PredictorResult:
    config = config or AssessmentConfig()
    S = _as_list(symbols)
    if len(S) <= LZ78Y_B + 2:
        return _insufficient("LZ78Y", LZ78Y_B + 3, len(S))
    if k == 2:
        return _binary_lz78y(S, config)
    return _tree_lz78y(S, k, config)
