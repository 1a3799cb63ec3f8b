"""SP 800-90B distributional min-entropy estimators.

Every estimator takes the translated symbol sequence (values in ``[0, k)``)
and returns a result record whose ``entropy`` is in bits per symbol, or
``-1.0`` with ``done=False`` when there is not enough data to run it.
The collision, Markov and compression estimates apply to binary data only.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import Sequence

import numpy as np

from noniid_entropy.config import AssessmentConfig
from noniid_entropy.numeric import (
    ZALPHA,
    CompensatedSum,
    compensated_sum,
    finalize_entropy,
    fp_guard,
    monotonic_binary_search,
)

logger = logging.getLogger(__name__)

# Compression estimate parameters
COMPRESSION_B = 6
COMPRESSION_D = 1000
COMPRESSION_C = 0.5907
COMPRESSION_K = 1 << COMPRESSION_B

# NSA Markov parameters
NSA_CHAIN_LENGTH = 128
NSA_ALPHA = 0.99
DESIRABLE_MAX_EPSILON = 0.05


@dataclass
class MCVResult:
    done: bool = False
    max_count: int = 0
    phat: float = -1.0
    pu: float = -1.0
    entropy: float = -1.0
    run_time: float = 0.0


@dataclass
class CollisionResult:
    done: bool = False
    v: int = 0
    t_sum: int = 0
    mean: float = -1.0
    stddev: float = -1.0
    meanbound: float = -1.0
    p: float = -1.0
    entropy: float = -1.0
    run_time: float = 0.0


@dataclass
class MarkovResult:
    done: bool = False
    p0: float = -1.0
    p1: float = -1.0
    transitions: list[list[float]] = field(default_factory=lambda: [[0.0, 0.0], [0.0, 0.0]])
    phatmax: float = -1.0
    entropy: float = -1.0
    run_time: float = 0.0


@dataclass
class NSAMarkovResult:
    done: bool = False
    valid_symbols: int = 0
    valid_count: int = 0
    epsilon: float = 0.0
    max_epsilon: float = -1.0
    iterations: int = 0
    p: float = -1.0
    entropy: float = -1.0
    run_time: float = 0.0


@dataclass
class CompressionResult:
    done: bool = False
    mean: float = -1.0
    stddev: float = -1.0
    meanbound: float = -1.0
    p: float = -1.0
    samples: int = 0
    entropy: float = -1.0
    run_time: float = 0.0


def _symbol_counts(symbols: Sequence[int] | np.ndarray, k: int) -> np.ndarray:
    data = np.asarray(symbols, dtype=np.int64)
    assert data.size == 0 or (data.min() >= 0 and data.max() < k)
    return np.bincount(data, minlength=k)


# ═══════════════════════ SHANNON ═══════════════════════

def shannon_entropy_estimate(symbols: Sequence[int] | np.ndarray, k: int) -> float:
    """Plug-in Shannon entropy, in bits per symbol (informational only)."""
    L = len(symbols)
    assert L > 0 and k > 0
    counts = _symbol_counts(symbols, k)
    acc = CompensatedSum()
    for i, c in enumerate(counts.tolist()):
        if c > 0:
            p = c / L
            logger.debug(f"p[ X = {i} ] = {p:.17g}")
            acc.add(p * math.log2(p))
    return -acc.result()


# ═══════════════════════ MOST COMMON VALUE (6.3.1) ═══════════════════════

def most_common_value_estimate(
    symbols: Sequence[int] | np.ndarray,
    k: int,
    config: AssessmentConfig | None = None,
) -> MCVResult:
    result = MCVResult()
    L = len(symbols)
    if L < 2:
        logger.warning("Most Common Value Estimate: Insufficient Number of Samples.")
        return result

    with fp_guard("Most Common Value estimator"):
        result.max_count = int(_symbol_counts(symbols, k).max())
        result.phat = result.max_count / L
        # Normal approximation to the binomial; the support of the maximum bin
        # actually starts at ceil(L/k), which this ignores.
        result.pu = min(1.0, result.phat + ZALPHA * math.sqrt(result.phat * (1.0 - result.phat) / (L - 1.0)))
        result.entropy = finalize_entropy(-math.log2(result.pu), "Most Common Value estimator")
    result.done = True
    return result


# ═══════════════════════ COLLISION (6.3.2) ═══════════════════════

def collision_estimate(
    symbols: Sequence[int] | np.ndarray,
    config: AssessmentConfig | None = None,
) -> CollisionResult:
    """Binary collision estimate."""
    result = CollisionResult()
    S = np.asarray(symbols).tolist()
    L = len(S)
    if L < 6:
        logger.warning("Collision Estimate: Insufficient Number of Samples.")
        return result

    two_count = 0
    three_count = 0
    i = 0
    while i < L - 2:
        if S[i] == S[i + 1]:
            two_count += 1
            i += 2
        else:
            three_count += 1
            i += 3
    if i == L - 2 and S[L - 2] == S[L - 1]:
        two_count += 1

    v = two_count + three_count
    t_sum = 2 * two_count + 3 * three_count
    t_sq_sum = 4 * two_count + 9 * three_count
    result.v = v
    result.t_sum = t_sum

    with fp_guard("Collision estimator"):
        result.mean = t_sum / v
        result.stddev = math.sqrt((t_sq_sum - t_sum * (t_sum / v)) / (v - 1))
        result.meanbound = result.mean - ZALPHA * result.stddev / math.sqrt(v)
        if result.meanbound < 2.0:
            logger.debug("Collision Estimate: Mean bound reduced under 2 (the minimum possible value). Correcting to 2.")
            result.meanbound = 2.0

        # X-bar = -2p^2 + 2p + 2; take the root above 1/2 when it is real
        if result.meanbound < 2.5:
            result.p = 0.5 + math.sqrt(1.25 - 0.5 * result.meanbound)
            logger.debug("Collision Estimate: Found p.")
        else:
            result.p = 0.5
            logger.debug("Collision Estimate: Could Not Find p. Proceeding with the lower bound for p.")
        result.entropy = finalize_entropy(-math.log2(result.p), "Collision estimator")

    result.done = True
    return result


# ═══════════════════════ MARKOV (6.3.3) ═══════════════════════

def _chain_entropy(initial: float, step: float, final: float) -> float:
    """-log2(initial * step^63 * final); infinite if any factor is zero."""
    if initial > 0.0 and step > 0.0 and final > 0.0:
        return -math.log2(initial) - 63.0 * math.log2(step) - math.log2(final)
    return math.inf


def markov_estimate(
    symbols: Sequence[int] | np.ndarray,
    config: AssessmentConfig | None = None,
) -> MarkovResult:
    """Binary first-order Markov estimate over chains of 128 bits."""
    result = MarkovResult()
    S = np.asarray(symbols, dtype=np.int64)
    L = len(S)
    if L < 2:
        logger.warning("Markov Estimate only defined for data samples larger than 1 sample.")
        return result

    prev = S[:-1]
    cur = S[1:]
    c0 = int(np.count_nonzero(prev == 0))
    c1 = L - 1 - c0
    c00 = int(np.count_nonzero((prev == 0) & (cur == 0)))
    c10 = int(np.count_nonzero((prev != 0) & (cur == 0)))

    with fp_guard("Markov estimator"):
        T = result.transitions
        if c0 > 0:
            T[0][0] = c00 / c0
            T[0][1] = 1.0 - T[0][0]
        if c1 > 0:
            T[1][0] = c10 / c1
            T[1][1] = 1.0 - T[1][0]

        if S[-1] == 0:
            c0 += 1
        result.p0 = c0 / L
        result.p1 = 1.0 - result.p0
        P0, P1 = result.p0, result.p1

        chain_min = min(
            _chain_entropy(P0, T[0][0] * T[0][0], T[0][0]),  # 00...0
            _chain_entropy(P0, T[0][1] * T[1][0], T[0][1]),  # 0101...01
            _chain_entropy(P0, T[1][1] * T[1][1], T[0][1]),  # 0111...1
            _chain_entropy(P1, T[0][0] * T[0][0], T[1][0]),  # 1000...0
            _chain_entropy(P1, T[0][1] * T[1][0], T[1][0]),  # 1010...10
            _chain_entropy(P1, T[1][1] * T[1][1], T[1][1]),  # 1111...1
        )
        chain_min = min(max(chain_min, 0.0), 128.0)
        result.phatmax = 2.0 ** -chain_min
        result.entropy = finalize_entropy(chain_min / 128.0, "Markov estimator")

    logger.debug(f"Markov Estimate: P_0 = {result.p0:.17g}, P_1 = {result.p1:.17g}, p-hat_max = {result.phatmax:.17g}")
    result.done = True
    return result


# ═══════════════════════ NSA MARKOV ═══════════════════════

def nsa_markov_estimate(
    symbols: Sequence[int] | np.ndarray,
    k: int,
    config: AssessmentConfig | None = None,
    label: str = "Literal",
) -> NSAMarkovResult:
    """Markov estimate over a general alphabet.

    Symbols rarer than ``config.markov_cutoff`` are excluded and the
    transition matrix rebuilt until the set of valid symbols is stable. With
    ``config.markov_confidence`` every probability is inflated by a
    Hoeffding-style epsilon. The entropy is that of the most likely chain of
    128 symbols, per symbol.
    """
    config = config or AssessmentConfig()
    conservative = config.markov_confidence
    result = NSAMarkovResult()
    S = np.asarray(symbols, dtype=np.int64)
    L = len(S)
    if L <= 2:
        logger.warning(f"{label} NSA Markov Estimate only defined for data samples larger than 2 samples.")
        return result

    count = np.bincount(S, minlength=k).astype(np.int64)
    oij = np.bincount(S[:-1] * k + S[1:], minlength=k * k).astype(np.int64).reshape(k, k)
    count_cutoff = int(math.floor(config.markov_cutoff * L))
    logger.info(f"{label} NSA Markov Estimate: Symbol cutoff probability is {config.markov_cutoff:.17g}.")
    logger.info(f"{label} NSA Markov Estimate: Symbol cutoff count is {count_cutoff}.")

    last = int(S[-1])
    P = np.full(k, np.inf)
    T = np.full((k, k), np.inf)
    epsilon_term = 0.0
    epsilon = 0.0
    max_epsilon = -1.0
    valid_count = L
    local_k = k
    stable = False

    with fp_guard(f"{label} NSA Markov estimator"):
        while not stable:
            stable = True
            informed = False
            max_epsilon = -1.0
            result.iterations += 1

            if count_cutoff > 0:
                valid = count >= count_cutoff
                local_k = int(np.count_nonzero(valid))
                valid_count = int(count[valid].sum())
            else:
                local_k = k
                valid_count = L
            logger.info(
                f"{label} NSA Markov Estimate: There are {local_k} sufficiently common distinct symbols "
                f"in a dataset of {valid_count} samples."
            )
            assert valid_count > 0

            if conservative:
                # localk initial probabilities plus localk^2 transitions
                alpha_t = NSA_ALPHA ** (1.0 / (local_k * local_k + local_k))
                epsilon_term = math.log(1.0 / (1.0 - alpha_t)) / 2.0
                epsilon = math.sqrt(epsilon_term / valid_count)
                logger.debug(f"{label} NSA Markov Estimate: alpha is {alpha_t:.17g}, epsilon is {epsilon:.17g}.")
            else:
                epsilon = 0.0
                epsilon_term = 0.0

            P = np.full(k, np.inf)
            for i in range(k):
                if count[i] > 0 and count[i] >= count_cutoff:
                    P[i] = -math.log2(min(1.0, count[i] / valid_count + epsilon))

            # The final symbol has no successor
            reduced = count[last] > 0
            if reduced:
                count[last] -= 1

            T = np.full((k, k), np.inf)
            for i in range(k):
                if not (count[i] > 0 and count[i] >= count_cutoff):
                    continue
                row_pop = int(oij[i, count >= count_cutoff].sum())
                if count[i] != row_pop:
                    count[i] = row_pop
                    stable = False
                    if not informed:
                        logger.info("A symbol transitioned to an uncommon symbol. Iterating...")
                        informed = True
                if row_pop > 0 and row_pop >= count_cutoff:
                    epsilon_i = 0.0
                    if conservative:
                        epsilon_i = math.sqrt(epsilon_term / row_pop)
                        max_epsilon = max(max_epsilon, epsilon_i)
                    cols = (count > 0) & (count >= count_cutoff)
                    prob = np.minimum(1.0, oij[i] / row_pop + epsilon_i)
                    cols &= prob > 0.0
                    T[i, cols] = -np.log2(prob[cols])

            if reduced:
                count[last] += 1

        if conservative:
            logger.debug(f"{label} NSA Markov Estimate: Maximum Epsilon_i is {max_epsilon:.17g}.")
            if max_epsilon > DESIRABLE_MAX_EPSILON:
                suggested = epsilon_term / (DESIRABLE_MAX_EPSILON * DESIRABLE_MAX_EPSILON * valid_count)
                logger.warning(
                    f"{label} NSA Markov Estimate: Maximum epsilon_i is {max_epsilon:.6g}; "
                    f"consider setting cutoff to at least {suggested:.17g}."
                )

        # Min-plus (Viterbi) recursion over -log2 probabilities
        for _ in range(NSA_CHAIN_LENGTH - 1):
            P = (P[:, np.newaxis] + T).min(axis=0)

        chain_min = abs(float(P.min()))
        assert chain_min >= 0.0
        result.p = 2.0 ** -chain_min
        result.entropy = finalize_entropy(chain_min / NSA_CHAIN_LENGTH, f"{label} NSA Markov estimator")

    result.valid_symbols = local_k
    result.valid_count = valid_count
    result.epsilon = epsilon
    result.max_epsilon = max_epsilon
    result.done = True
    logger.info(f"{label} NSA Markov Estimate: p = {result.p:.17g}")
    return result


# ═══════════════════════ COMPRESSION (6.3.4) ═══════════════════════

def comp_g(z: float, block_count: int, d: int) -> float:
    """The G function of 6.3.4, using the recurrence between successive terms.

    With ``B_i = (1 - z)^(i - 1)`` and ``a_i = log2(i) * B_i``, G collapses to
    ``z * (z * sum_{i=d+1}^{n-1} (n - i) a_i + (n - d) A_{d+1} + A_{n+1} - A_{d+1}) / v``,
    where ``A_j`` sums ``a_2 .. a_{j-1}``.
    """
    assert d > 0 and block_count > d
    v = block_count - d
    i = np.arange(2, block_count + 1, dtype=np.float64)
    a = np.log2(i) * (1.0 - z) ** (i - 1.0)

    ad1 = compensated_sum(a[: d - 1])
    tail = slice(d - 1, block_count - 2)
    first_sum = compensated_sum((block_count - i[tail]) * a[tail]) + (block_count - d) * ad1
    ai_out = compensated_sum(a)
    return z * (z * first_sum + (ai_out - ad1)) / v


def _comp_est_fct(p: float, k: int, block_count: int, d: int) -> float:
    assert 1.0 / k <= p < 1.0
    return comp_g(p, block_count, d) + (k - 1.0) * comp_g((1.0 - p) / (k - 1.0), block_count, d)


def _maurer_blocks(S: np.ndarray, b: int) -> np.ndarray:
    """Pack consecutive groups of ``b`` bits, MSB first."""
    count = len(S) // b
    bits = (S[: count * b] & 1).reshape(count, b)
    weights = 1 << np.arange(b - 1, -1, -1, dtype=np.int64)
    return bits @ weights


def maurer_stats(S: np.ndarray, b: int, d: int) -> tuple[float, float, float]:
    """Return ``(mean, stddev, meandelta)`` of the log2 recurrence distances."""
    k = 1 << b
    blocks = _maurer_blocks(np.asarray(S, dtype=np.int64), b).tolist()
    Lp = len(blocks)
    v = Lp - d
    assert Lp > d and Lp >= k

    # An index of 0 doubles as "never seen"
    last_seen = [0] * k
    for j in range(d):
        cur = blocks[d - j - 1]
        if last_seen[cur] == 0:
            last_seen[cur] = d - j - 1

    distances = np.empty(v, dtype=np.float64)
    for j in range(d, Lp):
        cur = blocks[j]
        distances[j - d] = j - last_seen[cur] if last_seen[cur] != 0 else j + 1
        last_seen[cur] = j

    elem = np.log2(distances)
    meanofsquares = compensated_sum(elem * elem) / (v - 1)
    mean = compensated_sum(elem) / v
    stddev = COMPRESSION_C * math.sqrt(meanofsquares - mean * mean)
    meandelta = ZALPHA * stddev / math.sqrt(v)
    return mean, stddev, meandelta


def compression_estimate(
    symbols: Sequence[int] | np.ndarray,
    config: AssessmentConfig | None = None,
) -> CompressionResult:
    """Binary Maurer-style compression estimate (b = 6, d = 1000)."""
    result = CompressionResult()
    b, d, k = COMPRESSION_B, COMPRESSION_D, COMPRESSION_K
    S = np.asarray(symbols, dtype=np.int64)
    L = len(S)
    if L <= b * 1000:
        logger.warning("Compression Estimate: Insufficient Number of Samples.")
        return result

    block_count = L // b
    with fp_guard("Compression estimator"):
        mean, stddev, meandelta = maurer_stats(S, b, d)
        result.mean = mean
        result.stddev = stddev
        result.meanbound = mean - meandelta
        result.samples = L

        def fct(p: float) -> float:
            return _comp_est_fct(p, k, block_count, d)

        # fct is decreasing, so a lower target gives a larger p
        if fct(1.0 / k) > result.meanbound:
            result.p = monotonic_binary_search(fct, 1.0 / k, 1.0, result.meanbound, decreasing=True)
        else:
            result.p = -1.0
        result.p = min(result.p, 1.0)

        if result.p > 1.0 / k:
            logger.debug("Compression Estimate: Found p.")
            entropy = -math.log2(result.p) / b
        else:
            logger.debug("Compression Estimate: Could Not Find p. Proceeding with the lower bound for p.")
            entropy = 1.0
            result.p = 1.0 / k
        result.entropy = finalize_entropy(entropy, "Compression estimator")

    logger.debug(
        f"Compression Estimate: mean = {result.mean:.17g}, stddev = {result.stddev:.17g}, "
        f"meanbound = {result.meanbound:.17g}, p = {result.p:.17g}"
    )
    result.done = True
    return result
