"""t-Tuple and LRS estimates from the suffix array (SP 800-90B 6.3.5, 6.3.6).

Both estimates are driven by Kaufer's counting sweeps over the LCP array:

1. A first pass computes ``Q[j]``, the largest number of occurrences of any
   length-``j`` substring, for every ``j`` up to the LRS length ``v``.
   ``u`` is the first ``j`` with ``Q[j] < 35``.
2. A second pass accumulates, for ``u <= j <= v``, the number of colliding
   pairs among all length-``j`` substrings.

Each pass is O(n * v) in the worst case; ``v`` is small for anything that
looks remotely random.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import Sequence

import numpy as np

from noniid_entropy.config import AssessmentConfig
from noniid_entropy.numeric import ZALPHA, finalize_entropy, fp_guard
from noniid_entropy.suffix import sa_lcp

logger = logging.getLogger(__name__)

TUPLE_THRESHOLD = 35


@dataclass
class TupleCounts:
    """Output of the first sweep."""

    v: int
    u: int
    q: list[int] = field(default_factory=list)


@dataclass
class SAResult:
    done: bool = False
    u: int = 0
    v: int = 0
    t_tuple_done: bool = False
    t_tuple_pmax: float = -1.0
    t_tuple_pu: float = -1.0
    t_tuple_entropy: float = -1.0
    lrs_done: bool = False
    lrs_pmax: float = -1.0
    lrs_pu: float = -1.0
    lrs_entropy: float = -1.0
    entropy: float = -1.0
    run_time: float = 0.0


def count_tuples(lcp: Sequence[int] | np.ndarray, threshold: int = TUPLE_THRESHOLD) -> TupleCounts:
    """Compute ``Q[1..v]`` and ``u`` with a single sweep over ``lcp``."""
    # L[i] is the LCP of the (i)th and (i+1)th sorted suffixes (terminator first)
    L = np.asarray(lcp).tolist()[1:]
    n = len(L) - 1
    v = max(L)
    assert L[0] == 0 and L[n] == 0

    Q = [1] * (v + 1)
    A = [0] * (v + 2)
    I = [0] * (v + 3)
    j = 0
    for i in range(1, n + 1):
        c = 0
        cur = L[i]
        if cur < L[i - 1]:
            t = L[i - 1]
            assert j > 0
            j -= 1
            while t > cur:
                if j > 0 and I[j] == t:
                    # fold the count for this interval into its parent
                    A[I[j]] += A[I[j + 1]]
                    A[I[j + 1]] = 0
                    j -= 1
                if Q[t] >= A[I[j + 1]] + 1:
                    # Q is non-increasing, so jump to the next non-zero A
                    t = I[j] if j > 0 else cur
                else:
                    Q[t] = A[I[j + 1]] + 1
                    t -= 1
            c = A[I[j + 1]]
            A[I[j + 1]] = 0

        if cur > 0:
            if j < 1 or I[j] < cur:
                j += 1
                I[j] = cur
            A[I[j]] += c + 1

    u = 1
    while u <= v and Q[u] >= threshold:
        u += 1
    return TupleCounts(v=v, u=u, q=Q)


def collision_sums(lcp: Sequence[int] | np.ndarray, u: int, v: int) -> list[int]:
    """Sum of ``C(count, 2)`` over distinct length-``j`` substrings, for ``u <= j <= v``."""
    L = np.asarray(lcp).tolist()[1:]
    n = len(L) - 1
    S = [0] * (v + 1)
    A = [0] * (v + 2)
    for i in range(1, n + 1):
        prev = L[i - 1]
        cur = L[i]
        if prev >= u and cur < prev:
            b = cur if cur >= u else u - 1
            for t in range(prev, b, -1):
                A[t] += A[t + 1]
                A[t + 1] = 0
                # A[t] counts repeats, so A[t] + 1 occurrences
                S[t] += (A[t] * (A[t] + 1)) >> 1
            if b >= u:
                A[b] += A[b + 1]
            A[b + 1] = 0
        if cur >= u:
            A[cur] += 1
    return S


def _upper_bound(pmax: float, n: int) -> float:
    return min(1.0, pmax + ZALPHA * math.sqrt(pmax * (1.0 - pmax) / (n - 1)))


def sa_estimate(
    symbols: Sequence[int] | np.ndarray,
    k: int,
    config: AssessmentConfig | None = None,
) -> SAResult:
    """Run the t-Tuple and LRS estimates over ``symbols``."""
    config = config or AssessmentConfig()
    result = SAResult()
    n = len(symbols)
    assert n > 0 and k > 0

    _, lcp = sa_lcp(symbols, k)
    v = int(lcp.max())
    result.v = v
    logger.debug(f"LRS: v = {v}")
    if v == 0:
        logger.warning("No substring repeats, so the suffix array estimates cannot be computed.")
        return result

    with fp_guard("Suffix-Array based estimators"):
        if v > n // 256:
            # At least two copies of the LRS exist, which bounds P_v from below
            pw_bound = (1.0 / ((n - v + 1) * (n - v) / 2.0)) ** (1.0 / v)
            lrs_bound = -math.log2(_upper_bound(pw_bound, n))
            logger.warning(
                "LRS length is large as compared to the dataset, so the LRS estimator may take a while. "
                f"A LRS result upper bound is approximately {lrs_bound:.6g}."
            )

        counts = count_tuples(lcp)
        u = counts.u
        result.u = u
        result.done = True
        logger.debug(f"t-Tuple: u = {u}")

        pmax = -1.0
        for j in range(1, u):
            cur_p = counts.q[j] / (n - j + 1)
            cur_pmax = cur_p ** (1.0 / j)
            logger.debug(f"t-Tuple Estimate: Q[{j}] = {counts.q[j]}, P[{j}] = {cur_p:.17g}, P_max[{j}] = {cur_pmax:.17g}")
            pmax = max(pmax, cur_pmax)

        if pmax > 0.0:
            pu = _upper_bound(pmax, n)
            result.t_tuple_pmax = pmax
            result.t_tuple_pu = pu
            result.t_tuple_entropy = finalize_entropy(-math.log2(pu), "t-Tuple")
            result.t_tuple_done = True

        if v < u:
            logger.warning("v < u, so we skip the lrs test.")
        else:
            sums = collision_sums(lcp, u, v)
            pmax = 0.0
            for j in range(u, v + 1):
                choices = ((n - j) * (n - j + 1)) >> 1
                assert sums[j] <= choices
                cur_p = sums[j] / choices
                cur_pmax = cur_p ** (1.0 / j)
                logger.debug(f"LRS Estimate: P_{j} = {cur_p:.17g} ( {sums[j]} / {choices} ), P_max,{j} = {cur_pmax:.17g}")
                pmax = max(pmax, cur_pmax)
            pu = _upper_bound(pmax, n)
            result.lrs_pmax = pmax
            result.lrs_pu = pu
            result.lrs_entropy = finalize_entropy(-math.log2(pu), "LRS")
            result.lrs_done = True

    done = [e for e in (result.t_tuple_entropy, result.lrs_entropy) if e >= 0.0]
    if done:
        result.entropy = min(done)
    return result
