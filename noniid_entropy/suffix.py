"""Suffix array and LCP construction.

Conventions used throughout:

* ``sa`` has ``n + 1`` entries; ``sa[0] == n`` is the empty suffix, which
  plays the role of a terminator smaller than every symbol.
* ``lcp`` has ``n + 2`` entries; ``lcp[i]`` is the common-prefix length of
  the suffixes at ``sa[i - 1]`` and ``sa[i]`` for ``1 <= i <= n``, and
  ``lcp[0] == lcp[n + 1] == 0`` are sentinels.
"""

from __future__ import annotations

import logging
from typing import Sequence

import numpy as np
import pydivsufsort

logger = logging.getLogger(__name__)

BYTE_ALPHABET = 256


def suffix_array(symbols: Sequence[int] | np.ndarray, k: int) -> np.ndarray:
    """Return the suffix array of ``symbols`` with the terminator prepended."""
    data = np.asarray(symbols)
    n = len(data)
    assert n > 0 and k > 0
    out = np.empty(n + 1, dtype=np.int64)
    out[0] = n
    if k <= BYTE_ALPHABET:
        out[1:] = pydivsufsort.divsufsort(data.astype(np.uint8).tobytes())
    else:
        logger.debug(f"Alphabet of {k} symbols; using prefix doubling for {n} suffixes")
        out[1:] = _prefix_doubling(data.astype(np.int64))
    return out


def _prefix_doubling(data: np.ndarray) -> np.ndarray:
    """Sort suffixes by repeatedly doubling the compared prefix length."""
    n = len(data)
    rank = data.copy()
    order = np.arange(n, dtype=np.int64)
    step = 1
    while True:
        # -1 past the end: a shorter suffix sorts first
        second = np.full(n, -1, dtype=np.int64)
        if step < n:
            second[: n - step] = rank[step:]
        order = np.lexsort((second, rank))
        first_sorted = rank[order]
        second_sorted = second[order]
        boundary = np.zeros(n, dtype=np.int64)
        boundary[1:] = (first_sorted[1:] != first_sorted[:-1]) | (second_sorted[1:] != second_sorted[:-1])
        rank = np.empty(n, dtype=np.int64)
        rank[order] = np.cumsum(boundary)
        if rank[order[-1]] == n - 1 or step >= n:
            return order
        step <<= 1


def lcp_array(symbols: Sequence[int] | np.ndarray, sa: Sequence[int] | np.ndarray) -> np.ndarray:
    """Kasai's algorithm over the terminator-prefixed suffix array."""
    s = np.asarray(symbols).tolist()
    order = np.asarray(sa).tolist()
    n = len(s)
    assert len(order) == n + 1 and order[0] == n

    rank = [0] * (n + 1)
    for i, pos in enumerate(order):
        rank[pos] = i

    lcp = [0] * (n + 2)
    h = 0
    for i in range(n):
        r = rank[i]
        if r > 1:
            j = order[r - 1]
            while i + h < n and j + h < n and s[i + h] == s[j + h]:
                h += 1
            lcp[r] = h
            if h > 0:
                h -= 1
        else:
            h = 0
    return np.asarray(lcp, dtype=np.int64)


def sa_lcp(symbols: Sequence[int] | np.ndarray, k: int) -> tuple[np.ndarray, np.ndarray]:
    """Build both arrays for ``symbols`` over an alphabet of size ``k``."""
    logger.debug(f"Calculate SA/LCP, size: {len(symbols)}, symbols: {k}")
    sa = suffix_array(symbols, k)
    lcp = lcp_array(symbols, sa)
    assert lcp[1] == 0
    return sa, lcp
