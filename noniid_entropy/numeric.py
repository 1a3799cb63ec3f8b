"""Numeric helpers shared by the estimators.

Floating-point trouble is classified rather than left in sticky FPU flags:
underflow is tolerated (results clamp to 0.0), while invalid operations,
division by zero and overflow raise :class:`NumericError`.
"""

from __future__ import annotations

import logging
import math
import sys
from contextlib import contextmanager
from typing import Callable, Iterable, Iterator

import numpy as np
from scipy import stats as sp_stats

logger = logging.getLogger(__name__)

# One-sided 99% confidence (the 99.5th normal percentile).
ZALPHA = float(sp_stats.norm.ppf(0.995))
RELEPSILON = sys.float_info.epsilon


class NumericError(ArithmeticError):
    """A fatal floating-point outcome (invalid, divide-by-zero or overflow)."""

    def __init__(self, label: str, kind: str, detail: str = "") -> None:
        self.label = label
        self.kind = kind
        msg = f"{label}: math error ({kind})"
        if detail:
            msg += f": {detail}"
        super().__init__(msg)


def classify(exc: BaseException) -> str:
    """Map a Python/numpy arithmetic exception onto a fatal error kind."""
    if isinstance(exc, ZeroDivisionError):
        return "divide"
    if isinstance(exc, OverflowError):
        return "overflow"
    if isinstance(exc, FloatingPointError):
        text = str(exc)
        if "divide" in text:
            return "divide"
        if "overflow" in text:
            return "overflow"
    return "invalid"


@contextmanager
def fp_guard(label: str) -> Iterator[None]:
    """Run a computation with fatal floating-point conditions raising.

    Underflow is ignored here; callers clamp the final value through
    :func:`finalize_entropy`.
    """
    try:
        with np.errstate(invalid="raise", divide="raise", over="raise", under="ignore"):
            yield
    except (FloatingPointError, ZeroDivisionError, OverflowError, ValueError) as exc:
        raise NumericError(label, classify(exc), str(exc)) from exc


def finalize_entropy(value: float, label: str) -> float:
    """Validate an entropy result, clamping underflow artefacts to 0.0."""
    if math.isnan(value):
        raise NumericError(label, "invalid", "result is NaN")
    if math.isinf(value):
        raise NumericError(label, "overflow", "result is infinite")
    if value < -RELEPSILON:
        raise NumericError(label, "invalid", f"negative result {value!r}")
    if value < sys.float_info.min:
        if value != 0.0 or math.copysign(1.0, value) < 0:
            logger.debug(f"{label}: underflow in result ({value!r} set to 0.0)")
        return 0.0
    return value


class CompensatedSum:
    """Neumaier's improved Kahan summation.

    >>> s = CompensatedSum()
    >>> for x in (1.0, 1e100, 1.0, -1e100):
    ...     s.add(x)
    >>> s.result()
    2.0
    """

    __slots__ = ("_sum", "_comp", "count")

    def __init__(self) -> None:
        self._sum = 0.0
        self._comp = 0.0
        self.count = 0

    def add(self, x: float) -> None:
        t = self._sum + x
        if abs(self._sum) >= abs(x):
            self._comp += (self._sum - t) + x
        else:
            self._comp += (x - t) + self._sum
        self._sum = t
        self.count += 1

    def extend(self, values: Iterable[float]) -> None:
        for x in values:
            self.add(float(x))

    def result(self) -> float:
        return self._sum + self._comp


def compensated_sum(values: Iterable[float] | np.ndarray) -> float:
    """Sum a sequence (or array) with compensation.

    Arrays go through :func:`math.fsum`, which is exactly rounded.
    """
    if isinstance(values, np.ndarray):
        return math.fsum(values.ravel().tolist())
    acc = CompensatedSum()
    acc.extend(values)
    return acc.result()


def monotonic_binary_search(
    fct: Callable[[float], float],
    low: float,
    high: float,
    target: float,
    decreasing: bool = True,
    max_iterations: int = 1100,
) -> float:
    """Locate ``x`` in ``[low, high]`` where a monotone ``fct`` crosses ``target``.

    ``fct`` is never evaluated at ``high`` (both callers have a singularity
    there). If ``fct(low)`` is already past the target, ``low`` is returned;
    if the crossing lies beyond the last evaluated point, ``high`` is.
    The upper bracket is returned on convergence, which is the conservative
    side for probability searches.
    """
    assert low < high
    f_low = fct(low)
    if (decreasing and f_low <= target) or (not decreasing and f_low >= target):
        return low

    lo, hi = low, high
    for _ in range(max_iterations):
        mid = lo + (hi - lo) / 2.0
        if mid <= lo or mid >= hi:
            break
        f_mid = fct(mid)
        if f_mid == target:
            return mid
        if (f_mid > target) == decreasing:
            lo = mid
        else:
            hi = mid
        if hi - lo <= RELEPSILON * hi:
            break
    return hi
