"""End-to-end min-entropy assessment of a sample file.

The driver mirrors the SP 800-90B non-IID track: every enabled estimator is
run over the literal symbols (after relabelling to a dense alphabet) and
over the bitstring expansion of the active bits, optionally per evaluation
block, and the smallest estimate wins.
"""

from __future__ import annotations

import logging
import math
import os
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Sequence

import numpy as np

from noniid_entropy.config import AssessmentConfig, Estimator
from noniid_entropy.estimators import (
    CollisionResult,
    CompressionResult,
    MarkovResult,
    MCVResult,
    NSAMarkovResult,
    collision_estimate,
    compression_estimate,
    markov_estimate,
    most_common_value_estimate,
    nsa_markov_estimate,
)
from noniid_entropy.predictors import (
    PredictorResult,
    lag_estimate,
    lz78y_estimate,
    multi_mcw_estimate,
    multi_mmc_estimate,
)
from noniid_entropy.tuples import SAResult, sa_estimate

logger = logging.getLogger(__name__)

SAMPLE_DTYPES = {8: np.uint8, 32: np.uint32}


@dataclass
class EntropyTestingResult:
    """Per-estimator results for one assessment of one symbol sequence."""

    label: str = "Literal"
    k: int = 0
    length: int = 0
    mcv: MCVResult = field(default_factory=MCVResult)
    collision: CollisionResult = field(default_factory=CollisionResult)
    markov: MarkovResult = field(default_factory=MarkovResult)
    compression: CompressionResult = field(default_factory=CompressionResult)
    sa: SAResult = field(default_factory=SAResult)
    mcw: PredictorResult = field(default_factory=PredictorResult)
    lag: PredictorResult = field(default_factory=PredictorResult)
    mmc: PredictorResult = field(default_factory=PredictorResult)
    lz78y: PredictorResult = field(default_factory=PredictorResult)
    nsa_markov: NSAMarkovResult = field(default_factory=NSAMarkovResult)
    # inf until some estimator produces a bound
    assessed_entropy: float = math.inf
    run_time: float = 0.0

    def estimates(self) -> list[tuple[str, float]]:
        """Every estimate that produced a result, in reporting order."""
        out = []
        if self.mcv.done:
            out.append(("Most Common Value", self.mcv.entropy))
        if self.collision.done:
            out.append(("Collision", self.collision.entropy))
        if self.markov.done:
            out.append(("Markov", self.markov.entropy))
        if self.compression.done:
            out.append(("Compression", self.compression.entropy))
        if self.sa.t_tuple_done:
            out.append(("t-Tuple", self.sa.t_tuple_entropy))
        if self.sa.lrs_done:
            out.append(("LRS", self.sa.lrs_entropy))
        if self.mcw.done:
            out.append(("MultiMCW Prediction", self.mcw.entropy))
        if self.lag.done:
            out.append(("Lag Prediction", self.lag.entropy))
        if self.mmc.done:
            out.append(("MultiMMC Prediction", self.mmc.entropy))
        if self.lz78y.done:
            out.append(("LZ78Y Prediction", self.lz78y.entropy))
        if self.nsa_markov.done:
            out.append(("NSA Markov", self.nsa_markov.entropy))
        return out


def _timed(fn: Callable, *args):
    start = time.process_time()
    result = fn(*args)
    result.run_time = time.process_time() - start
    return result


def run_assessment(
    symbols: Sequence[int] | np.ndarray,
    k: int,
    config: AssessmentConfig | None = None,
    label: str = "Literal",
) -> EntropyTestingResult:
    """Run every enabled estimator over ``symbols`` drawn from ``[0, k)``.

    Collision, Markov and compression are defined for binary data only and
    are skipped unless ``k == 2``. Estimators that could not run (too little
    data, no repeated substrings) are ignored when taking the minimum.
    """
    config = config or AssessmentConfig()
    S = np.asarray(symbols)
    result = EntropyTestingResult(label=label, k=k, length=len(S))
    overall_start = time.process_time()
    logger.info(f"{label}: assessing {len(S)} symbols over an alphabet of {k}")

    if config.enabled(Estimator.MCV):
        result.mcv = _timed(most_common_value_estimate, S, k, config)
    if k == 2 and config.enabled(Estimator.COLLISION):
        result.collision = _timed(collision_estimate, S, config)
    if k == 2 and config.enabled(Estimator.MARKOV):
        result.markov = _timed(markov_estimate, S, config)
    if k == 2 and config.enabled(Estimator.COMPRESSION):
        result.compression = _timed(compression_estimate, S, config)
    if config.enabled(Estimator.SA):
        result.sa = _timed(sa_estimate, S, k, config)
    if config.enabled(Estimator.MULTI_MCW):
        result.mcw = _timed(multi_mcw_estimate, S, k, config)
    if config.enabled(Estimator.LAG):
        result.lag = _timed(lag_estimate, S, k, config)
    if config.enabled(Estimator.MULTI_MMC):
        result.mmc = _timed(multi_mmc_estimate, S, k, config)
    if config.enabled(Estimator.LZ78Y):
        result.lz78y = _timed(lz78y_estimate, S, k, config)
    if config.enabled(Estimator.NSA_MARKOV):
        result.nsa_markov = _timed(nsa_markov_estimate, S, k, config, label)

    ran = [entropy for _, entropy in result.estimates() if entropy >= 0.0]
    if ran:
        result.assessed_entropy = min(ran)
    result.run_time = time.process_time() - overall_start
    logger.info(f"{label}: assessed min entropy {result.assessed_entropy:.17g} ({result.run_time:.3f} s CPU)")
    return result


# ─── Data preparation ───


def active_bits(data: np.ndarray) -> int:
    """The OR of every sample: the bit positions that ever vary from zero."""
    data = np.asarray(data)
    if data.size == 0:
        return 0
    return int(np.bitwise_or.reduce(data.astype(np.uint64)))


def make_bitstring(
    data: Sequence[int] | np.ndarray,
    little_endian: bool = False,
    active: int | None = None,
) -> np.ndarray:
    """Expand each sample into one symbol per active bit.

    Bits are emitted from the highest active bit down, or from bit 0 up
    when ``little_endian`` is set. Bits that are zero in every sample are
    skipped.
    """
    data = np.asarray(data).astype(np.uint64)
    if active is None:
        active = active_bits(data)
    positions = [b for b in range(active.bit_length()) if (active >> b) & 1]
    if not little_endian:
        positions.reverse()
    if not positions:
        return np.zeros(0, dtype=np.uint8)
    shifts = np.asarray(positions, dtype=np.uint64)
    bits = (data[:, None] >> shifts[None, :]) & np.uint64(1)
    return bits.astype(np.uint8).ravel()


def translate(data: Sequence[int] | np.ndarray) -> tuple[np.ndarray, int]:
    """Relabel the distinct sample values to ``0..k-1`` in ascending order."""
    values, inverse = np.unique(np.asarray(data), return_inverse=True)
    k = len(values)
    dtype = np.uint8 if k <= 256 else np.uint32
    return inverse.reshape(-1).astype(dtype), k


def load_samples(
    path: str | Path,
    width: int = 8,
    index: int | None = None,
    count: int | None = None,
) -> np.ndarray:
    """Read machine-format unsigned samples of ``width`` bits.

    With ``count`` set, only the ``index``-th run of ``count`` samples is read.
    """
    if width not in SAMPLE_DTYPES:
        raise ValueError(f"sample width must be 8 or 32, got {width}")
    dtype = np.dtype(SAMPLE_DTYPES[width])
    path = Path(path)
    size = os.path.getsize(path)
    if size < dtype.itemsize:
        raise ValueError(f"{path}: no data found")
    if size % dtype.itemsize:
        logger.warning(f"{path}: extra bytes at the end of the file")

    if count:
        offset = (index or 0) * count * dtype.itemsize
        if offset >= size:
            raise ValueError(f"{path}: subset {index} of {count} samples lies beyond the end of the file")
        data = np.fromfile(path, dtype=dtype, count=count, offset=offset)
    else:
        data = np.fromfile(path, dtype=dtype, count=size // dtype.itemsize)
    if data.size == 0:
        raise ValueError(f"{path}: no data found")
    logger.info(f"Read in {data.size} integers")
    return data


def random_samples(k: int, length: int, seed: int | None = None) -> np.ndarray:
    """Uniform symbols from ``[0, k)``; reproducible when ``seed`` is given."""
    if k < 2:
        raise ValueError(f"k must be at least 2, got {k}")
    if length < 1:
        raise ValueError(f"length must be positive, got {length}")
    rng = np.random.default_rng(seed)
    dtype = np.uint8 if k <= 256 else np.uint32
    return rng.integers(0, k, size=length, dtype=dtype)


# ─── Driver ───


@dataclass
class BlockAssessment:
    """Literal and bitstring results for one evaluation block."""

    index: int
    bit_width: int
    literal: EntropyTestingResult | None = None
    bitstring: EntropyTestingResult | None = None

    @property
    def h_original(self) -> float | None:
        return self.literal.assessed_entropy if self.literal else None

    @property
    def h_bitstring(self) -> float | None:
        return self.bitstring.assessed_entropy if self.bitstring else None

    @property
    def min_entropy(self) -> float:
        value = math.inf
        if self.literal is not None:
            value = self.literal.assessed_entropy
        if self.bitstring is not None:
            value = min(value, self.bit_width * self.bitstring.assessed_entropy)
        return value


@dataclass
class Assessment:
    """Outcome of :func:`assess` over a whole dataset."""

    length: int
    k: int
    bit_width: int
    evaluation: str
    block_size: int
    blocks: list[BlockAssessment] = field(default_factory=list)
    large_block: BlockAssessment | None = None
    # the data has fewer than two distinct symbols
    degenerate: bool = False

    @property
    def min_entropy(self) -> float:
        if self.degenerate:
            return 0.0
        candidates = [b.min_entropy for b in self.blocks]
        if self.large_block is not None:
            candidates.append(self.large_block.min_entropy)
        return min(candidates) if candidates else math.inf


def assess(
    data: Sequence[int] | np.ndarray,
    config: AssessmentConfig | None = None,
    k: int | None = None,
) -> Assessment:
    """Assess raw samples as configured.

    ``data`` holds raw sample values. When ``k`` is given the data is taken
    to be symbols in ``[0, k)`` already (as produced by
    :func:`random_samples`) and is not relabelled.
    """
    config = config or AssessmentConfig()
    data = np.asarray(data)
    n = len(data)
    if n == 0:
        raise ValueError("no data to assess")
    evaluation = config.evaluation

    if k is None:
        active = active_bits(data)
    else:
        active = (1 << math.ceil(math.log2(k))) - 1 if k > 1 else 0
    bit_width = bin(active).count("1")

    bit_data = None
    if evaluation != "raw":
        if bit_width > 1:
            logger.info(f"Symbol width: {bit_width}. Total bits in bitstring: {n * bit_width}.")
            bit_data = make_bitstring(data, config.little_endian, active)
        else:
            logger.warning("One bit symbols in use. Reverting to raw evaluation")
            evaluation = "raw"

    summary = Assessment(length=n, k=k or 0, bit_width=bit_width, evaluation=evaluation, block_size=n)

    symbols = None
    if evaluation != "bitstring":
        if k is None:
            symbols, summary.k = translate(data)
            logger.info(f"Found {summary.k} symbols")
        else:
            symbols = data
        if summary.k < 2:
            logger.info("Sample cannot contain entropy!")
            summary.degenerate = True
            return summary

    block_size = n
    block_count = 1
    if config.block_size > 0:
        if n >= config.block_size:
            block_size = config.block_size
            block_count = n // block_size
        else:
            logger.warning("Not enough data for a single block. Performing the test on the partial block.")
    summary.block_size = block_size

    large_block = config.large_block
    if large_block and block_count <= 1:
        logger.warning(
            "Assessment strategies are only compatible with multiple blocks of testing. "
            "Reverting to a single round of testing."
        )
        large_block = False
    logger.info(
        f"Performing {f'{block_count} assessments each' if block_count > 1 else 'an assessment'} "
        f"of size {block_size} symbols"
    )

    def assess_range(index: int, start: int, stop: int) -> BlockAssessment:
        block = BlockAssessment(index=index, bit_width=bit_width)
        if symbols is not None:
            block.literal = run_assessment(symbols[start:stop], summary.k, config, "Literal")
        if bit_data is not None:
            block.bitstring = run_assessment(
                bit_data[start * bit_width:stop * bit_width], 2, config, "Bitstring"
            )
        return block

    if large_block:
        summary.large_block = assess_range(0, 0, n)
    for j in range(block_count):
        summary.blocks.append(assess_range(j + 1, j * block_size, (j + 1) * block_size))
    return summary
