"""Assessment configuration.

A single :class:`AssessmentConfig` is passed explicitly to every estimator
entry point; nothing here is process-wide state.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import asdict, dataclass, fields
from pathlib import Path

import yaml

logger = logging.getLogger(__name__)


class Estimator(enum.IntFlag):
    """Bitmask selecting which estimators an assessment runs."""

    MCV = 0x01
    COLLISION = 0x02
    MARKOV = 0x04
    COMPRESSION = 0x08
    SA = 0x10
    MULTI_MCW = 0x20
    LAG = 0x40
    MULTI_MMC = 0x80
    LZ78Y = 0x100
    NSA_MARKOV = 0x200


# Every SP 800-90B estimator; the NSA Markov variant is opt-in.
DEFAULT_ESTIMATORS = (
    Estimator.MCV | Estimator.COLLISION | Estimator.MARKOV | Estimator.COMPRESSION
    | Estimator.SA | Estimator.MULTI_MCW | Estimator.LAG | Estimator.MULTI_MMC
    | Estimator.LZ78Y
)

EVALUATIONS = ("raw", "bitstring", "combined")


@dataclass
class AssessmentConfig:
    """Read-only settings consumed by the estimators and the assessment driver."""

    # Diagnostics
    verbose: int = 0

    # Prediction estimators: always search P_local over [1/k, 1]
    full_plocal_search: bool = False

    # NSA Markov
    markov_confidence: bool = True
    markov_cutoff: float = 0.0

    # Assessment driver
    estimators: int = int(DEFAULT_ESTIMATORS)
    evaluation: str = "combined"
    little_endian: bool = False
    block_size: int = 0
    large_block: bool = False
    sample_width: int = 8

    def __post_init__(self) -> None:
        self.validate()

    def validate(self) -> None:
        if self.evaluation not in EVALUATIONS:
            raise ValueError(f"evaluation must be one of {EVALUATIONS}, got {self.evaluation!r}")
        if self.sample_width not in (8, 32):
            raise ValueError(f"sample_width must be 8 or 32, got {self.sample_width}")
        if not 0.0 <= self.markov_cutoff < 1.0:
            raise ValueError(f"markov_cutoff must be in [0, 1), got {self.markov_cutoff}")
        if self.block_size < 0:
            raise ValueError(f"block_size must be non-negative, got {self.block_size}")
        if self.estimators < 0 or self.estimators > 0xFFFFFFFF:
            raise ValueError(f"estimators mask out of range: {self.estimators:#x}")

    def enabled(self, estimator: Estimator) -> bool:
        return bool(self.estimators & estimator)

    @property
    def log_level(self) -> int:
        if self.verbose >= 3:
            return logging.DEBUG
        if self.verbose >= 1:
            return logging.INFO
        return logging.WARNING

    def to_dict(self) -> dict:
        return asdict(self)


def load_config(path: str | Path, base: AssessmentConfig | None = None) -> AssessmentConfig:
    """Overlay the keys of a YAML mapping onto ``base`` (or the defaults)."""
    path = Path(path)
    with open(path) as f:
        raw = yaml.safe_load(f) or {}
    if not isinstance(raw, dict):
        raise ValueError(f"{path}: expected a mapping at the top level")

    known = {f.name for f in fields(AssessmentConfig)}
    unknown = sorted(set(raw) - known)
    if unknown:
        raise ValueError(f"{path}: unknown configuration keys: {', '.join(unknown)}")

    values = (base or AssessmentConfig()).to_dict()
    values.update(raw)
    if isinstance(values["estimators"], str):
        values["estimators"] = int(values["estimators"], 0)
    config = AssessmentConfig(**values)
    logger.info(f"Loaded configuration from {path}")
    return config


def configure_logging(verbose: int) -> None:
    """Route diagnostics to stderr at a level matching ``-v`` repetitions."""
    level = AssessmentConfig(verbose=verbose).log_level
    logging.basicConfig(level=level, format="%(levelname)s %(name)s: %(message)s")
    logging.getLogger("noniid_entropy").setLevel(level)
