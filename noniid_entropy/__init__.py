"""
noniid-entropy: SP 800-90B non-IID min-entropy estimation.

Runs the ten non-IID estimators (most common value, collision, Markov,
compression, t-tuple, LRS and the four predictors) over sampled noise and
reports the most conservative result.
"""

__version__ = "0.1.0"

from noniid_entropy.assessment import (
    Assessment,
    EntropyTestingResult,
    assess,
    load_samples,
    make_bitstring,
    random_samples,
    run_assessment,
    translate,
)
from noniid_entropy.config import AssessmentConfig, Estimator, load_config
from noniid_entropy.numeric import NumericError

__all__ = [
    "Assessment",
    "AssessmentConfig",
    "EntropyTestingResult",
    "Estimator",
    "NumericError",
    "__version__",
    "assess",
    "load_config",
    "load_samples",
    "make_bitstring",
    "random_samples",
    "run_assessment",
    "translate",
]
