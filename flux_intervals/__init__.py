"""
Prediction intervals for daily water-quality concentration and flux estimates.

Modules:
- daily: daily spine columns, validation, observation join, CSV loaders
- estimator: estimator protocol + reference seasonal regression
- resampling: block/simple bootstrap of sampling events, re-estimation
- traces: AR(1) stochastic traces conditioned on samples
- replicates: replicate matrix and its assembly
- aggregate: daily/monthly/annual/cumulative bucketing
- quantiles: type 6 row-wise quantiles
- intervals: the four prediction-interval views
- mc_engine: ensemble orchestration
- provenance: per-replicate JSONL ledger
- storage: save/load the replicate matrix
- stats: interval diagnostics
- ci_spec: ensemble/interval settings
- errors: error taxonomy
- utils: shared helpers (config, logging, paths)
"""

from .aggregate import Bucket
from .ci_spec import IntervalSpec, from_dict
from .errors import (
    AssemblyError,
    ConfigurationError,
    DataAlignmentError,
    EstimationFailure,
    FluxIntervalsError,
)
from .intervals import (
    IntervalResult,
    annual_pi,
    cumulative_pi,
    daily_pi,
    monthly_pi,
    prediction_intervals,
)
from .mc_engine import EnsembleRun, build_spine, run_ensemble
from .replicates import ReplicateMatrix

__all__ = [
    "daily",
    "estimator",
    "resampling",
    "traces",
    "replicates",
    "aggregate",
    "quantiles",
    "intervals",
    "mc_engine",
    "provenance",
    "storage",
    "stats",
    "ci_spec",
    "errors",
    "utils",
    "Bucket",
    "IntervalSpec",
    "from_dict",
    "AssemblyError",
    "ConfigurationError",
    "DataAlignmentError",
    "EstimationFailure",
    "FluxIntervalsError",
    "IntervalResult",
    "annual_pi",
    "cumulative_pi",
    "daily_pi",
    "monthly_pi",
    "prediction_intervals",
    "EnsembleRun",
    "build_spine",
    "run_ensemble",
    "ReplicateMatrix",
]

__version__ = "0.1.0"
