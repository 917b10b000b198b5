from __future__ import annotations

from typing import Sequence

import numpy as np

from .ci_spec import validate_probabilities
from .errors import AssemblyError


def percentile_label(p: float) -> str:
    """0.05 -> 'p05', 0.5 -> 'p50', 0.975 -> 'p97.5'."""
    pct = round(float(p) * 100.0, 6)
    if pct == int(pct):
        return f"p{int(pct):02d}"
    return f"p{pct:g}"


def summarize(values: np.ndarray, probabilities: Sequence[float], *, chunk_rows: int = 4096) -> np.ndarray:
    """Row-wise empirical quantiles across the ensemble columns.

    Uses the type 6 estimator (position p * (n + 1), linear between order
    statistics, clamped to the sample range), i.e. numpy's ``method="weibull"``.
    Rows are processed in chunks to bound the temporary copies np.quantile makes.
    Returns an array of shape (n_rows, len(probabilities)).
    """
    probs = np.asarray(validate_probabilities(probabilities))
    values = np.asarray(values, dtype=float)
    if values.ndim != 2:
        raise AssemblyError(f"expected a 2-D (rows, replicates) array, got {values.ndim}-D")
    n_rows, n_cols = values.shape
    if n_cols == 0:
        raise AssemblyError("cannot summarize an ensemble with no replicate columns")
    if not np.all(np.isfinite(values)):
        raise AssemblyError("ensemble contains non-finite values")

    out = np.empty((n_rows, probs.size))
    step = max(int(chunk_rows), 1)
    for lo in range(0, n_rows, step):
        hi = min(lo + step, n_rows)
        out[lo:hi] = np.quantile(values[lo:hi], probs, axis=1, method="weibull").T
    return out
