"""
Prediction intervals for the four temporal views of a replicate ensemble.

Each entry point aggregates the ensemble (per replicate) and the deterministic
spine series with the same bucket keys, then takes row-wise quantiles:

* ``daily_pi``       one row per day
* ``monthly_pi``     mean daily rate per calendar month
* ``annual_pi``      mean daily rate per year (calendar or water year)
* ``cumulative_pi``  running total from the first day, summed per replicate
                     before the quantiles are taken
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Iterable, Sequence, Tuple

import numpy as np
import pandas as pd

from .aggregate import Bucket, aggregate
from .ci_spec import DEFAULT_PROBABILITIES, validate_probabilities
from .errors import AssemblyError
from .quantiles import percentile_label, summarize
from .replicates import ReplicateMatrix


def _frozen(arr: np.ndarray) -> np.ndarray:
    arr = np.array(arr, dtype=float, copy=True)
    arr.setflags(write=False)
    return arr


@dataclass(frozen=True)
class IntervalResult:
    view: Bucket
    variable: str
    probabilities: Tuple[float, ...]
    keys: pd.Index
    dec_year: np.ndarray
    n_days: np.ndarray
    quantiles: np.ndarray  # (n_buckets, n_probabilities)
    estimate: np.ndarray  # deterministic series on the same buckets

    def __len__(self) -> int:
        return len(self.keys)

    @property
    def labels(self) -> Tuple[str, ...]:
        return tuple(percentile_label(p) for p in self.probabilities)

    @property
    def low(self) -> np.ndarray:
        return self.quantiles[:, 0]

    @property
    def mid(self) -> np.ndarray:
        """Middle level for an odd number (three or more) of probabilities; NaN when there is none."""
        k = len(self.probabilities)
        if k < 3 or k % 2 == 0:
            return np.full(len(self.keys), np.nan)
        return self.quantiles[:, k // 2]

    @property
    def high(self) -> np.ndarray:
        return self.quantiles[:, -1]

    def column(self, p: float) -> np.ndarray:
        for i, q in enumerate(self.probabilities):
            if np.isclose(q, p):
                return self.quantiles[:, i]
        raise KeyError(f"probability {p} was not computed (have {self.probabilities})")

    def to_frame(self) -> pd.DataFrame:
        df = pd.DataFrame({"bucket": self.keys, "DecYear": self.dec_year, "n_days": self.n_days})
        for i, label in enumerate(self.labels):
            df[label] = self.quantiles[:, i]
        df["estimate"] = self.estimate
        return df


def interval(
    matrix: ReplicateMatrix,
    view: Bucket | str,
    *,
    variable: str = "flux",
    probabilities: Sequence[float] = DEFAULT_PROBABILITIES,
    year_start_month: int = 1,
) -> IntervalResult:
    view = Bucket(view)
    probs = validate_probabilities(probabilities)
    values = matrix.variable(variable)
    if values.shape[0] != matrix.n_days:
        raise AssemblyError(f"{variable} matrix has {values.shape[0]} rows, spine has {matrix.n_days}")

    ens = aggregate(values, matrix.dates, matrix.dec_year, view, year_start_month=year_start_month)
    det = aggregate(matrix.estimate(variable), matrix.dates, matrix.dec_year, view,
                    year_start_month=year_start_month)
    if ens.values.shape[0] != det.values.shape[0]:
        raise AssemblyError(
            f"{view.value}: {ens.values.shape[0]} ensemble buckets vs {det.values.shape[0]} deterministic"
        )
    q = summarize(ens.values, probs)
    return IntervalResult(
        view=view,
        variable=variable,
        probabilities=probs,
        keys=ens.keys,
        dec_year=_frozen(ens.dec_year),
        n_days=np.asarray(ens.n_days).copy(),
        quantiles=_frozen(q),
        estimate=_frozen(det.values[:, 0]),
    )


def daily_pi(matrix: ReplicateMatrix, *, variable: str = "flux",
             probabilities: Sequence[float] = DEFAULT_PROBABILITIES) -> IntervalResult:
    return interval(matrix, Bucket.DAILY, variable=variable, probabilities=probabilities)


def monthly_pi(matrix: ReplicateMatrix, *, variable: str = "flux",
               probabilities: Sequence[float] = DEFAULT_PROBABILITIES) -> IntervalResult:
    return interval(matrix, Bucket.MONTHLY, variable=variable, probabilities=probabilities)


def annual_pi(matrix: ReplicateMatrix, *, variable: str = "flux",
              probabilities: Sequence[float] = DEFAULT_PROBABILITIES,
              year_start_month: int = 1) -> IntervalResult:
    return interval(matrix, Bucket.ANNUAL, variable=variable, probabilities=probabilities,
                    year_start_month=year_start_month)


def cumulative_pi(matrix: ReplicateMatrix, *, variable: str = "flux",
                  probabilities: Sequence[float] = DEFAULT_PROBABILITIES) -> IntervalResult:
    return interval(matrix, Bucket.CUMULATIVE, variable=variable, probabilities=probabilities)


def prediction_intervals(
    matrix: ReplicateMatrix,
    *,
    views: Iterable[Bucket | str] = tuple(Bucket),
    variables: Iterable[str] = ("conc", "flux"),
    probabilities: Sequence[float] = DEFAULT_PROBABILITIES,
    year_start_month: int = 1,
) -> Dict[Tuple[str, str], IntervalResult]:
    """All requested (view, variable) pairs, keyed by (view.value, variable)."""
    out: Dict[Tuple[str, str], IntervalResult] = {}
    for view in views:
        view = Bucket(view)
        for var in variables:
            out[(view.value, var)] = interval(
                matrix, view, variable=var, probabilities=probabilities, year_start_month=year_start_month
            )
    return out
