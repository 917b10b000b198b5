from __future__ import annotations

import threading
from typing import Dict, Iterable, Optional, Tuple

import numpy as np
import pandas as pd
import pytest

from flux_intervals.ci_spec import IntervalSpec
from flux_intervals.daily import DAILY_COLUMNS, decimal_year
from flux_intervals.errors import EstimationFailure

FLUX_FACTOR = 86.4


def make_spine(
    n_days: int = 10,
    *,
    start: str = "2001-01-01",
    q: float = 10.0,
    flux: float = 100.0,
    se: float = 0.05,
    obs: Optional[Dict[int, Tuple[float, bool]]] = None,
) -> pd.DataFrame:
    """Constant-flux daily table; ``obs`` maps row -> (value, censored)."""
    dates = pd.date_range(start, periods=n_days, freq="D")
    conc = flux / (q * FLUX_FACTOR)
    df = pd.DataFrame({
        "Date": dates,
        "DecYear": decimal_year(dates),
        "Q": np.full(n_days, q),
        "yHat": np.full(n_days, np.log(conc)),
        "SE": np.full(n_days, se),
        "ConcDay": np.full(n_days, conc),
        "FluxDay": np.full(n_days, conc * q * FLUX_FACTOR),
        "ObsConc": np.full(n_days, np.nan),
        "ObsCensored": np.zeros(n_days, dtype=bool),
    })
    for row, (value, censored) in (obs or {}).items():
        df.loc[row, "ObsConc"] = value
        df.loc[row, "ObsCensored"] = censored
    return df[DAILY_COLUMNS]


def make_sample(spine: pd.DataFrame, every: int = 3, censored: Iterable[int] = ()) -> pd.DataFrame:
    rows = np.arange(0, len(spine), every)
    censored = set(censored)
    return pd.DataFrame({
        "Date": spine["Date"].iloc[rows].to_numpy(),
        "DecYear": spine["DecYear"].iloc[rows].to_numpy(),
        "Q": spine["Q"].iloc[rows].to_numpy(),
        "Conc": spine["ConcDay"].iloc[rows].to_numpy(),
        "Censored": [i in censored for i in range(len(rows))],
    })


class FixedEstimator:
    """Returns the same daily table for every resample; fails on chosen call numbers."""

    def __init__(self, table: pd.DataFrame, fail_calls: Iterable[int] = (), misalign_calls: Iterable[int] = ()):
        self.table = table
        self.fail_calls = set(fail_calls)
        self.misalign_calls = set(misalign_calls)
        self.calls = 0
        self._lock = threading.Lock()

    def fit(self, sample: pd.DataFrame) -> pd.DataFrame:
        with self._lock:
            call = self.calls
            self.calls += 1
        if call in self.fail_calls:
            raise EstimationFailure(f"injected failure on call {call}")
        if call in self.misalign_calls:
            return self.table.iloc[1:].reset_index(drop=True)
        return self.table.copy()


@pytest.fixture
def spine10() -> pd.DataFrame:
    return make_spine(10)


@pytest.fixture
def spec() -> IntervalSpec:
    return IntervalSpec(n_boot=10, n_kalman=10, rho=0.9, seed=42)


@pytest.fixture
def rng() -> np.random.Generator:
    return np.random.default_rng(12345)


@pytest.fixture
def regression_data() -> Tuple[pd.DataFrame, pd.DataFrame]:
    """Six years of synthetic daily discharge and ~monthly samples from a known log-log model."""
    gen = np.random.default_rng(7)
    dates = pd.date_range("2000-01-01", "2005-12-31", freq="D")
    dec = decimal_year(dates)
    n = len(dates)
    log_q = 2.0 + 0.5 * np.sin(2 * np.pi * dec) + gen.normal(0, 0.4, n)
    daily_q = pd.DataFrame({"Date": dates, "DecYear": dec, "Q": np.exp(log_q)})

    rows = np.sort(gen.choice(n, size=150, replace=False))
    t = dec[rows] - dec.mean()
    log_c = (-1.0 + 0.6 * log_q[rows] - 0.05 * t + 0.3 * np.sin(2 * np.pi * dec[rows])
             + gen.normal(0, 0.2, rows.size))
    sample = pd.DataFrame({
        "Date": dates[rows],
        "DecYear": dec[rows],
        "Q": np.exp(log_q[rows]),
        "Conc": np.exp(log_c),
        "Censored": np.zeros(rows.size, dtype=bool),
    })
    return daily_q, sample
