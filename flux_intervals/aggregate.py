from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

import numpy as np
import pandas as pd

from .errors import AssemblyError


class Bucket(str, Enum):
    DAILY = "daily"
    MONTHLY = "monthly"
    ANNUAL = "annual"
    CUMULATIVE = "cumulative"


@dataclass(frozen=True)
class Aggregated:
    keys: pd.Index
    dec_year: np.ndarray
    n_days: np.ndarray
    values: np.ndarray  # (n_buckets, n_columns)


def annual_labels(dates: pd.DatetimeIndex, year_start_month: int = 1) -> np.ndarray:
    """Year each day belongs to; with a non-January start the year is named after the one it ends in."""
    year = dates.year.to_numpy()
    if year_start_month == 1:
        return year
    return year + (dates.month.to_numpy() >= year_start_month).astype(year.dtype)


def bucket_keys(dates, bucket: Bucket | str, year_start_month: int = 1) -> pd.Index:
    """Per-day grouping key for a view."""
    bucket = Bucket(bucket)
    dates = pd.DatetimeIndex(dates)
    if bucket in (Bucket.DAILY, Bucket.CUMULATIVE):
        return dates
    if bucket is Bucket.MONTHLY:
        return dates.to_period("M")
    return pd.Index(annual_labels(dates, year_start_month), name="year")


def _run_starts(keys: pd.Index) -> np.ndarray:
    codes, _ = pd.factorize(keys, sort=False)
    if codes.size == 0:
        return np.array([], dtype=int)
    change = np.flatnonzero(np.diff(codes) != 0) + 1
    starts = np.concatenate([[0], change])
    if len(starts) != len(np.unique(codes)):
        raise AssemblyError("bucket keys are not contiguous; daily rows must be in calendar order")
    return starts


def cumulative(values: np.ndarray) -> np.ndarray:
    """Per-column running total in calendar order (each replicate on its own)."""
    values = np.asarray(values, dtype=float)
    return np.cumsum(values, axis=0)


def aggregate(
    values: np.ndarray,
    dates,
    dec_year: np.ndarray,
    bucket: Bucket | str,
    *,
    year_start_month: int = 1,
) -> Aggregated:
    """Collapse daily rows of a (n_days, n_columns) array into bucket rows.

    Monthly and annual buckets hold the mean daily rate over the days present
    (bucket sum / days in bucket), so a partial first or last bucket is kept
    and stays on the same scale as full ones. The daily view is the identity
    and the cumulative view is the per-column running total.
    """
    bucket = Bucket(bucket)
    values = np.asarray(values, dtype=float)
    if values.ndim == 1:
        values = values[:, None]
    dates = pd.DatetimeIndex(dates)
    dec_year = np.asarray(dec_year, dtype=float)
    n_days = values.shape[0]
    if len(dates) != n_days or dec_year.size != n_days:
        raise AssemblyError(
            f"{n_days} value rows but {len(dates)} dates and {dec_year.size} decimal years"
        )

    if bucket is Bucket.DAILY:
        return Aggregated(dates, dec_year, np.ones(n_days, dtype=int), values)
    if bucket is Bucket.CUMULATIVE:
        return Aggregated(dates, dec_year, np.arange(1, n_days + 1), cumulative(values))

    keys = bucket_keys(dates, bucket, year_start_month)
    starts = _run_starts(keys)
    counts = np.diff(np.append(starts, n_days))
    sums = np.add.reduceat(values, starts, axis=0)
    means = sums / counts[:, None]
    mid = np.add.reduceat(dec_year, starts) / counts
    return Aggregated(keys[starts], mid, counts, means)
