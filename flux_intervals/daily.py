from __future__ import annotations

from pathlib import Path
from typing import Optional, Union

import numpy as np
import pandas as pd

from .errors import DataAlignmentError

DAILY_COLUMNS = [
    "Date", "DecYear", "Q", "yHat", "SE", "ConcDay", "FluxDay", "ObsConc", "ObsCensored",
]

SAMPLE_COLUMNS = ["Date", "DecYear", "Q", "Conc", "Censored"]

# Columns the estimator must fill for every day of the spine
ESTIMATE_COLUMNS = ["Q", "yHat", "SE", "ConcDay", "FluxDay"]


def decimal_year(dates) -> np.ndarray:
    """Decimal year respecting leap years: year + (doy - 1) / days_in_year."""
    dt = pd.DatetimeIndex(pd.to_datetime(dates))
    days_in_year = np.where(dt.is_leap_year, 366.0, 365.0)
    return dt.year.to_numpy(dtype=float) + (dt.dayofyear.to_numpy(dtype=float) - 1.0) / days_in_year


def day_numbers(dates) -> np.ndarray:
    """Whole days since 1970-01-01, independent of the datetime resolution (s, ms, us, ns)."""
    dt = pd.DatetimeIndex(pd.to_datetime(dates)).normalize()
    return dt.to_numpy().astype("datetime64[D]").astype(np.int64)


def validate_daily_table(daily: pd.DataFrame, *, name: str = "daily table") -> pd.DataFrame:
    """Check the spine invariants: required columns, sorted, gap free, finite estimates.

    Returns the table unchanged so the call can be chained.
    """
    missing = [c for c in DAILY_COLUMNS if c not in daily.columns]
    if missing:
        raise DataAlignmentError(f"{name} is missing columns: {missing}")
    if daily.empty:
        raise DataAlignmentError(f"{name} has no rows")

    dates = pd.DatetimeIndex(daily["Date"])
    if dates.hasnans:
        raise DataAlignmentError(f"{name} has missing dates")
    if len(dates) > 1:
        steps = np.diff(day_numbers(dates))
        if not np.all(steps == 1):
            bad = int(np.argmax(steps != 1))
            raise DataAlignmentError(
                f"{name} is not a gap-free sorted daily series (break after {dates[bad].date()})"
            )

    for col in ESTIMATE_COLUMNS:
        arr = daily[col].to_numpy(dtype=float)
        if not np.all(np.isfinite(arr)):
            raise DataAlignmentError(f"{name} has non-finite values in column '{col}'")
    if np.any(daily["SE"].to_numpy(dtype=float) < 0):
        raise DataAlignmentError(f"{name} has negative SE values")

    obs = daily["ObsConc"].to_numpy(dtype=float)
    sampled = np.isfinite(obs)
    if np.any(obs[sampled] <= 0):
        raise DataAlignmentError(f"{name} has non-positive observed concentrations")
    return daily


def check_alignment(spine: pd.DataFrame, table: pd.DataFrame, *, name: str = "re-estimated table") -> None:
    """A re-estimated table must cover exactly the spine's days, in the same order."""
    if len(table) != len(spine):
        raise DataAlignmentError(f"{name} has {len(table)} rows, spine has {len(spine)}")
    if not np.array_equal(day_numbers(spine["Date"]), day_numbers(table["Date"])):
        a = pd.DatetimeIndex(spine["Date"])
        b = pd.DatetimeIndex(table["Date"])
        raise DataAlignmentError(
            f"{name} covers {b.min().date()}..{b.max().date()}, spine covers {a.min().date()}..{a.max().date()}"
        )


def attach_observations(daily: pd.DataFrame, sample: Optional[pd.DataFrame]) -> pd.DataFrame:
    """Collapse sampling events to one observation per day and join them onto the daily table.

    A day with any uncensored event gets the mean of its uncensored values;
    a day with only less-than reports gets the mean detection limit, flagged censored.
    """
    out = daily.copy()
    out["ObsConc"] = np.nan
    out["ObsCensored"] = False
    if sample is None or sample.empty:
        return out

    s = pd.DataFrame({
        "day": day_numbers(sample["Date"]),
        "Conc": sample["Conc"].to_numpy(dtype=float),
        "Censored": sample["Censored"].to_numpy(dtype=bool),
    })
    uncen = s.loc[~s["Censored"]].groupby("day")["Conc"].mean()
    cen = s.loc[s["Censored"]].groupby("day")["Conc"].mean()
    cen = cen.loc[~cen.index.isin(uncen.index)]

    pos = pd.Series(np.arange(len(out)), index=day_numbers(out["Date"]))
    for values, flag in ((uncen, False), (cen, True)):
        hit = values.index.intersection(pos.index)
        if len(hit) == 0:
            continue
        rows = pos.loc[hit].to_numpy()
        out.iloc[rows, out.columns.get_loc("ObsConc")] = values.loc[hit].to_numpy()
        out.iloc[rows, out.columns.get_loc("ObsCensored")] = flag
    return out


def load_daily_csv(
    file_path: Union[str, Path],
    *,
    date_col: str = "Date",
    q_col: str = "Q",
    q_factor: float = 1.0,
) -> pd.DataFrame:
    """
    Load a daily discharge record into a tidy frame with Date, DecYear and Q.

    Parameters
    ----------
    file_path : str or Path
        CSV with one row per day.
    date_col, q_col : str
        Column names of the day and of the discharge.
    q_factor : float, optional
        Multiplier applied to discharge (e.g. 0.0283168 for cfs -> m3/s).

    Returns
    -------
    pd.DataFrame
        Sorted, gap-free Date / DecYear / Q frame.
    """
    df = pd.read_csv(file_path)
    if date_col not in df.columns or q_col not in df.columns:
        raise KeyError(f"Expected columns '{date_col}' and '{q_col}' in {file_path}")
    out = pd.DataFrame({
        "Date": pd.to_datetime(df[date_col]).dt.normalize(),
        "Q": df[q_col].astype(float) * float(q_factor),
    })
    out = out.groupby("Date", as_index=False)["Q"].mean().sort_values("Date").reset_index(drop=True)
    full = pd.date_range(out["Date"].iloc[0], out["Date"].iloc[-1], freq="D")
    if len(full) != len(out):
        raise DataAlignmentError(f"{file_path} has {len(full) - len(out)} missing days of discharge")
    out.insert(1, "DecYear", decimal_year(out["Date"]))
    return out


def load_sample_csv(
    file_path: Union[str, Path],
    daily_q: pd.DataFrame,
    *,
    date_col: str = "Date",
    conc_col: str = "Conc",
    remark_col: Optional[str] = "Remark",
) -> pd.DataFrame:
    """
    Load water-quality sampling events and attach the day's discharge.

    A remark of '<' marks a less-than (censored) report whose value is the
    detection limit. Events outside the discharge record are dropped.
    """
    df = pd.read_csv(file_path)
    if date_col not in df.columns or conc_col not in df.columns:
        raise KeyError(f"Expected columns '{date_col}' and '{conc_col}' in {file_path}")
    censored = np.zeros(len(df), dtype=bool)
    if remark_col and remark_col in df.columns:
        censored = df[remark_col].astype(str).str.strip().eq("<").to_numpy()
    out = pd.DataFrame({
        "Date": pd.to_datetime(df[date_col]).dt.normalize(),
        "Conc": df[conc_col].astype(float),
        "Censored": censored,
    })
    out = out.loc[np.isfinite(out["Conc"]) & (out["Conc"] > 0)]
    q = pd.Series(daily_q["Q"].to_numpy(dtype=float), index=day_numbers(daily_q["Date"]))
    out = out.loc[np.isin(day_numbers(out["Date"]), q.index)].copy()
    out["Q"] = q.loc[day_numbers(out["Date"])].to_numpy()
    out["DecYear"] = decimal_year(out["Date"])
    return out[SAMPLE_COLUMNS].sort_values("Date").reset_index(drop=True)
