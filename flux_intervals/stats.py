from __future__ import annotations

from typing import Dict, Tuple

import numpy as np
import pandas as pd

from .aggregate import Bucket
from .intervals import IntervalResult
from .replicates import ReplicateMatrix


# -----------------------------
# Helpers: safe math
# -----------------------------

def _finite_pairs(y: np.ndarray, m: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    y = np.asarray(y, dtype=float)
    m = np.asarray(m, dtype=float)
    mask = np.isfinite(y) & np.isfinite(m)
    return y[mask], m[mask]


def _coverage(y: np.ndarray, lo: np.ndarray, hi: np.ndarray) -> float:
    y = np.asarray(y, dtype=float)
    lo = np.asarray(lo, dtype=float)
    hi = np.asarray(hi, dtype=float)
    mask = np.isfinite(y) & np.isfinite(lo) & np.isfinite(hi)
    if not np.any(mask):
        return float("nan")
    return float(np.mean((y[mask] >= lo[mask]) & (y[mask] <= hi[mask])))


def _distribution_summary(values: np.ndarray) -> Dict[str, float]:
    arr = np.asarray(values, dtype=float)
    arr = arr[np.isfinite(arr)]
    if arr.size == 0:
        return {"mean": float("nan"), "median": float("nan"), "p05": float("nan"),
                "p95": float("nan"), "sd": float("nan"), "n": 0.0}
    return {
        "mean": float(np.mean(arr)),
        "median": float(np.median(arr)),
        "p05": float(np.percentile(arr, 5)),
        "p95": float(np.percentile(arr, 95)),
        "sd": float(np.std(arr)),
        "n": float(arr.size),
    }


# -----------------------------
# Band metrics
# -----------------------------

def _band_deviation_stats(center: np.ndarray, lo: np.ndarray, hi: np.ndarray) -> Dict[str, float]:
    """How wide the interval is and where the central series sits inside it."""
    center = np.asarray(center, dtype=float)
    lo = np.asarray(lo, dtype=float)
    hi = np.asarray(hi, dtype=float)
    mask = np.isfinite(center) & np.isfinite(lo) & np.isfinite(hi)
    if not np.any(mask):
        return {
            "band_width_mean": float("nan"),
            "band_width_rel%": float("nan"),
            "band_asymmetry": float("nan"),
        }
    c, l, h = center[mask], lo[mask], hi[mask]
    widths = h - l
    with np.errstate(divide="ignore", invalid="ignore"):
        rel = widths / np.abs(c) * 100.0
        # 0 = centred, +1 = at the upper bound, -1 = at the lower bound; zero-width rows are skipped
        asym = 2.0 * (c - l) / widths - 1.0
    rel = rel[np.isfinite(rel)]
    asym = asym[np.isfinite(asym)]
    return {
        "band_width_mean": float(np.mean(widths)),
        "band_width_rel%": float(np.mean(rel)) if rel.size else float("nan"),
        "band_asymmetry": float(np.mean(asym)) if asym.size else float("nan"),
    }


def interval_diagnostics(result: IntervalResult) -> Dict[str, float]:
    """Summary of one interval view: width, asymmetry and coverage of the deterministic estimate."""
    out: Dict[str, float] = {"n_buckets": float(len(result))}
    out.update(_band_deviation_stats(result.estimate, result.low, result.high))
    out["estimate_coverage"] = _coverage(result.estimate, result.low, result.high)
    out["zero_width_buckets"] = float(np.sum(result.high - result.low == 0.0))
    mid_vs_est = _finite_pairs(result.mid, result.estimate)
    if mid_vs_est[0].size:
        with np.errstate(divide="ignore", invalid="ignore"):
            out["mid_vs_estimate_bias%"] = float(
                100.0 * np.sum(mid_vs_est[0] - mid_vs_est[1]) / np.sum(mid_vs_est[1])
            )
    return out


def record_total_summary(matrix: ReplicateMatrix, variable: str = "flux") -> Dict[str, float]:
    """Distribution of the whole-record total across replicates, next to the deterministic total."""
    totals = matrix.variable(variable).sum(axis=0)
    out = _distribution_summary(totals)
    out["estimate"] = float(np.sum(matrix.estimate(variable)))
    return out


def censored_days_above_limit(result: IntervalResult, spine: pd.DataFrame) -> int:
    """Censored sampled days where the deterministic estimate exceeds the reported detection limit."""
    if result.view is not Bucket.DAILY or result.variable != "conc":
        raise ValueError("needs the daily concentration view")
    obs = spine["ObsConc"].to_numpy(dtype=float)
    cen = spine["ObsCensored"].to_numpy(dtype=bool) & np.isfinite(obs)
    return int(np.sum(result.estimate[cen] > obs[cen]))


def format_stats_text(stats: Dict[str, float], *, title: str = "") -> str:
    lines = [title] if title else []
    for key, val in stats.items():
        if isinstance(val, float) and np.isfinite(val):
            lines.append(f"  {key:<24} {val:,.4g}")
        else:
            lines.append(f"  {key:<24} {val}")
    return "\n".join(lines)
