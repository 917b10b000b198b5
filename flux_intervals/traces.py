"""
Stochastic daily traces of concentration and flux.

Each trace is one plausible realization of the true daily record given a
(re-)estimated daily table. Departures from the estimator's log-space mean are
modelled as a standardized AR(1) process with lag-one correlation ``rho``,
conditioned on the days that were actually sampled:

* uncensored sample: the standardized residual is known, the trace passes
  exactly through the observed value;
* censored sample: the standardized residual is drawn from a standard normal
  truncated above at the detection limit, independently per trace;
* other days: Gaussian bridge between the neighbouring sampled days,
  obtained by correcting an unconditional AR(1) path with the kriging weights
  of :func:`bridge_weights`.

Concentration is ``exp(yHat + x * SE)``; flux is concentration times the day's
discharge times the unit factor, from the same trace.
"""

from __future__ import annotations

import math
from typing import Optional, Tuple

import numpy as np
import pandas as pd
from scipy import signal, stats

from .errors import AssemblyError, ConfigurationError

_TINY = np.finfo(float).tiny


def check_rho(rho: float) -> float:
    rho = float(rho)
    if not math.isfinite(rho) or rho < 0.0 or rho >= 1.0:
        raise ConfigurationError(f"rho must be in [0, 1), got {rho!r}")
    return rho


def ar1_series(n_days: int, n_traces: int, rho: float, rng: np.random.Generator) -> np.ndarray:
    """Stationary unit-variance AR(1) paths, one per column."""
    e = rng.standard_normal((n_days, n_traces))
    if rho == 0.0:
        return e
    b = math.sqrt(1.0 - rho * rho)
    # zi = rho * z[-1] with z[-1] ~ N(0, 1) starts every path in the stationary state
    zi = rho * rng.standard_normal((1, n_traces))
    z, _ = signal.lfilter([b], [1.0, -rho], e, axis=0, zi=zi)
    return z


def bridge_weights(known: np.ndarray, rho: float) -> Tuple[np.ndarray, np.ndarray, np.ndarray, np.ndarray]:
    """Conditioning weights of every day on its previous/next known day.

    Returns (prev_idx, next_idx, w_prev, w_next). Indices are clipped into
    range; the matching weight is 0 where a neighbour does not exist and on
    the known days themselves.
    """
    known = np.asarray(known, dtype=bool)
    n = known.size
    pos = np.arange(n)
    prev = np.maximum.accumulate(np.where(known, pos, -1))
    nxt = np.minimum.accumulate(np.where(known, pos, n)[::-1])[::-1]
    has_prev = prev >= 0
    has_next = nxt < n

    d1 = (pos - prev).astype(float)
    d2 = (nxt - pos).astype(float)
    w_prev = np.zeros(n)
    w_next = np.zeros(n)

    both = has_prev & has_next & ~known
    if both.any():
        a, b = d1[both], d2[both]
        denom = 1.0 - np.power(rho, 2.0 * (a + b))
        w_prev[both] = np.power(rho, a) * (1.0 - np.power(rho, 2.0 * b)) / denom
        w_next[both] = np.power(rho, b) * (1.0 - np.power(rho, 2.0 * a)) / denom
    only_prev = has_prev & ~has_next
    w_prev[only_prev] = np.power(rho, d1[only_prev])
    only_next = has_next & ~has_prev
    w_next[only_next] = np.power(rho, d2[only_next])

    return np.clip(prev, 0, n - 1), np.clip(nxt, 0, n - 1), w_prev, w_next


def truncated_normal_below(upper: np.ndarray, n_traces: int, rng: np.random.Generator) -> np.ndarray:
    """Standard normal draws truncated to (-inf, upper], by inverse CDF; shape (len(upper), n_traces)."""
    upper = np.asarray(upper, dtype=float)
    p_u = stats.norm.cdf(upper)
    u = rng.uniform(size=(upper.size, n_traces)) * p_u[:, None]
    x = stats.norm.ppf(np.clip(u, _TINY, None))
    return np.minimum(x, upper[:, None])


class TraceSynthesizer:
    def __init__(self, rho: float = 0.9, flux_factor: float = 86.4) -> None:
        self.rho = check_rho(rho)
        self.flux_factor = float(flux_factor)

    def standardized_observations(
        self, table: pd.DataFrame, n_traces: int, rng: np.random.Generator
    ) -> Tuple[np.ndarray, np.ndarray]:
        """Known standardized residuals: (known mask, values[n_days, n_traces])."""
        y_hat = table["yHat"].to_numpy(dtype=float)
        se = table["SE"].to_numpy(dtype=float)
        obs = table["ObsConc"].to_numpy(dtype=float)
        censored = table["ObsCensored"].to_numpy(dtype=bool)
        known = np.isfinite(obs)

        xk = np.zeros((len(table), n_traces))
        positive_se = se > 0

        unc = known & ~censored & positive_se
        if unc.any():
            xk[unc] = ((np.log(obs[unc]) - y_hat[unc]) / se[unc])[:, None]

        cen = known & censored & positive_se
        if cen.any():
            upper = (np.log(obs[cen]) - y_hat[cen]) / se[cen]
            xk[cen] = truncated_normal_below(upper, n_traces, rng)
        return known, xk

    def synthesize(
        self,
        table: pd.DataFrame,
        n_kalman: int,
        rng: np.random.Generator,
        *,
        out_conc: Optional[np.ndarray] = None,
        out_flux: Optional[np.ndarray] = None,
    ) -> Tuple[np.ndarray, np.ndarray]:
        """Draw ``n_kalman`` concentration and flux traces for one daily table.

        When ``out_conc`` / ``out_flux`` are given (views into a pre-allocated
        replicate matrix) the traces are written there and those views returned.
        """
        n_days = len(table)
        if n_kalman <= 0:
            raise ConfigurationError(f"n_kalman must be > 0, got {n_kalman}")
        for out in (out_conc, out_flux):
            if out is not None and out.shape != (n_days, n_kalman):
                raise AssemblyError(f"output block has shape {out.shape}, expected {(n_days, n_kalman)}")

        y_hat = table["yHat"].to_numpy(dtype=float)
        se = table["SE"].to_numpy(dtype=float)
        q = table["Q"].to_numpy(dtype=float)
        obs = table["ObsConc"].to_numpy(dtype=float)
        censored = table["ObsCensored"].to_numpy(dtype=bool)

        known, xk = self.standardized_observations(table, n_kalman, rng)
        z = ar1_series(n_days, n_kalman, self.rho, rng)

        if known.any():
            prev_idx, next_idx, w_prev, w_next = bridge_weights(known, self.rho)
            x = (
                z
                + w_prev[:, None] * (xk[prev_idx] - z[prev_idx])
                + w_next[:, None] * (xk[next_idx] - z[next_idx])
            )
            x[known] = xk[known]
        else:
            x = z

        conc = np.exp(y_hat[:, None] + x * se[:, None])
        pinned = known & ~censored
        conc[pinned] = obs[pinned][:, None]
        cen = known & censored
        if cen.any():
            conc[cen] = np.minimum(conc[cen], obs[cen][:, None])

        flux = conc * (q * self.flux_factor)[:, None]

        if out_conc is not None:
            out_conc[...] = conc
            conc = out_conc
        if out_flux is not None:
            out_flux[...] = flux
            flux = out_flux
        return conc, flux
