"""
Estimator collaborators.

The interval engine only needs something with ``fit(sample) -> daily table``
(see :class:`Estimator`). :class:`SeasonalRegressionEstimator` is a compact
reference implementation: one global regression

    ln(C) = b0 + b1 ln(Q) + b2 t + b3 sin(2 pi t) + b4 cos(2 pi t) + e,  e ~ N(0, SE^2)

fitted by censored (Tobit) maximum likelihood so that less-than reports enter
as "below the detection limit" rather than as point values. It is enough to
drive the ensemble end to end; production runs plug in a full WRTDS fit.
"""

from __future__ import annotations

from typing import Optional, Protocol, Tuple

import numpy as np
import pandas as pd
from scipy import optimize, stats

from .daily import DAILY_COLUMNS, attach_observations, decimal_year
from .errors import EstimationFailure
from .utils import get_logger


class Estimator(Protocol):
    def fit(self, sample: pd.DataFrame) -> pd.DataFrame:
        """Fit on calibration events and return a daily table over the full record."""
        ...


def _design(log_q: np.ndarray, dec_year: np.ndarray, t_center: float) -> np.ndarray:
    t = dec_year - t_center
    return np.column_stack([
        np.ones_like(t),
        log_q,
        t,
        np.sin(2.0 * np.pi * dec_year),
        np.cos(2.0 * np.pi * dec_year),
    ])


def fit_censored_regression(
    X: np.ndarray,
    y: np.ndarray,
    censored: np.ndarray,
    *,
    maxiter: int = 500,
) -> Tuple[np.ndarray, float]:
    """Tobit fit of y ~ X with left-censored responses (y holds ln(DL) where censored).

    Returns (beta, sigma). Without censored values this is ordinary least squares.
    """
    X = np.asarray(X, dtype=float)
    y = np.asarray(y, dtype=float)
    censored = np.asarray(censored, dtype=bool)
    n, p = X.shape
    uncen = ~censored
    if np.linalg.matrix_rank(X[uncen]) < p:
        raise EstimationFailure(
            f"design matrix of the {int(uncen.sum())} uncensored events is rank deficient"
        )
    if n - p < 1:
        raise EstimationFailure(f"{n} events cannot fit {p} coefficients")

    beta0, *_ = np.linalg.lstsq(X, y, rcond=None)
    resid = y - X @ beta0
    sigma0 = float(np.sqrt(np.sum(resid ** 2) / (n - p)))
    if not censored.any():
        return beta0, sigma0
    sigma0 = max(sigma0, 1e-6)

    def nll(theta: np.ndarray) -> float:
        beta = theta[:p]
        log_sigma = theta[p]
        sigma = np.exp(log_sigma)
        mu = X @ beta
        z = (y - mu) / sigma
        ll = np.sum(stats.norm.logpdf(z[uncen]) - log_sigma)
        ll += np.sum(stats.norm.logcdf(z[censored]))
        return -float(ll)

    res = optimize.minimize(
        nll,
        np.append(beta0, np.log(sigma0)),
        method="BFGS",
        options={"maxiter": maxiter},
    )
    if not np.all(np.isfinite(res.x)):
        raise EstimationFailure(f"censored regression did not converge: {res.message}")
    # BFGS status 2 (precision loss) only counts as converged when the gradient has vanished
    stalled_at_optimum = res.status == 2 and float(np.max(np.abs(res.jac))) <= 1e-3 * n
    if not (res.success or stalled_at_optimum):
        raise EstimationFailure(
            f"censored regression failed after {res.nit} iterations (status {res.status}): {res.message}"
        )
    return res.x[:p], float(np.exp(res.x[p]))


class SeasonalRegressionEstimator:
    """Global seasonal log-log regression of concentration on discharge and time.

    ``daily_q`` is the full daily discharge record (Date, DecYear, Q); every fit
    is evaluated over all of its days.
    """

    def __init__(
        self,
        daily_q: pd.DataFrame,
        *,
        flux_factor: float = 86.4,
        min_uncensored: int = 10,
        config: Optional[dict] = None,
    ) -> None:
        q = daily_q["Q"].to_numpy(dtype=float)
        if not np.all(np.isfinite(q)) or np.any(q <= 0):
            raise ValueError("daily discharge must be finite and strictly positive for a log-log fit")
        self.dates = pd.DatetimeIndex(pd.to_datetime(daily_q["Date"])).normalize()
        self.dec_year = (
            daily_q["DecYear"].to_numpy(dtype=float) if "DecYear" in daily_q.columns else decimal_year(self.dates)
        )
        self.q = q
        self.flux_factor = float(flux_factor)
        self.min_uncensored = int(min_uncensored)
        self.t_center = float(np.mean(self.dec_year))
        self.log = get_logger(__name__, config)

    def fit(self, sample: pd.DataFrame) -> pd.DataFrame:
        censored = sample["Censored"].to_numpy(dtype=bool)
        n_uncen = int((~censored).sum())
        if n_uncen < self.min_uncensored:
            raise EstimationFailure(
                f"only {n_uncen} uncensored events, at least {self.min_uncensored} required"
            )
        conc = sample["Conc"].to_numpy(dtype=float)
        X = _design(
            np.log(sample["Q"].to_numpy(dtype=float)),
            sample["DecYear"].to_numpy(dtype=float),
            self.t_center,
        )
        beta, se = fit_censored_regression(X, np.log(conc), censored)

        Xd = _design(np.log(self.q), self.dec_year, self.t_center)
        y_hat = Xd @ beta
        conc_day = np.exp(y_hat + 0.5 * se ** 2)
        daily = pd.DataFrame({
            "Date": self.dates,
            "DecYear": self.dec_year,
            "Q": self.q,
            "yHat": y_hat,
            "SE": np.full(len(self.q), se),
            "ConcDay": conc_day,
            "FluxDay": conc_day * self.q * self.flux_factor,
        })
        self.log.debug("fit | n=%s | uncensored=%s | SE=%.4f | beta=%s", len(conc), n_uncen, se, np.round(beta, 4))
        return attach_observations(daily, sample)[DAILY_COLUMNS]
