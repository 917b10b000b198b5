from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import List, Optional

import numpy as np
import pandas as pd

from .ci_spec import IntervalSpec
from .daily import check_alignment, day_numbers, validate_daily_table
from .errors import ConfigurationError, DataAlignmentError, EstimationFailure
from .estimator import Estimator
from .provenance import ReplicateProvenance
from .utils import get_logger


def spawn_rngs(rng: np.random.Generator, n: int) -> List[np.random.Generator]:
    """Independent child generators, drawn in a fixed order so runs are reproducible."""
    seeds = rng.integers(0, 2**63 - 1, size=int(n), dtype=np.int64)
    return [np.random.default_rng(int(s)) for s in seeds]


def block_sample(sample: pd.DataFrame, block_length: int, rng: np.random.Generator) -> pd.DataFrame:
    """Moving-block bootstrap of sampling events.

    Blocks are calendar windows of ``block_length`` days whose start is drawn
    uniformly from (first day - block_length + 1) .. last day, so the edges of
    the record are reached as often as the middle. Whole blocks are appended
    until the original event count is reached; the result is truncated to that
    count and sorted by date.
    """
    if block_length <= 0:
        raise ConfigurationError(f"block_length must be > 0, got {block_length}")
    s = sample.sort_values("Date", kind="stable").reset_index(drop=True)
    n = len(s)
    if n == 0:
        return s
    days = day_numbers(s["Date"])
    first, last = int(days[0]), int(days[-1])

    picked: List[np.ndarray] = []
    total = 0
    while total < n:
        start = int(rng.integers(first - block_length + 1, last + 1))
        lo = np.searchsorted(days, start, side="left")
        hi = np.searchsorted(days, start + block_length, side="left")
        if hi > lo:
            picked.append(np.arange(lo, hi))
            total += hi - lo
    idx = np.concatenate(picked)[:n]
    return s.iloc[idx].sort_values("Date", kind="stable").reset_index(drop=True)


def simple_sample(sample: pd.DataFrame, rng: np.random.Generator) -> pd.DataFrame:
    """Case resampling of events with replacement."""
    n = len(sample)
    idx = rng.integers(0, n, size=n)
    return sample.iloc[idx].sort_values("Date", kind="stable").reset_index(drop=True)


def jitter_sample(sample: pd.DataFrame, v: float, rng: np.random.Generator) -> pd.DataFrame:
    """Perturb discharge and time of a resample to break ties in small data sets.

    ln Q gets N(0, v * sd(ln Q)) noise and DecYear gets N(0, 0.05) noise.
    """
    out = sample.copy()
    n = len(out)
    log_q = np.log(out["Q"].to_numpy(dtype=float))
    sd = float(np.std(log_q, ddof=1)) if n > 1 else 0.0
    out["Q"] = np.exp(log_q + rng.normal(0.0, v * sd, size=n)) if sd > 0 else out["Q"]
    out["DecYear"] = out["DecYear"].to_numpy(dtype=float) + rng.normal(0.0, 0.05, size=n)
    return out


def check_resample(resample: pd.DataFrame) -> None:
    """Reject resamples the estimator cannot sensibly fit."""
    n_days = len(np.unique(day_numbers(resample["Date"])))
    if n_days < 2:
        raise EstimationFailure(f"resample covers {n_days} distinct sampling day(s)")
    if not (~resample["Censored"].to_numpy(dtype=bool)).any():
        raise EstimationFailure("resample holds no uncensored values")


@dataclass
class AttemptRecord:
    index: int
    success: bool
    table: Optional[pd.DataFrame] = None
    error: Optional[str] = None
    n_events: int = 0
    provenance: Optional[ReplicateProvenance] = None


@dataclass
class BootstrapBatch:
    n_requested: int
    attempts: List[AttemptRecord] = field(default_factory=list)

    @property
    def tables(self) -> List[pd.DataFrame]:
        return [a.table for a in self.attempts if a.success]

    @property
    def n_discarded(self) -> int:
        return sum(1 for a in self.attempts if not a.success)


class ResampledEstimator:
    """Re-fits the estimator on bootstrap resamples of the calibration events.

    Every re-estimated table is checked against the spine and carries the
    spine's original observations, so the traces are conditioned on the real
    samples while the mean and SE reflect the resample.
    """

    def __init__(
        self,
        estimator: Estimator,
        spine: pd.DataFrame,
        sample: pd.DataFrame,
        spec: IntervalSpec,
        *,
        config: Optional[dict] = None,
        run_id: Optional[str] = None,
    ) -> None:
        self.estimator = estimator
        self.spine = validate_daily_table(spine, name="spine")
        self.sample = sample.sort_values("Date", kind="stable").reset_index(drop=True)
        self.spec = spec
        self.run_id = run_id
        self.log = get_logger(__name__, config)

    def resample(self, rng: np.random.Generator) -> pd.DataFrame:
        if self.spec.resample == "simple":
            boot = simple_sample(self.sample, rng)
        else:
            boot = block_sample(self.sample, self.spec.block_length, rng)
        if self.spec.jitter:
            boot = jitter_sample(boot, self.spec.jitter_v, rng)
        return boot

    def _attempt(self, i: int, rng: np.random.Generator) -> AttemptRecord:
        rp = ReplicateProvenance(
            ledger_path=self.spec.ledger_path,
            replicate=i,
            run_id=self.run_id,
            parameters={"resample": self.spec.resample, "block_length": self.spec.block_length,
                        "jitter": self.spec.jitter},
        )
        rec = AttemptRecord(index=i, success=False, provenance=rp)
        try:
            with rp.step("resample", module=__name__) as st:
                boot = self.resample(rng)
                rec.n_events = len(boot)
                st.extra = {"n_events": len(boot), "n_censored": int(boot["Censored"].sum())}
                check_resample(boot)
            with rp.step("fit", module=type(self.estimator).__module__):
                table = self.estimator.fit(boot)
                check_alignment(self.spine, table, name=f"replicate {i}")
                validate_daily_table(table, name=f"replicate {i}")
        except (EstimationFailure, DataAlignmentError) as e:
            rec.error = f"{type(e).__name__}: {e}"
            return rec

        table = table.reset_index(drop=True).copy()
        table["ObsConc"] = self.spine["ObsConc"].to_numpy(dtype=float)
        table["ObsCensored"] = self.spine["ObsCensored"].to_numpy(dtype=bool)
        rec.table = table
        rec.success = True
        return rec

    def generate(self, n_boot: int, rng: np.random.Generator, *, workers: int = 1) -> BootstrapBatch:
        """Run ``n_boot`` resample-and-refit attempts; failures are discarded, not raised."""
        if n_boot <= 0:
            raise ConfigurationError(f"n_boot must be > 0, got {n_boot}")
        rngs = spawn_rngs(rng, n_boot)
        if workers > 1:
            with ThreadPoolExecutor(max_workers=workers) as ex:
                attempts = list(ex.map(self._attempt, range(n_boot), rngs))
        else:
            attempts = [self._attempt(i, r) for i, r in enumerate(rngs)]

        batch = BootstrapBatch(n_requested=n_boot, attempts=attempts)
        for a in attempts:
            if not a.success:
                self.log.warning("Replicate discarded | replicate=%s | %s", a.index, a.error)
        if batch.n_discarded:
            self.log.warning("Bootstrap discards | %s of %s requested", batch.n_discarded, n_boot)
        return batch
