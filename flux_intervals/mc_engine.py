from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Dict, List, Optional

import numpy as np
import pandas as pd

from .ci_spec import IntervalSpec
from .daily import attach_observations, validate_daily_table
from .errors import AssemblyError
from .estimator import Estimator
from .replicates import ReplicateMatrix, assemble
from .resampling import BootstrapBatch, ResampledEstimator, spawn_rngs
from .traces import TraceSynthesizer
from .utils import get_logger


@dataclass
class EnsembleRun:
    run_id: str
    spec: IntervalSpec
    matrix: ReplicateMatrix
    batch: BootstrapBatch
    ledger: List[Dict]

    @property
    def n_discarded(self) -> int:
        return self.batch.n_discarded


def build_spine(estimator: Estimator, sample: pd.DataFrame) -> pd.DataFrame:
    """Deterministic daily table: the estimator fitted on the full calibration sample."""
    spine = estimator.fit(sample.sort_values("Date", kind="stable").reset_index(drop=True))
    spine = attach_observations(spine.drop(columns=["ObsConc", "ObsCensored"], errors="ignore"), sample)
    return validate_daily_table(spine.reset_index(drop=True), name="spine")


def run_ensemble(
    *,
    spec: IntervalSpec,
    estimator: Estimator,
    sample: pd.DataFrame,
    spine: Optional[pd.DataFrame] = None,
    rng: Optional[np.random.Generator] = None,
    config: Optional[Dict] = None,
) -> EnsembleRun:
    """Bootstrap re-estimation followed by AR(1) trace synthesis.

    - spec is validated before anything runs (ConfigurationError)
    - replicates whose resample cannot be fitted are discarded and counted
    - columns of bootstrap replicate i (after discards) are i*n_kalman .. (i+1)*n_kalman - 1
    """
    log = get_logger(__name__, config)
    spec = spec.validate()
    if rng is None:
        rng = np.random.default_rng(spec.seed)
    run_id = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S%f")

    if spine is None:
        spine = build_spine(estimator, sample)
    else:
        spine = validate_daily_table(spine.reset_index(drop=True), name="spine")

    log.info(
        "Ensemble start | run_id=%s | n_boot=%s | n_kalman=%s | rho=%s | days=%s | events=%s | seed=%s",
        run_id, spec.n_boot, spec.n_kalman, spec.rho, len(spine), len(sample), spec.seed,
    )
    rng_boot, rng_trace = spawn_rngs(rng, 2)
    # one trace generator per attempt, so a replicate's traces do not depend on sibling discards
    trace_rngs = spawn_rngs(rng_trace, spec.n_boot)

    resampler = ResampledEstimator(estimator, spine, sample, spec, config=config, run_id=run_id)
    batch = resampler.generate(spec.n_boot, rng_boot, workers=spec.workers)
    ok = [a for a in batch.attempts if a.success]
    if not ok:
        for a in batch.attempts:
            a.provenance.finalize(success=False, error=a.error)
        raise AssemblyError(f"all {spec.n_boot} bootstrap replicates were discarded")

    synthesizer = TraceSynthesizer(rho=spec.rho, flux_factor=spec.flux_factor)
    try:
        matrix = assemble(
            spine,
            [a.table for a in ok],
            synthesizer,
            spec.n_kalman,
            [trace_rngs[a.index] for a in ok],
            workers=spec.workers,
            n_requested=spec.n_boot,
            n_discarded=batch.n_discarded,
            provenance=[a.provenance for a in ok],
        )
    except Exception as e:
        for a in batch.attempts:
            a.provenance.finalize(success=False, error=a.error or f"{type(e).__name__}: {e}")
        raise
    matrix.meta.update({"run_id": run_id, "seed": spec.seed})

    ledger: List[Dict] = []
    block = 0
    for a in batch.attempts:
        rp = a.provenance
        if a.success:
            cols = matrix.block(block)
            ledger.append(rp.finalize(success=True, columns=[cols.start, cols.stop]))
            block += 1
        else:
            ledger.append(rp.finalize(success=False, error=a.error))

    log.info(
        "Ensemble finished | run_id=%s | %s/%s replicates kept | columns=%s | discarded=%s",
        run_id, matrix.n_boot, spec.n_boot, matrix.n_columns, batch.n_discarded,
    )
    if spec.ledger_path:
        log.info("Provenance appended | run_id=%s | ledger=%s", run_id, spec.ledger_path)
    return EnsembleRun(run_id=run_id, spec=spec, matrix=matrix, batch=batch, ledger=ledger)
