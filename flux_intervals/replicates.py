from __future__ import annotations

import contextlib
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence

import numpy as np
import pandas as pd

from .daily import check_alignment
from .errors import AssemblyError
from .provenance import ReplicateProvenance
from .traces import TraceSynthesizer

VARIABLES = ("conc", "flux")


@dataclass
class ReplicateMatrix:
    """Ensemble of daily traces for concentration and flux.

    Rows follow the spine day by day; the columns of bootstrap replicate ``i``
    are the contiguous block ``[i * n_kalman, (i + 1) * n_kalman)``.
    """

    spine: pd.DataFrame
    conc: np.ndarray
    flux: np.ndarray
    n_kalman: int
    n_requested: int = 0
    n_discarded: int = 0
    meta: Dict[str, object] = field(default_factory=dict)

    def __post_init__(self) -> None:
        n_days = len(self.spine)
        for name in VARIABLES:
            arr = getattr(self, name)
            if arr is None:
                continue
            if arr.ndim != 2 or arr.shape[0] != n_days:
                raise AssemblyError(f"{name} matrix has shape {arr.shape}, spine has {n_days} days")
        if self.conc is not None and self.flux is not None and self.conc.shape != self.flux.shape:
            raise AssemblyError(f"conc {self.conc.shape} and flux {self.flux.shape} shapes differ")
        if self.n_kalman <= 0 or self.n_columns % self.n_kalman:
            raise AssemblyError(f"{self.n_columns} columns is not a multiple of n_kalman={self.n_kalman}")

    @property
    def n_days(self) -> int:
        return len(self.spine)

    @property
    def n_columns(self) -> int:
        arr = self.conc if self.conc is not None else self.flux
        return 0 if arr is None else int(arr.shape[1])

    @property
    def n_boot(self) -> int:
        return self.n_columns // self.n_kalman

    @property
    def dates(self) -> pd.DatetimeIndex:
        return pd.DatetimeIndex(self.spine["Date"])

    @property
    def dec_year(self) -> np.ndarray:
        return self.spine["DecYear"].to_numpy(dtype=float)

    def variable(self, name: str) -> np.ndarray:
        if name not in VARIABLES:
            raise KeyError(f"unknown variable '{name}', expected one of {VARIABLES}")
        arr = getattr(self, name)
        if arr is None:
            raise AssemblyError(f"{name} matrix has been released")
        return arr

    def estimate(self, name: str) -> np.ndarray:
        """Deterministic spine series for a variable."""
        col = {"conc": "ConcDay", "flux": "FluxDay"}[name]
        return self.spine[col].to_numpy(dtype=float)

    def block(self, i: int) -> slice:
        if not 0 <= i < self.n_boot:
            raise IndexError(f"replicate {i} out of range [0, {self.n_boot})")
        return slice(i * self.n_kalman, (i + 1) * self.n_kalman)

    def subsample(self, step: int) -> "ReplicateMatrix":
        """Keep every ``step``-th bootstrap replicate (whole column blocks)."""
        if step <= 0:
            raise ValueError(f"step must be > 0, got {step}")
        cols = np.concatenate([np.arange(self.block(i).start, self.block(i).stop)
                               for i in range(0, self.n_boot, step)])
        return ReplicateMatrix(
            spine=self.spine,
            conc=self.conc[:, cols] if self.conc is not None else None,
            flux=self.flux[:, cols] if self.flux is not None else None,
            n_kalman=self.n_kalman,
            n_requested=self.n_requested,
            n_discarded=self.n_discarded,
            meta=dict(self.meta, subsample_step=step),
        )

    def release(self) -> None:
        """Drop the trace buffers once the interval views are computed."""
        self.conc = None
        self.flux = None


def allocate(n_days: int, n_tables: int, n_kalman: int) -> tuple[np.ndarray, np.ndarray]:
    shape = (n_days, n_tables * n_kalman)
    return np.empty(shape, dtype=float), np.empty(shape, dtype=float)


def assemble(
    spine: pd.DataFrame,
    tables: Sequence[pd.DataFrame],
    synthesizer: TraceSynthesizer,
    n_kalman: int,
    rngs: Sequence[np.random.Generator],
    *,
    workers: int = 1,
    n_requested: Optional[int] = None,
    n_discarded: int = 0,
    provenance: Optional[Sequence[ReplicateProvenance]] = None,
) -> ReplicateMatrix:
    """Synthesize ``n_kalman`` traces per table into one pre-allocated matrix per variable.

    Table ``i`` owns the column block ``[i * n_kalman, (i + 1) * n_kalman)``;
    workers only ever write to their own block.
    """
    if not tables:
        raise AssemblyError("no re-estimated tables to assemble (every replicate was discarded)")
    if len(rngs) != len(tables):
        raise AssemblyError(f"{len(rngs)} generators for {len(tables)} tables")
    if provenance is not None and len(provenance) != len(tables):
        raise AssemblyError(f"{len(provenance)} provenance records for {len(tables)} tables")
    step_args = {"n_kalman": n_kalman, "rho": synthesizer.rho, "flux_factor": synthesizer.flux_factor}
    for i, t in enumerate(tables):
        check_alignment(spine, t, name=f"replicate table {i}")

    n_days = len(spine)
    conc, flux = allocate(n_days, len(tables), n_kalman)

    def _fill(i: int) -> int:
        cols = slice(i * n_kalman, (i + 1) * n_kalman)
        step = (
            provenance[i].step("synthesize", module=__name__, args=step_args)
            if provenance is not None
            else contextlib.nullcontext()
        )
        with step:
            synthesizer.synthesize(tables[i], n_kalman, rngs[i], out_conc=conc[:, cols], out_flux=flux[:, cols])
        return i

    if workers > 1:
        with ThreadPoolExecutor(max_workers=workers) as ex:
            done: List[int] = list(ex.map(_fill, range(len(tables))))
    else:
        done = [_fill(i) for i in range(len(tables))]
    if len(done) != len(tables):
        raise AssemblyError(f"{len(done)} of {len(tables)} column blocks were written")

    return ReplicateMatrix(
        spine=spine,
        conc=conc,
        flux=flux,
        n_kalman=n_kalman,
        n_requested=len(tables) + n_discarded if n_requested is None else n_requested,
        n_discarded=n_discarded,
        meta={"rho": synthesizer.rho, "flux_factor": synthesizer.flux_factor},
    )
