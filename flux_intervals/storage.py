from __future__ import annotations

import json
from pathlib import Path
from typing import Union

import numpy as np
import pandas as pd

from .daily import check_alignment
from .errors import AssemblyError
from .replicates import ReplicateMatrix
from .utils import ensure_dir


def save_replicates(matrix: ReplicateMatrix, path: Union[str, Path]) -> Path:
    """Write the ensemble to a compressed .npz so several views can be computed later.

    The spine is not stored; only its date range, to check the reload against.
    """
    path = Path(path)
    if path.suffix != ".npz":
        path = path.with_suffix(".npz")
    ensure_dir(path.parent)
    dates = matrix.dates
    meta = {
        "n_kalman": matrix.n_kalman,
        "n_requested": matrix.n_requested,
        "n_discarded": matrix.n_discarded,
        "first_day": str(dates[0].date()),
        "last_day": str(dates[-1].date()),
        "n_days": matrix.n_days,
        "meta": matrix.meta,
    }
    np.savez_compressed(
        path,
        conc=matrix.variable("conc"),
        flux=matrix.variable("flux"),
        meta=np.array(json.dumps(meta, default=str)),
    )
    return path


def load_replicates(path: Union[str, Path], spine: pd.DataFrame) -> ReplicateMatrix:
    with np.load(Path(path), allow_pickle=False) as data:
        meta = json.loads(str(data["meta"]))
        conc = data["conc"]
        flux = data["flux"]
    if conc.shape[0] != len(spine) or meta["n_days"] != len(spine):
        raise AssemblyError(f"stored ensemble has {conc.shape[0]} days, spine has {len(spine)}")
    stored = pd.DataFrame({"Date": pd.date_range(meta["first_day"], meta["last_day"], freq="D")})
    check_alignment(spine, stored, name=f"stored ensemble {path}")
    return ReplicateMatrix(
        spine=spine,
        conc=conc,
        flux=flux,
        n_kalman=int(meta["n_kalman"]),
        n_requested=int(meta["n_requested"]),
        n_discarded=int(meta["n_discarded"]),
        meta=dict(meta.get("meta") or {}),
    )
