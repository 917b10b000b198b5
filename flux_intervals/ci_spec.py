from __future__ import annotations

import math
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, Optional, Tuple

from .errors import ConfigurationError


DEFAULT_PROBABILITIES: Tuple[float, ...] = (0.05, 0.5, 0.95)
RESAMPLE_METHODS = ("block", "simple")


@dataclass(frozen=True)
class IntervalSpec:
    n_boot: int = 10
    n_kalman: int = 10
    rho: float = 0.9  # AR(1) lag-one correlation of the standardized residuals
    probabilities: Tuple[float, ...] = DEFAULT_PROBABILITIES
    seed: Optional[int] = None
    resample: str = "block"  # 'block' | 'simple'
    block_length: int = 200  # days
    jitter: bool = False
    jitter_v: float = 0.2
    flux_factor: float = 86.4  # (mg/L) * (m3/s) -> kg/day
    year_start_month: int = 1  # 10 for water years
    workers: int = 1
    ledger_path: Optional[Path] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    @property
    def n_columns(self) -> int:
        return self.n_boot * self.n_kalman

    def validate(self) -> "IntervalSpec":
        """Raise ConfigurationError on the first invalid setting; return self otherwise."""
        if not _is_int(self.n_boot) or self.n_boot <= 0:
            raise ConfigurationError(f"n_boot must be a positive integer, got {self.n_boot!r}")
        if not _is_int(self.n_kalman) or self.n_kalman <= 0:
            raise ConfigurationError(f"n_kalman must be a positive integer, got {self.n_kalman!r}")
        rho = _number("rho", self.rho)
        if rho < 0.0 or rho >= 1.0:
            raise ConfigurationError(f"rho must be in [0, 1), got {self.rho!r}")
        validate_probabilities(self.probabilities)
        if self.resample not in RESAMPLE_METHODS:
            raise ConfigurationError(f"resample must be one of {RESAMPLE_METHODS}, got {self.resample!r}")
        if not _is_int(self.block_length) or self.block_length <= 0:
            raise ConfigurationError(f"block_length must be a positive integer, got {self.block_length!r}")
        if not isinstance(self.jitter, bool):
            raise ConfigurationError(f"jitter must be true or false, got {self.jitter!r}")
        if self.jitter and not _number("jitter_v", self.jitter_v) > 0.0:
            raise ConfigurationError(f"jitter_v must be > 0 when jitter is on, got {self.jitter_v!r}")
        if not _number("flux_factor", self.flux_factor) > 0.0:
            raise ConfigurationError(f"flux_factor must be a positive number, got {self.flux_factor!r}")
        if not _is_int(self.year_start_month) or not 1 <= self.year_start_month <= 12:
            raise ConfigurationError(f"year_start_month must be in 1..12, got {self.year_start_month!r}")
        if not _is_int(self.workers) or self.workers <= 0:
            raise ConfigurationError(f"workers must be a positive integer, got {self.workers!r}")
        return self


def _is_int(v: Any) -> bool:
    return isinstance(v, int) and not isinstance(v, bool)


def _number(name: str, v: Any) -> float:
    if isinstance(v, bool):
        raise ConfigurationError(f"{name} must be a number, got {v!r}")
    try:
        x = float(v)
    except (TypeError, ValueError):
        raise ConfigurationError(f"{name} must be a number, got {v!r}") from None
    if not math.isfinite(x):
        raise ConfigurationError(f"{name} must be finite, got {v!r}")
    return x


_TRUE = {"true", "yes", "on", "1"}
_FALSE = {"false", "no", "off", "0"}


def _flag(name: str, v: Any) -> bool:
    if isinstance(v, bool):
        return v
    if isinstance(v, str) and v.strip().lower() in _TRUE | _FALSE:
        return v.strip().lower() in _TRUE
    if _is_int(v) and v in (0, 1):
        return bool(v)
    raise ConfigurationError(f"{name} must be true or false, got {v!r}")


def validate_probabilities(probabilities) -> Tuple[float, ...]:
    """Probabilities must be non-empty, strictly increasing and inside (0, 1)."""
    if isinstance(probabilities, (str, bytes)) or not isinstance(probabilities, Iterable):
        raise ConfigurationError(f"probabilities must be a sequence of numbers, got {probabilities!r}")
    probs = tuple(_number("probabilities", p) for p in probabilities)
    if not probs:
        raise ConfigurationError("probabilities must not be empty")
    for p in probs:
        if p <= 0.0 or p >= 1.0:
            raise ConfigurationError(f"probabilities must lie in (0, 1), got {p!r}")
    if any(b <= a for a, b in zip(probs, probs[1:])):
        raise ConfigurationError(f"probabilities must be strictly increasing, got {probs!r}")
    return probs


def from_dict(d: Dict[str, Any]) -> IntervalSpec:
    """Build a validated IntervalSpec from the ``intervals:`` config section.

    Also accepts the camelCase keys nBoot, nKalman and blockLength. Every
    malformed value raises ConfigurationError; unknown keys go to ``extra``.
    """
    d = dict(d or {})
    known = {
        "n_boot": d.pop("n_boot", d.pop("nBoot", 10)),
        "n_kalman": d.pop("n_kalman", d.pop("nKalman", 10)),
        "rho": _number("rho", d.pop("rho", 0.9)),
        "probabilities": validate_probabilities(d.pop("probabilities", DEFAULT_PROBABILITIES)),
        "seed": d.pop("seed", None),
        "resample": d.pop("resample", "block"),
        "block_length": d.pop("block_length", d.pop("blockLength", 200)),
        "jitter": _flag("jitter", d.pop("jitter", False)),
        "jitter_v": _number("jitter_v", d.pop("jitter_v", 0.2)),
        "flux_factor": _number("flux_factor", d.pop("flux_factor", 86.4)),
        "year_start_month": d.pop("year_start_month", 1),
        "workers": d.pop("workers", 1),
    }
    if known["seed"] is not None and not _is_int(known["seed"]):
        raise ConfigurationError(f"seed must be an integer or null, got {known['seed']!r}")
    ledger = d.pop("ledger_path", None)
    spec = IntervalSpec(
        **known,
        ledger_path=Path(ledger) if ledger else None,
        extra=d,
    )
    return spec.validate()
