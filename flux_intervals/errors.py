from __future__ import annotations


class FluxIntervalsError(Exception):
    """Base class for errors raised by the interval pipeline."""


class ConfigurationError(FluxIntervalsError, ValueError):
    """Invalid ensemble/interval settings. Raised before any work starts."""


class EstimationFailure(FluxIntervalsError, RuntimeError):
    """A single bootstrap resample could not be fitted.

    The engine discards the replicate and keeps going.
    """


class DataAlignmentError(FluxIntervalsError, ValueError):
    """A daily table does not line up with the daily spine (dates, length, gaps)."""


class AssemblyError(FluxIntervalsError, RuntimeError):
    """Row/column counts disagree between pipeline stages."""
