from __future__ import annotations

import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Dict, Optional

import yaml


LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"

_LOGGERS: Dict[str, logging.Logger] = {}


def load_config(path: Path) -> Dict[str, Any]:
    """Read the YAML config; relative paths inside it resolve against its folder (``_base_dir``)."""
    path = Path(path).resolve()
    with path.open("r", encoding="utf-8") as f:
        cfg = yaml.safe_load(f) or {}
    if not isinstance(cfg, dict):
        raise ValueError(f"{path} must hold a mapping at the top level, got {type(cfg).__name__}")
    cfg.setdefault("_base_dir", str(path.parent))
    return cfg


def resolve_path(config: Optional[Dict[str, Any]], p: Optional[str | Path]) -> Optional[Path]:
    if not p:
        return None
    base = Path((config or {}).get("_base_dir", "."))
    return (base / p).resolve()


def ensure_dir(p: Path) -> Path:
    p = Path(p)
    p.mkdir(parents=True, exist_ok=True)
    return p


def get_logger(name: Optional[str] = None, config: Optional[Dict[str, Any]] = None) -> logging.Logger:
    """Per-name logger with a console handler and, when ``logging.log_dir`` and
    ``logging.file`` are configured, a rotating file under that folder.

    The first call for a name decides its handlers; later calls return it as is.
    """
    key = name or "flux_intervals"
    if key in _LOGGERS:
        return _LOGGERS[key]

    cfg_log = (config or {}).get("logging", {}) or {}
    level = getattr(logging, str(cfg_log.get("level", "INFO")).upper(), logging.INFO)
    formatter = logging.Formatter(cfg_log.get("format", LOG_FORMAT))

    logger = logging.getLogger(key)
    logger.propagate = False
    logger.setLevel(level)

    handlers: list = [logging.StreamHandler()]
    log_dir = resolve_path(config, cfg_log.get("log_dir"))
    if log_dir is not None and cfg_log.get("file"):
        handlers.append(
            RotatingFileHandler(
                ensure_dir(log_dir) / str(cfg_log["file"]),
                maxBytes=int(cfg_log.get("max_bytes", 2_000_000)),
                backupCount=int(cfg_log.get("backup_count", 3)),
                encoding="utf-8",
            )
        )
    for h in handlers:
        h.setLevel(level)
        h.setFormatter(formatter)
        logger.addHandler(h)

    _LOGGERS[key] = logger
    return logger


def get_paths(config: Dict[str, Any]) -> Dict[str, Optional[Path]]:
    """Input/output locations named under ``paths:``; unset entries are None."""
    paths = config.get("paths", {}) or {}
    return {
        "daily_csv": resolve_path(config, paths.get("daily_csv")),
        "sample_csv": resolve_path(config, paths.get("sample_csv")),
        "outputs_root": resolve_path(config, paths.get("outputs_root", "outputs")),
        "replicates_file": resolve_path(config, paths.get("replicates_file")),
    }
