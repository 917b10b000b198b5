#!/usr/bin/env python
from __future__ import annotations

import argparse
from pathlib import Path
import sys
from typing import Optional, Sequence


def _add_project_to_sys_path(config_path: Path) -> None:
    base = config_path.resolve().parent
    project_root = (base / '..').resolve()
    sys.path.insert(0, str(project_root))


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Daily/monthly/annual/cumulative prediction intervals")
    parser.add_argument(
        "--config",
        type=Path,
        default=Path(__file__).resolve().parent.parent / "config" / "config.yaml",
        help="Path to YAML config",
    )
    parser.add_argument("--daily", type=Path, default=None, help="Daily discharge CSV (overrides paths.daily_csv)")
    parser.add_argument("--sample", type=Path, default=None, help="Sample CSV (overrides paths.sample_csv)")
    parser.add_argument("--out", type=Path, default=None, help="Output folder (overrides paths.outputs_root)")
    parser.add_argument("--save-replicates", action="store_true", help="Also write the replicate matrix (.npz)")
    args = parser.parse_args(argv)

    _add_project_to_sys_path(args.config)

    from flux_intervals import utils, ci_spec, daily, estimator, intervals, mc_engine, stats, storage

    config = utils.load_config(args.config)
    log = utils.get_logger(__name__, config)
    log.info("Loaded config from %s", args.config)

    paths = utils.get_paths(config)
    daily_csv = args.daily or paths["daily_csv"]
    sample_csv = args.sample or paths["sample_csv"]
    out_dir = utils.ensure_dir(args.out or paths["outputs_root"])
    if daily_csv is None or sample_csv is None:
        log.error("Both a daily discharge CSV and a sample CSV are required")
        return 2

    spec = ci_spec.from_dict(config.get("intervals", {}))
    cols = config.get("columns", {}) or {}
    daily_q = daily.load_daily_csv(
        daily_csv,
        date_col=cols.get("daily_date", "Date"),
        q_col=cols.get("daily_q", "Q"),
        q_factor=float(cols.get("q_factor", 1.0)),
    )
    sample = daily.load_sample_csv(
        sample_csv,
        daily_q,
        date_col=cols.get("sample_date", "Date"),
        conc_col=cols.get("sample_conc", "Conc"),
        remark_col=cols.get("sample_remark", "Remark"),
    )
    log.info("Daily record %s .. %s (%s days) | %s sampling events",
             daily_q["Date"].iloc[0].date(), daily_q["Date"].iloc[-1].date(), len(daily_q), len(sample))

    model = estimator.SeasonalRegressionEstimator(
        daily_q,
        flux_factor=spec.flux_factor,
        min_uncensored=int(config.get("estimator", {}).get("min_uncensored", 10)),
        config=config,
    )
    run = mc_engine.run_ensemble(spec=spec, estimator=model, sample=sample, config=config)

    if args.save_replicates or paths["replicates_file"]:
        target = paths["replicates_file"] or out_dir / f"replicates_{run.run_id}.npz"
        saved = storage.save_replicates(run.matrix, target)
        log.info("Replicates saved to %s", saved)

    results = intervals.prediction_intervals(
        run.matrix,
        probabilities=spec.probabilities,
        year_start_month=spec.year_start_month,
    )
    for (view, var), res in results.items():
        target = out_dir / f"{var}_{view}_pi.csv"
        res.to_frame().to_csv(target, index=False)
        log.info("Wrote %s (%s rows)", target, len(res))
        if view in ("annual", "monthly"):
            log.info("%s", stats.format_stats_text(stats.interval_diagnostics(res), title=f"{var} {view}"))

    total = stats.record_total_summary(run.matrix, "flux")
    log.info("%s", stats.format_stats_text(total, title="Record total flux"))
    log.info("Finished | %s/%s replicates kept", run.matrix.n_boot, spec.n_boot)
    run.matrix.release()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
