#!/usr/bin/env python
from __future__ import annotations

import argparse
from pathlib import Path
import logging
import sys
from typing import Dict, List

# Allow running without installing the package:
ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT / "src"))

import pandas as pd

from da_ofdma_des.config import load_config, scenarios, schedulers_compared, sim_config_from_dict
from da_ofdma_des.metrics import (
    conservation_violations,
    horizons_frame,
    packets_frame,
    station_table,
    summarize_run,
)
from da_ofdma_des.plots import plot_ru_utilization, plot_station_losses
from da_ofdma_des.sim import run_simulation


def main() -> None:
    ap = argparse.ArgumentParser()
    ap.add_argument("--config", type=str, required=True, help="Path to YAML config (e.g., configs/run_default.yaml)")
    ap.add_argument("--solver", type=str, default=None, choices=["matching", "ilp"],
                    help="Override solver.backend for the DA scheduler.")
    ap.add_argument("--outdir", type=str, default=None, help="Default: results/<run_name>")
    ap.add_argument("--no_plots", action="store_true",
                    help="Disable plot generation (metrics only).")
    ap.add_argument("--log_level", type=str, default="WARNING")

    args = ap.parse_args()
    logging.basicConfig(level=args.log_level.upper(), format="%(levelname)s %(name)s: %(message)s")

    cfg = load_config(args.config)
    run_name = str(cfg["run_name"])
    outdir = Path(args.outdir) if args.outdir else ROOT / "results" / run_name
    outdir.mkdir(parents=True, exist_ok=True)

    policies = schedulers_compared(cfg)
    do_plots = not args.no_plots

    print(f"[INFO] Run: {run_name} | schedulers={policies}")
    if not do_plots:
        print("[INFO] Plots disabled (--no_plots)")

    all_metrics: List[pd.DataFrame] = []

    for scen_name, scen_cfg in scenarios(cfg):
        if args.solver:
            scen_cfg["solver"] = {**(scen_cfg.get("solver") or {}), "backend": args.solver}

        station_tables: Dict[str, pd.DataFrame] = {}
        rounds_by_policy: Dict[str, List[dict]] = {}

        for pol in policies:
            sim_cfg = sim_config_from_dict(scen_cfg, scheduler=pol)
            result = run_simulation(sim_cfg)

            problems = conservation_violations(result)
            if problems:
                print(f"[WARN] {scen_name}/{pol}: {len(problems)} conservation violations, first: {problems[0]}")

            dfm = summarize_run(scenario=scen_name, result=result)
            all_metrics.append(dfm)

            pol_dir = outdir / scen_name / pol
            pol_dir.mkdir(parents=True, exist_ok=True)
            pd.DataFrame(result.rounds).to_csv(pol_dir / "rounds.csv", index=False)
            packets_frame(result).to_csv(pol_dir / "packets.csv", index=False)
            horizons_frame(result).to_csv(pol_dir / "horizons.csv", index=False)

            station_tables[pol] = station_table(result)
            station_tables[pol].to_csv(pol_dir / "stations.csv", index=False)
            rounds_by_policy[pol] = result.rounds

            row = dfm.iloc[0]
            print(
                f"[INFO] {scen_name}/{pol}: packets={row['packets']} transmitted={row['transmitted']} "
                f"dropped={row['dropped']} weighted_loss={row['weighted_loss']:.0f}"
            )

        if do_plots:
            scen_dir = outdir / scen_name
            plot_station_losses(
                station_tables,
                str(scen_dir / f"fig_{scen_name}_station_losses.pdf"),
                title=f"{scen_name}: weighted loss per station",
            )
            plot_ru_utilization(
                rounds_by_policy,
                str(scen_dir / f"fig_{scen_name}_ru_utilization.pdf"),
                title=f"{scen_name}: RU utilization per round",
            )

    metrics = pd.concat(all_metrics, ignore_index=True)
    metrics.to_csv(outdir / "metrics.csv", index=False)

    print(f"[OK] Wrote metrics:\n - {outdir/'metrics.csv'}")
    if do_plots:
        print(f"[OK] Plots written into {outdir}.")


if __name__ == "__main__":
    main()
