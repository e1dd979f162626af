#!/usr/bin/env python
from __future__ import annotations

import argparse
from pathlib import Path
import sys
from typing import List

import numpy as np
import pandas as pd

# allow running without installing the package
ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT / "src"))

from da_ofdma_des.errors import HorizonTooLongError, SolverError
from da_ofdma_des.mcf import sweep_supply
from da_ofdma_des.models import Station
from da_ofdma_des.ru import size_rus
from da_ofdma_des.schedule import generate_packet_schedule
from da_ofdma_des.solvers import IlpSolver, MatchingSolver


PERIODS = (1, 2, 4, 8)


def _random_stations(rng: np.random.Generator, n_stations: int) -> List[Station]:
    return [
        Station(
            station_id=i,
            period=int(rng.choice(PERIODS)),
            deadline=int(rng.integers(0, 4)),
            penalty=int(rng.integers(1, 21)),
        )
        for i in range(n_stations)
    ]


def main() -> None:
    ap = argparse.ArgumentParser(description="Check that the solver backends reach the same optimum.")
    ap.add_argument("--instances", type=int, default=20)
    ap.add_argument("--max_stations", type=int, default=5)
    ap.add_argument("--channel_width", type=int, default=40, choices=[20, 40])
    ap.add_argument("--seed", type=int, default=42)
    ap.add_argument("--with_ilp", action="store_true", help="Also run the external ILP process (needs OR-Tools).")
    ap.add_argument("--out", type=str, default=str(ROOT / "results" / "backend_agreement.csv"))
    args = ap.parse_args()

    rng = np.random.default_rng(args.seed)
    matching = MatchingSolver()
    ilp = IlpSolver(timeout_s=120.0) if args.with_ilp else None

    rows = []
    for k in range(args.instances):
        stations = _random_stations(rng, int(rng.integers(1, args.max_stations + 1)))
        try:
            schedule = generate_packet_schedule(stations, start_round=0)
        except HorizonTooLongError:
            continue
        # Pin a large RU so that rounds are actually contended
        ru_type = int(rng.choice([242, 484])) if args.channel_width == 40 else 242
        sizing = size_rus(args.channel_width, schedule.packets_per_schedule, ru_type)

        row = {
            "instance": k,
            "stations": len(stations),
            "rounds": schedule.rounds_per_schedule,
            "packets": schedule.packets_per_schedule,
            "rus_per_round": sizing.rus_per_round,
            "matching": matching.solve(schedule, sizing).total_weight,
        }

        triples = [(e.arrival_round, e.deadline_round, e.penalty) for e in schedule.entries]
        row["mcf"] = sweep_supply(schedule.rounds_per_schedule, sizing.rus_per_round, triples).total_weight

        if ilp is not None:
            try:
                row["ilp"] = ilp.solve(schedule, sizing).total_weight
            except SolverError as exc:
                print(f"[WARN] instance {k}: ILP failed ({exc})")
                row["ilp"] = np.nan

        values = [v for key, v in row.items() if key in ("matching", "mcf", "ilp") and not pd.isna(v)]
        row["agree"] = len(set(values)) == 1
        rows.append(row)

    df = pd.DataFrame(rows)
    out = Path(args.out)
    out.parent.mkdir(parents=True, exist_ok=True)
    df.to_csv(out, index=False)

    n_bad = int((~df["agree"]).sum()) if not df.empty else 0
    print(df.to_string(index=False))
    if n_bad:
        print(f"[WARN] {n_bad} of {len(df)} instances disagree")
    print(f"[OK] Wrote: {out}")


if __name__ == "__main__":
    main()
