"""Deadline-aware packet-to-round integer program.

Run as a separate process by `solvers.IlpSolver`:

    deadline_aware_ilp rounds packets ruTypeIndex totalTones [arrival deadline penalty]*

Rounds are relative to the start of the horizon. The decision is written to
`ilp.output` in the working directory, one `packetIndex,round` line per
served packet.
"""
from __future__ import annotations

import argparse
import sys
import time
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple

from ortools.linear_solver import pywraplp

from .errors import ConfigError, SolverError
from .ru import rus_for_index


Triple = Tuple[int, int, int]

MIP_BACKENDS = ("SCIP", "CBC")


def _create_solver() -> pywraplp.Solver:
    for backend in MIP_BACKENDS:
        solver = pywraplp.Solver.CreateSolver(backend)
        if solver is not None:
            return solver
    raise SolverError(f"OR-Tools offers none of the MIP backends {MIP_BACKENDS}")


def solve_ilp(
    rounds: int,
    rus: int,
    triples: Sequence[Triple],
    time_limit_s: Optional[float] = None,
) -> Dict[int, int]:
    """Maximise the served penalty; return packet index -> round.

    x[i, j] is 1 when packet i is sent in round j. Each packet is sent at
    most once, each round carries at most `rus` packets, and only rounds in
    [arrival, deadline] within [0, rounds) get a variable at all.
    """
    solver = _create_solver()
    if time_limit_s is not None:
        solver.SetTimeLimit(int(float(time_limit_s) * 1000))

    x: Dict[Tuple[int, int], pywraplp.Variable] = {}
    per_packet: Dict[int, List[pywraplp.Variable]] = {}
    per_round: Dict[int, List[pywraplp.Variable]] = {}
    for i, (arrival, deadline, _) in enumerate(triples):
        for j in range(max(int(arrival), 0), min(int(deadline), int(rounds) - 1) + 1):
            var = solver.BoolVar(f"x_{i}_{j}")
            x[i, j] = var
            per_packet.setdefault(i, []).append(var)
            per_round.setdefault(j, []).append(var)

    if not x:
        return {}

    for row in per_packet.values():
        solver.Add(solver.Sum(row) <= 1)
    for column in per_round.values():
        solver.Add(solver.Sum(column) <= int(rus))

    solver.Maximize(solver.Sum([int(triples[i][2]) * var for (i, _), var in x.items()]))

    status = solver.Solve()
    if status != pywraplp.Solver.OPTIMAL:
        raise SolverError(f"ILP did not reach optimality (status {status})")

    mapping = {i: j for (i, j), var in x.items() if var.solution_value() > 0.5}
    return dict(sorted(mapping.items()))


def parse_triples(values: Sequence[int], packets: int) -> List[Triple]:
    if len(values) != 3 * int(packets):
        raise ConfigError(f"expected {3 * int(packets)} schedule values for {packets} packets, got {len(values)}")
    return [(int(values[k]), int(values[k + 1]), int(values[k + 2])) for k in range(0, len(values), 3)]


def write_mapping(path: Path, mapping: Dict[int, int]) -> None:
    with path.open("w", encoding="utf-8") as f:
        for packet, rnd in sorted(mapping.items()):
            f.write(f"{packet},{rnd}\n")


def main(argv: Optional[Sequence[str]] = None) -> int:
    ap = argparse.ArgumentParser(prog="deadline_aware_ilp", description=__doc__.splitlines()[0])
    ap.add_argument("rounds", type=int)
    ap.add_argument("packets", type=int)
    ap.add_argument("ru_type_index", type=int)
    ap.add_argument("total_tones", type=int)
    ap.add_argument("schedule", type=int, nargs="*", help="arrival deadline penalty, per packet")
    ap.add_argument("--output", type=str, default="ilp.output")
    ap.add_argument("--time_limit_s", type=float, default=None)
    args = ap.parse_args(argv)

    try:
        rus = rus_for_index(args.total_tones, args.ru_type_index)
        triples = parse_triples(args.schedule, args.packets)
    except ConfigError as exc:
        ap.error(str(exc))

    start = time.perf_counter()
    try:
        mapping = solve_ilp(args.rounds, rus, triples, time_limit_s=args.time_limit_s)
    except SolverError as exc:
        print(f"[ERROR] {exc}", file=sys.stderr)
        return 1
    elapsed_ms = (time.perf_counter() - start) * 1000.0

    write_mapping(Path(args.output), mapping)
    value = sum(triples[i][2] for i in mapping)
    print(f"Optimal Value = {value}")
    print(f"Execution Time: {elapsed_ms:.0f} ms | matched {len(mapping)}/{args.packets}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
