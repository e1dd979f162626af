"""Standalone min-cost-flow solver for the packet-to-round problem.

    maximum_weighted_matching rounds packets ruTypeIndex totalTones [arrival deadline weight]*

Example (three stations, one 484-tone RU per round):

    maximum_weighted_matching 4 7 4 484 0 0 5 1 1 5 2 2 5 3 3 5 0 0 10 2 2 10 0 0 15

The network is source -> packet -> (round, RU) slot -> sink, unit
capacities, cost -weight on packet->slot arcs. The sweep over the source
supply keeps the cheapest optimal flow, i.e. the maximum-weight matching.
"""
from __future__ import annotations

import argparse
from dataclasses import dataclass
import sys
import time
from pathlib import Path
from typing import Iterable, List, Optional, Sequence, Tuple

import networkx as nx

from .errors import ConfigError
from .ilp import Triple, parse_triples
from .ru import rus_for_index


@dataclass(frozen=True)
class FlowResult:
    cost: int                                   # negative total weight of the best flow
    supply: int                                 # supply at which the best flow was found
    assignments: Tuple[Tuple[int, int], ...]    # (packetIndex, roundIndex)
    total_nodes: int
    total_edges: int
    elapsed_ms: float = 0.0

    @property
    def total_weight(self) -> int:
        return -int(self.cost)


def build_flow_network(
    rounds: int,
    rus: int,
    triples: Sequence[Triple],
    supply: int,
) -> Tuple[nx.DiGraph, int]:
    """Return the flow network and the number of packet->slot arcs.

    Nodes: 0 is the source, 1..packets the packets, then `rus` slot nodes
    per round, then the sink.
    """
    packets = len(triples)
    sink = packets + rus * rounds + 1

    g = nx.DiGraph()
    g.add_node(0, demand=-int(supply))
    g.add_node(sink, demand=int(supply))

    n_edges = 0
    for i, (arrival, deadline, weight) in enumerate(triples):
        for j in range(int(rounds)):
            if arrival <= j <= deadline:
                first = packets + 1 + j * rus
                for k in range(first, first + rus):
                    g.add_edge(i + 1, k, capacity=1, weight=-int(weight))
                    n_edges += 1

    for i in range(1, packets + 1):
        g.add_edge(0, i, capacity=1, weight=0)
    for k in range(packets + 1, packets + rus * rounds + 1):
        g.add_edge(k, sink, capacity=1, weight=0)
    return g, n_edges


def min_cost_flow(
    rounds: int,
    rus: int,
    triples: Sequence[Triple],
    supply: int,
) -> Optional[FlowResult]:
    """Solve one supply level; None when that much flow cannot be routed."""
    packets = len(triples)
    g, n_edges = build_flow_network(rounds, rus, triples, supply)
    try:
        cost, flow = nx.network_simplex(g)
    except nx.NetworkXUnfeasible:
        return None

    assignments: List[Tuple[int, int]] = []
    for tail in range(1, packets + 1):
        for head, f in flow.get(tail, {}).items():
            if f > 0 and g[tail][head]["weight"] < 0:
                slot = head - packets - 1
                assignments.append((tail - 1, slot // rus))

    return FlowResult(
        cost=int(cost),
        supply=int(supply),
        assignments=tuple(sorted(assignments)),
        total_nodes=packets + rus * rounds,
        total_edges=n_edges,
    )


def sweep_supply(
    rounds: int,
    rus: int,
    triples: Sequence[Triple],
    supplies: Optional[Iterable[int]] = None,
) -> FlowResult:
    """Try every supply level and keep the strictly cheapest flow."""
    packets = len(triples)
    if supplies is None:
        supplies = range(1, packets + 1)

    start = time.perf_counter()
    _, n_edges = build_flow_network(rounds, rus, triples, 0)
    best = FlowResult(
        cost=0,
        supply=0,
        assignments=(),
        total_nodes=packets + rus * rounds,
        total_edges=n_edges,
    )
    for s in supplies:
        res = min_cost_flow(rounds, rus, triples, int(s))
        if res is not None and res.cost < best.cost:
            best = res
    elapsed_ms = (time.perf_counter() - start) * 1000.0
    return FlowResult(
        cost=best.cost,
        supply=best.supply,
        assignments=best.assignments,
        total_nodes=best.total_nodes,
        total_edges=best.total_edges,
        elapsed_ms=elapsed_ms,
    )


def write_assignments(path: Path, assignments: Iterable[Tuple[int, int]]) -> None:
    with path.open("w", encoding="utf-8") as f:
        for packet, rnd in assignments:
            f.write(f"{packet},{rnd}\n")


def main(argv: Optional[Sequence[str]] = None) -> int:
    ap = argparse.ArgumentParser(prog="maximum_weighted_matching", description=__doc__.splitlines()[0])
    ap.add_argument("rounds", type=int)
    ap.add_argument("packets", type=int)
    ap.add_argument("ru_type_index", type=int)
    ap.add_argument("total_tones", type=int)
    ap.add_argument("schedule", type=int, nargs="*", help="arrival deadline weight, per packet")
    ap.add_argument("--supply_flow", type=int, default=None,
                    help="Solve a single supply level instead of sweeping 1..packets.")
    ap.add_argument("--output", type=str, default="mcf.output")
    args = ap.parse_args(argv)

    try:
        rus = rus_for_index(args.total_tones, args.ru_type_index)
        triples = parse_triples(args.schedule, args.packets)
    except ConfigError as exc:
        ap.error(str(exc))

    supplies = None if args.supply_flow is None else [args.supply_flow]
    res = sweep_supply(args.rounds, rus, triples, supplies=supplies)

    print(f"Global Optimal Value = {res.cost}")
    print("==== Performance Metrics ====")
    print(f"Execution Time: {res.elapsed_ms:.0f}")
    print(f"Total Nodes = {res.total_nodes}")
    print(f"Total Edges = {res.total_edges}")

    write_assignments(Path(args.output), res.assignments)
    return 0


if __name__ == "__main__":
    sys.exit(main())
