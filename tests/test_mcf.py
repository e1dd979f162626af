import numpy as np
import pytest

from da_ofdma_des.mcf import build_flow_network, main, min_cost_flow, sweep_supply
from da_ofdma_des.models import Station
from da_ofdma_des.schedule import generate_packet_schedule
from da_ofdma_des.solvers import MatchingSolver


EXAMPLE = [(0, 0, 5), (1, 1, 5), (2, 2, 5), (3, 3, 5), (0, 0, 10), (2, 2, 10), (0, 0, 15)]


def test_flow_network_shape():
    g, n_edges = build_flow_network(rounds=4, rus=1, triples=EXAMPLE, supply=3)
    assert n_edges == 7
    assert g.nodes[0]["demand"] == -3
    assert g.nodes[4 + 7 + 1]["demand"] == 3


def test_sweep_finds_default_example_optimum():
    res = sweep_supply(rounds=4, rus=1, triples=EXAMPLE)
    assert res.cost == -35
    assert res.total_weight == 35
    assert res.supply == 4
    assert res.assignments == ((1, 1), (3, 3), (5, 2), (6, 0))
    assert res.total_nodes == 11


def test_infeasible_supply_returns_none():
    assert min_cost_flow(rounds=4, rus=1, triples=EXAMPLE, supply=5) is None


def test_single_supply_level():
    res = sweep_supply(rounds=4, rus=1, triples=EXAMPLE, supplies=[1])
    assert res.cost == -15
    assert res.assignments == ((6, 0),)


def test_cli_writes_mcf_output(tmp_path, monkeypatch, capsys):
    monkeypatch.chdir(tmp_path)
    argv = ["4", "7", "4", "484"] + [str(v) for t in EXAMPLE for v in t]
    assert main(argv) == 0
    out = capsys.readouterr().out
    assert "Global Optimal Value = -35" in out
    assert "Total Edges = 7" in out
    assert (tmp_path / "mcf.output").read_text(encoding="utf-8").split() == ["1,1", "3,3", "5,2", "6,0"]


@pytest.mark.parametrize("seed", range(6))
def test_flow_agrees_with_matching(seed, sizing_with):
    rng = np.random.default_rng(seed)
    stations = [
        Station(i, int(rng.choice([1, 2, 4])), int(rng.integers(0, 3)), int(rng.integers(1, 25)))
        for i in range(int(rng.integers(1, 5)))
    ]
    sched = generate_packet_schedule(stations, start_round=0)
    sizing = sizing_with(int(rng.choice([1, 2])))
    triples = [(e.arrival_round, e.deadline_round, e.penalty) for e in sched.entries]

    flow = sweep_supply(sched.rounds_per_schedule, sizing.rus_per_round, triples)
    assert flow.total_weight == MatchingSolver().solve(sched, sizing).total_weight
