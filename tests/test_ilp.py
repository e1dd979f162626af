import os
import sys
from pathlib import Path

import numpy as np
import pytest

pytest.importorskip("ortools")

from da_ofdma_des.ilp import main, parse_triples, solve_ilp
from da_ofdma_des.models import Station
from da_ofdma_des.schedule import generate_packet_schedule
from da_ofdma_des.solvers import IlpSolver, MatchingSolver


EXAMPLE = [(0, 0, 5), (1, 1, 5), (2, 2, 5), (3, 3, 5), (0, 0, 10), (2, 2, 10), (0, 0, 15)]


def test_solve_ilp_default_example():
    mapping = solve_ilp(rounds=4, rus=1, triples=EXAMPLE)
    assert mapping == {1: 1, 3: 3, 5: 2, 6: 0}


def test_solve_ilp_without_reachable_rounds():
    assert solve_ilp(rounds=2, rus=1, triples=[(5, 6, 3)]) == {}


def test_main_writes_output_file(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    argv = ["4", "7", "4", "484"] + [str(v) for t in EXAMPLE for v in t]
    assert main(argv) == 0
    lines = (tmp_path / "ilp.output").read_text(encoding="utf-8").split()
    assert lines == ["1,1", "3,3", "5,2", "6,0"]


def test_main_rejects_short_schedule(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    with pytest.raises(SystemExit):
        main(["4", "2", "4", "484", "0", "0", "5"])


def test_parse_triples():
    assert parse_triples([0, 1, 2, 3, 4, 5], 2) == [(0, 1, 2), (3, 4, 5)]


def test_ilp_process_matches_matching(tmp_path, monkeypatch, sizing_with):
    # the child process must import the package even when it is not installed
    src = Path(__file__).resolve().parents[1] / "src"
    monkeypatch.setenv("PYTHONPATH", os.pathsep.join(filter(None, [str(src), os.environ.get("PYTHONPATH")])))
    stations = [Station(0, 1, 1, 4), Station(1, 2, 0, 9), Station(2, 4, 2, 6)]
    sched = generate_packet_schedule(stations, start_round=8)
    sizing = sizing_with(1)

    ilp = IlpSolver(command=[sys.executable, "-m", "da_ofdma_des.ilp"], workdir=str(tmp_path), timeout_s=120.0)
    a = ilp.solve(sched, sizing)
    b = MatchingSolver().solve(sched, sizing)

    assert a.backend == "ilp"
    assert a.total_weight == b.total_weight
    assert all(sched.contains_round(r) for r in a.packet_to_round.values())


@pytest.mark.parametrize("seed", range(4))
def test_ilp_agrees_with_matching_on_random_horizons(seed, sizing_with):
    rng = np.random.default_rng(100 + seed)
    stations = [
        Station(i, int(rng.choice([1, 2, 4])), int(rng.integers(0, 4)), int(rng.integers(1, 30)))
        for i in range(int(rng.integers(2, 6)))
    ]
    sched = generate_packet_schedule(stations, start_round=0)
    sizing = sizing_with(int(rng.choice([1, 2, 4])))
    triples = [(e.arrival_round, e.deadline_round, e.penalty) for e in sched.entries]

    mapping = solve_ilp(sched.rounds_per_schedule, sizing.rus_per_round, triples)
    ilp_weight = sum(triples[i][2] for i in mapping)
    assert ilp_weight == MatchingSolver().solve(sched, sizing).total_weight
