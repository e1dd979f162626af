import itertools
import sys
from collections import Counter

import numpy as np
import pytest

from da_ofdma_des.errors import ConfigError, SolverError
from da_ofdma_des.models import Slot, Station
from da_ofdma_des.ru import size_rus
from da_ofdma_des.schedule import generate_packet_schedule
from da_ofdma_des.solvers import (
    IlpSolver,
    MatchingSolver,
    check_assignment,
    fifo_order,
    ilp_arguments,
    make_solver,
    parse_ilp_output,
)


def _brute_force_weight(schedule, rus):
    """Exhaustive optimum for tiny schedules."""
    choices = []
    for i in range(schedule.packets_per_schedule):
        lo, hi = schedule.window(i)
        choices.append([None] + list(range(lo, hi + 1)))
    best = 0
    for combo in itertools.product(*choices):
        load = Counter(r for r in combo if r is not None)
        if any(c > rus for c in load.values()):
            continue
        w = sum(schedule.entries[i].penalty for i, r in enumerate(combo) if r is not None)
        best = max(best, w)
    return best


def _random_stations(rng, n):
    return [
        Station(i, int(rng.choice([1, 2, 4])), int(rng.integers(0, 3)), int(rng.integers(1, 20)))
        for i in range(n)
    ]


def test_highest_penalty_wins_round_zero(three_stations, single_ru):
    sched = generate_packet_schedule(three_stations, start_round=0)
    res = MatchingSolver().solve(sched, single_ru)
    assert res.packet_to_round == {1: 1, 3: 3, 5: 2, 6: 0}
    assert res.total_weight == 35
    assert res.dropped(sched) == [0, 2, 4]
    assert res.per_round_load() == {0: 1, 1: 1, 2: 1, 3: 1}


def test_slack_beyond_period_stays_inside_horizon(single_ru):
    sched = generate_packet_schedule([Station(0, period=1, deadline=5, penalty=3)], start_round=7)
    res = MatchingSolver().solve(sched, single_ru)
    assert res.packet_to_round == {0: 7}


def test_equal_periods_higher_penalty_served(single_ru):
    stations = [Station(0, 1, 0, 3), Station(1, 1, 0, 7)]
    sched = generate_packet_schedule(stations, start_round=0)
    res = MatchingSolver().solve(sched, single_ru)
    assert res.packet_to_round == {1: 0}
    assert res.total_weight == 7


def test_zero_penalty_entry_takes_idle_ru(single_ru):
    stations = [Station(0, period=2, deadline=0, penalty=5), Station(1, period=2, deadline=1, penalty=0)]
    sched = generate_packet_schedule(stations, start_round=0)
    res = MatchingSolver().solve(sched, single_ru)
    assert res.packet_to_round == {0: 0, 1: 1}
    assert res.total_weight == 5


def test_graph_uses_slot_vertices(three_stations, single_ru):
    sched = generate_packet_schedule(three_stations, start_round=0)
    g = MatchingSolver().build_graph(sched, single_ru.rus_per_round)
    slots = {n for n in g.nodes if isinstance(n, Slot)}
    assert slots == {Slot(r, 0) for r in range(4)}
    # 7 entries: penalty 15 -> 15 * 8 + 1
    assert g[("pkt", 6)][Slot(0, 0)]["weight"] == 121


def test_enough_rus_serves_everything(three_stations):
    sched = generate_packet_schedule(three_stations, start_round=0)
    res = MatchingSolver().solve(sched, size_rus(40, sched.packets_per_schedule))
    assert res.matched == 7
    assert res.total_weight == 4 * 5 + 2 * 10 + 15


@pytest.mark.parametrize("seed", range(8))
def test_matching_is_optimal_and_feasible(seed, sizing_with):
    rng = np.random.default_rng(seed)
    stations = _random_stations(rng, int(rng.integers(1, 4)))
    sched = generate_packet_schedule(stations, start_round=int(rng.integers(0, 3)) * 4)
    if sched.packets_per_schedule > 7:
        pytest.skip("too large for the exhaustive oracle")
    rus = int(rng.choice([1, 2]))
    sizing = sizing_with(rus)

    res = MatchingSolver().solve(sched, sizing)

    check_assignment(sched, res.packet_to_round, rus)
    assert max(res.per_round_load().values(), default=0) <= rus
    for idx, rnd in res.packet_to_round.items():
        e = sched.entries[idx]
        assert e.arrival_round <= rnd <= e.deadline_round
        assert sched.contains_round(rnd)
    assert res.total_weight == _brute_force_weight(sched, rus)


def test_resolve_is_idempotent(sizing_with):
    stations = [Station(0, 1, 2, 4), Station(1, 2, 1, 9), Station(2, 4, 3, 6), Station(3, 2, 0, 9)]
    sched = generate_packet_schedule(stations, start_round=12)
    solver = MatchingSolver()
    a = solver.solve(sched, sizing_with(2))
    b = solver.solve(sched, sizing_with(2))
    assert a == b


def test_matched_rounds_follow_arrival_order(sizing_with):
    stations = [Station(0, period=1, deadline=3, penalty=2), Station(1, period=4, deadline=0, penalty=50)]
    sched = generate_packet_schedule(stations, start_round=0)
    res = MatchingSolver().solve(sched, sizing_with(1))
    start, stop = sched.station_run(0)
    rounds = [res.packet_to_round[i] for i in range(start, stop) if i in res.packet_to_round]
    assert rounds == sorted(rounds)


def test_fifo_order_swaps_crossed_rounds():
    sched = generate_packet_schedule([Station(0, 1, 1, 1), Station(1, 2, 0, 1)], start_round=0)
    crossed = {0: 1, 1: 0}
    assert fifo_order(sched, crossed) == {0: 0, 1: 1}


def test_check_assignment_rejects_violations(three_stations):
    sched = generate_packet_schedule(three_stations, start_round=0)
    with pytest.raises(SolverError):
        check_assignment(sched, {0: 1}, 1)           # outside window
    with pytest.raises(SolverError):
        check_assignment(sched, {0: 0, 4: 0}, 1)     # over capacity
    with pytest.raises(SolverError):
        check_assignment(sched, {7: 0}, 1)           # unknown entry


def test_ilp_arguments_are_relative_to_horizon(three_stations, single_ru):
    sched = generate_packet_schedule(three_stations, start_round=8)
    args = ilp_arguments(sched, single_ru)
    assert args[:4] == ["4", "7", "4", "484"]
    assert args[4:7] == ["0", "0", "5"]
    assert args[-3:] == ["0", "0", "15"]


def test_parse_ilp_output_adds_offset():
    assert parse_ilp_output("6,0\n1,1\n\n", packets=7, round_offset=8) == {6: 8, 1: 9}


@pytest.mark.parametrize("text", ["6;0\n", "a,1\n", "9,0\n", "1,0\n1,2\n"])
def test_parse_ilp_output_rejects_garbage(text):
    with pytest.raises(SolverError):
        parse_ilp_output(text, packets=7, round_offset=0)


def test_ilp_failure_without_fallback_raises(tmp_path, three_stations, single_ru):
    sched = generate_packet_schedule(three_stations, start_round=0)
    solver = IlpSolver(command=["definitely-not-an-ilp-binary"], workdir=str(tmp_path))
    with pytest.raises(SolverError):
        solver.solve(sched, single_ru)


def test_ilp_failure_falls_back_to_matching(tmp_path, three_stations, single_ru):
    sched = generate_packet_schedule(three_stations, start_round=0)
    solver = IlpSolver(command=["definitely-not-an-ilp-binary"], workdir=str(tmp_path),
                       fallback=MatchingSolver())
    res = solver.solve(sched, single_ru)
    assert res.backend == "matching"
    assert res.total_weight == 35


def test_ilp_stale_output_is_not_reused(tmp_path, three_stations, single_ru):
    (tmp_path / "ilp.output").write_text("6,0\n1,1\n5,2\n3,3\n", encoding="utf-8")
    sched = generate_packet_schedule(three_stations, start_round=0)
    # exits cleanly without writing anything
    solver = IlpSolver(command=[sys.executable, "-c", "pass"], workdir=str(tmp_path))
    with pytest.raises(SolverError, match="did not write"):
        solver.solve(sched, single_ru)


def test_ilp_infeasible_output_is_rejected(tmp_path, three_stations, single_ru):
    script = "open('ilp.output', 'w').write('0,0\\n4,0\\n')"
    sched = generate_packet_schedule(three_stations, start_round=0)
    solver = IlpSolver(command=[sys.executable, "-c", script], workdir=str(tmp_path))
    with pytest.raises(SolverError, match="only 1 RUs"):
        solver.solve(sched, single_ru)


def test_ilp_timeout_raises(tmp_path, three_stations, single_ru):
    sched = generate_packet_schedule(three_stations, start_round=0)
    solver = IlpSolver(command=[sys.executable, "-c", "import time; time.sleep(5)"],
                       workdir=str(tmp_path), timeout_s=0.3)
    with pytest.raises(SolverError, match="timed out"):
        solver.solve(sched, single_ru)


def test_ilp_timeout_falls_back_to_matching(tmp_path, three_stations, single_ru):
    sched = generate_packet_schedule(three_stations, start_round=0)
    solver = IlpSolver(command=[sys.executable, "-c", "import time; time.sleep(5)"],
                       workdir=str(tmp_path), timeout_s=0.3, fallback=MatchingSolver())
    res = solver.solve(sched, single_ru)
    assert res.backend == "matching"
    assert res.total_weight == 35


def test_ilp_nonzero_exit_raises(tmp_path, three_stations, single_ru):
    sched = generate_packet_schedule(three_stations, start_round=0)
    solver = IlpSolver(command=[sys.executable, "-c", "import sys; sys.exit(3)"], workdir=str(tmp_path))
    with pytest.raises(SolverError, match="exited with 3"):
        solver.solve(sched, single_ru)


def test_make_solver_by_name():
    assert isinstance(make_solver("matching"), MatchingSolver)
    ilp = make_solver("ilp", fallback="matching", timeout_s=5.0)
    assert isinstance(ilp, IlpSolver)
    assert isinstance(ilp.fallback, MatchingSolver)
    with pytest.raises(ConfigError):
        make_solver("cplex")
