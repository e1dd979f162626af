import pytest

from da_ofdma_des.errors import ConfigError, HorizonTooLongError
from da_ofdma_des.models import Station
from da_ofdma_des.schedule import (
    generate_packet_schedule,
    lcm_of_periods,
    packets_per_schedule,
    rounds_per_schedule,
)


def test_lcm_and_counts(three_stations):
    assert lcm_of_periods([1, 2, 4]) == 4
    assert lcm_of_periods([3, 4, 6]) == 12
    assert rounds_per_schedule(three_stations) == 4
    assert packets_per_schedule(three_stations, 4) == 7


def test_zero_period_is_config_error():
    with pytest.raises(ConfigError):
        lcm_of_periods([1, 0])


def test_horizon_cap_fails_loudly():
    stations = [Station(0, 7, 0, 1), Station(1, 11, 0, 1), Station(2, 13, 0, 1)]
    with pytest.raises(HorizonTooLongError):
        rounds_per_schedule(stations, max_rounds=1000)
    assert rounds_per_schedule(stations, max_rounds=1001) == 1001


def test_schedule_entries_grouped_by_station(three_stations):
    sched = generate_packet_schedule(three_stations, start_round=0)
    assert sched.as_rows() == [
        (0, 0, 5, 0), (1, 1, 5, 0), (2, 2, 5, 0), (3, 3, 5, 0),
        (0, 0, 10, 1), (2, 2, 10, 1),
        (0, 0, 15, 2),
    ]
    assert sched.runs == {0: (0, 4), 1: (4, 6), 2: (6, 7)}
    assert sched.packets_per_schedule == 7
    assert sched.end_round == 4


def test_schedule_is_offset_by_start_round(three_stations):
    sched = generate_packet_schedule(three_stations, start_round=8)
    assert [e.arrival_round for e in sched.station_entries(1)] == [8, 10]
    assert sched.contains_round(11)
    assert not sched.contains_round(12)


def test_schedule_regeneration_is_deterministic(three_stations):
    a = generate_packet_schedule(three_stations, start_round=4)
    b = generate_packet_schedule(list(reversed(three_stations)), start_round=4)
    assert a == b


def test_window_is_clipped_to_horizon():
    stations = [Station(0, period=1, deadline=5, penalty=1)]
    sched = generate_packet_schedule(stations, start_round=3)
    assert sched.rounds_per_schedule == 1
    assert sched.entries[0].deadline_round == 8
    assert sched.window(0) == (3, 3)


def test_index_of(three_stations):
    sched = generate_packet_schedule(three_stations, start_round=0)
    assert sched.index_of(1, 2) == 5
    assert sched.index_of(1, 1) is None
    with pytest.raises(KeyError):
        sched.station_run(9)


def test_duplicate_station_ids_rejected():
    with pytest.raises(ConfigError):
        generate_packet_schedule([Station(0, 1, 0, 1), Station(0, 2, 0, 1)], start_round=0)
