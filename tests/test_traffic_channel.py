import pytest

from da_ofdma_des.channel import IdealChannel, LossyChannel, RuAllocation, make_channel
from da_ofdma_des.errors import ConfigError
from da_ofdma_des.models import PacketState, TxStatus
from da_ofdma_des.ru import RuSpec, RuType
from da_ofdma_des.traffic import TrafficGenerator


def test_generate_follows_periods(three_stations):
    traffic = TrafficGenerator(three_stations)
    assert [p.station_id for p in traffic.generate(0)] == [0, 1, 2]
    assert [p.station_id for p in traffic.generate(1)] == [0]
    assert [p.station_id for p in traffic.generate(2)] == [0, 1]
    assert traffic.backlog() == 6
    assert [p.packet_id for p in traffic.packets] == list(range(6))
    assert all(p.state is PacketState.PENDING_MATCH for p in traffic.packets)


def test_stop_ends_generation(three_stations):
    traffic = TrafficGenerator(three_stations)
    traffic.stop()
    assert traffic.generate(0) == []
    assert not traffic.has_backlog()


def test_queues_are_fifo(three_stations):
    traffic = TrafficGenerator(three_stations)
    for r in range(3):
        traffic.generate(r)
    assert [p.arrival_round for p in traffic.queue(0)] == [0, 1, 2]


def _allocs(traffic):
    return [RuAllocation(p.station_id, p, RuSpec(RuType.RU_106_TONE, i + 1))
            for i, p in enumerate(traffic.packets)]


def test_ideal_channel_delivers(three_stations):
    traffic = TrafficGenerator(three_stations)
    traffic.generate(0)
    reports = IdealChannel().transmit(0, _allocs(traffic))
    assert [r.status for r in reports] == [TxStatus.SUCCESS] * 3
    assert [r.packet_id for r in reports] == [0, 1, 2]


def test_lossy_channel_is_seeded(three_stations):
    traffic = TrafficGenerator(three_stations)
    for r in range(8):
        traffic.generate(r)
    a = [r.status for r in LossyChannel(0.5, seed=3).transmit(0, _allocs(traffic))]
    b = [r.status for r in LossyChannel(0.5, seed=3).transmit(0, _allocs(traffic))]
    assert a == b
    assert TxStatus.SUCCESS in a and len(set(a)) > 1


def test_channel_factory():
    assert isinstance(make_channel(0.0), IdealChannel)
    assert isinstance(make_channel(0.2, seed=1), LossyChannel)
    with pytest.raises(ConfigError):
        LossyChannel(1.5)
