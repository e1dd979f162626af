from __future__ import annotations

from collections import deque
import logging
from typing import Deque, Dict, List, Sequence

from .models import Packet, Station, validate_stations


logger = logging.getLogger(__name__)


class TrafficGenerator:
    """Periodic deadline-constrained downlink traffic with one FIFO per station.

    Round 0 is the round the deadline-constrained applications start; a
    station emits one packet in every round divisible by its period.
    """

    def __init__(self, stations: Sequence[Station]) -> None:
        ordered = tuple(sorted(stations, key=lambda s: s.station_id))
        validate_stations(ordered)
        self.stations: Dict[int, Station] = {s.station_id: s for s in ordered}
        self._queues: Dict[int, Deque[Packet]] = {s.station_id: deque() for s in ordered}
        self.packets: List[Packet] = []
        self.generating = True

    @property
    def station_ids(self) -> List[int]:
        return list(self.stations)

    def emit(self, station_id: int, round_idx: int) -> Packet:
        sta = self.stations[int(station_id)]
        pkt = Packet(
            packet_id=len(self.packets),
            station_id=sta.station_id,
            arrival_round=int(round_idx),
            deadline_round=int(round_idx) + sta.deadline,
            penalty=sta.penalty,
        )
        pkt.enqueue()
        self.packets.append(pkt)
        self._queues[sta.station_id].append(pkt)
        logger.debug("STA_%d packet %d arrived in round %d", sta.station_id, pkt.packet_id, pkt.arrival_round)
        return pkt

    def generate(self, round_idx: int) -> List[Packet]:
        """Emit this round's arrivals in station-id order."""
        if not self.generating:
            return []
        return [
            self.emit(sid, round_idx)
            for sid, sta in self.stations.items()
            if int(round_idx) % sta.period == 0
        ]

    def stop(self) -> None:
        self.generating = False

    def queue(self, station_id: int) -> Deque[Packet]:
        return self._queues[int(station_id)]

    def backlog(self) -> int:
        return sum(len(q) for q in self._queues.values())

    def has_backlog(self) -> bool:
        return any(self._queues.values())
