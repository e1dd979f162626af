from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional, Sequence

import numpy as np

from .errors import ConfigError
from .models import Packet, TxStatus
from .ru import RuSpec


@dataclass(frozen=True)
class RuAllocation:
    """One RU handed to one station's head-of-line packet for a round."""
    station_id: int
    packet: Packet
    ru: RuSpec


@dataclass(frozen=True)
class TxReport:
    station_id: int
    packet_id: int
    round_idx: int
    status: TxStatus


class IdealChannel:
    """Every allocated packet is delivered."""

    def transmit(self, round_idx: int, allocations: Sequence[RuAllocation]) -> List[TxReport]:
        return [
            TxReport(a.station_id, a.packet.packet_id, int(round_idx), TxStatus.SUCCESS)
            for a in allocations
        ]


class LossyChannel:
    """Independent per-RU loss with probability `error_rate`.

    A lost transmission is reported as FAILED or NACK with equal odds. The
    outcome is feedback only; the scheduler never retransmits.
    """

    def __init__(self, error_rate: float, seed: Optional[int] = None) -> None:
        if not (0.0 <= float(error_rate) <= 1.0):
            raise ConfigError(f"error_rate must be in [0,1] (got {error_rate}).")
        self.error_rate = float(error_rate)
        self.rng = np.random.default_rng(seed)

    def transmit(self, round_idx: int, allocations: Sequence[RuAllocation]) -> List[TxReport]:
        reports: List[TxReport] = []
        for a in allocations:
            status = TxStatus.SUCCESS
            if float(self.rng.random()) < self.error_rate:
                status = TxStatus.FAILED if float(self.rng.random()) < 0.5 else TxStatus.NACK
            reports.append(TxReport(a.station_id, a.packet.packet_id, int(round_idx), status))
        return reports


def make_channel(error_rate: float = 0.0, seed: Optional[int] = None):
    if float(error_rate) == 0.0:
        return IdealChannel()
    return LossyChannel(error_rate, seed=seed)
