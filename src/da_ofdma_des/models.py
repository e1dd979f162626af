from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Dict, FrozenSet, Optional, Tuple

from .errors import ConfigError, ScheduleDesyncError
from .ru import RuSpec


# ---------------------------- Station ---------------------------------


@dataclass(frozen=True)
class Station:
    """A non-AP station with periodic deadline-constrained downlink traffic.

    All times are expressed in rounds.

      - period   -> rounds between successive packet arrivals
      - deadline -> rounds after arrival by which the packet must be sent
      - penalty  -> weight of a drop (used by the weighted solver)
    """
    station_id: int
    period: int
    deadline: int
    penalty: int

    def validate(self) -> None:
        if self.station_id < 0:
            raise ConfigError(f"station_id must be >= 0 (got {self.station_id}).")
        if self.period < 1:
            raise ConfigError(f"STA_{self.station_id}: period must be >= 1 (got {self.period}).")
        if self.deadline < 0:
            raise ConfigError(f"STA_{self.station_id}: deadline must be >= 0 (got {self.deadline}).")
        if self.penalty < 0:
            raise ConfigError(f"STA_{self.station_id}: penalty must be >= 0 (got {self.penalty}).")


def validate_stations(stations: Tuple[Station, ...]) -> None:
    if not stations:
        raise ConfigError("At least one station is required.")
    seen = set()
    for sta in stations:
        sta.validate()
        if sta.station_id in seen:
            raise ConfigError(f"Duplicate station_id {sta.station_id}.")
        seen.add(sta.station_id)


# ---------------------------- PacketEntry ---------------------------------


@dataclass(frozen=True)
class PacketEntry:
    """One instance of a station's periodic traffic within a horizon."""
    arrival_round: int
    deadline_round: int
    penalty: int
    station_id: int

    def __post_init__(self) -> None:
        if self.arrival_round > self.deadline_round:
            raise ValueError("arrival_round must be <= deadline_round")

    def covers(self, round_idx: int) -> bool:
        return self.arrival_round <= int(round_idx) <= self.deadline_round


@dataclass(frozen=True)
class Slot:
    """A (round, RU-index) transmission opportunity."""
    round_idx: int
    ru_index: int


# ---------------------------- Packet ---------------------------------


class PacketState(str, Enum):
    IDLE = "Idle"
    PENDING_MATCH = "PendingMatch"
    SCHEDULED = "Scheduled"
    TRANSMITTED = "Transmitted"
    DROPPED = "Dropped"


class DropReason(str, Enum):
    UNMATCHED = "unmatched"            # solver chose not to serve the entry
    LATE = "late"                      # assigned round passed without transmission
    DEADLINE = "deadline"              # DRR: deadline round reached while pending
    SOLVER_FAILURE = "solver_failure"  # the horizon could not be solved


class TxStatus(str, Enum):
    SUCCESS = "success"
    FAILED = "failed"
    NACK = "nack"


_TRANSITIONS: Dict[PacketState, FrozenSet[PacketState]] = {
    PacketState.IDLE: frozenset({PacketState.PENDING_MATCH}),
    PacketState.PENDING_MATCH: frozenset({PacketState.SCHEDULED, PacketState.DROPPED}),
    PacketState.SCHEDULED: frozenset({PacketState.TRANSMITTED, PacketState.DROPPED}),
    PacketState.TRANSMITTED: frozenset(),
    PacketState.DROPPED: frozenset(),
}

TERMINAL_STATES = frozenset({PacketState.TRANSMITTED, PacketState.DROPPED})


@dataclass
class Packet:
    """A transport packet queued at the AP for one station.

    The DA scheduler matches it against a PacketSchedule entry
    (`schedule_index`) and, if the entry was served by the solver, an
    assigned round. The DRR scheduler only uses the schedule to look up
    the deadline.
    """
    packet_id: int
    station_id: int
    arrival_round: int
    deadline_round: int
    penalty: int

    state: PacketState = PacketState.IDLE
    horizon: Optional[int] = None
    schedule_index: Optional[int] = None
    assigned_round: Optional[int] = None

    # Outcomes
    tx_round: Optional[int] = None
    ru: Optional[RuSpec] = None
    tx_status: Optional[TxStatus] = None
    drop_round: Optional[int] = None
    drop_reason: Optional[DropReason] = None

    def _move(self, new_state: PacketState) -> None:
        if new_state not in _TRANSITIONS[self.state]:
            raise ScheduleDesyncError(
                f"Packet {self.packet_id} (STA_{self.station_id}): "
                f"illegal transition {self.state.value} -> {new_state.value}"
            )
        self.state = new_state

    def enqueue(self) -> None:
        self._move(PacketState.PENDING_MATCH)

    def schedule(self, schedule_index: int, assigned_round: int) -> None:
        self._move(PacketState.SCHEDULED)
        self.schedule_index = int(schedule_index)
        self.assigned_round = int(assigned_round)

    def transmit(self, round_idx: int, ru: RuSpec) -> None:
        # DRR transmits straight from the queue without a schedule decision
        if self.state is PacketState.PENDING_MATCH:
            self._move(PacketState.SCHEDULED)
            self.assigned_round = int(round_idx)
        self._move(PacketState.TRANSMITTED)
        self.tx_round = int(round_idx)
        self.ru = ru

    def drop(self, round_idx: int, reason: DropReason) -> None:
        self._move(PacketState.DROPPED)
        self.drop_round = int(round_idx)
        self.drop_reason = reason

    @property
    def is_resolved(self) -> bool:
        return self.state in TERMINAL_STATES

    def delay_rounds(self) -> Optional[int]:
        if self.tx_round is None:
            return None
        return int(self.tx_round - self.arrival_round)


# ---------------------------- StationCursor ---------------------------------


@dataclass
class StationCursor:
    """Points at the schedule entry the station's next arriving packet maps to.

    The cursor covers the half-open index run [start, stop) of the active
    PacketSchedule. Reading past the run means packets arrived more often
    than the station's period allows, which is a desync.
    """
    station_id: int
    start: int
    stop: int
    pos: int = -1

    def __post_init__(self) -> None:
        if self.pos < 0:
            self.pos = self.start
        if not (self.start <= self.pos <= self.stop):
            raise ValueError("cursor position outside its run")

    def current(self) -> int:
        if self.pos >= self.stop:
            raise ScheduleDesyncError(
                f"STA_{self.station_id}: more packets than schedule entries "
                f"(run [{self.start}, {self.stop}) exhausted)"
            )
        return self.pos

    def advance(self) -> int:
        idx = self.current()
        self.pos += 1
        return idx

    def remaining(self) -> int:
        return self.stop - self.pos
