from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
import logging
from typing import Deque, Dict, List, Optional, Protocol, Sequence

from .channel import RuAllocation
from .errors import ScheduleDesyncError, SolverError
from .models import (
    DropReason,
    Packet,
    PacketEntry,
    PacketState,
    Station,
    StationCursor,
    validate_stations,
)
from .ru import RuSizing, RuType, check_channel_width, ru_bandwidth_mhz, rus_of_type, size_rus
from .schedule import (
    DEFAULT_MAX_ROUNDS_PER_SCHEDULE,
    PacketSchedule,
    generate_packet_schedule,
    packets_per_schedule,
    rounds_per_schedule,
)
from .solvers import ScheduleSolver
from .traffic import TrafficGenerator


logger = logging.getLogger(__name__)


class TxFormat(str, Enum):
    NO_TX = "NO_TX"
    DL_MU_TX = "DL_MU_TX"


@dataclass
class RoundAssignment:
    """What the scheduler decided for one round."""
    round_idx: int
    ru_type: RuType
    allocations: List[RuAllocation] = field(default_factory=list)
    drops: List[Packet] = field(default_factory=list)
    buffered: List[int] = field(default_factory=list)

    @property
    def served_stations(self) -> List[int]:
        return sorted({a.station_id for a in self.allocations})


@dataclass(frozen=True)
class HorizonRecord:
    index: int
    start_round: int
    rounds: int
    packets: int
    ru_type: RuType
    rus_per_round: int
    backend: str
    matched: int
    total_weight: int
    max_weight: int
    failed: bool = False
    error: Optional[str] = None


class Scheduler(Protocol):
    name: str
    sizing: RuSizing
    rounds_per_schedule: int
    horizons: List[HorizonRecord]

    def select_tx_format(self, round_idx: int) -> TxFormat:
        ...

    def compute_round_assignment(self, round_idx: int) -> RoundAssignment:
        ...

    def stop_generation(self) -> None:
        ...


# ---------------------------- Shared horizon bookkeeping ---------------------------------


class _HorizonScheduler:
    """Candidate tracking and horizon regeneration shared by DA and DRR."""

    name = "base"

    def __init__(
        self,
        stations: Sequence[Station],
        traffic: TrafficGenerator,
        *,
        channel_width: int = 40,
        max_rounds_per_schedule: int = DEFAULT_MAX_ROUNDS_PER_SCHEDULE,
        ru_type: Optional[RuType] = None,
    ) -> None:
        self.stations = tuple(sorted(stations, key=lambda s: s.station_id))
        validate_stations(self.stations)
        self.channel_width = check_channel_width(channel_width)
        self.max_rounds_per_schedule = int(max_rounds_per_schedule)
        self.traffic = traffic

        # Fail at construction rather than at the first horizon
        self.rounds_per_schedule = rounds_per_schedule(self.stations, self.max_rounds_per_schedule)
        self.packets_per_schedule = packets_per_schedule(self.stations, self.rounds_per_schedule)
        self.sizing = size_rus(self.channel_width, self.packets_per_schedule, ru_type)
        self.rus = rus_of_type(self.channel_width, self.sizing.ru_type)

        self.schedule: Optional[PacketSchedule] = None
        self.horizons: List[HorizonRecord] = []
        self.generating = True
        self._candidates: List[int] = []

    def _queue(self, station_id: int) -> Deque[Packet]:
        return self.traffic.queue(station_id)

    def _candidate_order(self) -> List[int]:
        return [s.station_id for s in self.stations]

    def _horizon_active(self, round_idx: int) -> bool:
        return self.schedule is not None and self.schedule.contains_round(round_idx)

    def select_tx_format(self, round_idx: int) -> TxFormat:
        self._candidates = [sid for sid in self._candidate_order() if self._queue(sid)]
        if not self._candidates:
            return TxFormat.NO_TX
        if (
            self.generating
            and int(round_idx) % self.rounds_per_schedule == 0
            and not self._horizon_active(round_idx)
        ):
            self._start_horizon(int(round_idx))
        return TxFormat.DL_MU_TX

    def _start_horizon(self, start_round: int) -> None:
        raise NotImplementedError

    def _new_schedule(self, start_round: int) -> PacketSchedule:
        schedule = generate_packet_schedule(self.stations, start_round, self.max_rounds_per_schedule)
        logger.info(
            "%s: horizon %d starts in round %d (%d rounds, %d packets, %d x %s per round)",
            self.name,
            len(self.horizons),
            start_round,
            schedule.rounds_per_schedule,
            schedule.packets_per_schedule,
            self.sizing.rus_per_round,
            self.sizing.ru_type.name,
        )
        return schedule

    def _record(self, schedule: PacketSchedule, backend: str, matched: int, weight: int,
                failed: bool = False, error: Optional[str] = None) -> None:
        self.horizons.append(
            HorizonRecord(
                index=len(self.horizons),
                start_round=schedule.start_round,
                rounds=schedule.rounds_per_schedule,
                packets=schedule.packets_per_schedule,
                ru_type=self.sizing.ru_type,
                rus_per_round=self.sizing.rus_per_round,
                backend=backend,
                matched=int(matched),
                total_weight=int(weight),
                max_weight=int(sum(e.penalty for e in schedule.entries)),
                failed=failed,
                error=error,
            )
        )

    def stop_generation(self) -> None:
        self.generating = False


# ---------------------------- Deadline-aware ---------------------------------


class DeadlineAwareScheduler(_HorizonScheduler):
    """Serve packets in the rounds the solver assigned them.

    Once per horizon the PacketSchedule is matched against the (round, RU)
    grid. Every round, each queued packet not yet examined is paired with
    the schedule entry under its station's cursor: served entries are held
    until their round, unserved ones are dropped straight away.
    """

    name = "DA"

    def __init__(
        self,
        stations: Sequence[Station],
        traffic: TrafficGenerator,
        solver: ScheduleSolver,
        *,
        channel_width: int = 40,
        max_rounds_per_schedule: int = DEFAULT_MAX_ROUNDS_PER_SCHEDULE,
        ru_type: Optional[RuType] = None,
    ) -> None:
        super().__init__(
            stations,
            traffic,
            channel_width=channel_width,
            max_rounds_per_schedule=max_rounds_per_schedule,
            ru_type=ru_type,
        )
        self.solver = solver
        self.packet_to_round: Dict[int, int] = {}
        self.cursors: Dict[int, StationCursor] = {}
        self._horizon_failed = False
        self._solve_in_flight = False
        self._pending_drops: List[Packet] = []

    def _start_horizon(self, start_round: int) -> None:
        if self._solve_in_flight:
            raise ScheduleDesyncError(f"horizon solve re-entered in round {start_round}")
        self._solve_in_flight = True
        try:
            schedule = self._new_schedule(start_round)
            self._expire_leftovers(start_round)

            error: Optional[str] = None
            try:
                result = self.solver.solve(schedule, self.sizing)
                mapping, weight = dict(result.packet_to_round), result.total_weight
            except SolverError as exc:
                logger.error("DA: horizon at round %d could not be solved: %s", start_round, exc)
                mapping, weight, error = {}, 0, str(exc)

            # Swap in the new horizon as a whole
            self.schedule = schedule
            self.packet_to_round = mapping
            self.cursors = {
                sid: StationCursor(sid, *schedule.station_run(sid)) for sid in schedule.runs
            }
            self._horizon_failed = error is not None
            self._record(schedule, self.solver.name, len(mapping), weight, failed=error is not None, error=error)
        finally:
            self._solve_in_flight = False

    def _expire_leftovers(self, start_round: int) -> None:
        """Drop packets of the previous horizon still queued at its end."""
        for sid in self._candidate_order():
            queue = self._queue(sid)
            stale = [p for p in queue if p.arrival_round < start_round]
            for pkt in stale:
                queue.remove(pkt)
                pkt.drop(start_round, DropReason.LATE)
                self._pending_drops.append(pkt)
                logger.debug("Dropped STA_%d packet in round %d (horizon ended)", sid, start_round)

    def _admit(self, pkt: Packet, round_idx: int) -> None:
        schedule = self.schedule
        if schedule is None or not schedule.contains_round(pkt.arrival_round):
            raise ScheduleDesyncError(
                f"STA_{pkt.station_id} packet {pkt.packet_id} (arrival {pkt.arrival_round}) "
                "does not belong to the active horizon"
            )
        idx = self.cursors[pkt.station_id].advance()
        entry: PacketEntry = schedule.entries[idx]
        if entry.station_id != pkt.station_id or entry.arrival_round != pkt.arrival_round:
            raise ScheduleDesyncError(
                f"STA_{pkt.station_id} packet {pkt.packet_id} arrived in round {pkt.arrival_round} "
                f"but the cursor points at entry {idx} (STA_{entry.station_id}, arrival {entry.arrival_round})"
            )
        pkt.horizon = len(self.horizons) - 1
        pkt.schedule_index = idx

        if self._horizon_failed:
            pkt.drop(round_idx, DropReason.SOLVER_FAILURE)
            logger.debug("Dropped STA_%d packet in round %d (no schedule)", pkt.station_id, round_idx)
        elif idx in self.packet_to_round:
            pkt.schedule(idx, self.packet_to_round[idx])
        else:
            pkt.drop(round_idx, DropReason.UNMATCHED)
            logger.debug("Dropped STA_%d packet in round %d (not matched)", pkt.station_id, round_idx)

    def compute_round_assignment(self, round_idx: int) -> RoundAssignment:
        round_idx = int(round_idx)
        out = RoundAssignment(round_idx=round_idx, ru_type=self.sizing.ru_type)
        out.drops.extend(self._pending_drops)
        self._pending_drops = []

        for sid in self._candidates:
            queue = self._queue(sid)
            for pkt in queue:
                if pkt.state is PacketState.PENDING_MATCH:
                    self._admit(pkt, round_idx)

            kept: List[Packet] = []
            sent = False
            for pkt in queue:
                if pkt.state is PacketState.DROPPED:
                    out.drops.append(pkt)
                elif pkt.assigned_round == round_idx:
                    if len(out.allocations) >= self.sizing.rus_per_round:
                        raise ScheduleDesyncError(
                            f"round {round_idx}: more packets due than {self.sizing.rus_per_round} RUs"
                        )
                    ru = self.rus[len(out.allocations)]
                    pkt.transmit(round_idx, ru)
                    out.allocations.append(RuAllocation(sid, pkt, ru))
                    sent = True
                    logger.debug("Transmitting STA_%d packet in round %d on RU %d", sid, round_idx, ru.index)
                elif pkt.assigned_round < round_idx:
                    pkt.drop(round_idx, DropReason.LATE)
                    out.drops.append(pkt)
                    logger.debug("Dropped STA_%d packet in round %d (late)", sid, round_idx)
                else:
                    kept.append(pkt)

            queue.clear()
            queue.extend(kept)
            if kept and not sent:
                out.buffered.append(sid)
                logger.debug("Buffered STA_%d packet in round %d", sid, round_idx)
        return out


# ---------------------------- Deadline round-robin ---------------------------------


@dataclass
class _Credit:
    station_id: int
    credits: float = 0.0


class DeadlineRoundRobinScheduler(_HorizonScheduler):
    """Credit-ordered round robin; packets are dropped only at their deadline."""

    name = "DRR"

    def __init__(
        self,
        stations: Sequence[Station],
        traffic: TrafficGenerator,
        *,
        channel_width: int = 40,
        max_rounds_per_schedule: int = DEFAULT_MAX_ROUNDS_PER_SCHEDULE,
        ru_type: Optional[RuType] = None,
        round_duration_us: float = 10000.0,
        max_credits_us: float = 1e6,
    ) -> None:
        super().__init__(
            stations,
            traffic,
            channel_width=channel_width,
            max_rounds_per_schedule=max_rounds_per_schedule,
            ru_type=ru_type,
        )
        self.round_duration_us = float(round_duration_us)
        self.max_credits_us = float(max_credits_us)
        self.credits: List[_Credit] = [_Credit(s.station_id) for s in self.stations]
        self._entries: Dict[int, PacketEntry] = {}

    def _candidate_order(self) -> List[int]:
        return [c.station_id for c in self.credits]

    def _start_horizon(self, start_round: int) -> None:
        self.schedule = self._new_schedule(start_round)
        self._record(self.schedule, "none", 0, 0)

    def _entry_for(self, pkt: Packet) -> PacketEntry:
        """The schedule entry of the horizon the packet arrived in."""
        entry = self._entries.get(pkt.packet_id)
        if entry is not None:
            return entry
        schedule = self.schedule
        idx = None
        if schedule is not None and schedule.contains_round(pkt.arrival_round):
            idx = schedule.index_of(pkt.station_id, pkt.arrival_round)
        if idx is None:
            raise ScheduleDesyncError(
                f"STA_{pkt.station_id} packet {pkt.packet_id} (arrival {pkt.arrival_round}) "
                "has no entry in the active packet schedule"
            )
        pkt.horizon = len(self.horizons) - 1
        pkt.schedule_index = idx
        entry = schedule.entries[idx]
        self._entries[pkt.packet_id] = entry
        return entry

    def compute_round_assignment(self, round_idx: int) -> RoundAssignment:
        round_idx = int(round_idx)
        out = RoundAssignment(round_idx=round_idx, ru_type=self.sizing.ru_type)

        for sid in self._candidates:
            for pkt in self._queue(sid):
                self._entry_for(pkt)

        served = self._candidates[: self.sizing.rus_per_round]
        pending = self._candidates[self.sizing.rus_per_round:]

        for ru, sid in zip(self.rus, served):
            pkt = self._queue(sid).popleft()
            pkt.transmit(round_idx, ru)
            self._entries.pop(pkt.packet_id, None)
            out.allocations.append(RuAllocation(sid, pkt, ru))
            logger.debug("Transmitting STA_%d packet in round %d on RU %d", sid, round_idx, ru.index)

        for sid in self._candidates:
            queue = self._queue(sid)
            expired = [p for p in queue if self._entries[p.packet_id].deadline_round <= round_idx]
            for pkt in expired:
                queue.remove(pkt)
                self._entries.pop(pkt.packet_id, None)
                pkt.drop(round_idx, DropReason.DEADLINE)
                out.drops.append(pkt)
                logger.debug("Dropped STA_%d packet in round %d", sid, round_idx)
            if sid in pending and queue and not expired:
                out.buffered.append(sid)
                logger.debug("Buffered STA_%d packet in round %d", sid, round_idx)

        self._update_credits(len(served))
        return out

    def _update_credits(self, n_served: int) -> None:
        """Everyone earns an equal share of the round; served stations pay for their RU."""
        if n_served == 0:
            return
        served = set(self._candidates[:n_served])
        bw = ru_bandwidth_mhz(self.sizing.ru_type)
        earn = self.round_duration_us / len(self.credits)
        debit_per_mhz = self.round_duration_us / (n_served * bw)
        for c in self.credits:
            c.credits = min(c.credits + earn, self.max_credits_us)
            if c.station_id in served:
                c.credits -= debit_per_mhz * bw
        self.credits.sort(key=lambda c: c.credits, reverse=True)
