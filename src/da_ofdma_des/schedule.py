from __future__ import annotations

from dataclasses import dataclass, field
from functools import reduce
from math import gcd
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from .errors import ConfigError, HorizonTooLongError
from .models import PacketEntry, Station, validate_stations


DEFAULT_MAX_ROUNDS_PER_SCHEDULE = 1024


def lcm_of_periods(periods: Iterable[int]) -> int:
    ps = [int(p) for p in periods]
    if not ps:
        raise ConfigError("Cannot compute a horizon without stations.")
    if any(p < 1 for p in ps):
        raise ConfigError(f"Periods must be >= 1 (got {ps}).")
    return reduce(lambda a, b: a * b // gcd(a, b), ps, 1)


def rounds_per_schedule(
    stations: Sequence[Station],
    max_rounds: int = DEFAULT_MAX_ROUNDS_PER_SCHEDULE,
) -> int:
    """Horizon length: LCM of all station periods, capped by `max_rounds`."""
    rounds = lcm_of_periods(s.period for s in stations)
    if rounds > int(max_rounds):
        raise HorizonTooLongError(
            f"LCM of periods {[s.period for s in stations]} is {rounds} rounds, "
            f"above the cap of {max_rounds}. Pick commensurate periods."
        )
    return rounds


def packets_per_schedule(stations: Sequence[Station], rounds: int) -> int:
    return int(sum(int(rounds) // int(s.period) for s in stations))


# ---------------------------- PacketSchedule ---------------------------------


@dataclass(frozen=True)
class PacketSchedule:
    """Every packet instance the stations emit within one horizon.

    Entries are grouped by station in station-id order; each station owns a
    contiguous index run, which is what the per-station cursors walk.
    """
    start_round: int
    rounds_per_schedule: int
    entries: Tuple[PacketEntry, ...]
    runs: Dict[int, Tuple[int, int]] = field(default_factory=dict)

    @property
    def packets_per_schedule(self) -> int:
        return len(self.entries)

    @property
    def end_round(self) -> int:
        """First round after the horizon."""
        return self.start_round + self.rounds_per_schedule

    def contains_round(self, round_idx: int) -> bool:
        return self.start_round <= int(round_idx) < self.end_round

    def station_run(self, station_id: int) -> Tuple[int, int]:
        try:
            return self.runs[int(station_id)]
        except KeyError:
            raise KeyError(f"STA_{station_id} has no entries in this schedule") from None

    def station_entries(self, station_id: int) -> List[PacketEntry]:
        start, stop = self.station_run(station_id)
        return list(self.entries[start:stop])

    def index_of(self, station_id: int, arrival_round: int) -> Optional[int]:
        """Schedule index of the station's entry arriving at `arrival_round`."""
        start, stop = self.station_run(station_id)
        for idx in range(start, stop):
            if self.entries[idx].arrival_round == int(arrival_round):
                return idx
        return None

    def window(self, index: int) -> Tuple[int, int]:
        """Rounds an entry may be served in, clipped to this horizon (inclusive)."""
        e = self.entries[index]
        lo = max(e.arrival_round, self.start_round)
        hi = min(e.deadline_round, self.end_round - 1)
        return lo, hi

    def as_rows(self) -> List[Tuple[int, int, int, int]]:
        return [(e.arrival_round, e.deadline_round, e.penalty, e.station_id) for e in self.entries]


def generate_packet_schedule(
    stations: Sequence[Station],
    start_round: int,
    max_rounds: int = DEFAULT_MAX_ROUNDS_PER_SCHEDULE,
) -> PacketSchedule:
    """Enumerate the horizon starting at `start_round`.

    For each station (id order) and k = 0 .. rounds/period - 1:
      arrival  = start_round + k * period
      deadline = arrival + station.deadline
    Pure function of the station set and `start_round`.
    """
    ordered = tuple(sorted(stations, key=lambda s: s.station_id))
    validate_stations(ordered)
    if int(start_round) < 0:
        raise ValueError("start_round must be >= 0")

    rounds = rounds_per_schedule(ordered, max_rounds)
    entries: List[PacketEntry] = []
    runs: Dict[int, Tuple[int, int]] = {}

    for sta in ordered:
        first = len(entries)
        for k in range(rounds // sta.period):
            arrival = int(start_round) + k * sta.period
            entries.append(
                PacketEntry(
                    arrival_round=arrival,
                    deadline_round=arrival + sta.deadline,
                    penalty=sta.penalty,
                    station_id=sta.station_id,
                )
            )
        runs[sta.station_id] = (first, len(entries))

    return PacketSchedule(
        start_round=int(start_round),
        rounds_per_schedule=rounds,
        entries=tuple(entries),
        runs=runs,
    )
