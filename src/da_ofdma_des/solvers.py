from __future__ import annotations

from collections import Counter
from dataclasses import dataclass
import logging
from pathlib import Path
import subprocess
import sys
import tempfile
from typing import Dict, List, Optional, Protocol, Sequence

import networkx as nx

from .errors import ConfigError, SolverError
from .models import Slot
from .ru import RuSizing
from .schedule import PacketSchedule


logger = logging.getLogger(__name__)

SOLVER_BACKENDS = ("matching", "ilp")
ILP_OUTPUT_FILE = "ilp.output"


# ---------------------------- Result ---------------------------------


@dataclass(frozen=True)
class SolverResult:
    """Packet-to-round decision for one horizon.

    `packet_to_round` maps a PacketSchedule entry index to an absolute round.
    Entries missing from the map are the packets the solver chose to drop.
    """
    packet_to_round: Dict[int, int]
    total_weight: int
    backend: str

    @property
    def matched(self) -> int:
        return len(self.packet_to_round)

    def dropped(self, schedule: PacketSchedule) -> List[int]:
        return [i for i in range(schedule.packets_per_schedule) if i not in self.packet_to_round]

    def per_round_load(self) -> Dict[int, int]:
        return dict(sorted(Counter(self.packet_to_round.values()).items()))


class ScheduleSolver(Protocol):
    name: str

    def solve(self, schedule: PacketSchedule, sizing: RuSizing) -> SolverResult:
        ...


# ---------------------------- Helpers ---------------------------------


def check_assignment(schedule: PacketSchedule, mapping: Dict[int, int], rus_per_round: int) -> None:
    """Raise SolverError unless `mapping` honours windows and RU capacity."""
    n = schedule.packets_per_schedule
    load: Counter = Counter()
    for idx, rnd in mapping.items():
        if not (0 <= int(idx) < n):
            raise SolverError(f"packet index {idx} outside [0, {n})")
        lo, hi = schedule.window(int(idx))
        if not (lo <= int(rnd) <= hi):
            raise SolverError(f"packet {idx} mapped to round {rnd}, outside its window [{lo}, {hi}]")
        load[int(rnd)] += 1
    for rnd, count in load.items():
        if count > int(rus_per_round):
            raise SolverError(f"round {rnd} carries {count} packets but only {rus_per_round} RUs")


def fifo_order(schedule: PacketSchedule, mapping: Dict[int, int]) -> Dict[int, int]:
    """Re-deal each station's matched rounds in arrival order.

    A station's queue is FIFO, so its k-th matched packet must also get the
    k-th earliest matched round. Arrivals and deadlines grow with the entry
    index within a station run, so the swap keeps every window and leaves
    capacity and weight unchanged.
    """
    ordered: Dict[int, int] = {}
    for start, stop in schedule.runs.values():
        idxs = [i for i in range(start, stop) if i in mapping]
        rounds = sorted(mapping[i] for i in idxs)
        ordered.update(zip(idxs, rounds))
    return dict(sorted(ordered.items()))


def _finish(schedule: PacketSchedule, mapping: Dict[int, int], sizing: RuSizing, backend: str) -> SolverResult:
    mapping = fifo_order(schedule, mapping)
    check_assignment(schedule, mapping, sizing.rus_per_round)
    weight = int(sum(schedule.entries[i].penalty for i in mapping))
    return SolverResult(packet_to_round=mapping, total_weight=weight, backend=backend)


# ---------------------------- Weighted matching ---------------------------------


class MatchingSolver:
    """Maximum weighted bipartite matching between entries and (round, RU) slots."""

    name = "matching"

    def build_graph(self, schedule: PacketSchedule, rus_per_round: int) -> nx.Graph:
        """One vertex per entry and per reachable Slot.

        An edge weighs `penalty * (n + 1) + 1` for a horizon of n entries. The
        scaled penalty decides the optimum; the +1 only breaks ties toward
        serving more packets, so zero-penalty entries still take idle RUs.

        Rounds that fewer than `rus_per_round` entries can reach only get as
        many slot vertices as there are such entries; extra RUs in that round
        could never be matched anyway.
        """
        reach: Counter = Counter()
        for i in range(schedule.packets_per_schedule):
            lo, hi = schedule.window(i)
            for rnd in range(lo, hi + 1):
                reach[rnd] += 1

        scale = schedule.packets_per_schedule + 1
        g = nx.Graph()
        for i, entry in enumerate(schedule.entries):
            g.add_node(("pkt", i))
            lo, hi = schedule.window(i)
            for rnd in range(lo, hi + 1):
                for ru in range(min(int(rus_per_round), reach[rnd])):
                    g.add_edge(("pkt", i), Slot(rnd, ru), weight=int(entry.penalty) * scale + 1)
        return g

    def solve(self, schedule: PacketSchedule, sizing: RuSizing) -> SolverResult:
        g = self.build_graph(schedule, sizing.rus_per_round)
        mate = nx.max_weight_matching(g, maxcardinality=False, weight="weight")

        mapping: Dict[int, int] = {}
        for u, v in mate:
            if isinstance(u, Slot):
                u, v = v, u
            mapping[int(u[1])] = v.round_idx

        result = _finish(schedule, mapping, sizing, self.name)
        logger.info(
            "Matching solved horizon at round %d: %d/%d packets matched, weight %d (%d vertices, %d edges)",
            schedule.start_round,
            result.matched,
            schedule.packets_per_schedule,
            result.total_weight,
            g.number_of_nodes(),
            g.number_of_edges(),
        )
        return result


# ---------------------------- External ILP ---------------------------------


def default_ilp_command() -> List[str]:
    return [sys.executable, "-m", "da_ofdma_des.ilp"]


def ilp_arguments(schedule: PacketSchedule, sizing: RuSizing) -> List[str]:
    """Positional arguments of the ILP process.

    `rounds packets ruTypeIndex totalTones [arrival deadline penalty]*`, with
    rounds made relative to the horizon start (the ILP plans from round 0).
    """
    offset = schedule.start_round
    args = [
        str(schedule.rounds_per_schedule),
        str(schedule.packets_per_schedule),
        str(sizing.ru_type_index),
        str(sizing.total_tones),
    ]
    for e in schedule.entries:
        args.extend([str(e.arrival_round - offset), str(e.deadline_round - offset), str(e.penalty)])
    return args


def parse_ilp_output(text: str, packets: int, round_offset: int) -> Dict[int, int]:
    """Parse `packetIndex,round` lines and shift rounds by `round_offset`."""
    mapping: Dict[int, int] = {}
    for lineno, raw in enumerate(text.splitlines(), start=1):
        line = raw.strip()
        if not line:
            continue
        parts = line.split(",")
        if len(parts) != 2:
            raise SolverError(f"{ILP_OUTPUT_FILE}:{lineno}: expected 'packetIndex,round', got {raw!r}")
        try:
            idx, rnd = int(parts[0]), int(parts[1])
        except ValueError:
            raise SolverError(f"{ILP_OUTPUT_FILE}:{lineno}: non-integer field in {raw!r}") from None
        if not (0 <= idx < int(packets)):
            raise SolverError(f"{ILP_OUTPUT_FILE}:{lineno}: packet index {idx} out of range")
        if idx in mapping:
            raise SolverError(f"{ILP_OUTPUT_FILE}:{lineno}: packet {idx} mapped twice")
        mapping[idx] = rnd + int(round_offset)
    return mapping


class IlpSolver:
    """Solve the horizon with an integer program running as a separate process.

    The call blocks the round loop for at most `timeout_s`. Any failure
    (non-zero exit, timeout, missing/malformed output, infeasible map)
    raises SolverError, unless `fallback` is set, in which case the
    fallback solver's result is returned instead.
    """

    name = "ilp"

    def __init__(
        self,
        command: Optional[Sequence[str]] = None,
        workdir: Optional[str] = None,
        timeout_s: Optional[float] = 60.0,
        fallback: Optional[ScheduleSolver] = None,
    ) -> None:
        self.command = list(command) if command else default_ilp_command()
        self.workdir = workdir
        self.timeout_s = timeout_s
        self.fallback = fallback

    def solve(self, schedule: PacketSchedule, sizing: RuSizing) -> SolverResult:
        try:
            return self._solve_external(schedule, sizing)
        except SolverError as exc:
            if self.fallback is None:
                raise
            logger.warning(
                "ILP failed for horizon at round %d (%s); falling back to %s",
                schedule.start_round,
                exc,
                self.fallback.name,
            )
            return self.fallback.solve(schedule, sizing)

    def _solve_external(self, schedule: PacketSchedule, sizing: RuSizing) -> SolverResult:
        if self.workdir is not None:
            workdir = Path(self.workdir)
            workdir.mkdir(parents=True, exist_ok=True)
            return self._run_in(workdir, schedule, sizing)
        with tempfile.TemporaryDirectory(prefix="da_ilp_") as tmp:
            return self._run_in(Path(tmp), schedule, sizing)

    def _run_in(self, workdir: Path, schedule: PacketSchedule, sizing: RuSizing) -> SolverResult:
        out_path = workdir / ILP_OUTPUT_FILE
        if out_path.exists():
            out_path.unlink()

        cmd = self.command + ilp_arguments(schedule, sizing)
        logger.info("ILP invoked in round %d", schedule.start_round)
        logger.debug("ILP command: %s", " ".join(cmd))
        try:
            proc = subprocess.run(
                cmd,
                cwd=str(workdir),
                capture_output=True,
                text=True,
                timeout=self.timeout_s,
                check=False,
            )
        except subprocess.TimeoutExpired:
            raise SolverError(f"ILP process timed out after {self.timeout_s}s") from None
        except OSError as exc:
            raise SolverError(f"could not start ILP process: {exc}") from exc

        if proc.returncode != 0:
            raise SolverError(f"ILP process exited with {proc.returncode}: {proc.stderr.strip()[-500:]}")
        if not out_path.exists():
            raise SolverError(f"ILP process did not write {ILP_OUTPUT_FILE}")

        mapping = parse_ilp_output(
            out_path.read_text(encoding="utf-8"),
            packets=schedule.packets_per_schedule,
            round_offset=schedule.start_round,
        )
        result = _finish(schedule, mapping, sizing, self.name)
        logger.info(
            "ILP solved horizon at round %d: %d/%d packets matched, weight %d",
            schedule.start_round,
            result.matched,
            schedule.packets_per_schedule,
            result.total_weight,
        )
        return result


def make_solver(
    backend: str = "matching",
    *,
    command: Optional[Sequence[str]] = None,
    workdir: Optional[str] = None,
    timeout_s: Optional[float] = 60.0,
    fallback: Optional[str] = None,
) -> ScheduleSolver:
    if backend == "matching":
        return MatchingSolver()
    if backend == "ilp":
        fb: Optional[ScheduleSolver] = None
        if fallback is not None:
            if fallback != "matching":
                raise ConfigError(f"Unsupported ILP fallback {fallback!r} (only 'matching').")
            fb = MatchingSolver()
        return IlpSolver(command=command, workdir=workdir, timeout_s=timeout_s, fallback=fb)
    raise ConfigError(f"Unknown solver backend {backend!r} (expected one of {SOLVER_BACKENDS}).")
