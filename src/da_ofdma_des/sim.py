from __future__ import annotations

from dataclasses import dataclass, field
import logging
from typing import Any, Dict, List, Optional, Tuple

from .channel import IdealChannel, make_channel
from .errors import ConfigError
from .models import DropReason, Packet, Station, TxStatus, validate_stations
from .ru import RuType, check_channel_width
from .schedule import DEFAULT_MAX_ROUNDS_PER_SCHEDULE
from .schedulers import (
    DeadlineAwareScheduler,
    DeadlineRoundRobinScheduler,
    HorizonRecord,
    RoundAssignment,
    Scheduler,
    TxFormat,
)
from .solvers import SOLVER_BACKENDS, make_solver
from .traffic import TrafficGenerator


logger = logging.getLogger(__name__)

SCHEDULERS = ("DA", "DRR")


# ------------------------------ Configs ------------------------------

@dataclass(frozen=True)
class SolverConfig:
    backend: str = "matching"               # "matching" (in-process) or "ilp" (external process)
    command: Optional[Tuple[str, ...]] = None   # ILP argv prefix; default runs da_ofdma_des.ilp
    workdir: Optional[str] = None           # where ilp.output is written; temp dir if None
    timeout_s: float = 60.0
    fallback: Optional[str] = "matching"    # used when the ILP fails; None = drop the horizon

    def validate(self) -> None:
        if self.backend not in SOLVER_BACKENDS:
            raise ConfigError(f"solver.backend must be one of {SOLVER_BACKENDS} (got {self.backend!r}).")
        if self.timeout_s <= 0:
            raise ConfigError("solver.timeout_s must be > 0.")
        if self.fallback not in (None, "matching"):
            raise ConfigError("solver.fallback must be 'matching' or null.")


@dataclass(frozen=True)
class SimConfig:
    stations: Tuple[Station, ...]
    channel_width: int = 40                 # MHz
    n_rounds: int = 60                      # rounds with traffic generation
    scheduler: str = "DA"
    max_rounds_per_schedule: int = DEFAULT_MAX_ROUNDS_PER_SCHEDULE
    ru_type: Optional[int] = None           # pin the RU size (tones) instead of deriving it
    round_duration_us: float = 10000.0      # DRR credit accounting
    max_credits_us: float = 1e6
    error_rate: float = 0.0                 # per-RU loss probability of the channel
    seed: int = 42
    solver: SolverConfig = field(default_factory=SolverConfig)

    def validate(self) -> None:
        validate_stations(tuple(self.stations))
        check_channel_width(self.channel_width)
        if self.n_rounds < 1:
            raise ConfigError("n_rounds must be >= 1.")
        if self.scheduler not in SCHEDULERS:
            raise ConfigError(f"scheduler must be one of {SCHEDULERS} (got {self.scheduler!r}).")
        if self.max_rounds_per_schedule < 1:
            raise ConfigError("max_rounds_per_schedule must be >= 1.")
        if self.ru_type is not None and int(self.ru_type) not in {int(rt) for rt in RuType}:
            raise ConfigError(f"ru_type must be one of {[int(rt) for rt in RuType]} tones (got {self.ru_type}).")
        if self.round_duration_us <= 0 or self.max_credits_us <= 0:
            raise ConfigError("round_duration_us and max_credits_us must be > 0.")
        if not (0.0 <= self.error_rate <= 1.0):
            raise ConfigError("error_rate must be in [0,1].")
        self.solver.validate()


# ------------------------------ Results ------------------------------

@dataclass
class RunResult:
    config: SimConfig
    policy: str
    packets: List[Packet]
    rounds: List[Dict[str, Any]]
    horizons: List[HorizonRecord]
    ru_type: RuType
    rus_per_round: int
    rounds_per_schedule: int
    last_round: int = -1

    def packets_by_reason(self) -> Dict[str, int]:
        out = {r.value: 0 for r in DropReason}
        for p in self.packets:
            if p.drop_reason is not None:
                out[p.drop_reason.value] += 1
        return out


# ------------------------------ Engine ------------------------------

def make_scheduler(cfg: SimConfig, traffic: TrafficGenerator) -> Scheduler:
    ru_type = RuType(int(cfg.ru_type)) if cfg.ru_type is not None else None
    if cfg.scheduler == "DA":
        s = cfg.solver
        solver = make_solver(
            s.backend,
            command=s.command,
            workdir=s.workdir,
            timeout_s=s.timeout_s,
            fallback=s.fallback,
        )
        return DeadlineAwareScheduler(
            cfg.stations,
            traffic,
            solver,
            channel_width=cfg.channel_width,
            max_rounds_per_schedule=cfg.max_rounds_per_schedule,
            ru_type=ru_type,
        )
    return DeadlineRoundRobinScheduler(
        cfg.stations,
        traffic,
        channel_width=cfg.channel_width,
        max_rounds_per_schedule=cfg.max_rounds_per_schedule,
        ru_type=ru_type,
        round_duration_us=cfg.round_duration_us,
        max_credits_us=cfg.max_credits_us,
    )


class RoundEngine:
    """Synchronous round loop: arrivals, scheduling decision, transmission.

    After `n_rounds` the traffic stops and the loop keeps going, without new
    horizons, until every queue is empty. The drain is bounded by the
    longest deadline plus one horizon; whatever is left then is dropped late.
    """

    def __init__(
        self,
        traffic: TrafficGenerator,
        scheduler: Scheduler,
        channel: Optional[Any] = None,
    ) -> None:
        self.traffic = traffic
        self.scheduler = scheduler
        self.channel = channel if channel is not None else IdealChannel()
        self.rows: List[Dict[str, Any]] = []

    def step(self, round_idx: int) -> RoundAssignment:
        arrivals = self.traffic.generate(round_idx)
        fmt = self.scheduler.select_tx_format(round_idx)
        if fmt is TxFormat.DL_MU_TX:
            assignment = self.scheduler.compute_round_assignment(round_idx)
        else:
            assignment = RoundAssignment(round_idx=round_idx, ru_type=self.scheduler.sizing.ru_type)

        reports = self.channel.transmit(round_idx, assignment.allocations)
        for alloc, rep in zip(assignment.allocations, reports):
            alloc.packet.tx_status = rep.status

        self.rows.append({
            "round": int(round_idx),
            "tx_format": fmt.value,
            "arrivals": len(arrivals),
            "transmitted": len(assignment.allocations),
            "delivered": sum(1 for r in reports if r.status is TxStatus.SUCCESS),
            "dropped": len(assignment.drops),
            "dropped_weight": int(sum(p.penalty for p in assignment.drops)),
            "buffered": len(assignment.buffered),
            "rus_used": len(assignment.allocations),
            "rus_per_round": int(self.scheduler.sizing.rus_per_round),
            "backlog": self.traffic.backlog(),
        })
        return assignment

    def drain_limit(self) -> int:
        longest = max(s.deadline for s in self.traffic.stations.values())
        return int(longest) + int(self.scheduler.rounds_per_schedule) + 1

    def run(self, n_rounds: int) -> int:
        """Run and return the last round executed."""
        for r in range(int(n_rounds)):
            self.step(r)

        self.traffic.stop()
        self.scheduler.stop_generation()

        r = int(n_rounds)
        limit = r + self.drain_limit()
        while self.traffic.has_backlog() and r < limit:
            self.step(r)
            r += 1

        if self.traffic.has_backlog():
            left = 0
            for sid in self.traffic.station_ids:
                queue = self.traffic.queue(sid)
                while queue:
                    queue.popleft().drop(r, DropReason.LATE)
                    left += 1
            logger.warning("Drain did not empty the queues by round %d; dropped %d packets", r, left)
        return r - 1


def run_simulation(cfg: SimConfig) -> RunResult:
    cfg.validate()
    traffic = TrafficGenerator(cfg.stations)
    scheduler = make_scheduler(cfg, traffic)
    channel = make_channel(cfg.error_rate, seed=cfg.seed)
    engine = RoundEngine(traffic, scheduler, channel)

    logger.info(
        "Running %s for %d rounds: %d stations, %d MHz, %d x %s per round",
        scheduler.name,
        cfg.n_rounds,
        len(cfg.stations),
        cfg.channel_width,
        scheduler.sizing.rus_per_round,
        scheduler.sizing.ru_type.name,
    )
    last = engine.run(cfg.n_rounds)

    return RunResult(
        config=cfg,
        policy=scheduler.name,
        packets=list(traffic.packets),
        rounds=engine.rows,
        horizons=list(scheduler.horizons),
        ru_type=scheduler.sizing.ru_type,
        rus_per_round=scheduler.sizing.rus_per_round,
        rounds_per_schedule=scheduler.rounds_per_schedule,
        last_round=last,
    )
