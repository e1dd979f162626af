"""da_ofdma_des

A small, reproducible round-based simulation of deadline-aware 802.11ax
OFDMA downlink scheduling.

Stations emit periodic packets, each with a deadline and a drop penalty.
The Deadline-Aware (DA) scheduler solves a penalty-weighted matching
between the packets of one LCM horizon and the (round, RU) grid, then
serves packets in the rounds it assigned. The Deadline Round-Robin (DRR)
scheduler is the credit-based baseline.

Design goals:
- Small dependency set (networkx, OR-Tools, PyYAML, numpy, pandas, matplotlib)
- The weighted matching can run in-process or as an external ILP process
- Every emitted packet ends either transmitted or dropped with a reason
"""

# Data model / errors
from .errors import ConfigError, HorizonTooLongError, SolverError, ScheduleDesyncError
from .models import Station, PacketEntry, Packet, PacketState, DropReason, TxStatus, StationCursor
from .ru import RuType, RuSpec, RuSizing, size_rus
from .schedule import PacketSchedule, generate_packet_schedule, rounds_per_schedule, packets_per_schedule

# Solvers
from .solvers import SolverResult, MatchingSolver, IlpSolver, make_solver

# Simulation + configs
from .schedulers import (
    TxFormat,
    RoundAssignment,
    HorizonRecord,
    DeadlineAwareScheduler,
    DeadlineRoundRobinScheduler,
)
from .sim import SimConfig, SolverConfig, RoundEngine, RunResult, run_simulation

# Metrics + plots
from .metrics import summarize_run, station_table, check_conservation
from .plots import plot_station_losses, plot_ru_utilization


__all__ = [
    # errors
    "ConfigError",
    "HorizonTooLongError",
    "SolverError",
    "ScheduleDesyncError",
    # model
    "Station",
    "PacketEntry",
    "Packet",
    "PacketState",
    "DropReason",
    "TxStatus",
    "StationCursor",
    "RuType",
    "RuSpec",
    "RuSizing",
    "size_rus",
    "PacketSchedule",
    "generate_packet_schedule",
    "rounds_per_schedule",
    "packets_per_schedule",
    # solvers
    "SolverResult",
    "MatchingSolver",
    "IlpSolver",
    "make_solver",
    # schedulers / engine
    "TxFormat",
    "RoundAssignment",
    "HorizonRecord",
    "DeadlineAwareScheduler",
    "DeadlineRoundRobinScheduler",
    "SimConfig",
    "SolverConfig",
    "RoundEngine",
    "RunResult",
    "run_simulation",
    # outputs
    "summarize_run",
    "station_table",
    "check_conservation",
    "plot_station_losses",
    "plot_ru_utilization",
]
