from __future__ import annotations

import copy
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

import yaml

from .errors import ConfigError
from .models import Station
from .sim import SCHEDULERS, SimConfig, SolverConfig


# The three-station setup of the original experiments.
DEFAULT_STATIONS: List[Dict[str, int]] = [
    {"period": 1, "deadline": 0, "penalty": 5},
    {"period": 2, "deadline": 0, "penalty": 10},
    {"period": 4, "deadline": 0, "penalty": 15},
]


def load_config(path: Union[str, Path]) -> Dict[str, Any]:
    p = Path(path)
    cfg = yaml.safe_load(p.read_text(encoding="utf-8")) or {}
    if not isinstance(cfg, dict):
        raise ConfigError(f"{p}: top level must be a mapping.")
    cfg.setdefault("run_name", p.stem)
    return cfg


def stations_from_list(items: Sequence[Dict[str, Any]]) -> Tuple[Station, ...]:
    """Stations from YAML items; `station_id` defaults to the list position."""
    out = []
    for i, item in enumerate(items):
        try:
            out.append(
                Station(
                    station_id=int(item.get("station_id", i)),
                    period=int(item["period"]),
                    deadline=int(item.get("deadline", 0)),
                    penalty=int(item.get("penalty", 1)),
                )
            )
        except (KeyError, TypeError, ValueError) as exc:
            raise ConfigError(f"stations[{i}]: {exc!r}") from None
    return tuple(out)


def solver_config_from_dict(d: Optional[Dict[str, Any]]) -> SolverConfig:
    d = d or {}
    command = d.get("command")
    if isinstance(command, str):
        command = command.split()
    return SolverConfig(
        backend=str(d.get("backend", "matching")),
        command=tuple(str(c) for c in command) if command else None,
        workdir=d.get("workdir"),
        timeout_s=float(d.get("timeout_s", 60.0)),
        fallback=d.get("fallback", "matching"),
    )


def sim_config_from_dict(d: Dict[str, Any], scheduler: Optional[str] = None) -> SimConfig:
    ru_type = d.get("ru_type")
    cfg = SimConfig(
        stations=stations_from_list(d.get("stations") or DEFAULT_STATIONS),
        channel_width=int(d.get("channel_width", 40)),
        n_rounds=int(d.get("n_rounds", 60)),
        scheduler=str(scheduler or d.get("scheduler", "DA")),
        max_rounds_per_schedule=int(d.get("max_rounds_per_schedule", 1024)),
        ru_type=int(ru_type) if ru_type is not None else None,
        round_duration_us=float(d.get("round_duration_us", 10000.0)),
        max_credits_us=float(d.get("max_credits_us", 1e6)),
        error_rate=float(d.get("error_rate", 0.0)),
        seed=int(d.get("seed", 42)),
        solver=solver_config_from_dict(d.get("solver")),
    )
    cfg.validate()
    return cfg


def schedulers_compared(cfg: Dict[str, Any]) -> List[str]:
    requested = cfg.get("schedulers_compared")
    if requested is None:
        return list(SCHEDULERS)
    out = [s for s in SCHEDULERS if s in set(requested)]
    if not out:
        raise ConfigError("No valid schedulers found in `schedulers_compared` (check config).")
    return out


def scenarios(cfg: Dict[str, Any]) -> List[Tuple[str, Dict[str, Any]]]:
    """(name, settings) per scenario: top-level settings with the scenario's overrides applied.

    Without a `scenarios` block the top level is the single scenario "default".
    """
    base = {k: v for k, v in cfg.items() if k not in ("scenarios", "schedulers_compared", "run_name")}
    scen = cfg.get("scenarios") or {}
    if not scen:
        return [("default", copy.deepcopy(base))]

    out = []
    for name, overrides in scen.items():
        merged = copy.deepcopy(base)
        for key, value in (overrides or {}).items():
            if key == "solver" and isinstance(value, dict):
                merged["solver"] = {**(merged.get("solver") or {}), **value}
            else:
                merged[key] = copy.deepcopy(value)
        out.append((str(name), merged))
    return out
