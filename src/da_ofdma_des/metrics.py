from __future__ import annotations

from typing import Dict, List, Any

import numpy as np
import pandas as pd

from .models import DropReason, Packet, PacketState, TxStatus
from .sim import RunResult


# ---------------------------- helpers ---------------------------------


def _mean(values: List[float]) -> float:
    if not values:
        return float("nan")
    return float(np.mean(np.asarray(values, dtype=float)))


def _ratio(num: float, den: float) -> float:
    return float(num) / float(den) if den else float("nan")


def conservation_violations(result: RunResult) -> List[str]:
    """Describe every packet or horizon that breaks packet conservation.

    Each emitted packet must end in exactly one terminal state with
    consistent outcome fields. For DA horizons that ended while traffic was
    still generated, every schedule entry must be accounted for by exactly
    one packet.
    """
    problems: List[str] = []
    for p in result.packets:
        if p.state is PacketState.TRANSMITTED:
            if p.tx_round is None or p.drop_reason is not None:
                problems.append(f"packet {p.packet_id}: transmitted with inconsistent outcome")
        elif p.state is PacketState.DROPPED:
            if p.drop_reason is None or p.tx_round is not None:
                problems.append(f"packet {p.packet_id}: dropped with inconsistent outcome")
        else:
            problems.append(f"packet {p.packet_id}: unresolved ({p.state.value})")

    if result.policy == "DA":
        n_rounds = int(result.config.n_rounds)
        for h in result.horizons:
            if h.start_round + h.rounds > n_rounds:
                continue
            idxs = sorted(p.schedule_index for p in result.packets if p.horizon == h.index)
            if idxs != list(range(h.packets)):
                problems.append(f"horizon {h.index}: entries {idxs} do not cover 0..{h.packets - 1}")
    return problems


def check_conservation(result: RunResult) -> bool:
    return not conservation_violations(result)


# ---------------------------- tables ---------------------------------


def summarize_run(scenario: str, result: RunResult) -> pd.DataFrame:
    """One-row summary of a run."""
    pkts: List[Packet] = result.packets
    sent = [p for p in pkts if p.state is PacketState.TRANSMITTED]
    dropped = [p for p in pkts if p.state is PacketState.DROPPED]
    delivered = [p for p in sent if p.tx_status is TxStatus.SUCCESS]

    total_weight = float(sum(p.penalty for p in pkts))
    lost_weight = float(sum(p.penalty for p in dropped))

    rounds_with_tx = [r for r in result.rounds if r["tx_format"] == "DL_MU_TX"]
    ru_used = float(sum(r["rus_used"] for r in result.rounds))
    ru_offered = float(sum(r["rus_per_round"] for r in rounds_with_tx))

    row: Dict[str, Any] = {
        "scenario": scenario,
        "policy": result.policy,
        "solver": result.config.solver.backend if result.policy == "DA" else "none",
        "ru_type": int(result.ru_type),
        "rus_per_round": int(result.rus_per_round),
        "rounds_per_schedule": int(result.rounds_per_schedule),
        "rounds_run": int(result.last_round + 1),
        "packets": len(pkts),
        "transmitted": len(sent),
        "delivered": len(delivered),
        "dropped": len(dropped),
        "weighted_loss": lost_weight,
        "weighted_loss_ratio": _ratio(lost_weight, total_weight),
        "delivery_ratio": _ratio(len(delivered), len(pkts)),
        "delay_mean_rounds": _mean([float(p.delay_rounds()) for p in sent]),
        "delay_max_rounds": float(max((p.delay_rounds() for p in sent), default=0)),
        "ru_utilization": _ratio(ru_used, ru_offered),
        "horizons": len(result.horizons),
        "horizons_failed": sum(1 for h in result.horizons if h.failed),
        "conservation_ok": check_conservation(result),
    }
    for reason in DropReason:
        row[f"dropped_{reason.value}"] = sum(1 for p in dropped if p.drop_reason is reason)
    return pd.DataFrame([row])


def station_table(result: RunResult) -> pd.DataFrame:
    """Per-station packet outcomes."""
    if not result.packets:
        return pd.DataFrame(columns=["station_id", "packets", "transmitted", "dropped", "weighted_loss"])
    df = packets_frame(result)
    df["is_tx"] = (df["state"] == PacketState.TRANSMITTED.value).astype(int)
    df["is_drop"] = (df["state"] == PacketState.DROPPED.value).astype(int)
    df["lost_weight"] = df["penalty"].where(df["is_drop"] == 1, 0).astype(float)
    df["delay_rounds"] = pd.to_numeric(df["delay_rounds"], errors="coerce")

    g = df.groupby("station_id", sort=True)
    out = pd.DataFrame({
        "packets": g.size(),
        "transmitted": g["is_tx"].sum(),
        "dropped": g["is_drop"].sum(),
        "weighted_loss": g["lost_weight"].sum(),
        "delay_mean_rounds": g["delay_rounds"].mean(),
    })
    out["loss_ratio"] = out["dropped"] / out["packets"]
    return out.reset_index()


def packets_frame(result: RunResult) -> pd.DataFrame:
    rows = []
    for p in result.packets:
        rows.append({
            "packet_id": p.packet_id,
            "station_id": p.station_id,
            "arrival_round": p.arrival_round,
            "deadline_round": p.deadline_round,
            "penalty": p.penalty,
            "state": p.state.value,
            "horizon": p.horizon,
            "schedule_index": p.schedule_index,
            "assigned_round": p.assigned_round,
            "tx_round": p.tx_round,
            "ru_index": p.ru.index if p.ru is not None else None,
            "tx_status": p.tx_status.value if p.tx_status is not None else None,
            "drop_round": p.drop_round,
            "drop_reason": p.drop_reason.value if p.drop_reason is not None else None,
            "delay_rounds": p.delay_rounds(),
        })
    return pd.DataFrame(rows)


def horizons_frame(result: RunResult) -> pd.DataFrame:
    rows = []
    for h in result.horizons:
        rows.append({
            "index": h.index,
            "start_round": h.start_round,
            "rounds": h.rounds,
            "packets": h.packets,
            "ru_type": int(h.ru_type),
            "rus_per_round": h.rus_per_round,
            "backend": h.backend,
            "matched": h.matched,
            "total_weight": h.total_weight,
            "max_weight": h.max_weight,
            "failed": h.failed,
            "error": h.error,
        })
    return pd.DataFrame(rows)
