from __future__ import annotations

from typing import Any, Dict, List, Optional, Sequence

import numpy as np
import pandas as pd
import matplotlib.pyplot as plt


def _ordered_policies(
    keys: Sequence[str],
    policy_order: Optional[Sequence[str]] = None,
) -> List[str]:
    if not policy_order:
        return list(keys)
    order = [p for p in policy_order if p in keys]
    rest = [p for p in keys if p not in order]
    return order + rest


# ---------------------------- Figures ----------------------------

def plot_station_losses(
    tables_by_policy: Dict[str, pd.DataFrame],
    outpath: str,
    title: str = "",
    *,
    value: str = "weighted_loss",
    policy_order: Optional[Sequence[str]] = ("DRR", "DA"),
) -> None:
    """
    Grouped bars of a per-station column (see metrics.station_table) per policy.

      - x-axis: station id
      - y-axis: `value` (weighted loss by default)
    """
    policies = _ordered_policies(list(tables_by_policy.keys()), policy_order)
    stations = sorted({int(s) for df in tables_by_policy.values() for s in df["station_id"]})
    if not stations:
        return

    x = np.arange(len(stations), dtype=float)
    width = 0.8 / max(len(policies), 1)

    plt.figure(figsize=(6.2, 3.9))
    for k, pol in enumerate(policies):
        df = tables_by_policy[pol].set_index("station_id")
        y = np.asarray([float(df[value].get(s, 0.0)) for s in stations], dtype=float)
        plt.bar(x + (k - (len(policies) - 1) / 2.0) * width, y, width=width, label=str(pol))

    plt.xticks(x, [f"STA_{s}" for s in stations])
    plt.xlabel("Station")
    plt.ylabel(value.replace("_", " ").capitalize())
    if title:
        plt.title(title)

    plt.grid(True, axis="y", alpha=0.3)
    plt.legend()
    plt.tight_layout()
    plt.savefig(outpath)
    plt.close()


def plot_ru_utilization(
    rounds_by_policy: Dict[str, List[Dict[str, Any]]],
    outpath: str,
    title: str = "",
    *,
    policy_order: Optional[Sequence[str]] = ("DRR", "DA"),
) -> None:
    """
    Per-round RU utilization (RUs used / RUs available) for each policy.

    Rounds without a DL MU transmission are plotted as NaN (line break).
    """
    plt.figure(figsize=(6.2, 3.9))

    for pol in _ordered_policies(list(rounds_by_policy.keys()), policy_order):
        rows = rounds_by_policy[pol]
        if not rows:
            continue
        x = np.asarray([int(r["round"]) for r in rows], dtype=int)
        y = np.asarray(
            [
                float(r["rus_used"]) / float(r["rus_per_round"]) if r["tx_format"] == "DL_MU_TX" else np.nan
                for r in rows
            ],
            dtype=float,
        )
        plt.step(x, y, where="post", label=str(pol))

    plt.xlabel("Round")
    plt.ylabel("RU utilization")
    plt.ylim(0.0, 1.05)
    if title:
        plt.title(title)

    plt.grid(True, alpha=0.3)
    plt.legend()
    plt.tight_layout()
    plt.savefig(outpath)
    plt.close()
