from __future__ import annotations

from dataclasses import dataclass
from enum import IntEnum
from typing import Dict, List, Optional, Tuple

from .errors import ConfigError


SUPPORTED_CHANNEL_WIDTHS: Tuple[int, ...] = (20, 40)


class RuType(IntEnum):
    """HE resource unit sizes, valued by tone count."""
    RU_26_TONE = 26
    RU_52_TONE = 52
    RU_106_TONE = 106
    RU_242_TONE = 242
    RU_484_TONE = 484


@dataclass(frozen=True)
class RuSpec:
    """A distinct RU of a given type within the channel (1-based index)."""
    ru_type: RuType
    index: int


# Equal-size RUs obtainable from the channel, per channel width (MHz).
_RUS_PER_ROUND: Dict[int, Dict[RuType, int]] = {
    20: {
        RuType.RU_242_TONE: 1,
        RuType.RU_106_TONE: 2,
        RuType.RU_52_TONE: 4,
        RuType.RU_26_TONE: 9,
    },
    40: {
        RuType.RU_484_TONE: 1,
        RuType.RU_242_TONE: 2,
        RuType.RU_106_TONE: 4,
        RuType.RU_52_TONE: 8,
        RuType.RU_26_TONE: 18,
    },
}

# RU counts indexed by ruTypeIndex (26-tone first), keyed by total tones.
# This is the table the external ILP uses to turn ruTypeIndex into capacity.
SPLITS: Dict[int, Tuple[int, ...]] = {
    242: (9, 4, 2, 1),
    484: (18, 8, 4, 2, 1),
}

_BANDWIDTH_MHZ: Dict[RuType, int] = {
    RuType.RU_26_TONE: 2,
    RuType.RU_52_TONE: 4,
    RuType.RU_106_TONE: 8,
    RuType.RU_242_TONE: 20,
    RuType.RU_484_TONE: 40,
}


def check_channel_width(channel_width: int) -> int:
    if int(channel_width) not in SUPPORTED_CHANNEL_WIDTHS:
        raise ConfigError(
            f"Only 20 MHz and 40 MHz are supported by the deadline schedulers (got {channel_width})."
        )
    return int(channel_width)


def ru_type_per_round(channel_width: int, packets_per_schedule: int) -> RuType:
    """Pick one RU size for the whole horizon.

    More packets per schedule means smaller RUs and therefore more of them
    per round.
    """
    width = check_channel_width(channel_width)
    n = int(packets_per_schedule)
    if width == 20:
        if n <= 1:
            return RuType.RU_242_TONE
        if n == 2:
            return RuType.RU_106_TONE
        if n <= 4:
            return RuType.RU_52_TONE
        return RuType.RU_26_TONE

    if n <= 1:
        return RuType.RU_484_TONE
    if n == 2:
        return RuType.RU_242_TONE
    if n <= 4:
        return RuType.RU_106_TONE
    if n <= 8:
        return RuType.RU_52_TONE
    return RuType.RU_26_TONE


def rus_per_round(channel_width: int, ru_type: RuType) -> int:
    width = check_channel_width(channel_width)
    try:
        return _RUS_PER_ROUND[width][RuType(ru_type)]
    except KeyError:
        raise ConfigError(f"{RuType(ru_type).name} does not fit in a {width} MHz channel.") from None


def ru_type_index(channel_width: int, ru_type: RuType) -> int:
    """Index of `ru_type` in the splits table (26-tone = 0)."""
    width = check_channel_width(channel_width)
    ordered = sorted(_RUS_PER_ROUND[width], key=int)
    rt = RuType(ru_type)
    if rt not in ordered:
        raise ConfigError(f"{rt.name} does not fit in a {width} MHz channel.")
    return ordered.index(rt)


def total_tones(channel_width: int) -> int:
    width = check_channel_width(channel_width)
    return 242 if width == 20 else 484


def rus_for_index(total_tones_: int, ru_index: int) -> int:
    """RUs per round for a (totalTones, ruTypeIndex) pair as passed to the solvers."""
    splits = SPLITS.get(int(total_tones_))
    if splits is None:
        raise ConfigError(f"Unsupported totalTones {total_tones_} (expected 242 or 484).")
    if not (0 <= int(ru_index) < len(splits)):
        raise ConfigError(f"ruTypeIndex {ru_index} out of range for {total_tones_} tones.")
    return splits[int(ru_index)]


def ru_bandwidth_mhz(ru_type: RuType) -> int:
    return _BANDWIDTH_MHZ[RuType(ru_type)]


def rus_of_type(channel_width: int, ru_type: RuType) -> List[RuSpec]:
    """All distinct RUs of `ru_type` in the channel, in index order."""
    n = rus_per_round(channel_width, ru_type)
    return [RuSpec(RuType(ru_type), i) for i in range(1, n + 1)]


@dataclass(frozen=True)
class RuSizing:
    channel_width: int
    ru_type: RuType
    rus_per_round: int
    ru_type_index: int
    total_tones: int


def size_rus(
    channel_width: int,
    packets_per_schedule: int,
    ru_type: Optional[RuType] = None,
) -> RuSizing:
    """Size the horizon's RUs; `ru_type` pins the size instead of deriving it."""
    rt = ru_type_per_round(channel_width, packets_per_schedule) if ru_type is None else RuType(ru_type)
    return RuSizing(
        channel_width=int(channel_width),
        ru_type=rt,
        rus_per_round=rus_per_round(channel_width, rt),
        ru_type_index=ru_type_index(channel_width, rt),
        total_tones=total_tones(channel_width),
    )
