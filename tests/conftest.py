import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT / "src"))

from da_ofdma_des.models import Station
from da_ofdma_des.ru import RuSizing, RuType, size_rus


@pytest.fixture
def three_stations():
    """The default setup: periods 1, 2, 4 with penalties 5, 10, 15 and no slack."""
    return [
        Station(0, period=1, deadline=0, penalty=5),
        Station(1, period=2, deadline=0, penalty=10),
        Station(2, period=4, deadline=0, penalty=15),
    ]


@pytest.fixture
def single_ru():
    """One 484-tone RU per round on a 40 MHz channel."""
    return size_rus(40, 7, RuType.RU_484_TONE)


_BY_COUNT = {1: RuType.RU_484_TONE, 2: RuType.RU_242_TONE, 4: RuType.RU_106_TONE,
             8: RuType.RU_52_TONE, 18: RuType.RU_26_TONE}


@pytest.fixture
def sizing_with():
    """Factory: 40 MHz sizing with the given RU count per round."""
    def make(rus: int) -> RuSizing:
        return size_rus(40, 1, _BY_COUNT[rus])
    return make
