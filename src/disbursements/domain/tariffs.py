from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable, Optional, Sequence


@dataclass(frozen=True)
class TariffBracket:
    min_dwt: int
    max_dwt: Optional[int]  # None = no upper bound
    usd: Decimal

    def contains(self, dwt: Decimal) -> bool:
        return dwt >= self.min_dwt and (self.max_dwt is None or dwt <= self.max_dwt)


@dataclass(frozen=True)
class TariffGroup:
    name: str
    berths: frozenset[int]
    table: tuple[TariffBracket, ...]


def _table(*rows: tuple[int, Optional[int], str]) -> tuple[TariffBracket, ...]:
    return tuple(TariffBracket(lo, hi, Decimal(usd)) for lo, hi, usd in rows)


# Itaqui (Sao Luis) port tariffs, USD per call.
ITAQUI_PORT = "Itaqui"

PILOTAGE_STANDARD = TariffGroup(
    name="Berths 99-104",
    berths=frozenset({99, 100, 101, 102, 103, 104}),
    table=_table(
        (0, 1000, "6389.79"),
        (1001, 10000, "8500.00"),
        (10001, 20000, "12000.00"),
        (20001, 40000, "15500.00"),
        (40001, 70000, "19769.48"),
        (70001, 100000, "25000.00"),
        (100001, None, "32000.00"),
    ),
)

PILOTAGE_HIGH = TariffGroup(
    name="Berths 106 & 108",
    berths=frozenset({106, 108}),
    table=_table(
        (0, 1000, "8906.70"),
        (1001, 10000, "12500.00"),
        (10001, 20000, "16800.00"),
        (20001, 40000, "22500.00"),
        (40001, 70000, "28000.00"),
        (70001, 100000, "34401.60"),
        (100001, None, "42000.00"),
    ),
)

# Highest rate group first: mixed berth selections price at the higher group.
PILOTAGE_GROUPS: tuple[TariffGroup, ...] = (PILOTAGE_HIGH, PILOTAGE_STANDARD)

TOWAGE_TABLE = _table(
    (0, 1000, "13684.00"),
    (1001, 10000, "18500.00"),
    (10001, 20000, "25600.00"),
    (20001, 40000, "35800.00"),
    (40001, 70000, "45632.00"),
    (70001, 100000, "49421.00"),
    (100001, None, "58000.00"),
)

LIGHT_DUES_TABLE = _table(
    (0, 999, "0.00"),
    (1000, 50000, "1500.00"),
    (50001, 100000, "2250.00"),
    (100001, None, "3000.00"),
)


def pick_bracket(dwt: Decimal, rows: Sequence[TariffBracket]) -> TariffBracket:
    for row in rows:
        if row.contains(dwt):
            return row
    # Fractional DWT between two integer brackets falls to the upper one;
    # values outside the table clamp to the nearest edge.
    for row in rows:
        if dwt < row.min_dwt:
            return row
    return rows[-1]


def normalize_berth(berth: str) -> int:
    digits = str(berth).strip().lstrip("0")
    try:
        return int(digits)
    except ValueError:
        return 0


def pilotage_group_for(berths: Iterable[str]) -> Optional[TariffGroup]:
    numbers = {normalize_berth(b) for b in berths}
    for group in PILOTAGE_GROUPS:
        if numbers & group.berths:
            return group
    return None
