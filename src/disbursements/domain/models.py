from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Mapping, Optional

from disbursements.domain.errors import ValidationError
from disbursements.domain.money import to_decimal


class Side(str, Enum):
    AP = "AP"
    AR = "AR"


class LineStatus(str, Enum):
    OPEN = "Open"
    PARTIALLY_SETTLED = "Partially Settled"
    SETTLED = "Settled"


class FdaStatus(str, Enum):
    DRAFT = "Draft"
    POSTED = "Posted"
    CLOSED = "Closed"


class PdaStatus(str, Enum):
    CREATED = "CREATED"
    IN_PROGRESS = "IN_PROGRESS"
    SENT = "SENT"
    APPROVED = "APPROVED"


class RateSource(str, Enum):
    MANUAL = "MANUAL"
    EXTERNAL_FEED = "EXTERNAL_FEED"


class LineOrigin(str, Enum):
    PDA = "PDA"
    MANUAL = "MANUAL"


class MilestoneKind(str, Enum):
    ETA = "ETA"
    ETB = "ETB"
    ETS = "ETS"


class CostCategory(str, Enum):
    # Definition order is the display and ledger order.
    PILOTAGE_IN = "pilotage_in"
    TOWAGE_IN = "towage_in"
    LIGHT_DUES = "light_dues"
    DOCKAGE = "dockage"
    LINESMAN = "linesman"
    LAUNCH_BOAT = "launch_boat"
    IMMIGRATION = "immigration"
    FREE_PRATIQUE = "free_pratique"
    SHIPPING_ASSOCIATION = "shipping_association"
    CLEARANCE = "clearance"
    PAPERLESS_PORT = "paperless_port"
    AGENCY_FEE = "agency_fee"
    WATERWAY = "waterway"


ZERO = Decimal("0")


@dataclass(frozen=True)
class ExchangeRate:
    rate: Decimal
    source: RateSource = RateSource.MANUAL
    timestamp: Optional[str] = None


@dataclass(frozen=True)
class CustomLine:
    label: str
    amount_usd: Decimal = ZERO
    comment: str = ""


@dataclass(frozen=True)
class CostRecord:
    amounts: Mapping[CostCategory, Decimal] = field(default_factory=dict)
    custom_lines: tuple[CustomLine, ...] = ()

    def __post_init__(self) -> None:
        normalized: dict[CostCategory, Decimal] = {}
        for key, value in self.amounts.items():
            category = CostCategory(key)
            amount = to_decimal(value)
            if amount < 0:
                raise ValidationError(f"Amount for {category.value} must be >= 0.")
            normalized[category] = amount
        lines = []
        for line in self.custom_lines:
            amount = to_decimal(line.amount_usd)
            if amount < 0:
                raise ValidationError(f"Amount for custom line '{line.label}' must be >= 0.")
            lines.append(CustomLine(line.label, amount, line.comment))
        object.__setattr__(self, "amounts", normalized)
        object.__setattr__(self, "custom_lines", tuple(lines))

    def amount(self, category: CostCategory) -> Decimal:
        return self.amounts.get(category, ZERO)

    def total_usd(self) -> Decimal:
        return sum(self.amounts.values(), ZERO) + sum((c.amount_usd for c in self.custom_lines), ZERO)


@dataclass(frozen=True)
class ShipParticulars:
    vessel_name: str
    dwt: Decimal
    loa: Decimal
    port: str
    imo: Optional[str] = None
    terminal: Optional[str] = None
    berths: tuple[str, ...] = ()
    cargo: Optional[str] = None
    arrival_date: Optional[str] = None


@dataclass(frozen=True)
class Pda:
    id: int
    tenant_id: str
    pda_number: str
    status: PdaStatus
    ship: ShipParticulars
    client_name: Optional[str]
    client_id: Optional[str]
    exchange_rate: ExchangeRate
    cost: CostRecord
    comments: Mapping[str, str]
    remarks: Optional[str]
    created_at: str
    updated_at: str


@dataclass(frozen=True)
class FdaHeader:
    id: int
    tenant_id: str
    pda_id: Optional[int]
    status: FdaStatus
    client_name: Optional[str]
    client_id: Optional[str]
    vessel_name: Optional[str]
    imo: Optional[str]
    port: Optional[str]
    terminal: Optional[str]
    currency_base: str
    currency_local: str
    exchange_rate: ExchangeRate
    client_share_pct: Decimal
    received_from_client_usd: Decimal
    eta: Optional[str]
    etb: Optional[str]
    ets: Optional[str]
    remarks: Optional[str]
    meta: Mapping[str, object]
    created_at: str
    updated_at: str


@dataclass(frozen=True)
class LedgerLine:
    line_no: int
    side: Side
    category: str
    description: str
    counterparty: str
    amount_usd: Decimal
    amount_local: Decimal
    status: LineStatus = LineStatus.OPEN
    origin: LineOrigin = LineOrigin.PDA
    pda_field: Optional[CostCategory] = None
    custom_fx_rate: Optional[Decimal] = None
    invoice_no: Optional[str] = None
    due_date: Optional[str] = None
    settled_at: Optional[str] = None
    comment: Optional[str] = None
    id: Optional[int] = None
    fda_id: Optional[int] = None


@dataclass(frozen=True)
class Payment:
    ledger_id: int
    paid_at: str
    amount_usd: Decimal
    fx_at_payment: Decimal
    amount_local: Decimal
    method: str
    reference: Optional[str] = None
    id: Optional[int] = None


@dataclass(frozen=True)
class LedgerTotals:
    ap_usd: Decimal
    ap_local: Decimal
    ar_usd: Decimal
    ar_local: Decimal
    net_usd: Decimal
    net_local: Decimal


@dataclass(frozen=True)
class StatusTally:
    open: int
    partially_settled: int
    settled: int


@dataclass(frozen=True)
class FdaSummary:
    header: FdaHeader
    totals: LedgerTotals
    tally: StatusTally
    due_from_client_usd: Decimal
    outstanding_from_client_usd: Decimal


@dataclass(frozen=True)
class FdaMilestone:
    fda_id: int
    kind: MilestoneKind
    date: str
    vessel_name: Optional[str]
    port: Optional[str]


@dataclass(frozen=True)
class Schedule:
    """Ledger dues and vessel milestones falling inside one date range."""

    start: str
    end: str
    dues: tuple[LedgerLine, ...] = ()
    milestones: tuple[FdaMilestone, ...] = ()


@dataclass(frozen=True)
class DashboardKpis:
    quarter_start: str
    pda_count: int
    pda_prev_count: int
    fda_open_count: int
    revenue_usd: Decimal
    revenue_prev_usd: Decimal
    ar_open_usd: Decimal
    ap_open_usd: Decimal
