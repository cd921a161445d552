from .models import (
    CostCategory,
    CostRecord,
    CustomLine,
    DashboardKpis,
    ExchangeRate,
    FdaHeader,
    FdaMilestone,
    FdaStatus,
    FdaSummary,
    LedgerLine,
    LedgerTotals,
    LineOrigin,
    LineStatus,
    MilestoneKind,
    Payment,
    Pda,
    PdaStatus,
    RateSource,
    Schedule,
    ShipParticulars,
    Side,
    StatusTally,
)
from .errors import (
    AppError,
    ConcurrencyConflict,
    FxUnavailableError,
    InvalidRate,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)

__all__ = [
    "CostCategory",
    "CostRecord",
    "CustomLine",
    "DashboardKpis",
    "ExchangeRate",
    "FdaHeader",
    "FdaMilestone",
    "FdaStatus",
    "FdaSummary",
    "LedgerLine",
    "LedgerTotals",
    "LineOrigin",
    "LineStatus",
    "MilestoneKind",
    "Payment",
    "Pda",
    "PdaStatus",
    "RateSource",
    "Schedule",
    "ShipParticulars",
    "Side",
    "StatusTally",
    "AppError",
    "ConcurrencyConflict",
    "FxUnavailableError",
    "InvalidRate",
    "InvalidStateError",
    "NotFoundError",
    "ValidationError",
]
