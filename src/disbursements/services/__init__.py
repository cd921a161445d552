from .fx_service import FxService
from .pricing_service import ItaquiPricingOracle, PricingOracle
from .pda_service import PdaService
from .fda_service import FdaService
from .ledger_service import LedgerService
from .reporting_service import ReportingService

__all__ = [
    "FxService",
    "ItaquiPricingOracle",
    "PricingOracle",
    "PdaService",
    "FdaService",
    "LedgerService",
    "ReportingService",
]
