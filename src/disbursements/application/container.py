from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from disbursements.config import FxSettings
from disbursements.repositories.sqlite_repo import SqliteRepository
from disbursements.services.fda_service import FdaService
from disbursements.services.fx_service import FxService
from disbursements.services.ledger_service import LedgerService
from disbursements.services.pda_service import PdaService
from disbursements.services.pricing_service import ItaquiPricingOracle, PricingOracle
from disbursements.services.reporting_service import ReportingService


@dataclass(frozen=True)
class AppContainer:
    repo: SqliteRepository
    fx: FxService
    pricing: PricingOracle
    pdas: PdaService
    fdas: FdaService
    ledger: LedgerService
    reporting: ReportingService


def build_container(db_path: Path | str, fx_settings: FxSettings | None = None) -> AppContainer:
    repo = SqliteRepository(db_path)
    repo.init_db()

    fx = FxService(repo, fx_settings)
    fdas = FdaService(repo)

    return AppContainer(
        repo=repo,
        fx=fx,
        pricing=ItaquiPricingOracle(),
        pdas=PdaService(repo),
        fdas=fdas,
        ledger=LedgerService(repo),
        reporting=ReportingService(repo, fdas),
    )
