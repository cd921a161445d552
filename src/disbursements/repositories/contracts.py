from __future__ import annotations

from decimal import Decimal
from typing import Iterable, Mapping, Optional, Protocol

from disbursements.domain.models import (
    CostRecord,
    ExchangeRate,
    FdaHeader,
    FdaStatus,
    LedgerLine,
    LineStatus,
    Payment,
    Pda,
    PdaStatus,
    RateSource,
    ShipParticulars,
    Side,
)


class PdaRepository(Protocol):
    def create_pda(
        self,
        tenant_id: str,
        ship: ShipParticulars,
        client_name: Optional[str],
        client_id: Optional[str],
        rate: ExchangeRate,
        cost: CostRecord,
        comments: Mapping[str, str],
        remarks: Optional[str],
        now_iso: str,
    ) -> int: ...
    def get_pda(self, tenant_id: str, pda_id: int) -> Optional[Pda]: ...
    def list_pdas(self, tenant_id: str, status: Optional[PdaStatus] = None) -> list[Pda]: ...
    def update_pda(
        self,
        tenant_id: str,
        pda_id: int,
        ship: ShipParticulars,
        client_name: Optional[str],
        client_id: Optional[str],
        rate: ExchangeRate,
        cost: CostRecord,
        comments: Mapping[str, str],
        remarks: Optional[str],
        now_iso: str,
    ) -> bool: ...
    def set_pda_status(self, tenant_id: str, pda_id: int, status: PdaStatus, now_iso: str) -> bool: ...


class FdaRepository(Protocol):
    def get_pda(self, tenant_id: str, pda_id: int) -> Optional[Pda]: ...
    def get_fda(self, tenant_id: str, fda_id: int) -> Optional[FdaHeader]: ...
    def get_fda_by_pda(self, tenant_id: str, pda_id: int) -> Optional[FdaHeader]: ...
    def list_fdas(self, tenant_id: str) -> list[FdaHeader]: ...
    def set_fda_status(self, tenant_id: str, fda_id: int, status: FdaStatus, now_iso: str) -> bool: ...
    def list_ledger_lines(self, tenant_id: str, fda_id: int) -> list[LedgerLine]: ...
    def get_ledger_line(self, tenant_id: str, line_id: int) -> Optional[LedgerLine]: ...
    def add_ledger_line(self, tenant_id: str, fda_id: int, line: LedgerLine) -> int: ...
    def update_ledger_line(self, tenant_id: str, line: LedgerLine) -> bool: ...
    def delete_ledger_line(self, tenant_id: str, line_id: int) -> bool: ...
    def lines_due_between(self, tenant_id: str, start_iso: str, end_iso: str) -> list[LedgerLine]: ...
    def fda_dates_between(self, tenant_id: str, start_iso: str, end_iso: str) -> list[tuple]: ...
    def list_payments(self, tenant_id: str, ledger_id: int) -> list[Payment]: ...
    def get_payment(self, tenant_id: str, payment_id: int) -> Optional[Payment]: ...
    def count_pdas_created_between(self, tenant_id: str, start_iso: str, end_iso: str) -> int: ...
    def count_fdas_in_status(self, tenant_id: str, statuses: Iterable[FdaStatus]) -> int: ...
    def fee_revenue_between(self, tenant_id: str, categories: Iterable[str], start_iso: str, end_iso: str) -> Decimal: ...
    def open_balances_by_side(self, tenant_id: str) -> dict[Side, Decimal]: ...


class FxRateCache(Protocol):
    def get_fx_rate(self, date_iso: str) -> Optional[Decimal]: ...
    def set_fx_rate(self, date_iso: str, usd_brl: Decimal, source: RateSource = RateSource.EXTERNAL_FEED) -> None: ...
    def get_latest_fx_rate(self) -> Optional[tuple[str, Decimal]]: ...


class LedgerWriter(Protocol):
    def create_fda_with_ledger(
        self,
        tenant_id: str,
        pda_id: Optional[int],
        header: Mapping[str, object],
        lines: Iterable[LedgerLine],
        now_iso: str,
    ) -> int: ...
    def replace_ledger_lines(
        self, tenant_id: str, fda_id: int, lines: Iterable[LedgerLine], required_status: FdaStatus = FdaStatus.DRAFT
    ) -> int: ...
    def update_fda_header_if_unchanged(
        self,
        tenant_id: str,
        fda_id: int,
        expected_updated_at: str,
        changes: Mapping[str, object],
        now_iso: str,
    ) -> bool: ...
    def add_payment_with_status(
        self, tenant_id: str, payment: Payment, status: LineStatus, settled_at: Optional[str]
    ) -> int: ...
    def delete_payments_with_status(
        self,
        tenant_id: str,
        ledger_id: int,
        payment_ids: Optional[Iterable[int]],
        status: LineStatus,
        settled_at: Optional[str],
    ) -> int: ...
