from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, Mapping, Optional, Protocol

from disbursements.domain.models import LedgerLine, LineStatus, Payment


def now_iso() -> str:
    return datetime.now().isoformat(sep=" ", timespec="microseconds")


class UnitOfWork(Protocol):
    def __enter__(self) -> "UnitOfWork": ...
    def __exit__(self, exc_type, exc, tb) -> None: ...
    def create_fda(self, tenant_id: str, pda_id: Optional[int], header: Mapping[str, object], lines: Iterable[LedgerLine]) -> int: ...
    def replace_ledger(self, tenant_id: str, fda_id: int, lines: Iterable[LedgerLine]) -> int: ...
    def update_fda_header(self, tenant_id: str, fda_id: int, expected_updated_at: str, changes: Mapping[str, object]) -> bool: ...
    def record_payment(self, tenant_id: str, payment: Payment, status: LineStatus) -> int: ...
    def remove_payments(self, tenant_id: str, ledger_id: int, payment_ids: Optional[Iterable[int]], status: LineStatus) -> int: ...


@dataclass
class RepositoryUnitOfWork:
    """Unit of Work adapter for transactional ledger writes.

    Each repository method called here runs inside a single SQLite
    transaction. This class stamps times and settlement dates so services
    stay persistence-agnostic.
    """

    repo: object

    def __enter__(self) -> "RepositoryUnitOfWork":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        return None

    def create_fda(self, tenant_id: str, pda_id: Optional[int], header: Mapping[str, object], lines: Iterable[LedgerLine]) -> int:
        return int(self.repo.create_fda_with_ledger(tenant_id, pda_id, header, list(lines), now_iso()))

    def replace_ledger(self, tenant_id: str, fda_id: int, lines: Iterable[LedgerLine]) -> int:
        return int(self.repo.replace_ledger_lines(tenant_id, fda_id, list(lines)))

    def update_fda_header(self, tenant_id: str, fda_id: int, expected_updated_at: str, changes: Mapping[str, object]) -> bool:
        return bool(self.repo.update_fda_header_if_unchanged(tenant_id, fda_id, expected_updated_at, changes, now_iso()))

    def record_payment(self, tenant_id: str, payment: Payment, status: LineStatus) -> int:
        settled_at = now_iso() if status is LineStatus.SETTLED else None
        return int(self.repo.add_payment_with_status(tenant_id, payment, status, settled_at))

    def remove_payments(self, tenant_id: str, ledger_id: int, payment_ids: Optional[Iterable[int]], status: LineStatus) -> int:
        settled_at = now_iso() if status is LineStatus.SETTLED else None
        ids = list(payment_ids) if payment_ids is not None else None
        return int(self.repo.delete_payments_with_status(tenant_id, ledger_id, ids, status, settled_at))
