from __future__ import annotations

import logging
from typing import Mapping, Optional

from disbursements.domain.errors import InvalidStateError, NotFoundError, ValidationError
from disbursements.domain.models import CostRecord, ExchangeRate, Pda, PdaStatus, ShipParticulars
from disbursements.domain.money import validate_rate
from disbursements.domain.validation import validate_comments, validate_remarks, validate_ship
from disbursements.domain.wizard import WizardState, to_cost_record
from disbursements.repositories.contracts import PdaRepository
from disbursements.repositories.unit_of_work import now_iso

log = logging.getLogger("disbursements.pda")


def _require_tenant(tenant_id: str) -> str:
    tenant = (tenant_id or "").strip()
    if not tenant:
        raise ValidationError("Tenant is required.")
    return tenant


class PdaService:
    def __init__(self, repo: PdaRepository):
        self.repo = repo

    def _validate(self, ship: ShipParticulars, rate: ExchangeRate, comments, remarks) -> None:
        validate_ship(ship)
        validate_rate(rate.rate)
        validate_comments(comments)
        validate_remarks(remarks)

    def create_pda(
        self,
        tenant_id: str,
        ship: ShipParticulars,
        cost: CostRecord,
        rate: ExchangeRate,
        client_name: Optional[str],
        client_id: Optional[str] = None,
        comments: Optional[Mapping[str, str]] = None,
        remarks: Optional[str] = None,
    ) -> int:
        tenant = _require_tenant(tenant_id)
        self._validate(ship, rate, comments, remarks)
        pda_id = self.repo.create_pda(
            tenant, ship, client_name, client_id, rate, cost, dict(comments or {}), remarks, now_iso()
        )
        log.info("pda_created tenant=%s pda_id=%s vessel=%s total_usd=%s", tenant, pda_id, ship.vessel_name, cost.total_usd())
        return int(pda_id)

    def create_from_wizard(
        self,
        tenant_id: str,
        state: WizardState,
        client_name: Optional[str],
        client_id: Optional[str] = None,
    ) -> int:
        if state.ship is None:
            raise ValidationError("Ship particulars are required.")
        if state.exchange_rate is None:
            raise ValidationError("Exchange rate is required.")
        return self.create_pda(
            tenant_id,
            state.ship,
            to_cost_record(state),
            state.exchange_rate,
            client_name,
            client_id=client_id,
            comments=state.comments,
            remarks=state.remarks,
        )

    def get_pda(self, tenant_id: str, pda_id: int) -> Pda:
        pda = self.repo.get_pda(_require_tenant(tenant_id), int(pda_id))
        if pda is None:
            raise NotFoundError("PDA not found.")
        return pda

    def list_pdas(self, tenant_id: str, status: Optional[PdaStatus] = None) -> list[Pda]:
        return self.repo.list_pdas(_require_tenant(tenant_id), status)

    def update_pda(
        self,
        tenant_id: str,
        pda_id: int,
        *,
        ship: Optional[ShipParticulars] = None,
        cost: Optional[CostRecord] = None,
        rate: Optional[ExchangeRate] = None,
        client_name: Optional[str] = None,
        client_id: Optional[str] = None,
        comments: Optional[Mapping[str, str]] = None,
        remarks: Optional[str] = None,
    ) -> Pda:
        """Edit a PDA before approval. Arguments left as None keep their stored value."""
        current = self.get_pda(tenant_id, pda_id)
        if current.status is PdaStatus.APPROVED:
            raise InvalidStateError(f"{current.pda_number} is approved and can no longer be edited.")

        ship = ship or current.ship
        rate = rate or current.exchange_rate
        merged_comments = dict(current.comments)
        merged_comments.update(comments or {})
        remarks = current.remarks if remarks is None else remarks
        self._validate(ship, rate, merged_comments, remarks)

        self.repo.update_pda(
            current.tenant_id,
            current.id,
            ship,
            current.client_name if client_name is None else client_name,
            current.client_id if client_id is None else client_id,
            rate,
            cost or current.cost,
            merged_comments,
            remarks,
            now_iso(),
        )
        log.info("pda_updated tenant=%s pda_id=%s", current.tenant_id, current.id)
        return self.get_pda(tenant_id, pda_id)

    def set_status(self, tenant_id: str, pda_id: int, status: PdaStatus) -> Pda:
        current = self.get_pda(tenant_id, pda_id)
        status = PdaStatus(status)
        if current.status is status:
            return current
        if current.status is PdaStatus.APPROVED:
            raise InvalidStateError(f"{current.pda_number} is approved; its status is final.")
        self.repo.set_pda_status(current.tenant_id, current.id, status, now_iso())
        log.info("pda_status tenant=%s pda_id=%s from=%s to=%s", current.tenant_id, current.id, current.status.value, status.value)
        return self.get_pda(tenant_id, pda_id)

    def approve(self, tenant_id: str, pda_id: int) -> Pda:
        return self.set_status(tenant_id, pda_id, PdaStatus.APPROVED)
