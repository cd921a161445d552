from datetime import datetime
from decimal import Decimal
from pathlib import Path

import pytest
from conftest import TENANT, make_ship

from disbursements.domain.errors import InvalidRate, InvalidStateError, NotFoundError, ValidationError
from disbursements.domain.models import CostCategory, CostRecord, ExchangeRate, PdaStatus
from disbursements.domain.wizard import WizardState, add_custom_line, enter_cost, set_exchange_rate, set_ship_particulars, update_custom_line
from disbursements.repositories.sqlite_repo import SqliteRepository
from disbursements.services.pda_service import PdaService

RATE = ExchangeRate(Decimal("5.25"))


def _service(tmp_path: Path) -> PdaService:
    repo = SqliteRepository(tmp_path / "pda.db")
    repo.init_db()
    return PdaService(repo)


def test_create_pda_assigns_sequential_numbers(tmp_path: Path):
    pdas = _service(tmp_path)
    cost = CostRecord(amounts={CostCategory.DOCKAGE: "1500"})

    first = pdas.get_pda(TENANT, pdas.create_pda(TENANT, make_ship(), cost, RATE, "Cargill"))
    second = pdas.get_pda(TENANT, pdas.create_pda(TENANT, make_ship(), cost, RATE, "Cargill"))

    year = datetime.now().year
    assert first.pda_number == f"PDA-{year}-0001"
    assert second.pda_number == f"PDA-{year}-0002"
    assert first.status is PdaStatus.CREATED
    assert first.cost.amount(CostCategory.DOCKAGE) == Decimal("1500")
    assert first.ship.berths == ("101",)


@pytest.mark.parametrize(
    "overrides",
    [
        {"vessel_name": " "},
        {"dwt": Decimal("0")},
        {"loa": Decimal("-1")},
        {"port": ""},
        {"imo": "12345"},
    ],
)
def test_invalid_ship_particulars_are_rejected(tmp_path: Path, overrides):
    pdas = _service(tmp_path)
    with pytest.raises(ValidationError):
        pdas.create_pda(TENANT, make_ship(**overrides), CostRecord(), RATE, "Cargill")


def test_long_comments_and_remarks_are_rejected(tmp_path: Path):
    pdas = _service(tmp_path)
    with pytest.raises(ValidationError):
        pdas.create_pda(TENANT, make_ship(), CostRecord(), RATE, None, comments={"dockage": "x" * 501})
    with pytest.raises(ValidationError):
        pdas.create_pda(TENANT, make_ship(), CostRecord(), RATE, None, remarks="x" * 10_001)


def test_zero_rate_is_rejected(tmp_path: Path):
    pdas = _service(tmp_path)
    with pytest.raises(InvalidRate):
        pdas.create_pda(TENANT, make_ship(), CostRecord(), ExchangeRate(Decimal("0")), None)


def test_approved_pda_is_locked(tmp_path: Path):
    pdas = _service(tmp_path)
    pda_id = pdas.create_pda(TENANT, make_ship(), CostRecord(), RATE, "Cargill")

    updated = pdas.update_pda(TENANT, pda_id, cost=CostRecord(amounts={CostCategory.CLEARANCE: "80"}), remarks="ok")
    assert updated.cost.amount(CostCategory.CLEARANCE) == Decimal("80")
    assert updated.remarks == "ok"

    pdas.set_status(TENANT, pda_id, PdaStatus.SENT)
    pdas.approve(TENANT, pda_id)

    with pytest.raises(InvalidStateError):
        pdas.update_pda(TENANT, pda_id, remarks="too late")
    with pytest.raises(InvalidStateError):
        pdas.set_status(TENANT, pda_id, PdaStatus.IN_PROGRESS)


def test_create_from_wizard_keeps_custom_lines(tmp_path: Path):
    pdas = _service(tmp_path)
    state = set_ship_particulars(WizardState(), make_ship())
    state = set_exchange_rate(state, RATE)
    state = enter_cost(state, CostCategory.AGENCY_FEE, "2500")
    state = add_custom_line(state, "Garbage removal")
    state = update_custom_line(state, 0, amount_usd="300")

    pda = pdas.get_pda(TENANT, pdas.create_from_wizard(TENANT, state, "Vale"))

    assert pda.cost.amount(CostCategory.AGENCY_FEE) == Decimal("2500")
    assert pda.cost.custom_lines[0].label == "Garbage removal"
    assert pda.cost.custom_lines[0].amount_usd == Decimal("300")
    assert pda.client_name == "Vale"


def test_pdas_are_isolated_by_tenant(tmp_path: Path):
    pdas = _service(tmp_path)
    pda_id = pdas.create_pda(TENANT, make_ship(), CostRecord(), RATE, None)
    pdas.create_pda("agency-b", make_ship(), CostRecord(), RATE, None)

    with pytest.raises(NotFoundError):
        pdas.get_pda("agency-b", pda_id)
    assert len(pdas.list_pdas(TENANT)) == 1
    assert pdas.list_pdas("agency-b")[0].pda_number.endswith("-0001")
