from datetime import date
from decimal import Decimal
from pathlib import Path

import pytest
from conftest import TENANT, create_approved_pda, make_ship

from disbursements.domain.errors import ConcurrencyConflict, InvalidStateError, NotFoundError, ValidationError
from disbursements.domain.models import CostCategory, CostRecord, ExchangeRate, FdaStatus, LineOrigin, Side
from disbursements.repositories.sqlite_repo import SqliteRepository
from disbursements.services.fda_service import FdaService, _quarter_start, _shift_quarter
from disbursements.services.ledger_service import LedgerService
from disbursements.services.pda_service import PdaService


def _repo(tmp_path: Path, name: str = "fda.db") -> SqliteRepository:
    repo = SqliteRepository(tmp_path / name)
    repo.init_db()
    return repo


def test_convert_approved_pda_creates_draft_with_ledger(tmp_path: Path):
    repo = _repo(tmp_path)
    pda_id = create_approved_pda(repo)
    fdas = FdaService(repo)

    fda_id = fdas.convert_pda_to_fda(TENANT, pda_id)

    header = fdas.get_fda(TENANT, fda_id)
    assert header.status is FdaStatus.DRAFT
    assert header.exchange_rate.rate == Decimal("5.25")
    assert header.client_name == "Cargill"
    assert header.vessel_name == "MV Atlantic Star"
    assert header.meta["pda_number"].startswith("PDA-")

    lines = fdas.get_ledger(TENANT, fda_id)
    assert [(ln.line_no, ln.category, ln.amount_local) for ln in lines] == [
        (1, "Pilot IN/OUT", Decimal("6300.00")),
        (2, "Agency fee", Decimal("51471.00")),
    ]

    totals = fdas.totals(TENANT, fda_id)
    assert totals.net_usd == Decimal("8604")


def test_second_conversion_returns_existing_fda(tmp_path: Path):
    repo = _repo(tmp_path)
    pda_id = create_approved_pda(repo)
    fdas = FdaService(repo)

    first = fdas.convert_pda_to_fda(TENANT, pda_id)
    second = fdas.convert_pda_to_fda(TENANT, pda_id)

    assert first == second
    assert len(fdas.list_fdas(TENANT)) == 1


def test_unapproved_pda_cannot_be_converted(tmp_path: Path):
    repo = _repo(tmp_path)
    pdas = PdaService(repo)
    pda_id = pdas.create_pda(TENANT, make_ship(), CostRecord(), ExchangeRate(Decimal("5")), None)

    with pytest.raises(InvalidStateError):
        FdaService(repo).convert_pda_to_fda(TENANT, pda_id)


def test_fda_rate_is_frozen_copy_of_pda_rate(tmp_path: Path):
    repo = _repo(tmp_path)
    pda_id = create_approved_pda(repo, rate="5.25")
    fdas = FdaService(repo)
    fda_id = fdas.convert_pda_to_fda(TENANT, pda_id)

    header = fdas.get_fda(TENANT, fda_id)
    fdas.update_header(TENANT, fda_id, header.updated_at, exchange_rate="5.50")

    assert repo.get_pda(TENANT, pda_id).exchange_rate.rate == Decimal("5.25")
    assert fdas.get_fda(TENANT, fda_id).exchange_rate.rate == Decimal("5.50")


def test_rate_change_reprices_lines_without_custom_rate(tmp_path: Path):
    repo = _repo(tmp_path)
    fdas = FdaService(repo)
    ledger = LedgerService(repo)
    fda_id = fdas.convert_pda_to_fda(TENANT, create_approved_pda(repo))
    pilot, agency = fdas.get_ledger(TENANT, fda_id)
    ledger.update_line(TENANT, agency.id, custom_fx_rate="5.00")

    header = fdas.get_fda(TENANT, fda_id)
    fdas.update_header(TENANT, fda_id, header.updated_at, exchange_rate="5.50")

    pilot, agency = fdas.get_ledger(TENANT, fda_id)
    assert pilot.amount_local == Decimal("6600.00")
    assert agency.amount_local == Decimal("49020.00")


def test_stale_header_edit_raises_conflict(tmp_path: Path):
    repo = _repo(tmp_path)
    fdas = FdaService(repo)
    fda_id = fdas.convert_pda_to_fda(TENANT, create_approved_pda(repo))
    stale = fdas.get_fda(TENANT, fda_id).updated_at

    fdas.update_header(TENANT, fda_id, stale, remarks="first editor")
    with pytest.raises(ConcurrencyConflict):
        fdas.update_header(TENANT, fda_id, stale, remarks="second editor")

    assert fdas.get_fda(TENANT, fda_id).remarks == "first editor"


def test_rate_change_is_draft_only(tmp_path: Path):
    repo = _repo(tmp_path)
    fdas = FdaService(repo)
    fda_id = fdas.convert_pda_to_fda(TENANT, create_approved_pda(repo))
    posted = fdas.set_status(TENANT, fda_id, FdaStatus.POSTED)

    with pytest.raises(InvalidStateError):
        fdas.update_header(TENANT, fda_id, posted.updated_at, exchange_rate="6")

    updated = fdas.update_header(TENANT, fda_id, posted.updated_at, etb="2024-03-11")
    assert updated.etb == "2024-03-11"


def test_summary_uses_client_share_and_cash_advance(tmp_path: Path):
    repo = _repo(tmp_path)
    fdas = FdaService(repo)
    fda_id = fdas.convert_pda_to_fda(TENANT, create_approved_pda(repo))
    header = fdas.get_fda(TENANT, fda_id)

    fdas.update_header(TENANT, fda_id, header.updated_at, client_share_pct="150", received_from_client_usd="4000")
    summary = fdas.summary(TENANT, fda_id)

    assert summary.header.client_share_pct == Decimal("100")
    assert summary.due_from_client_usd == Decimal("1200.00")
    assert summary.outstanding_from_client_usd == Decimal("4604")
    assert summary.tally.open == 2


def test_status_transitions(tmp_path: Path):
    repo = _repo(tmp_path)
    fdas = FdaService(repo)
    fda_id = fdas.convert_pda_to_fda(TENANT, create_approved_pda(repo))

    with pytest.raises(InvalidStateError):
        fdas.set_status(TENANT, fda_id, FdaStatus.CLOSED)
    fdas.set_status(TENANT, fda_id, FdaStatus.POSTED)
    fdas.set_status(TENANT, fda_id, FdaStatus.DRAFT)
    fdas.set_status(TENANT, fda_id, FdaStatus.POSTED)
    closed = fdas.set_status(TENANT, fda_id, FdaStatus.CLOSED)
    with pytest.raises(InvalidStateError):
        fdas.set_status(TENANT, fda_id, FdaStatus.POSTED)
    with pytest.raises(InvalidStateError):
        fdas.update_header(TENANT, fda_id, closed.updated_at, remarks="x")


def test_rebuild_requires_draft_and_confirmation(tmp_path: Path):
    repo = _repo(tmp_path)
    fdas = FdaService(repo)
    ledger = LedgerService(repo)
    fda_id = fdas.convert_pda_to_fda(TENANT, create_approved_pda(repo))
    manual = ledger.add_line(TENANT, fda_id, Side.AR)
    pilot = fdas.get_ledger(TENANT, fda_id)[0]
    ledger.add_payment(TENANT, pilot.id, "300", paid_at="2024-03-12")

    with pytest.raises(ValidationError):
        fdas.rebuild_from_pda(TENANT, fda_id)

    lines = fdas.rebuild_from_pda(TENANT, fda_id, confirmed=True)

    assert [ln.line_no for ln in lines] == [1, 2]
    assert all(ln.origin is LineOrigin.PDA for ln in lines)
    assert manual.id not in {ln.id for ln in lines}
    assert ledger.list_payments(TENANT, lines[0].id) == []

    fdas.set_status(TENANT, fda_id, FdaStatus.POSTED)
    with pytest.raises(InvalidStateError):
        fdas.rebuild_from_pda(TENANT, fda_id, confirmed=True)


class FailingInsertRepo(SqliteRepository):
    fail_inserts = False

    def _insert_ledger_line(self, cur, tenant_id, fda_id, line):
        line_id = super()._insert_ledger_line(cur, tenant_id, fda_id, line)
        if self.fail_inserts and line.line_no == 2:
            raise RuntimeError("boom")
        return line_id


def test_rebuild_rolls_back_when_repository_fails(tmp_path: Path):
    repo = FailingInsertRepo(tmp_path / "rollback.db")
    repo.init_db()
    fdas = FdaService(repo)
    fda_id = fdas.convert_pda_to_fda(TENANT, create_approved_pda(repo))
    before = fdas.get_ledger(TENANT, fda_id)

    repo.fail_inserts = True
    with pytest.raises(RuntimeError):
        fdas.rebuild_from_pda(TENANT, fda_id, confirmed=True)

    assert fdas.get_ledger(TENANT, fda_id) == before


def test_conversion_rolls_back_header_when_ledger_insert_fails(tmp_path: Path):
    repo = FailingInsertRepo(tmp_path / "convert.db")
    repo.init_db()
    repo.fail_inserts = True
    pda_id = create_approved_pda(repo)
    fdas = FdaService(repo)

    with pytest.raises(RuntimeError):
        fdas.convert_pda_to_fda(TENANT, pda_id)

    assert fdas.list_fdas(TENANT) == []


def test_fda_is_invisible_to_other_tenants(tmp_path: Path):
    repo = _repo(tmp_path)
    fdas = FdaService(repo)
    fda_id = fdas.convert_pda_to_fda(TENANT, create_approved_pda(repo))

    with pytest.raises(NotFoundError):
        fdas.get_fda("agency-b", fda_id)
    with pytest.raises(NotFoundError):
        fdas.get_ledger("agency-b", fda_id)
    assert fdas.list_fdas("agency-b") == []


def test_unknown_header_field_is_rejected(tmp_path: Path):
    repo = _repo(tmp_path)
    fdas = FdaService(repo)
    fda_id = fdas.convert_pda_to_fda(TENANT, create_approved_pda(repo, amounts={CostCategory.DOCKAGE: "10"}))
    header = fdas.get_fda(TENANT, fda_id)

    with pytest.raises(ValidationError):
        fdas.update_header(TENANT, fda_id, header.updated_at, status="Closed")


def test_pda_comments_are_carried_onto_ledger_lines(tmp_path: Path):
    repo = _repo(tmp_path)
    pdas = PdaService(repo)
    cost = CostRecord(amounts={CostCategory.PILOTAGE_IN: "1200", CostCategory.AGENCY_FEE: "9804"})
    pda_id = pdas.create_pda(
        TENANT, make_ship(), cost, ExchangeRate(Decimal("5.25")), "Cargill", comments={"pilotage_in": "2 pilots night"}
    )
    pdas.approve(TENANT, pda_id)
    fdas = FdaService(repo)

    fda_id = fdas.convert_pda_to_fda(TENANT, pda_id)
    pilot, agency = fdas.get_ledger(TENANT, fda_id)
    assert pilot.comment == "2 pilots night"
    assert agency.comment is None

    rebuilt = fdas.rebuild_from_pda(TENANT, fda_id, confirmed=True)
    assert rebuilt[0].comment == "2 pilots night"


class PostsDuringRebuildRepo(SqliteRepository):
    """Another user posts the FDA between the service's status check and the rewrite."""

    def replace_ledger_lines(self, tenant_id, fda_id, lines, required_status=FdaStatus.DRAFT):
        self.set_fda_status(tenant_id, fda_id, FdaStatus.POSTED, "2024-03-12 10:00:00.000000")
        return super().replace_ledger_lines(tenant_id, fda_id, lines, required_status)


def test_rebuild_refuses_fda_posted_before_the_write(tmp_path: Path):
    repo = PostsDuringRebuildRepo(tmp_path / "posted.db")
    repo.init_db()
    fdas = FdaService(repo)
    ledger = LedgerService(repo)
    fda_id = fdas.convert_pda_to_fda(TENANT, create_approved_pda(repo))
    ledger.add_line(TENANT, fda_id, Side.AR)
    pilot = fdas.get_ledger(TENANT, fda_id)[0]
    ledger.add_payment(TENANT, pilot.id, "300", paid_at="2024-03-12")
    before = fdas.get_ledger(TENANT, fda_id)

    with pytest.raises(InvalidStateError):
        fdas.rebuild_from_pda(TENANT, fda_id, confirmed=True)

    assert fdas.get_fda(TENANT, fda_id).status is FdaStatus.POSTED
    assert fdas.get_ledger(TENANT, fda_id) == before
    assert len(ledger.list_payments(TENANT, pilot.id)) == 1


class LateFdaVisibilityRepo(SqliteRepository):
    """Hides an existing FDA from the first lookup, like a conversion committed by another session."""

    hide_next_lookup = False

    def get_fda_by_pda(self, tenant_id, pda_id):
        if self.hide_next_lookup:
            self.hide_next_lookup = False
            return None
        return super().get_fda_by_pda(tenant_id, pda_id)


def test_racing_conversion_returns_existing_fda(tmp_path: Path):
    repo = LateFdaVisibilityRepo(tmp_path / "race.db")
    repo.init_db()
    pda_id = create_approved_pda(repo)
    fdas = FdaService(repo)
    first = fdas.convert_pda_to_fda(TENANT, pda_id)

    repo.hide_next_lookup = True
    second = fdas.convert_pda_to_fda(TENANT, pda_id)

    assert second == first
    assert len(fdas.list_fdas(TENANT)) == 1


def test_dashboard_kpis(tmp_path: Path):
    repo = _repo(tmp_path)
    fdas = FdaService(repo)
    ledger = LedgerService(repo)
    fda_id = fdas.convert_pda_to_fda(TENANT, create_approved_pda(repo))
    create_approved_pda(repo)
    pilot, agency = fdas.get_ledger(TENANT, fda_id)
    ledger.add_payment(TENANT, pilot.id, "300", paid_at="2024-03-12")

    kpis = fdas.kpis(TENANT)

    assert kpis.pda_count == 2
    assert kpis.pda_prev_count == 0
    assert kpis.fda_open_count == 1
    assert kpis.revenue_usd == Decimal("9804")
    assert kpis.revenue_prev_usd == Decimal("0")
    assert kpis.ar_open_usd == Decimal("9804")
    assert kpis.ap_open_usd == Decimal("900")

    ledger.mark_settled(TENANT, agency.id)
    fdas.set_status(TENANT, fda_id, FdaStatus.POSTED)
    fdas.set_status(TENANT, fda_id, FdaStatus.CLOSED)
    after = fdas.kpis(TENANT)
    assert after.ar_open_usd == Decimal("0")
    assert after.fda_open_count == 0

    other = fdas.kpis("agency-b")
    assert (other.pda_count, other.fda_open_count, other.revenue_usd) == (0, 0, Decimal("0"))


def test_kpis_use_calendar_quarters(tmp_path: Path):
    repo = _repo(tmp_path)
    fdas = FdaService(repo)
    fdas.convert_pda_to_fda(TENANT, create_approved_pda(repo))

    old = fdas.kpis(TENANT, today=date(2001, 2, 15))
    assert old.quarter_start == "2001-01-01"
    assert (old.pda_count, old.pda_prev_count, old.revenue_usd) == (0, 0, Decimal("0"))
    assert old.fda_open_count == 1


@pytest.mark.parametrize(
    "today, start, prev_start",
    [
        (date(2024, 1, 15), date(2024, 1, 1), date(2023, 10, 1)),
        (date(2024, 6, 30), date(2024, 4, 1), date(2024, 1, 1)),
        (date(2024, 12, 31), date(2024, 10, 1), date(2024, 7, 1)),
    ],
)
def test_quarter_boundaries(today, start, prev_start):
    assert _quarter_start(today) == start
    assert _shift_quarter(start, -1) == prev_start
    assert _shift_quarter(prev_start, 1) == start
