from decimal import Decimal

from disbursements.domain.ledger import VENDOR_PLACEHOLDER, aggregate, derive_ledger, due_from_client, outstanding_from_client
from disbursements.domain.models import CostCategory, CostRecord, CustomLine, ExchangeRate, LineOrigin, LineStatus, Side

RATE = ExchangeRate(Decimal("5.25"))


def test_pilotage_and_agency_fee_example():
    cost = CostRecord(amounts={CostCategory.PILOTAGE_IN: "1200", CostCategory.AGENCY_FEE: "9804"})

    lines = derive_ledger(cost, RATE, "Cargill")

    assert [(ln.line_no, ln.category, ln.side) for ln in lines] == [
        (1, "Pilot IN/OUT", Side.AP),
        (2, "Agency fee", Side.AR),
    ]
    assert lines[0].amount_local == Decimal("6300.00")
    assert lines[1].amount_local == Decimal("51471.00")
    assert lines[0].counterparty == VENDOR_PLACEHOLDER
    assert lines[1].counterparty == "Cargill"
    assert all(ln.status is LineStatus.OPEN and ln.origin is LineOrigin.PDA for ln in lines)
    assert lines[0].pda_field is CostCategory.PILOTAGE_IN

    totals = aggregate(lines)
    assert totals.ap_usd == Decimal("1200")
    assert totals.ar_usd == Decimal("9804")
    assert totals.net_usd == Decimal("8604")
    assert totals.net_local == Decimal("45171.00")


def test_zero_amounts_are_skipped_and_line_numbers_stay_dense():
    cost = CostRecord(
        amounts={
            CostCategory.PILOTAGE_IN: "0",
            CostCategory.TOWAGE_IN: "500",
            CostCategory.LIGHT_DUES: "0",
            CostCategory.CLEARANCE: "80",
        }
    )

    lines = derive_ledger(cost, RATE, None)

    assert [ln.line_no for ln in lines] == [1, 2]
    assert [ln.pda_field for ln in lines] == [CostCategory.TOWAGE_IN, CostCategory.CLEARANCE]


def test_blank_client_name_falls_back_to_client():
    cost = CostRecord(amounts={CostCategory.AGENCY_FEE: "100"})
    assert derive_ledger(cost, RATE, "  ")[0].counterparty == "Client"


def test_custom_lines_follow_fixed_categories_as_payables():
    cost = CostRecord(
        amounts={CostCategory.WATERWAY: "10", CostCategory.AGENCY_FEE: "20"},
        custom_lines=(CustomLine("Garbage removal", Decimal("150"), "Two skips"), CustomLine("Unused", Decimal("0"))),
    )

    lines = derive_ledger(cost, RATE, "Cargill")

    assert [ln.category for ln in lines] == ["Agency fee", "Waterway channel (Table I)", "Garbage removal"]
    custom = lines[-1]
    assert custom.side is Side.AP
    assert custom.line_no == 3
    assert custom.pda_field is None
    assert custom.comment == "Two skips"


def test_derivation_is_deterministic():
    cost = CostRecord(amounts={c: "12.34" for c in CostCategory})
    assert derive_ledger(cost, RATE, "X") == derive_ledger(cost, RATE, "X")
    assert len(derive_ledger(cost, RATE, "X")) == len(CostCategory)


def test_due_from_client_clamps_share():
    assert due_from_client(Decimal("1000"), "50") == Decimal("500.00")
    assert due_from_client(Decimal("1000"), "150") == Decimal("1000.00")
    assert due_from_client(Decimal("1000"), "-10") == Decimal("0.00")
    assert due_from_client(Decimal("333.33"), "33.3333") == Decimal("111.11")


def test_outstanding_from_client_never_negative():
    lines = derive_ledger(CostRecord(amounts={CostCategory.AGENCY_FEE: "100"}), RATE, None)
    totals = aggregate(lines)
    assert outstanding_from_client(totals, "40") == Decimal("60")
    assert outstanding_from_client(totals, "400") == Decimal("0")


def test_pda_comments_follow_their_category():
    cost = CostRecord(amounts={CostCategory.PILOTAGE_IN: "1200", CostCategory.DOCKAGE: "0", CostCategory.CLEARANCE: "80"})
    comments = {"pilotage_in": "  2 pilots night ", "dockage": "not alongside", "clearance": ""}

    lines = derive_ledger(cost, RATE, "Cargill", comments)

    assert [(ln.pda_field, ln.comment) for ln in lines] == [
        (CostCategory.PILOTAGE_IN, "2 pilots night"),
        (CostCategory.CLEARANCE, None),
    ]
    assert all(ln.comment is None for ln in derive_ledger(cost, RATE, "Cargill"))
