import sys
from decimal import Decimal
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

TENANT = "agency-a"


def make_ship(**overrides):
    from disbursements.domain.models import ShipParticulars

    values = dict(
        vessel_name="MV Atlantic Star",
        dwt=Decimal("45000"),
        loa=Decimal("190"),
        port="Itaqui",
        imo="9123456",
        terminal="TEGRAM",
        berths=("101",),
        arrival_date="2024-03-10",
    )
    values.update(overrides)
    return ShipParticulars(**values)


def create_approved_pda(repo, amounts=None, custom_lines=(), rate="5.25", client_name="Cargill", tenant_id=TENANT) -> int:
    from disbursements.domain.models import CostCategory, CostRecord
    from disbursements.services.fx_service import FxService
    from disbursements.services.pda_service import PdaService

    pdas = PdaService(repo)
    cost = CostRecord(
        amounts=amounts if amounts is not None else {CostCategory.PILOTAGE_IN: "1200", CostCategory.AGENCY_FEE: "9804"},
        custom_lines=tuple(custom_lines),
    )
    pda_id = pdas.create_pda(tenant_id, make_ship(), cost, FxService(repo).manual_rate(rate), client_name)
    pdas.approve(tenant_id, pda_id)
    return pda_id
