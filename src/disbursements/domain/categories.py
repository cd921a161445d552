from __future__ import annotations

from dataclasses import dataclass

from disbursements.domain.models import CostCategory, Side


@dataclass(frozen=True)
class CategoryInfo:
    label: str
    side: Side
    default_comment: str
    is_auto: bool = False


CATEGORY_TABLE: dict[CostCategory, CategoryInfo] = {
    CostCategory.PILOTAGE_IN: CategoryInfo(
        "Pilot IN/OUT", Side.AP, "Inbound and outbound pilotage as per port tariff.", is_auto=True
    ),
    CostCategory.TOWAGE_IN: CategoryInfo(
        "Towage IN/OUT", Side.AP, "Tugs for berthing and unberthing as per tariff.", is_auto=True
    ),
    CostCategory.LIGHT_DUES: CategoryInfo(
        "Light dues", Side.AP, "Navy light dues, subject to vessel's exemption certificate.", is_auto=True
    ),
    CostCategory.DOCKAGE: CategoryInfo("Dockage (Wharfage)", Side.AP, "Berth occupancy, estimated on days alongside."),
    CostCategory.LINESMAN: CategoryInfo("Linesman (mooring/unmooring)", Side.AP, "Mooring and unmooring gang."),
    CostCategory.LAUNCH_BOAT: CategoryInfo(
        "Launch boat (mooring/unmooring)", Side.AP, "Mooring boat for lines handling."
    ),
    CostCategory.IMMIGRATION: CategoryInfo("Immigration tax (Funapol)", Side.AP, "Federal police Funapol fee."),
    CostCategory.FREE_PRATIQUE: CategoryInfo("Free pratique tax", Side.AP, "ANVISA free pratique inspection."),
    CostCategory.SHIPPING_ASSOCIATION: CategoryInfo(
        "Shipping association", Side.AP, "Local shipping agents association contribution."
    ),
    CostCategory.CLEARANCE: CategoryInfo("Clearance", Side.AP, "Inward and outward clearance with authorities."),
    CostCategory.PAPERLESS_PORT: CategoryInfo(
        "Paperless Port System", Side.AP, "Porto Sem Papel system fee."
    ),
    CostCategory.AGENCY_FEE: CategoryInfo("Agency fee", Side.AR, "Agency remuneration as agreed with principal."),
    CostCategory.WATERWAY: CategoryInfo(
        "Waterway channel (Table I)", Side.AP, "Access channel infrastructure fee, tariff Table I."
    ),
}

CATEGORY_ORDER: tuple[CostCategory, ...] = tuple(CostCategory)

AUTO_CATEGORIES: tuple[CostCategory, ...] = tuple(c for c in CATEGORY_ORDER if CATEGORY_TABLE[c].is_auto)


def side_for(category: CostCategory) -> Side:
    return CATEGORY_TABLE[category].side


def label_for(category: CostCategory) -> str:
    return CATEGORY_TABLE[category].label
