from __future__ import annotations

import logging
from decimal import Decimal
from typing import Optional, Protocol

from disbursements.domain.models import CostCategory, ExchangeRate, ShipParticulars
from disbursements.domain.tariffs import (
    ITAQUI_PORT,
    LIGHT_DUES_TABLE,
    PILOTAGE_GROUPS,
    TOWAGE_TABLE,
    TariffBracket,
    normalize_berth,
    pick_bracket,
    pilotage_group_for,
)
from disbursements.domain.wizard import AutoPricingMeta, PricingQuote

log = logging.getLogger("disbursements.pricing")


class PricingOracle(Protocol):
    def quote(self, ship: ShipParticulars, rate: Optional[ExchangeRate]) -> PricingQuote: ...


def _bracket_hint(bracket: TariffBracket) -> str:
    if bracket.max_dwt is None:
        return f"DWT {bracket.min_dwt:,}+"
    return f"DWT {bracket.min_dwt:,}-{bracket.max_dwt:,}"


class ItaquiPricingOracle:
    """Auto-prices pilotage, towage and light dues from the Itaqui tariff tables.

    Amounts are USD; the exchange rate is accepted for interface symmetry with
    oracles that price in local currency.
    """

    def quote(self, ship: ShipParticulars, rate: Optional[ExchangeRate] = None) -> PricingQuote:
        if (ship.port or "").strip().lower() != ITAQUI_PORT.lower():
            return PricingQuote()

        dwt = Decimal(str(ship.dwt or 0))
        if dwt <= 0:
            log.info("pricing_skipped port=%s reason=missing_dwt", ship.port)
            return PricingQuote(warnings=("DWT is required for automatic tariff pricing.",))

        costs: dict[CostCategory, Decimal] = {}
        meta: dict[CostCategory, AutoPricingMeta] = {}
        warnings: list[str] = []

        group = pilotage_group_for(ship.berths)
        if group is not None:
            numbers = {normalize_berth(b) for b in ship.berths}
            matched = [g for g in PILOTAGE_GROUPS if numbers & g.berths]
            if len(matched) > 1:
                warnings.append(f"Berths span several pilotage groups; priced at {group.name}.")
            bracket = pick_bracket(dwt, group.table)
            costs[CostCategory.PILOTAGE_IN] = bracket.usd
            meta[CostCategory.PILOTAGE_IN] = AutoPricingMeta(
                group=group.name, bracket=bracket, hint=f"{group.name}, {_bracket_hint(bracket)}"
            )
        elif ship.berths:
            warnings.append("No pilotage tariff for the selected berths.")

        towage = pick_bracket(dwt, TOWAGE_TABLE)
        costs[CostCategory.TOWAGE_IN] = towage.usd
        meta[CostCategory.TOWAGE_IN] = AutoPricingMeta(group="Towage", bracket=towage, hint=_bracket_hint(towage))

        light = pick_bracket(dwt, LIGHT_DUES_TABLE)
        costs[CostCategory.LIGHT_DUES] = light.usd
        meta[CostCategory.LIGHT_DUES] = AutoPricingMeta(group="Light dues", bracket=light, hint=_bracket_hint(light))

        log.info("pricing_quoted port=%s dwt=%s categories=%s", ship.port, dwt, len(costs))
        return PricingQuote(costs=costs, meta=meta, warnings=tuple(warnings))
