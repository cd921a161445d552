"""New-PDA wizard state.

The wizard is an immutable WizardState value. Every user action is a pure
function taking the current state and returning the next one, so steps never
share hidden mutable form state.

Cost fields are either Auto (filled by a pricing oracle) or Manual (typed by
the user). Auto pricing replaces Auto values freely but never touches a
Manual one.
"""
from __future__ import annotations

from dataclasses import dataclass, field, replace
from decimal import Decimal
from enum import IntEnum
from typing import Mapping, Optional, Union

from disbursements.domain.categories import CATEGORY_TABLE
from disbursements.domain.errors import InvalidStateError, ValidationError
from disbursements.domain.models import ZERO, CostCategory, CostRecord, CustomLine, ExchangeRate, ShipParticulars
from disbursements.domain.money import to_decimal, validate_rate
from disbursements.domain.tariffs import TariffBracket
from disbursements.domain.validation import MAX_COMMENT_LENGTH, validate_remarks, validate_ship


class WizardStep(IntEnum):
    SHIP = 1
    COSTS = 2
    REVIEW = 3


@dataclass(frozen=True)
class Auto:
    amount: Decimal
    hint: str = ""


@dataclass(frozen=True)
class Manual:
    amount: Decimal


FieldValue = Union[Auto, Manual]


@dataclass(frozen=True)
class AutoPricingMeta:
    group: str
    bracket: Optional[TariffBracket] = None
    hint: str = ""


@dataclass(frozen=True)
class PricingQuote:
    costs: Mapping[CostCategory, Decimal] = field(default_factory=dict)
    meta: Mapping[CostCategory, AutoPricingMeta] = field(default_factory=dict)
    warnings: tuple[str, ...] = ()


@dataclass(frozen=True)
class WizardState:
    step: WizardStep = WizardStep.SHIP
    ship: Optional[ShipParticulars] = None
    exchange_rate: Optional[ExchangeRate] = None
    fields: Mapping[CostCategory, FieldValue] = field(default_factory=dict)
    custom_lines: tuple[CustomLine, ...] = ()
    comments: Mapping[str, str] = field(default_factory=dict)
    remarks: Optional[str] = None
    warnings: tuple[str, ...] = ()

    def value(self, category: CostCategory) -> Decimal:
        current = self.fields.get(category)
        return current.amount if current is not None else ZERO

    def is_manual(self, category: CostCategory) -> bool:
        return isinstance(self.fields.get(category), Manual)

    def is_auto(self, category: CostCategory) -> bool:
        return isinstance(self.fields.get(category), Auto)

    def comment_for(self, category: CostCategory) -> str:
        if category.value in self.comments:
            return self.comments[category.value]
        return CATEGORY_TABLE[category].default_comment


def set_ship_particulars(state: WizardState, ship: ShipParticulars) -> WizardState:
    return replace(state, ship=ship)


def set_exchange_rate(state: WizardState, rate: ExchangeRate) -> WizardState:
    validate_rate(rate.rate)
    return replace(state, exchange_rate=rate)


def enter_cost(state: WizardState, category: CostCategory, amount: object) -> WizardState:
    value = to_decimal(amount)
    if value < 0:
        raise ValidationError(f"{CATEGORY_TABLE[category].label} must be positive or zero.")
    fields = dict(state.fields)
    fields[category] = Manual(value)
    return replace(state, fields=fields)


def apply_auto_pricing(state: WizardState, quote: PricingQuote) -> WizardState:
    fields: dict[CostCategory, FieldValue] = {}
    for category, current in state.fields.items():
        # Auto values from an earlier quote are dropped unless re-quoted.
        if isinstance(current, Manual):
            fields[category] = current
    for category, amount in quote.costs.items():
        if category in fields:
            continue
        meta = quote.meta.get(category)
        fields[category] = Auto(to_decimal(amount), meta.hint if meta else "")
    return replace(state, fields=fields, warnings=tuple(quote.warnings))


def add_custom_line(state: WizardState, label: str, comment: str = "") -> WizardState:
    label = (label or "").strip()
    if not label:
        raise ValidationError("Custom line label is required.")
    return replace(state, custom_lines=state.custom_lines + (CustomLine(label, ZERO, comment),))


def update_custom_line(
    state: WizardState,
    index: int,
    *,
    label: Optional[str] = None,
    amount_usd: object = None,
    comment: Optional[str] = None,
) -> WizardState:
    lines = list(state.custom_lines)
    if not 0 <= index < len(lines):
        raise ValidationError(f"No custom line at position {index}.")
    current = lines[index]
    amount = current.amount_usd if amount_usd is None else to_decimal(amount_usd)
    if amount < 0:
        raise ValidationError("Custom line amount must be positive or zero.")
    lines[index] = CustomLine(
        label=current.label if label is None else label.strip(),
        amount_usd=amount,
        comment=current.comment if comment is None else comment,
    )
    return replace(state, custom_lines=tuple(lines))


def remove_custom_line(state: WizardState, index: int) -> WizardState:
    if not 0 <= index < len(state.custom_lines):
        raise ValidationError(f"No custom line at position {index}.")
    lines = state.custom_lines[:index] + state.custom_lines[index + 1:]
    return replace(state, custom_lines=lines)


def set_comment(state: WizardState, category: CostCategory, text: str) -> WizardState:
    if len(text or "") > MAX_COMMENT_LENGTH:
        raise ValidationError(f"Comment must be less than {MAX_COMMENT_LENGTH} characters.")
    comments = dict(state.comments)
    comments[category.value] = text
    return replace(state, comments=comments)


def set_remarks(state: WizardState, remarks: Optional[str]) -> WizardState:
    validate_remarks(remarks)
    return replace(state, remarks=remarks)


def next_step(state: WizardState) -> WizardState:
    if state.step is WizardStep.SHIP:
        if state.ship is None:
            raise ValidationError("Ship particulars are required.")
        validate_ship(state.ship)
        if state.exchange_rate is None:
            raise ValidationError("Exchange rate is required.")
        return replace(state, step=WizardStep.COSTS)
    if state.step is WizardStep.COSTS:
        return replace(state, step=WizardStep.REVIEW)
    raise InvalidStateError("Review is the last wizard step.")


def previous_step(state: WizardState) -> WizardState:
    if state.step is WizardStep.SHIP:
        raise InvalidStateError("Ship data is the first wizard step.")
    return replace(state, step=WizardStep(state.step - 1))


def to_cost_record(state: WizardState) -> CostRecord:
    return CostRecord(
        amounts={category: current.amount for category, current in state.fields.items()},
        custom_lines=state.custom_lines,
    )
