from decimal import Decimal

import pytest

from disbursements.domain.errors import InvalidStateError, ValidationError
from disbursements.domain.ledger import check_payment, check_transition, settlement_status, tally
from disbursements.domain.models import LedgerLine, LineStatus, Payment, Side


def _line(amount="1200", status=LineStatus.OPEN) -> LedgerLine:
    return LedgerLine(
        line_no=1,
        side=Side.AP,
        category="Pilot IN/OUT",
        description="Pilot IN/OUT",
        counterparty="Vendor",
        amount_usd=Decimal(amount),
        amount_local=Decimal("0"),
        status=status,
        id=1,
    )


def _pay(amount: str) -> Payment:
    return Payment(1, "2024-03-12", Decimal(amount), Decimal("5"), Decimal(amount) * 5, "Bank transfer")


def test_payments_move_line_from_open_to_settled():
    payments = []
    assert settlement_status(Decimal("1200"), payments) is LineStatus.OPEN

    payments.append(_pay("300"))
    assert settlement_status(Decimal("1200"), payments) is LineStatus.PARTIALLY_SETTLED

    payments.append(_pay("900"))
    assert settlement_status(Decimal("1200"), payments) is LineStatus.SETTLED


def test_status_never_goes_back_while_payments_accumulate():
    order = [LineStatus.OPEN, LineStatus.PARTIALLY_SETTLED, LineStatus.SETTLED]
    payments = []
    seen = [order.index(settlement_status(Decimal("100"), payments))]
    for amount in ("10", "20", "30", "40"):
        payments.append(_pay(amount))
        seen.append(order.index(settlement_status(Decimal("100"), payments)))
    assert seen == sorted(seen)
    assert seen[-1] == 2


def test_zero_amount_line_stays_open():
    assert settlement_status(Decimal("0"), []) is LineStatus.OPEN


def test_payment_on_settled_line_is_rejected():
    with pytest.raises(InvalidStateError):
        check_payment(_line(status=LineStatus.SETTLED), [_pay("1200")], Decimal("1"))


def test_payment_above_outstanding_is_rejected():
    with pytest.raises(ValidationError):
        check_payment(_line(), [_pay("1000")], Decimal("200.01"))
    check_payment(_line(), [_pay("1000")], Decimal("200"))


@pytest.mark.parametrize("amount", ["0", "-5"])
def test_non_positive_payment_is_rejected(amount):
    with pytest.raises(ValidationError):
        check_payment(_line(), [], Decimal(amount))


def test_allowed_and_forbidden_transitions():
    check_transition(LineStatus.OPEN, LineStatus.SETTLED)
    check_transition(LineStatus.PARTIALLY_SETTLED, LineStatus.OPEN)
    check_transition(LineStatus.SETTLED, LineStatus.OPEN)
    with pytest.raises(InvalidStateError):
        check_transition(LineStatus.SETTLED, LineStatus.PARTIALLY_SETTLED)


def test_tally_counts_each_status():
    lines = [_line(), _line(status=LineStatus.SETTLED), _line(status=LineStatus.SETTLED)]
    counts = tally(lines)
    assert (counts.open, counts.partially_settled, counts.settled) == (1, 0, 2)
