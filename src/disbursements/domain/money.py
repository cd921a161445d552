from __future__ import annotations

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP

from disbursements.domain.errors import InvalidRate, ValidationError

CENT = Decimal("0.01")


def to_decimal(value: object) -> Decimal:
    """Parse an amount into an exact Decimal.

    Accepts Decimal, int, float (via its shortest repr) and strings in either
    "1234.56" or pt-BR "1.234,56" form. Anything else is a ValidationError.
    """
    if isinstance(value, bool):
        raise ValidationError(f"Not a number: {value!r}")
    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, int):
        result = Decimal(value)
    elif isinstance(value, float):
        result = Decimal(repr(value))
    elif isinstance(value, str):
        text = value.strip().replace(" ", "")
        if not text:
            raise ValidationError("Amount is required.")
        if "," in text:
            text = text.replace(".", "").replace(",", ".")
        try:
            result = Decimal(text)
        except InvalidOperation as exc:
            raise ValidationError(f"Not a number: {value!r}") from exc
    else:
        raise ValidationError(f"Not a number: {value!r}")

    if not result.is_finite():
        raise ValidationError(f"Not a number: {value!r}")
    return result


def round2(value: object) -> Decimal:
    return to_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def validate_rate(rate: object) -> Decimal:
    try:
        value = to_decimal(rate)
    except ValidationError as exc:
        raise InvalidRate(f"Exchange rate must be a number. Received: {rate!r}") from exc
    if value <= 0:
        raise InvalidRate(f"Exchange rate must be > 0. Received: {value}")
    return value


def to_local(amount_usd: object, rate: object) -> Decimal:
    """USD -> local currency, rounded half-up to cents."""
    return round2(to_decimal(amount_usd) * validate_rate(rate))
