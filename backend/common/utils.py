from decimal import Decimal, InvalidOperation, ROUND_HALF_UP


def parse_decimal(val):
    if val is None or val == '':
        return None
    try:
        return Decimal(str(val))
    except (InvalidOperation, ValueError):
        return None


def to_paise(amount) -> int:
    """Convert a rupee amount to integer paise, rounding half up."""
    value = parse_decimal(amount)
    if value is None:
        raise ValueError(f'Invalid amount: {amount!r}')
    return int((value * 100).quantize(Decimal('1'), rounding=ROUND_HALF_UP))
