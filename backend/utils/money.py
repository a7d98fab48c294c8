# utils/money.py
from decimal import Decimal, ROUND_HALF_UP

CENT = Decimal("0.01")


def quantize_money(value) -> Decimal:
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


# Payment providers expect integer amounts in the smallest currency unit
def to_minor_units(value) -> int:
    return int((Decimal(value) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))
