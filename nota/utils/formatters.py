"""
Formatting helpers for nota output.
Indonesian style: '.' groups thousands, ',' separates decimals, money in
whole Rupiah.
"""
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from datetime import date, datetime
from typing import Union, Optional, Iterable

Number = Union[int, float, Decimal, str, None]


def _to_decimal(value: Number) -> Optional[Decimal]:
    if value is None or value == "":
        return None
    try:
        if isinstance(value, str):
            value = value.replace(",", ".")
        return Decimal(str(value))
    except (InvalidOperation, ValueError, TypeError):
        return None


def _group_thousands(integer_part: str) -> str:
    reversed_int = integer_part[::-1]
    groups = [reversed_int[i:i + 3] for i in range(0, len(reversed_int), 3)]
    return '.'.join(groups)[::-1]


def num_id(value: Number, decimals: Optional[int] = None) -> str:
    """
    Format a number Indonesian style.

    Examples:
        num_id(1500) -> "1.500"
        num_id(1500.5) -> "1.500,5"
        num_id(None) -> "-"
    """
    num = _to_decimal(value)
    if num is None:
        return "-"
    if num == 0:
        return "0"

    if decimals is not None:
        num = num.quantize(Decimal(10) ** -decimals, rounding=ROUND_HALF_UP)

    num_str = format(num, 'f')
    if '.' in num_str:
        integer_part, decimal_part = num_str.split('.')
        if decimals is None:
            decimal_part = decimal_part.rstrip('0')
    else:
        integer_part, decimal_part = num_str, ""

    sign_str = ''
    if integer_part.startswith('-'):
        sign_str, integer_part = '-', integer_part[1:]

    formatted = _group_thousands(integer_part)
    if decimal_part:
        return f"{sign_str}{formatted},{decimal_part}"
    return f"{sign_str}{formatted}"


def rupiah(value: Number) -> str:
    """
    Money rounded half-up to whole Rupiah.

    Examples:
        rupiah(Decimal('8244.5')) -> "Rp 8.245"
        rupiah(0) -> "Rp 0"
    """
    num = _to_decimal(value)
    if num is None:
        return "-"
    whole = num.quantize(Decimal('1'), rounding=ROUND_HALF_UP)
    return f"Rp {num_id(whole)}"


def percent_id(value: Number) -> str:
    """Discount percentage without trailing zeros: 12.50 -> "12,5%"."""
    num = _to_decimal(value)
    if num is None:
        return "-"
    return f"{num_id(num)}%"


def discount_label(discounts: Iterable[Number]) -> str:
    """Sequential cuts as shown on the nota: "10% + 5%"."""
    labels = [percent_id(d) for d in discounts if _to_decimal(d)]
    return ' + '.join(labels) if labels else "-"


def date_id(value: Union[date, datetime, None]) -> str:
    """DD/MM/YYYY or "-"."""
    if value is None:
        return "-"
    if isinstance(value, datetime):
        value = value.date()
    if not isinstance(value, date):
        return "-"
    return value.strftime("%d/%m/%Y")


def datetime_id(value: Union[datetime, None], with_time: bool = True) -> str:
    """DD/MM/YYYY HH:MM, or just the date."""
    if value is None or not isinstance(value, datetime):
        return "-"
    if with_time:
        return value.strftime("%d/%m/%Y %H:%M")
    return value.strftime("%d/%m/%Y")


def stock_summary(stock) -> str:
    """
    One-line stock description in entry order.

    Accepts a ``{unit: quantity}`` mapping or StockEntry rows:
        {'karton': 2, 'box': 10} -> "2 karton, 10 box"
    """
    if hasattr(stock, 'items'):
        pairs = list(stock.items())
    else:
        pairs = [(entry.unit, entry.quantity) for entry in stock or []]
    if not pairs:
        return "Stok kosong"
    return ', '.join(f"{num_id(quantity)} {unit}" for unit, quantity in pairs)
