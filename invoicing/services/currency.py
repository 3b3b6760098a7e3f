from __future__ import annotations

import math
import re
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Optional

DEFAULT_CONVERSION_RATE = 85.0

_SYMBOLS = {"USD": "$", "INR": "₹"}
_MONEY_RE = re.compile(r"^(-)?\s*(?:₹|\$|Rs\.?|INR|USD)?\s*(-)?(\d[\d,]*(?:\.\d+)?|\.\d+)$", re.IGNORECASE)


# ---------- Helpers ---------- #

def _clean_decimal(val: Any) -> Optional[Decimal]:
    if val is None or val == "":
        return None
    if isinstance(val, (int, float)):
        try:
            return Decimal(str(val))
        except InvalidOperation:
            return None
    s = str(val).strip()
    try:
        return Decimal(s)
    except InvalidOperation:
        pass
    # "₹1,00,000.50" / "$ 1,234" / "-Rs. 500": one symbol or code, grouped digits
    m = _MONEY_RE.match(s)
    if m is None:
        return None
    sign = "-" if (m.group(1) or m.group(2)) else ""
    try:
        return Decimal(sign + m.group(3).replace(",", ""))
    except InvalidOperation:
        return None


def to_number(value: Any) -> float:
    """Numeric cast used for every money field: anything unreadable becomes 0."""
    if isinstance(value, bool):
        return float(value)
    d = _clean_decimal(value)
    if d is None or not d.is_finite():
        return 0.0
    f = float(d)
    return f if math.isfinite(f) else 0.0


def round_money(value: Any) -> float:
    d = _clean_decimal(value) or Decimal("0")
    if not d.is_finite():
        return 0.0
    return float(d.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))


def _group_digits(digits: str, indian: bool) -> str:
    if len(digits) <= 3:
        return digits
    if not indian:
        return f"{int(digits):,}"
    head, tail = digits[:-3], digits[-3:]
    groups = []
    while len(head) > 2:
        groups.insert(0, head[-2:])
        head = head[:-2]
    if head:
        groups.insert(0, head)
    return ",".join(groups + [tail])


# ---------- Formatting ---------- #

def currency_symbol(currency: str) -> str:
    return _SYMBOLS.get(currency, currency)


def format_currency(amount: Any, currency: str = "INR") -> str:
    """
    2 decimals with grouping: INR uses lakh/crore groups (₹1,00,000.00),
    USD western groups ($100,000.00). Unknown currencies are shown as INR.
    """
    if currency not in _SYMBOLS:
        currency = "INR"
    value = Decimal(str(round_money(to_number(amount))))
    sign = "-" if value < 0 else ""
    whole, _, frac = f"{abs(value):.2f}".partition(".")
    grouped = _group_digits(whole, indian=currency == "INR")
    return f"{sign}{_SYMBOLS[currency]}{grouped}.{frac}"


def parse_amount(text: Any) -> float:
    return to_number(text)


# ---------- Conversion ---------- #

def convert_currency(
    amount: Any,
    from_currency: str,
    to_currency: str,
    conversion_rate: Optional[float] = None,
) -> float:
    value = to_number(amount)
    if from_currency == to_currency:
        return value
    rate = conversion_rate or DEFAULT_CONVERSION_RATE
    if from_currency == "USD" and to_currency == "INR":
        return value * rate
    if from_currency == "INR" and to_currency == "USD":
        return value / rate
    return value
