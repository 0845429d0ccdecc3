"""Value coercion for registry exports.

Every function here is total: malformed input yields `None` or the given
default, never an exception. The registry uses Chilean conventions:
`.` as thousands separator, `,` as decimal separator, `-/-/-` as a null date.
"""

import re
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Optional


# =============================================================================
# Dates
# =============================================================================

DATE_NULL_MARKERS = frozenset({"", "-", "-/-/-"})

# Largest magnitude (in digits) accepted by to_int
MAX_INT_DIGITS = 18

_ISO_DATE = re.compile(r"^(\d{4})-(\d{1,2})-(\d{1,2})$")
_DAY_FIRST_SLASH = re.compile(r"^(\d{1,2})/(\d{1,2})/(\d{4})$")
_DAY_FIRST_DASH_DOT = re.compile(r"^(\d{1,2})[-.](\d{1,2})[-.](\d{4})$")


def _build_date(year: str, month: str, day: str) -> Optional[date]:
    try:
        return date(int(year), int(month), int(day))
    except ValueError:
        return None


def parse_date(value: Any) -> Optional[date]:
    """Parse a registry date.

    Accepts:
        YYYY-MM-DD, optionally followed by a time (space or "T"), time dropped
        DD/MM/YYYY
        DD-MM-YYYY and DD.MM.YYYY

    Returns:
        The calendar date, or None for null markers, impossible dates
        (2024-02-30) and unrecognized formats
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value

    text = str(value).strip()
    if text in DATE_NULL_MARKERS:
        return None

    date_part = re.split(r"[ T]", text, maxsplit=1)[0]
    match = _ISO_DATE.match(date_part)
    if match:
        year, month, day = match.groups()
        return _build_date(year, month, day)

    for pattern in (_DAY_FIRST_SLASH, _DAY_FIRST_DASH_DOT):
        match = pattern.match(text)
        if match:
            day, month, year = match.groups()
            return _build_date(year, month, day)

    return None


# =============================================================================
# Amounts
# =============================================================================

def _canonical_decimal(amount: Decimal) -> Decimal:
    """Integral amounts without fractional digits, others without trailing zeros."""
    try:
        if amount == amount.to_integral_value():
            return amount.quantize(Decimal(1))
        return amount.normalize()
    except InvalidOperation:
        # Beyond context precision; keep as parsed
        return amount


def parse_amount(value: Any) -> Optional[Decimal]:
    """Parse a currency amount.

    "$ 30.000" → Decimal("30000"), "100.000,50" → Decimal("100000.5").
    A `.` is always a thousands separator; there is one regional convention.

    Returns:
        Decimal, or None for empty, unparseable or non-finite input
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, Decimal):
        amount = value
    elif isinstance(value, (int, float)):
        amount = Decimal(str(value))
    else:
        text = re.sub(r"\s+", "", str(value)).replace("$", "").replace(".", "").replace(",", ".")
        if text == "":
            return None
        try:
            amount = Decimal(text)
        except InvalidOperation:
            return None

    if not amount.is_finite():
        return None
    return _canonical_decimal(amount)


def to_decimal_or_zero(value: Any) -> Decimal:
    """parse_amount with Decimal(0) in place of None."""
    amount = parse_amount(value)
    return amount if amount is not None else Decimal(0)


def to_optional_decimal(value: Any) -> Optional[Decimal]:
    """Plain decimal (rates use "." as the decimal point); empty → None."""
    if value is None or value == "":
        return None
    try:
        amount = Decimal(str(value).strip().replace(",", "."))
    except InvalidOperation:
        return None
    return amount if amount.is_finite() else None


# =============================================================================
# Integers & strings
# =============================================================================

def to_int(value: Any, default: int = 0) -> int:
    """Coerce to int; absent ("" or None) or non-numeric values yield the default."""
    if value is None or isinstance(value, bool):
        return default
    if isinstance(value, int):
        return value
    text = str(value).strip()
    if text == "":
        return default
    try:
        number = Decimal(text)
    except InvalidOperation:
        return default
    if not number.is_finite() or number.adjusted() >= MAX_INT_DIGITS:
        return default
    return int(number)


def to_optional_int(value: Any) -> Optional[int]:
    if value is None or str(value).strip() == "":
        return None
    return to_int(value)


def to_required_str(value: Any, default: str = "") -> str:
    """String form of the value; None yields the default."""
    if value is None:
        return default
    return str(value)


def to_optional_str(value: Any) -> Optional[str]:
    """String form of the value; None and "" yield None."""
    if value is None or value == "":
        return None
    return str(value)
