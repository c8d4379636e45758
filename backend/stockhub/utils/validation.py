"""Input coercion helpers shared by the operations.

Every helper either returns the normalized value or raises ``ValidationError`` with a
message naming the offending field, so operations reject bad input before any write.
"""
from __future__ import annotations
import math
import re
from datetime import datetime, date, timezone
from decimal import Decimal, InvalidOperation
from typing import Iterable, Optional

from stockhub.errors import ValidationError

_NON_NUMERIC = re.compile(r'[^0-9.,\-]')
_CENT = Decimal('0.01')

# Numeric(12, 2) columns and 32-bit Integer columns
MAX_MONEY = Decimal('9999999999.99')
MAX_INT = 2_147_483_647


def parse_id(value, field_name: str = 'id') -> int:
    if isinstance(value, bool):
        raise ValidationError(f'{field_name} invalid')
    try:
        ident = int(value)
    except (TypeError, ValueError):
        raise ValidationError(f'{field_name} invalid')
    if ident <= 0:
        raise ValidationError(f'{field_name} invalid')
    return ident


def parse_money(value, field_name: str, default: Optional[Decimal] = None, allow_negative: bool = False) -> Decimal:
    if value is None or value == '':
        if default is None:
            raise ValidationError(f'{field_name} is required')
        return default
    if isinstance(value, bool):
        raise ValidationError(f'{field_name} must be a number')
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise ValidationError(f'{field_name} must be a number')
    if not amount.is_finite():
        raise ValidationError(f'{field_name} must be a number')
    if amount < 0 and not allow_negative:
        raise ValidationError(f'{field_name} cannot be negative')
    if abs(amount) > MAX_MONEY or abs(amount.quantize(_CENT)) > MAX_MONEY:
        raise ValidationError(f'{field_name} is out of range')
    return amount.quantize(_CENT)


def parse_int(value, field_name: str, default: Optional[int] = None, minimum: Optional[int] = None,
              maximum: int = MAX_INT) -> int:
    if value is None or value == '':
        if default is None:
            raise ValidationError(f'{field_name} is required')
        return default
    if isinstance(value, bool):
        raise ValidationError(f'{field_name} must be an integer')
    try:
        as_decimal = Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise ValidationError(f'{field_name} must be an integer')
    if not as_decimal.is_finite() or as_decimal != as_decimal.to_integral_value():
        raise ValidationError(f'{field_name} must be an integer')
    if abs(as_decimal) > maximum:
        raise ValidationError(f'{field_name} is out of range')
    number = int(as_decimal)
    if minimum is not None and number < minimum:
        raise ValidationError(f'{field_name} must be >= {minimum}')
    return number


def parse_quantity(value, field_name: str = 'quantity') -> int:
    """Strictly positive integer quantity."""
    return parse_int(value, field_name, minimum=1)


def clean_text(value) -> Optional[str]:
    """Trim strings; empty becomes None."""
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def require_text(value, field_name: str) -> str:
    text = clean_text(value)
    if not text:
        raise ValidationError(f'{field_name} is required')
    return text


def parse_datetime(value, field_name: str = 'expiration', strict: bool = True) -> Optional[datetime]:
    """Accept ISO-8601 strings, dates and datetimes. ``strict=False`` returns None on garbage."""
    if value is None or value == '':
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day, tzinfo=timezone.utc)
    try:
        parsed = datetime.fromisoformat(str(value).strip().replace('Z', '+00:00'))
    except ValueError:
        if strict:
            raise ValidationError(f'{field_name} must be an ISO date')
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def _unify_separators(text: str) -> str:
    """Keep at most one '.' as decimal point.

    With both separators present the rightmost one is decimal ('1.234,50', '1,234.50').
    A repeated separator groups thousands. A single comma is decimal unless exactly three
    digits follow it ('12,5' vs '1,234'); a single dot is always decimal.
    """
    comma, dot = text.rfind(','), text.rfind('.')
    if comma >= 0 and dot >= 0:
        point, group = (',', '.') if comma > dot else ('.', ',')
        return text.replace(group, '').replace(point, '.')
    for sep in (',', '.'):
        if text.count(sep) > 1:
            return text.replace(sep, '')
    if comma >= 0:
        return text.replace(',', '' if len(text) - comma - 1 == 3 else '.')
    return text


def lenient_number(value) -> float:
    """Spreadsheet cells: drop currency symbols and grouping, unparseable means 0."""
    if value is None:
        return 0.0
    if isinstance(value, (int, float, Decimal)) and not isinstance(value, bool):
        number = float(value)
        return number if math.isfinite(number) else 0.0
    cleaned = _unify_separators(_NON_NUMERIC.sub('', str(value)))
    try:
        return float(cleaned) if cleaned else 0.0
    except ValueError:
        return 0.0


def validate_choice(value: str, allowed: Iterable[str], field_name: str) -> str:
    """Validate that value is inside allowed; returns it for inline usage."""
    allowed = list(allowed)
    if value not in allowed:
        raise ValidationError(f"{field_name} must be one of {', '.join(allowed)}")
    return value


__all__ = [
    'parse_id', 'parse_money', 'parse_int', 'parse_quantity', 'clean_text', 'require_text',
    'parse_datetime', 'lenient_number', 'validate_choice', 'MAX_MONEY', 'MAX_INT',
]
