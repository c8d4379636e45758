"""Presentation shape helpers.

Two encodings reach the catalog from outside the create/update forms:

* Rows cloned from another branch. Current rows carry ``variant``/``units``; older rows
  carry ``name``/``unit`` where ``unit`` is free text such as ``"unidad x6"``.
  ``adapt_presentation`` maps both to ``{variant, units, price}``.
* Spreadsheet cells: ``"pack:6:89.99|caja:12:179.99"``.
"""
from __future__ import annotations
import logging
import re
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional

from stockhub.constants.roles import UNIT_VARIANT
from stockhub.errors import ValidationError
from stockhub.utils.validation import MAX_INT, lenient_number, parse_money

logger = logging.getLogger(__name__)

_MULTIPLIER = re.compile(r'x(\d+)', re.IGNORECASE)


def _get(row, key):
    if isinstance(row, dict):
        return row.get(key)
    return getattr(row, key, None)


def unit_presentation(price) -> Dict[str, Any]:
    return {'variant': UNIT_VARIANT, 'units': 1, 'price': price}


def adapt_presentation(row, fallback_price=None) -> Dict[str, Any]:
    """Normalize one source presentation (dict or ORM row) to ``{variant, units, price}``."""
    variant = _get(row, 'variant')
    units = _get(row, 'units')
    if variant and units is not None:
        shaped = {'variant': variant, 'units': int(units)}
    elif _get(row, 'name') and _get(row, 'unit') is not None:
        match = _MULTIPLIER.search(str(_get(row, 'unit')))
        shaped = {'variant': _get(row, 'name'), 'units': int(match.group(1)) if match else 1}
    else:
        logger.warning('unrecognized presentation shape, using base unit: %r', row)
        shaped = {'variant': UNIT_VARIANT, 'units': 1}
    price = _get(row, 'price')
    shaped['price'] = price if price is not None else (fallback_price if fallback_price is not None else Decimal('0'))
    return shaped


def clone_presentations(rows: Iterable, fallback_price) -> List[Dict[str, Any]]:
    """Shape active source presentations for a copied product.

    Always yields exactly one base unit row: a source without one (or with none at all)
    gets it added, and duplicates produced by the legacy fallback are dropped.
    """
    shaped = []
    has_unit = False
    for row in rows:
        if _get(row, 'is_active') is False:
            continue
        item = adapt_presentation(row, fallback_price)
        if item['variant'] == UNIT_VARIANT:
            if has_unit:
                continue
            has_unit = True
            item['units'] = 1
        shaped.append(item)
    if not has_unit:
        shaped.insert(0, unit_presentation(fallback_price if fallback_price is not None else Decimal('0')))
    return shaped


def parse_presentation_cell(cell: Optional[str]) -> List[Dict[str, Any]]:
    """Parse ``variant:units[:price]`` entries separated by ``|``; malformed entries are skipped."""
    if not cell:
        return []
    out = []
    for chunk in str(cell).split('|'):
        parts = [p.strip() for p in chunk.split(':')]
        if len(parts) < 2:
            continue
        variant = parts[0]
        try:
            units = int(parts[1])
        except ValueError:
            units = 1
        price = None
        if len(parts) > 2 and parts[2]:
            try:
                price = parse_money(lenient_number(parts[2]), 'price')
            except ValidationError:
                continue
        if variant and variant.lower() != UNIT_VARIANT and 0 < units <= MAX_INT:
            out.append({'variant': variant, 'units': units, 'price': price})
    return out


def format_presentation_cell(rows: Iterable) -> str:
    """Inverse of ``parse_presentation_cell``; the base unit and inactive rows are omitted."""
    parts = []
    for row in rows:
        variant = _get(row, 'variant')
        if not variant or variant == UNIT_VARIANT or _get(row, 'is_active') is False:
            continue
        price = _get(row, 'price')
        parts.append(f"{variant}:{_get(row, 'units') or 1}:{'' if price is None else price}")
    return '|'.join(parts)


__all__ = [
    'unit_presentation', 'adapt_presentation', 'clone_presentations',
    'parse_presentation_cell', 'format_presentation_cell',
]
