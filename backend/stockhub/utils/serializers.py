from __future__ import annotations
from decimal import Decimal
from typing import Iterable, Optional


def money(value) -> Optional[float]:
    if value is None:
        return None
    return float(value) if isinstance(value, Decimal) else value


def iso(value) -> Optional[str]:
    if value is None:
        return None
    if hasattr(value, 'isoformat'):
        return value.isoformat()
    return str(value)


def presentation_json(p):
    return {
        'id': p.id,
        'product_id': p.product_id,
        'variant': p.variant,
        'units': p.units,
        'price': money(p.price),
        'is_active': p.is_active,
    }


def product_json(p, presentations: Optional[Iterable] = None):
    body = {
        'id': p.id,
        'branch_id': p.branch_id,
        'name': p.name,
        'description': p.description,
        'brand': p.brand,
        'barcode': p.barcode,
        'sku': p.sku,
        'expiration': iso(p.expiration),
        'cost': money(p.cost),
        'price': money(p.price),
        'stock': p.stock,
        'bonification': money(p.bonification),
        'is_active': p.is_active,
        'version': p.version,
    }
    if presentations is not None:
        body['presentations'] = [presentation_json(x) for x in presentations]
    return body


def business_json(b):
    return {
        'id': b.id,
        'name': b.name,
        'tax_id': b.tax_id,
        'description': b.description,
        'website': b.website,
        'theme': b.theme,
    }


def branch_json(b):
    return {
        'id': b.id,
        'business_id': b.business_id,
        'name': b.name,
        'location': b.location,
        'phone': b.phone,
    }
