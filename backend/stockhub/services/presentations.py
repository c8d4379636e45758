"""Caller-editable presentations.

Everything here works on the non-``unidad`` presentations only. The base unit row is
left out of every query that selects rows to edit, so it cannot be touched through these
operations whatever ids or variants a caller sends.
"""
from __future__ import annotations
import logging
from decimal import Decimal
from typing import Any, Dict, List, Sequence
from sqlalchemy import select, func

from stockhub.constants.roles import CATALOG_WRITERS, UNIT_VARIANT
from stockhub.decorators.audit import audit_log
from stockhub.decorators.operation import operation
from stockhub.errors import ValidationError, NotFound
from stockhub.models.product import ProductPresentation
from stockhub.services import store
from stockhub.services.catalog import load_product_in_scope
from stockhub.services.policy import authorize
from stockhub.services.saga import Saga
from stockhub.utils.serializers import presentation_json
from stockhub.utils.validation import parse_id, parse_int, parse_money, require_text

logger = logging.getLogger(__name__)


def _editable(session, product_id: int) -> List[ProductPresentation]:
    return list(session.execute(
        select(ProductPresentation)
        .where(ProductPresentation.product_id == product_id, ProductPresentation.variant != UNIT_VARIANT)
        .order_by(ProductPresentation.id.asc())
        .execution_options(populate_existing=True)
    ).scalars())


def _variant(value, field: str) -> str:
    variant = require_text(value, field)
    if variant.lower() == UNIT_VARIANT:
        raise ValidationError(f'"{UNIT_VARIANT}" presentation is managed automatically')
    return variant


def _load_editable(session, caller_id: int, presentation_id):
    scope = authorize(session, caller_id, CATALOG_WRITERS)
    pres = session.get(ProductPresentation, parse_id(presentation_id, 'presentation_id'), populate_existing=True)
    if pres is None:
        raise NotFound('Presentation not found')
    load_product_in_scope(session, scope, pres.product_id, active_only=False)
    if pres.variant == UNIT_VARIANT:
        raise ValidationError(f'"{UNIT_VARIANT}" presentation cannot be modified')
    return pres


@operation('presentations.replace')
@audit_log('PRESENTATIONS.REPLACE', entity='Product', entity_id_key='product_id',
           meta_keys=['created', 'updated', 'deleted'])
def update_presentations(session, caller_id: int, product_id, desired: Sequence[Dict[str, Any]]):
    """Make the product's editable presentations match ``desired``.

    Rows with an ``id`` are updated, rows without one are inserted, and existing rows
    missing from ``desired`` are deleted. Deletes run last; if an update or insert fails
    the earlier writes of this call are reverted.
    """
    scope = authorize(session, caller_id, CATALOG_WRITERS)
    product = load_product_in_scope(session, scope, product_id)
    existing = {p.id: p for p in _editable(session, product.id)}

    to_update, to_insert, keep = [], [], set()
    for idx, item in enumerate(desired or []):
        if not isinstance(item, dict):
            raise ValidationError(f'presentations[{idx}] must be an object')
        row = {
            'variant': _variant(item.get('variant'), f'presentations[{idx}].variant'),
            'units': parse_int(item.get('units'), f'presentations[{idx}].units', minimum=1),
            'price': parse_money(item.get('price'), f'presentations[{idx}].price', default=product.price),
        }
        if item.get('id') is None:
            to_insert.append(row)
            continue
        pid = parse_id(item['id'], f'presentations[{idx}].id')
        if pid not in existing:
            # also rejects the unidad row, which is never in ``existing``
            raise ValidationError(f'Presentation {pid} does not belong to this product')
        if pid in keep:
            raise ValidationError(f'Presentation {pid} listed twice')
        keep.add(pid)
        to_update.append((pid, row))
    to_delete = [pid for pid in existing if pid not in keep]

    with Saga('presentations.replace', session) as saga:
        for pid, row in to_update:
            old = existing[pid]
            before = {'variant': old.variant, 'units': old.units, 'price': old.price}
            saga.step(f'updating presentation {pid}',
                      lambda pid=pid, row=row: store.update_presentation(session, pid, row),
                      compensate=lambda _, pid=pid, before=before: store.update_presentation(session, pid, before))
        if to_insert:
            saga.step('creating presentations', lambda: store.insert_presentations(session, product.id, to_insert),
                      compensate=lambda objs: store.delete_presentations(session, [o.id for o in objs]))
        if to_delete:
            saga.step('deleting presentations', lambda: store.delete_presentations(session, to_delete))
    return {
        'product_id': product.id,
        'created': len(to_insert),
        'updated': len(to_update),
        'deleted': len(to_delete),
    }


@operation('presentation.create')
@audit_log('PRESENTATION.CREATE', entity='ProductPresentation', entity_id_key='presentation_id',
           meta_keys=['product_id', 'variant'])
def create_presentation(session, caller_id: int, product_id, data: Dict[str, Any]):
    scope = authorize(session, caller_id, CATALOG_WRITERS)
    product = load_product_in_scope(session, scope, product_id)
    variant = _variant(data.get('variant'), 'variant')
    duplicate = session.execute(
        select(func.count()).select_from(ProductPresentation).where(
            ProductPresentation.product_id == product.id,
            func.lower(ProductPresentation.variant) == variant.lower(),
            ProductPresentation.is_active.is_(True),
        )
    ).scalar_one()
    if duplicate:
        raise ValidationError(f'Presentation "{variant}" already exists for this product')
    row = {
        'variant': variant,
        'units': parse_int(data.get('units'), 'units', minimum=1),
        'price': parse_money(data.get('price'), 'price', default=Decimal('0')) or product.price,
    }
    (pres,) = store.insert_presentations(session, product.id, [row])
    return {'presentation_id': pres.id, 'product_id': product.id, 'variant': variant,
            'presentation': presentation_json(pres)}


@operation('presentation.update')
@audit_log('PRESENTATION.UPDATE', entity='ProductPresentation', entity_id_key='presentation_id', meta_keys=['fields'])
def update_presentation(session, caller_id: int, presentation_id, data: Dict[str, Any]):
    pres = _load_editable(session, caller_id, presentation_id)
    values: Dict[str, Any] = {}
    if 'variant' in data:
        values['variant'] = _variant(data['variant'], 'variant')
    if 'units' in data:
        values['units'] = parse_int(data['units'], 'units', minimum=1)
    if 'price' in data:
        values['price'] = parse_money(data['price'], 'price')
    if not values:
        raise ValidationError('No fields to update')
    store.update_presentation(session, pres.id, values)
    return {'presentation_id': pres.id, 'fields': sorted(values)}


def _set_active(session, caller_id: int, presentation_id, active: bool):
    pres = _load_editable(session, caller_id, presentation_id)
    store.update_presentation(session, pres.id, {'is_active': active})
    return {'presentation_id': pres.id, 'product_id': pres.product_id, 'is_active': active}


@operation('presentation.deactivate')
@audit_log('PRESENTATION.DEACTIVATE', entity='ProductPresentation', entity_id_key='presentation_id')
def deactivate_presentation(session, caller_id: int, presentation_id):
    return _set_active(session, caller_id, presentation_id, False)


@operation('presentation.activate')
@audit_log('PRESENTATION.ACTIVATE', entity='ProductPresentation', entity_id_key='presentation_id')
def activate_presentation(session, caller_id: int, presentation_id):
    return _set_active(session, caller_id, presentation_id, True)


__all__ = [
    'update_presentations', 'create_presentation', 'update_presentation',
    'deactivate_presentation', 'activate_presentation',
]
