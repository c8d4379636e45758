"""Catalog mutation engine: products and their presentations as one logical unit.

Every product owns exactly one system-managed ``unidad`` presentation (units 1, price equal
to the product price). It is inserted together with the product, re-priced whenever the
product price changes, and is out of reach of the presentation editing operations.
"""
from __future__ import annotations
import logging
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional, Sequence
from sqlalchemy import select, func, or_
from sqlalchemy.exc import SQLAlchemyError

from stockhub.constants.roles import CATALOG_WRITERS, PRODUCT_DELETERS, ANY_STAFF, UNIT_VARIANT
from stockhub.decorators.audit import audit_log
from stockhub.decorators.operation import operation
from stockhub.errors import ValidationError, NotFound, CrossTenantViolation, Unauthorized
from stockhub.models.business import Branch
from stockhub.models.product import Product, ProductPresentation
from stockhub.services import store
from stockhub.services.policy import (
    authorize, enforce_role, load_branch_in_business, resolve_business_id, visible_branch_ids,
)
from stockhub.services.saga import Saga
from stockhub.services.scope import Scope
from stockhub.utils.presentations import unit_presentation
from stockhub.utils.serializers import product_json
from stockhub.utils.validation import (
    parse_id, parse_money, parse_int, clean_text, require_text, parse_datetime,
)

logger = logging.getLogger(__name__)

TEXT_FIELDS = ('description', 'brand', 'barcode', 'sku')


# ---------------------------------------------------------------- helpers
def normalize_extra_presentations(items: Optional[Iterable[Dict[str, Any]]], default_price: Decimal) -> List[Dict[str, Any]]:
    """Validate caller-supplied presentations; a missing price falls back to the product price."""
    out = []
    for idx, item in enumerate(items or []):
        if not isinstance(item, dict):
            raise ValidationError(f'presentations[{idx}] must be an object')
        variant = require_text(item.get('variant'), f'presentations[{idx}].variant')
        if variant.lower() == UNIT_VARIANT:
            raise ValidationError(f'"{UNIT_VARIANT}" presentation is managed automatically')
        units = parse_int(item.get('units'), f'presentations[{idx}].units', minimum=1)
        price = parse_money(item.get('price'), f'presentations[{idx}].price', default=Decimal('0'))
        out.append({'variant': variant, 'units': units, 'price': price if price > 0 else default_price})
    return out


def product_fields(data: Dict[str, Any]) -> Dict[str, Any]:
    """Validated column values for a new product."""
    fields = {
        'name': require_text(data.get('name'), 'name'),
        'cost': parse_money(data.get('cost'), 'cost'),
        'price': parse_money(data.get('price'), 'price'),
        'stock': parse_int(data.get('stock'), 'stock', default=0, minimum=0),
        'bonification': parse_money(data.get('bonification'), 'bonification', default=Decimal('0')),
        'expiration': parse_datetime(data.get('expiration')),
    }
    for key in TEXT_FIELDS:
        fields[key] = clean_text(data.get(key))
    return fields


def insert_product_unit(session, caller_id: int, branch_id: int, fields: Dict[str, Any],
                        extra: Sequence[Dict[str, Any]] = (), presentations: Optional[List[Dict[str, Any]]] = None,
                        name: str = 'product.create') -> Product:
    """Insert a product and its presentations; the product is deleted again if the presentations fail.

    ``presentations`` replaces the default ``[unidad] + extra`` list (used when cloning).
    """
    rows = presentations if presentations is not None else [unit_presentation(fields['price'])] + list(extra)
    with Saga(name, session) as saga:
        product = saga.step(
            'creating product',
            lambda: store.insert_product(session, branch_id=branch_id, created_by_user_id=caller_id, **fields),
            compensate=lambda p: store.delete_product(session, p.id),
        )
        saga.step('creating presentations', lambda: store.insert_presentations(session, product.id, rows))
    return product


def load_product_in_scope(session, scope: Scope, product_id, active_only: bool = True) -> Product:
    """Product must exist and live in a branch of the caller's business."""
    business_id = resolve_business_id(scope)
    product = store.fetch_product(session, parse_id(product_id, 'product_id'), active_only=active_only)
    if product is None:
        raise NotFound('Product not found')
    branch = session.get(Branch, product.branch_id)
    if branch is None or branch.business_id != business_id:
        raise CrossTenantViolation('Product does not belong to your business')
    return product


def active_presentations(session, product_id: int) -> List[ProductPresentation]:
    return list(session.execute(
        select(ProductPresentation)
        .where(ProductPresentation.product_id == product_id, ProductPresentation.is_active.is_(True))
        .order_by(ProductPresentation.id.asc())
        .execution_options(populate_existing=True)
    ).scalars())


# ---------------------------------------------------------------- writes
@operation('product.create')
@audit_log('PRODUCT.CREATE', entity='Product', entity_id_key='product_id', meta_keys=['product_name', 'branch_id'])
def create_product(session, caller_id: int, data: Dict[str, Any]):
    """Create a product in a branch of the caller's business with its presentations."""
    scope = authorize(session, caller_id, CATALOG_WRITERS)
    branch = load_branch_in_business(session, scope, data.get('branch_id'))
    fields = product_fields(data)
    extra = normalize_extra_presentations(data.get('presentations'), fields['price'])
    product = insert_product_unit(session, caller_id, branch.id, fields, extra)
    logger.info('product %s created in branch %s', product.id, branch.id)
    return {'product_id': product.id, 'product_name': product.name, 'branch_id': branch.id}


@operation('product.create_simple')
@audit_log('PRODUCT.CREATE', entity='Product', entity_id_key='product_id', meta_keys=['product_name', 'branch_id'])
def create_simple_product(session, caller_id: int, data: Dict[str, Any]):
    """Product with only the base unit presentation; cost and price must be positive."""
    scope = authorize(session, caller_id, CATALOG_WRITERS)
    branch = load_branch_in_business(session, scope, data.get('branch_id'))
    fields = product_fields({k: v for k, v in data.items() if k not in ('stock', 'bonification')})
    if fields['cost'] <= 0 or fields['price'] <= 0:
        raise ValidationError('cost and price must be greater than 0')
    product = insert_product_unit(session, caller_id, branch.id, fields, name='product.create_simple')
    return {'product_id': product.id, 'product_name': product.name, 'branch_id': branch.id}


UPDATABLE = ('name', 'description', 'expiration', 'brand', 'barcode', 'sku', 'stock', 'cost', 'price', 'bonification')


@operation('product.update')
@audit_log('PRODUCT.UPDATE', entity='Product', entity_id_key='product_id', meta_keys=['fields', 'price_synced'])
def update_product(session, caller_id: int, product_id, data: Dict[str, Any]):
    """Update only the supplied fields; a new price is mirrored onto the base unit presentation.

    A failed re-price of the presentation is logged and reported as ``price_synced: False``
    but does not fail the update, which has already committed.
    """
    scope = authorize(session, caller_id, CATALOG_WRITERS)
    product = load_product_in_scope(session, scope, product_id)
    unknown = set(data) - set(UPDATABLE)
    if unknown:
        raise ValidationError(f"Fields not updatable: {', '.join(sorted(unknown))}")
    values: Dict[str, Any] = {}
    if 'name' in data:
        values['name'] = require_text(data['name'], 'name')
    for key in TEXT_FIELDS:
        if key in data:
            values[key] = clean_text(data[key])
    if 'expiration' in data:
        values['expiration'] = parse_datetime(data['expiration'])
    if 'stock' in data:
        values['stock'] = parse_int(data['stock'], 'stock', minimum=0)
    for key in ('cost', 'price', 'bonification'):
        if key in data:
            values[key] = parse_money(data[key], key)
    if not values:
        raise ValidationError('No fields to update')
    store.update_product_fields(session, product.id, values)
    price_synced = None
    if 'price' in values:
        try:
            store.sync_unit_price(session, product.id, values['price'])
            price_synced = True
        except SQLAlchemyError:
            logger.warning('product %s updated but "%s" presentation price not synced', product.id, UNIT_VARIANT, exc_info=True)
            price_synced = False
    return {'product_id': product.id, 'fields': sorted(values), 'price_synced': price_synced}


def _deactivate(session, ids: List[int], name: str):
    """Soft delete products then their presentations; the products are re-activated if the cascade fails."""
    with Saga(name, session) as saga:
        saga.step('deactivating products', lambda: store.deactivate_products(session, ids),
                  compensate=lambda _: store.reactivate_products(session, ids))
        saga.step('deactivating presentations', lambda: store.deactivate_presentations(session, ids))


@operation('product.delete')
@audit_log('PRODUCT.DELETE', entity='Product', entity_id_key='product_id')
def delete_product(session, caller_id: int, product_id):
    scope = authorize(session, caller_id, PRODUCT_DELETERS)
    product = load_product_in_scope(session, scope, product_id, active_only=False)
    # managers may only delete inside their own branch
    enforce_role(scope, PRODUCT_DELETERS, required_branch_id=product.branch_id)
    _deactivate(session, [product.id], 'product.delete')
    return {'product_id': product.id}


@operation('product.delete_bulk')
@audit_log('PRODUCT.DELETE_BULK', entity='Product', meta_keys=['product_ids', 'deleted_count'])
def delete_products(session, caller_id: int, product_ids: Sequence):
    if not product_ids:
        raise ValidationError('No products given to delete')
    ids = sorted({parse_id(pid, 'product_id') for pid in product_ids})
    scope = authorize(session, caller_id, PRODUCT_DELETERS)
    business_id = resolve_business_id(scope)
    products = list(session.execute(select(Product).where(Product.id.in_(ids))).scalars())
    if len(products) != len(ids):
        raise NotFound('Some products were not found')
    branch_ids = sorted({p.branch_id for p in products})
    branches = session.execute(select(Branch).where(Branch.id.in_(branch_ids))).scalars().all()
    if len(branches) != len(branch_ids) or any(b.business_id != business_id for b in branches):
        raise CrossTenantViolation('Some products do not belong to your business')
    for branch_id in branch_ids:
        enforce_role(scope, PRODUCT_DELETERS, required_branch_id=branch_id)
    _deactivate(session, ids, 'product.delete_bulk')
    return {'product_ids': ids, 'deleted_count': len(ids)}


# ---------------------------------------------------------------- reads
@operation('product.list')
def get_products(session, caller_id: int, branch_id=None, page: int = 1, limit: int = 50, search: Optional[str] = None):
    """Active products visible to the caller, newest first, with their presentations."""
    scope = authorize(session, caller_id, ANY_STAFF)
    visible = visible_branch_ids(session, scope)
    if branch_id is not None:
        branch = load_branch_in_business(session, scope, branch_id)
        if branch.id not in visible:
            raise Unauthorized('You cannot access other branches')
        visible = [branch.id]
    q = select(Product).where(Product.is_active.is_(True), Product.branch_id.in_(visible or [0]))
    term = clean_text(search)
    if term:
        like = f'%{term.lower()}%'
        q = q.where(or_(
            func.lower(Product.name).like(like),
            func.lower(func.coalesce(Product.description, '')).like(like),
            func.lower(func.coalesce(Product.brand, '')).like(like),
        ))
    total = session.execute(select(func.count()).select_from(q.subquery())).scalar_one()
    rows = session.execute(
        q.order_by(Product.created_at.desc(), Product.id.desc()).offset((page - 1) * limit).limit(limit)
        .execution_options(populate_existing=True)
    ).scalars().all()
    products = [product_json(p, active_presentations(session, p.id)) for p in rows]
    return {
        'products': products,
        'pagination': {
            'page': page,
            'limit': limit,
            'total': total,
            'total_pages': (total + limit - 1) // limit,
        },
    }


@operation('product.get')
def get_product(session, caller_id: int, product_id):
    scope = authorize(session, caller_id, ANY_STAFF)
    product = load_product_in_scope(session, scope, product_id)
    enforce_role(scope, ANY_STAFF, required_branch_id=product.branch_id)
    return {'product': product_json(product, active_presentations(session, product.id))}


__all__ = [
    'create_product', 'create_simple_product', 'update_product', 'delete_product', 'delete_products',
    'get_products', 'get_product', 'insert_product_unit', 'product_fields', 'load_product_in_scope',
    'normalize_extra_presentations', 'active_presentations',
]
