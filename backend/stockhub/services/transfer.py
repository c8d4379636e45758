"""Stock transfer and branch-to-branch catalog import.

Both operations write to several rows without a shared transaction. Stock writes are
compare-and-set on ``Product.version``; a transfer that loses a race undoes what it
already wrote and starts over, up to ``STOCK_CAS_MAX_RETRIES`` attempts.
"""
from __future__ import annotations
import logging
from decimal import Decimal
from typing import Any, Dict, List, Optional
from flask import current_app, has_app_context
from sqlalchemy import select, or_, and_
from sqlalchemy.exc import SQLAlchemyError

from stockhub.constants.roles import CATALOG_WRITERS
from stockhub.decorators.audit import audit_log
from stockhub.decorators.operation import operation
from stockhub.errors import DomainError, InsufficientStock, NotFound, StockConflict, ValidationError
from stockhub.models.product import Product, ProductPresentation
from stockhub.services import store
from stockhub.services.catalog import insert_product_unit
from stockhub.services.policy import authorize, load_branches_in_business
from stockhub.services.saga import Saga
from stockhub.utils.presentations import clone_presentations
from stockhub.utils.validation import clean_text, parse_id, parse_quantity

logger = logging.getLogger(__name__)

DEFAULT_CAS_RETRIES = 3


def _max_attempts() -> int:
    if has_app_context():
        return max(1, int(current_app.config.get('STOCK_CAS_MAX_RETRIES', DEFAULT_CAS_RETRIES)))
    return DEFAULT_CAS_RETRIES


def _copied_fields(source: Product, **overrides) -> Dict[str, Any]:
    fields = {
        'name': source.name,
        'description': source.description,
        'expiration': source.expiration,
        'brand': source.brand,
        'barcode': source.barcode,
        'sku': source.sku,
        'cost': source.cost if source.cost is not None else Decimal('0'),
        'price': source.price if source.price is not None else Decimal('0'),
        'bonification': source.bonification if source.bonification is not None else Decimal('0'),
    }
    fields.update(overrides)
    return fields


def _presentations_of(session, product_ids: List[int]) -> Dict[int, List[ProductPresentation]]:
    out: Dict[int, List[ProductPresentation]] = {pid: [] for pid in product_ids}
    if not product_ids:
        return out
    rows = session.execute(
        select(ProductPresentation)
        .where(ProductPresentation.product_id.in_(product_ids))
        .order_by(ProductPresentation.id.asc())
    ).scalars()
    for row in rows:
        out[row.product_id].append(row)
    return out


def _find_target_match(session, source: Product, target_branch_id: int) -> Optional[Product]:
    """Active target-branch product with the same name, or the same barcode when the source has one."""
    match = Product.name == source.name
    if source.barcode:
        match = or_(match, and_(Product.barcode.isnot(None), Product.barcode == source.barcode))
    return session.execute(
        select(Product)
        .where(Product.branch_id == target_branch_id, Product.is_active.is_(True), match)
        .order_by(Product.id.asc())
        .execution_options(populate_existing=True)
    ).scalars().first()


def _restore_target(session, product_id: int, written_version: int, original_stock: int, quantity: int):
    """Put the target back; if someone wrote after us, subtract our delta instead of overwriting."""
    try:
        store.compare_and_set_stock(session, product_id, written_version, original_stock)
    except StockConflict:
        current = store.fetch_product(session, product_id)
        if current is None:
            raise
        logger.warning('target product %s changed concurrently; reverting transfer of %s by delta (stock %s)',
                       product_id, quantity, current.stock)
        store.compare_and_set_stock(session, product_id, current.version, current.stock - quantity)


def _decrement_source(saga: Saga, session, source_id: int, version: int, stock: int, quantity: int):
    saga.step(
        f'updating source stock (product {source_id}: {stock} -> {stock - quantity})',
        lambda: store.compare_and_set_stock(session, source_id, version, stock - quantity),
    )


def _into_existing(session, source: Product, target: Product, quantity: int) -> Dict[str, Any]:
    # snapshot before writing; the bulk updates refresh the mapped objects in place
    source_id, source_version, source_stock = source.id, source.version, source.stock
    target_id, target_version, target_stock = target.id, target.version, target.stock
    with Saga('stock.transfer', session, passthrough=(StockConflict,)) as saga:
        saga.step(
            f'updating target stock (product {target_id}: {target_stock} -> {target_stock + quantity})',
            lambda: store.compare_and_set_stock(session, target_id, target_version, target_stock + quantity),
            compensate=lambda version: _restore_target(session, target_id, version, target_stock, quantity),
        )
        _decrement_source(saga, session, source_id, source_version, source_stock, quantity)
    return {
        'target_product_id': target_id,
        'created_target': False,
        'target_stock_before': target_stock,
        'target_stock_after': target_stock + quantity,
        'message': f'{quantity} units transferred',
    }


def _into_new(session, caller_id: int, source: Product, target_branch_id: int, quantity: int,
              name: str, description: Optional[str]) -> Dict[str, Any]:
    source_id, source_version, source_stock = source.id, source.version, source.stock
    fields = _copied_fields(source, name=name, description=description, stock=quantity)
    rows = clone_presentations(_presentations_of(session, [source_id])[source_id], fields['price'])
    with Saga('stock.transfer', session, passthrough=(StockConflict,)) as saga:
        product = saga.step(
            'creating target product',
            lambda: insert_product_unit(session, caller_id, target_branch_id, fields, presentations=rows,
                                        name='stock.transfer'),
            compensate=lambda p: store.delete_product(session, p.id),
        )
        _decrement_source(saga, session, source_id, source_version, source_stock, quantity)
    return {
        'target_product_id': product.id,
        'created_target': True,
        'target_stock_before': 0,
        'target_stock_after': quantity,
        'message': f'Product "{name}" created in target branch and {quantity} units transferred',
    }


def _transfer_once(session, caller_id: int, product_id: int, source_branch_id: int, target_branch_id: int,
                   quantity: int, data: Dict[str, Any]) -> Dict[str, Any]:
    source = store.fetch_product(session, product_id, branch_id=source_branch_id, active_only=True)
    if source is None:
        raise NotFound('Product does not exist in the source branch')
    if source.stock < quantity:
        raise InsufficientStock(source.stock, quantity)
    stock_before = source.stock
    create = bool(data.get('create_if_not_exists'))
    new_name = clean_text(data.get('new_product_name'))

    if data.get('target_product_id') is not None:
        target = store.fetch_product(session, parse_id(data['target_product_id'], 'target_product_id'),
                                     branch_id=target_branch_id, active_only=True)
        if target is None:
            raise NotFound('Selected target product does not exist')
        result = _into_existing(session, source, target, quantity)
    elif new_name:
        if not create:
            raise ValidationError('Enable create_if_not_exists to create the target product')
        description = clean_text(data.get('new_product_description')) or source.description
        result = _into_new(session, caller_id, source, target_branch_id, quantity, new_name, description)
    else:
        target = _find_target_match(session, source, target_branch_id)
        if target is not None:
            result = _into_existing(session, source, target, quantity)
        elif create:
            result = _into_new(session, caller_id, source, target_branch_id, quantity, source.name, source.description)
        else:
            raise NotFound('Product does not exist in the target branch. Select a product or create a new one.')
    result.update({
        'source_stock_before': stock_before,
        'source_stock_after': stock_before - quantity,
    })
    return result


@operation('stock.transfer')
@audit_log('PRODUCT.TRANSFER', entity='Product', entity_id_key='product_id', meta_keys=[
    'source_branch_id', 'target_branch_id', 'target_product_id', 'quantity', 'created_target',
    'source_stock_before', 'source_stock_after', 'target_stock_before', 'target_stock_after',
])
def transfer_product_stock(session, caller_id: int, data: Dict[str, Any]):
    """Move ``quantity`` units of a product from one branch to another of the same business.

    The target is, in order: ``target_product_id``; a new product named ``new_product_name``
    (needs ``create_if_not_exists``); an active target-branch product matching by name or
    barcode; or a copy of the source when ``create_if_not_exists`` is set.
    """
    product_id = parse_id(data.get('product_id'), 'product_id')
    source_branch_id = parse_id(data.get('source_branch_id'), 'source_branch_id')
    target_branch_id = parse_id(data.get('target_branch_id'), 'target_branch_id')
    quantity = parse_quantity(data.get('quantity'))
    if source_branch_id == target_branch_id:
        raise ValidationError('Cannot transfer to the same branch')
    scope = authorize(session, caller_id, CATALOG_WRITERS)
    load_branches_in_business(session, scope, [source_branch_id, target_branch_id])

    attempts = _max_attempts()
    for attempt in range(1, attempts + 1):
        try:
            result = _transfer_once(session, caller_id, product_id, source_branch_id, target_branch_id, quantity, data)
        except StockConflict:
            logger.info('stock.transfer: version conflict on product %s (attempt %s/%s)', product_id, attempt, attempts)
            continue
        result.update({
            'product_id': product_id,
            'source_branch_id': source_branch_id,
            'target_branch_id': target_branch_id,
            'quantity': quantity,
        })
        logger.info('stock.transfer: %s units of product %s moved from branch %s to %s',
                    quantity, product_id, source_branch_id, target_branch_id)
        return result
    raise StockConflict(f'Stock kept changing during the transfer; gave up after {attempts} attempts')


@operation('catalog.import_branch')
@audit_log('PRODUCT.IMPORT_BRANCH', entity='Branch', entity_id_key='target_branch_id',
           meta_keys=['source_branch_id', 'imported_count', 'error_count', 'total_products'])
def import_products_from_branch(session, caller_id: int, source_branch_id, target_branch_id):
    """Copy every active product of one branch into another with stock 0.

    Each product is its own unit of work: a failure is recorded in ``errors`` and the
    loop moves on. Authorization and branch ownership are checked once, up front.
    """
    source_id = parse_id(source_branch_id, 'source_branch_id')
    target_id = parse_id(target_branch_id, 'target_branch_id')
    if source_id == target_id:
        raise ValidationError('Cannot import products from the same branch')
    scope = authorize(session, caller_id, CATALOG_WRITERS)
    load_branches_in_business(session, scope, [source_id, target_id])

    products = list(session.execute(
        select(Product)
        .where(Product.branch_id == source_id, Product.is_active.is_(True))
        .order_by(Product.id.asc())
    ).scalars())
    if not products:
        raise NotFound('No products to import in the selected branch')
    presentations = _presentations_of(session, [p.id for p in products])

    imported, errors = 0, []
    for src in products:
        label = src.name or f'product {src.id}'
        try:
            if not clean_text(src.name):
                raise ValidationError(f'Product without name (ID: {src.id})')
            fields = _copied_fields(src, name=src.name.strip(), stock=0)
            rows = clone_presentations(presentations[src.id], fields['price'])
            insert_product_unit(session, caller_id, target_id, fields, presentations=rows, name='catalog.import_branch')
            imported += 1
        except DomainError as e:
            logger.warning('catalog.import_branch: %s skipped: %s', label, e.message)
            errors.append(f'{label}: {e.message}')
        except SQLAlchemyError:
            session.rollback()
            logger.warning('catalog.import_branch: %s skipped', label, exc_info=True)
            errors.append(f'{label}: could not create product')
    logger.info('catalog.import_branch: %s imported, %s failed from branch %s to %s',
                imported, len(errors), source_id, target_id)
    return {
        'source_branch_id': source_id,
        'target_branch_id': target_id,
        'imported_count': imported,
        'error_count': len(errors),
        'total_products': len(products),
        'errors': errors,
    }


__all__ = ['transfer_product_stock', 'import_products_from_branch']
