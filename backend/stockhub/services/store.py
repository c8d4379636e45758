"""Storage collaborator.

Each function is one independently committed write, mirroring a hosted table store with
no multi-statement transactions. Multi-step operations compose these calls and supply
their own compensations, so a failure here surfaces to the caller with earlier steps
already durable.
"""
from __future__ import annotations
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional
from sqlalchemy import select, update, delete

from stockhub.constants.roles import UNIT_VARIANT
from stockhub.errors import StockConflict
from stockhub.models.product import Product, ProductPresentation
from stockhub.models.audit import AuditLog


def _commit(session):
    try:
        session.commit()
    except Exception:
        session.rollback()
        raise


def _apply(session, stmt):
    try:
        result = session.execute(stmt)
        session.commit()
    except Exception:
        session.rollback()
        raise
    return result


# --- generic rows ---
def insert_row(session, obj):
    session.add(obj)
    _commit(session)
    return obj


def delete_row(session, model, row_id: int) -> int:
    return _apply(session, delete(model).where(model.id == row_id)).rowcount


def update_row(session, model, row_id: int, values: Dict[str, Any]) -> int:
    if not values:
        return 0
    return _apply(session, update(model).where(model.id == row_id).values(**values)).rowcount


# --- products ---
def fetch_product(session, product_id: int, branch_id: Optional[int] = None, active_only: bool = False) -> Optional[Product]:
    """Read the current row, bypassing stale identity-map state."""
    q = select(Product).where(Product.id == product_id)
    if branch_id is not None:
        q = q.where(Product.branch_id == branch_id)
    if active_only:
        q = q.where(Product.is_active.is_(True))
    return session.execute(q.execution_options(populate_existing=True)).scalar_one_or_none()


def insert_product(session, **fields) -> Product:
    fields.setdefault('is_active', True)
    fields.setdefault('version', 1)
    return insert_row(session, Product(**fields))


def delete_product(session, product_id: int) -> int:
    """Hard delete used only as a compensation: removes presentations first."""
    try:
        session.execute(delete(ProductPresentation).where(ProductPresentation.product_id == product_id))
        result = session.execute(delete(Product).where(Product.id == product_id))
        session.commit()
    except Exception:
        session.rollback()
        raise
    return result.rowcount


def update_product_fields(session, product_id: int, values: Dict[str, Any]) -> int:
    if not values:
        return 0
    values = dict(values)
    if 'stock' in values:
        values['version'] = Product.version + 1
    return _apply(session, update(Product).where(Product.id == product_id).values(**values)).rowcount


def compare_and_set_stock(session, product_id: int, expected_version: int, new_stock: int) -> int:
    """Conditional stock write; raises StockConflict when the version moved. Returns the new version."""
    result = _apply(
        session,
        update(Product)
        .where(Product.id == product_id, Product.version == expected_version)
        .values(stock=new_stock, version=expected_version + 1),
    )
    if result.rowcount != 1:
        raise StockConflict()
    return expected_version + 1


def deactivate_products(session, product_ids: Iterable[int]) -> int:
    ids = list(product_ids)
    if not ids:
        return 0
    return _apply(session, update(Product).where(Product.id.in_(ids)).values(is_active=False)).rowcount


def reactivate_products(session, product_ids: Iterable[int]) -> int:
    ids = list(product_ids)
    if not ids:
        return 0
    return _apply(session, update(Product).where(Product.id.in_(ids)).values(is_active=True)).rowcount


# --- presentations ---
def insert_presentations(session, product_id: int, rows: List[Dict[str, Any]]) -> List[ProductPresentation]:
    """Batch insert: all rows commit together or none do."""
    objs = [
        ProductPresentation(
            product_id=product_id,
            variant=r['variant'],
            units=r['units'],
            price=r.get('price'),
            is_active=r.get('is_active', True),
        )
        for r in rows
    ]
    session.add_all(objs)
    _commit(session)
    return objs


def sync_unit_price(session, product_id: int, price: Decimal) -> int:
    return _apply(
        session,
        update(ProductPresentation)
        .where(ProductPresentation.product_id == product_id, ProductPresentation.variant == UNIT_VARIANT)
        .values(price=price),
    ).rowcount


def delete_presentations(session, presentation_ids: Iterable[int]) -> int:
    ids = list(presentation_ids)
    if not ids:
        return 0
    return _apply(session, delete(ProductPresentation).where(ProductPresentation.id.in_(ids))).rowcount


def update_presentation(session, presentation_id: int, values: Dict[str, Any]) -> int:
    return update_row(session, ProductPresentation, presentation_id, values)


def deactivate_presentations(session, product_ids: Iterable[int]) -> int:
    ids = list(product_ids)
    if not ids:
        return 0
    return _apply(
        session,
        update(ProductPresentation).where(ProductPresentation.product_id.in_(ids)).values(is_active=False),
    ).rowcount


# --- audit ---
def add_audit(session, actor_user_id: Optional[int], action: str, entity: Optional[str] = None,
              entity_id=None, meta: Optional[Dict[str, Any]] = None, business_id: Optional[int] = None) -> AuditLog:
    log = AuditLog(
        actor_user_id=actor_user_id,
        business_id=business_id,
        action=action,
        entity=entity,
        entity_id=str(entity_id) if entity_id is not None else None,
        meta=meta or {},
    )
    return insert_row(session, log)
