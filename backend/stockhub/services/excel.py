"""Spreadsheet import, export and template for the product catalog.

Column layout (shared by all three)::

    nombre | descripcion | marca | codigo_barras | sku | costo | precio | stock
    | bonificacion | fecha_vencimiento | presentaciones

``presentaciones`` holds ``variant:units:price`` entries joined by ``|``; the base unit
presentation is never written to or read from it.
"""
from __future__ import annotations
import logging
import re
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional, Sequence, Tuple
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from stockhub.constants.roles import CATALOG_WRITERS, ANY_STAFF
from stockhub.decorators.audit import audit_log
from stockhub.decorators.operation import operation
from stockhub.errors import DomainError, NotFound, ValidationError
from stockhub.models.product import Product
from stockhub.services import spreadsheet
from stockhub.services.catalog import active_presentations, insert_product_unit
from stockhub.services.policy import (
    assert_branch_access, authorize, load_branch_in_business, visible_branch_ids,
)
from stockhub.utils.presentations import format_presentation_cell, parse_presentation_cell
from stockhub.utils.validation import MAX_INT, clean_text, lenient_number, parse_datetime, parse_money

logger = logging.getLogger(__name__)

COLUMNS = [
    'nombre', 'descripcion', 'marca', 'codigo_barras', 'sku', 'costo', 'precio',
    'stock', 'bonificacion', 'fecha_vencimiento', 'presentaciones',
]
COLUMN_WIDTHS = [20, 30, 15, 15, 15, 12, 12, 10, 12, 18, 40]

HEADER_ALIASES = {
    'nombre': 'nombre', 'name': 'nombre', 'producto': 'nombre', 'product': 'nombre',
    'descripcion': 'descripcion', 'description': 'descripcion', 'desc': 'descripcion',
    'marca': 'marca', 'brand': 'marca',
    'codigo_barras': 'codigo_barras', 'barcode': 'codigo_barras', 'codigo': 'codigo_barras',
    'sku': 'sku',
    'costo': 'costo', 'cost': 'costo',
    'precio': 'precio', 'price': 'precio',
    'stock': 'stock', 'inventario': 'stock', 'inventory': 'stock',
    'bonificacion': 'bonificacion', 'bonification': 'bonificacion',
    'fecha_vencimiento': 'fecha_vencimiento', 'expiration': 'fecha_vencimiento',
    'exp': 'fecha_vencimiento', 'vencimiento': 'fecha_vencimiento',
    'presentaciones': 'presentaciones', 'presentations': 'presentaciones',
    'variantes': 'presentaciones', 'variants': 'presentaciones',
}

TEMPLATE_FILENAME = 'plantilla-importacion-productos.xlsx'
TEMPLATE_ROWS = [
    ['Producto Ejemplo', 'Descripción del producto', 'Marca Ejemplo', '1234567890123', 'SKU-001',
     10.50, 15.99, 100, 0, '2025-12-31', 'pack:6:89.99|caja:12:179.99'],
    ['Otro Producto', '', 'Otra Marca', '', 'SKU-002', 5.00, 8.50, 50, 0, '', ''],
]


def map_headers(header_row: Sequence[Any]) -> Dict[str, int]:
    """Canonical column name -> index; unknown headers are ignored, the last duplicate wins."""
    index = {}
    for idx, header in enumerate(header_row):
        canonical = HEADER_ALIASES.get(str(header or '').strip().lower())
        if canonical:
            index[canonical] = idx
    return index


def _cell_text(value) -> Optional[str]:
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    if isinstance(value, datetime):
        return value.date().isoformat()
    return clean_text(value)


def _is_blank(row: Sequence[Any]) -> bool:
    return all(_cell_text(cell) is None for cell in row)


def _money(value: float, field_name: str, line: int, name: str) -> Decimal:
    try:
        return parse_money(value, field_name, allow_negative=True)
    except ValidationError as e:
        raise ValidationError(f'Row {line} ({name}): {e.message}')


def row_to_product(row: Sequence[Any], index: Dict[str, int], line: int) -> Tuple[Dict[str, Any], List[Dict[str, Any]]]:
    """Product fields and extra presentations for one data row; raises ValidationError naming the row."""
    def cell(name):
        idx = index.get(name)
        if idx is None or idx >= len(row):
            return None
        return row[idx]

    name = _cell_text(cell('nombre'))
    if not name:
        raise ValidationError(f'Row {line}: name is required')
    cost_raw = cell('costo') if _cell_text(cell('costo')) is not None else cell('precio')
    price_raw = cell('precio') if _cell_text(cell('precio')) is not None else cell('costo')
    cost, price = lenient_number(cost_raw), lenient_number(price_raw)
    stock, bonification = lenient_number(cell('stock')), lenient_number(cell('bonificacion'))
    if cost < 0 or price < 0:
        raise ValidationError(f'Row {line} ({name}): cost and price must be positive numbers')
    if stock < 0:
        raise ValidationError(f'Row {line} ({name}): stock cannot be negative')
    if stock > MAX_INT:
        raise ValidationError(f'Row {line} ({name}): stock is out of range')
    expiration = cell('fecha_vencimiento')
    fields = {
        'name': name,
        'description': _cell_text(cell('descripcion')),
        'brand': _cell_text(cell('marca')),
        'barcode': _cell_text(cell('codigo_barras')),
        'sku': _cell_text(cell('sku')),
        'cost': _money(cost, 'cost', line, name),
        'price': _money(price, 'price', line, name),
        'stock': int(stock),
        'bonification': _money(bonification, 'bonification', line, name),
        'expiration': parse_datetime(expiration if isinstance(expiration, datetime) else _cell_text(expiration), strict=False),
    }
    extra = [
        {'variant': p['variant'], 'units': p['units'], 'price': p['price'] if p['price'] else fields['price']}
        for p in parse_presentation_cell(_cell_text(cell('presentaciones')))
    ]
    return fields, extra


@operation('catalog.import_excel')
@audit_log('PRODUCT.IMPORT_EXCEL', entity='Branch', entity_id_key='branch_id',
           meta_keys=['imported_count', 'error_count', 'total_rows'])
def import_products_from_excel(session, caller_id: int, branch_id, filename: Optional[str], content: bytes):
    """Create one product per data row; bad rows are reported in ``errors`` and skipped."""
    if not content:
        raise ValidationError('No file provided')
    if not filename or not filename.lower().endswith(spreadsheet.ACCEPTED_EXTENSIONS):
        raise ValidationError(spreadsheet.NOT_A_WORKBOOK)
    scope = authorize(session, caller_id, CATALOG_WRITERS)
    branch = load_branch_in_business(session, scope, branch_id)

    rows = spreadsheet.parse(content)
    if len(rows) < 2:
        raise ValidationError('The spreadsheet needs at least one data row below the header')
    index = map_headers(rows[0])
    if 'nombre' not in index:
        raise ValidationError('The spreadsheet needs a "nombre" or "name" column')
    if 'costo' not in index and 'precio' not in index:
        raise ValidationError('The spreadsheet needs "costo" and "precio" (or "cost" and "price") columns')

    imported, errors = 0, []
    for line, row in enumerate(rows[1:], start=2):
        if row is None or _is_blank(row):
            continue
        try:
            fields, extra = row_to_product(row, index, line)
            insert_product_unit(session, caller_id, branch.id, fields, extra, name='catalog.import_excel')
            imported += 1
        except DomainError as e:
            errors.append(e.message if e.message.startswith('Row ') else f'Row {line}: {e.message}')
        except SQLAlchemyError:
            session.rollback()
            logger.warning('catalog.import_excel: row %s failed', line, exc_info=True)
            errors.append(f'Row {line}: could not create product')
    logger.info('catalog.import_excel: %s imported, %s failed into branch %s', imported, len(errors), branch.id)
    return {
        'branch_id': branch.id,
        'imported_count': imported,
        'error_count': len(errors),
        'total_rows': len(rows) - 1,
        'errors': errors,
    }


def generate_template() -> Dict[str, Any]:
    return {
        'content': spreadsheet.serialize([COLUMNS] + TEMPLATE_ROWS, column_widths=COLUMN_WIDTHS),
        'filename': TEMPLATE_FILENAME,
    }


def product_row(product: Product, presentations) -> List[Any]:
    return [
        product.name or '',
        product.description or '',
        product.brand or '',
        product.barcode or '',
        product.sku or '',
        float(product.cost or 0),
        float(product.price or 0),
        product.stock or 0,
        float(product.bonification or 0),
        product.expiration.date().isoformat() if product.expiration else '',
        format_presentation_cell(presentations),
    ]


@operation('catalog.export_excel')
def export_products(session, caller_id: int, branch_id=None):
    """Active products visible to the caller in the import layout."""
    scope = authorize(session, caller_id, ANY_STAFF)
    filename = 'reporte-productos.xlsx'
    if branch_id is not None:
        branch = load_branch_in_business(session, scope, branch_id)
        assert_branch_access(scope, branch.id)
        branch_ids = [branch.id]
        filename = f"reporte-productos-{re.sub(r'[^a-z0-9]', '_', branch.name, flags=re.IGNORECASE).lower()}.xlsx"
    else:
        branch_ids = visible_branch_ids(session, scope)
    products = list(session.execute(
        select(Product)
        .where(Product.branch_id.in_(branch_ids or [0]), Product.is_active.is_(True))
        .order_by(Product.created_at.desc(), Product.id.desc())
    ).scalars())
    if not products:
        raise NotFound('No products to export')
    rows = [COLUMNS] + [product_row(p, active_presentations(session, p.id)) for p in products]
    return {
        'content': spreadsheet.serialize(rows, column_widths=COLUMN_WIDTHS),
        'filename': filename,
        'product_count': len(products),
    }


__all__ = [
    'import_products_from_excel', 'generate_template', 'export_products', 'map_headers', 'row_to_product',
    'COLUMNS', 'HEADER_ALIASES',
]
