from datetime import datetime
from decimal import Decimal
from io import BytesIO
from zipfile import ZipFile
from openpyxl import Workbook, load_workbook
from sqlalchemy import select
from stockhub.models.product import Product
from stockhub.services import excel, spreadsheet
from stockhub.utils.validation import lenient_number
from test_utils_seed import tenant, ensure_user, grant_branch, ensure_product, presentations_of


def _xlsx(rows):
    wb = Workbook()
    ws = wb.active
    for row in rows:
        ws.append(row)
    out = BytesIO()
    wb.save(out)
    return out.getvalue()


def _sheet(content):
    wb = load_workbook(BytesIO(content))
    return [list(r) for r in wb.active.iter_rows(values_only=True)]


def test_map_headers_accepts_aliases():
    index = excel.map_headers(['Name', ' PRICE ', 'cost', 'inventory', 'whatever', 'Presentations'])
    assert index == {'nombre': 0, 'precio': 1, 'costo': 2, 'stock': 3, 'presentaciones': 5}


def test_row_to_product_defaults_and_dates():
    index = excel.map_headers(excel.COLUMNS)
    row = ['Yerba', None, 'Marca', 7790001.0, None, None, '$ 4.90', 12, None, datetime(2027, 3, 1), 'pack:3:14']
    fields, extra = excel.row_to_product(row, index, 2)
    assert fields['cost'] == Decimal('4.90')
    assert fields['price'] == Decimal('4.90')
    assert fields['barcode'] == '7790001'
    assert fields['stock'] == 12
    assert fields['expiration'].date().isoformat() == '2027-03-01'
    assert extra == [{'variant': 'pack', 'units': 3, 'price': Decimal('14.00')}]


def test_import_creates_products_and_reports_bad_rows(session):
    t = tenant()
    branch = t['branches'][0]
    content = _xlsx([
        excel.COLUMNS,
        ['Galletas', 'Dulces', 'Marca', '', 'SKU-1', 2, 3.5, 40, 0, '2026-12-31', 'pack:6:18|unidad:1:99'],
        ['', 'sin nombre', '', '', '', 1, 2, 3, 0, '', ''],
        ['Negativo', '', '', '', '', -1, 2, 3, 0, '', ''],
        ['Sin stock negativo', '', '', '', '', 1, 2, -3, 0, '', ''],
        ['Fecha rara', '', '', '', '', 1, 2, 0, 0, 'mañana', ''],
    ])
    res = excel.import_products_from_excel(session, t['owner'].id, branch.id, 'productos.xlsx', content)
    assert res['success'], res
    assert res['imported_count'] == 2
    assert res['error_count'] == 3
    assert res['total_rows'] == 5
    assert res['errors'][0] == 'Row 3: name is required'
    assert res['errors'][1].startswith('Row 4 (Negativo)')
    products = {p.name: p for p in session.execute(select(Product).where(Product.branch_id == branch.id)).scalars()}
    assert set(products) == {'Galletas', 'Fecha rara'}
    assert products['Fecha rara'].expiration is None
    rows = {(p.variant, p.units, p.price) for p in presentations_of(products['Galletas'].id)}
    assert rows == {('unidad', 1, Decimal('3.50')), ('pack', 6, Decimal('18.00'))}


def test_out_of_range_rows_are_reported_and_import_continues(session):
    t = tenant()
    branch = t['branches'][0]
    content = _xlsx([
        ['nombre', 'costo', 'precio', 'stock', 'presentaciones'],
        ['Bien', 1, 2, 5, ''],
        ['Enorme', 1, 1e30, 5, ''],
        ['Mucho stock', 1, 2, 10 ** 12, ''],
        ['Despues', 1, 2, 5, 'pack:6:99999999999999|caja:12:20'],
    ])
    res = excel.import_products_from_excel(session, t['owner'].id, branch.id, 'productos.xlsx', content)
    assert res['success'], res
    assert res['imported_count'] == 2
    assert res['errors'] == [
        'Row 3 (Enorme): price is out of range',
        'Row 4 (Mucho stock): stock is out of range',
    ]
    products = {p.name: p for p in session.execute(select(Product).where(Product.branch_id == branch.id)).scalars()}
    assert set(products) == {'Bien', 'Despues'}
    rows = {(p.variant, p.units, p.price) for p in presentations_of(products['Despues'].id)}
    assert rows == {('unidad', 1, Decimal('2.00')), ('caja', 12, Decimal('20.00'))}


def test_text_cells_accept_both_decimal_conventions():
    assert lenient_number('1.234,50') == 1234.5
    assert lenient_number('$ 1,234.50') == 1234.5
    assert lenient_number('12,5') == 12.5
    assert lenient_number('1,234') == 1234.0
    assert lenient_number('1.234.567') == 1234567.0
    assert lenient_number('2.5') == 2.5
    assert lenient_number('n/a') == 0.0
    assert lenient_number(float('inf')) == 0.0


def _with_sheet_xml(content, xml):
    source = ZipFile(BytesIO(content))
    out = BytesIO()
    with ZipFile(out, 'w') as target:
        for item in source.infolist():
            data = source.read(item.filename)
            if item.filename == 'xl/worksheets/sheet1.xml':
                data = xml
            target.writestr(item, data)
    return out.getvalue()


def test_import_rejects_bad_files(session):
    t = tenant()
    branch_id = t['branches'][0].id
    owner = t['owner'].id
    assert excel.import_products_from_excel(session, owner, branch_id, 'a.xlsx', b'')['code'] == 'VALIDATION_ERROR'
    assert excel.import_products_from_excel(session, owner, branch_id, 'a.csv', b'a,b')['code'] == 'VALIDATION_ERROR'
    garbage = excel.import_products_from_excel(session, owner, branch_id, 'a.xlsx', b'not a zip')
    assert garbage['code'] == 'VALIDATION_ERROR'
    headers_only = excel.import_products_from_excel(session, owner, branch_id, 'a.xlsx', _xlsx([excel.COLUMNS]))
    assert headers_only['code'] == 'VALIDATION_ERROR'
    no_name = excel.import_products_from_excel(session, owner, branch_id, 'a.xlsx', _xlsx([['precio'], [3]]))
    assert 'nombre' in no_name['error']
    broken = _with_sheet_xml(_xlsx([excel.COLUMNS, ['X', '', '', '', '', 1, 2, 3, 0, '', '']]),
                             b'<worksheet><sheetData><row><c')
    corrupt = excel.import_products_from_excel(session, owner, branch_id, 'a.xlsx', broken)
    assert corrupt == {'success': False, 'error': spreadsheet.NOT_A_WORKBOOK, 'code': 'VALIDATION_ERROR'}
    assert session.query(Product).count() == 0


def test_import_requires_catalog_writer(session):
    t = tenant()
    manager = ensure_user('manager@example.com')
    grant_branch(manager, t['branches'][0], 'manager')
    content = _xlsx([excel.COLUMNS, ['X', '', '', '', '', 1, 2, 3, 0, '', '']])
    res = excel.import_products_from_excel(session, manager.id, t['branches'][0].id, 'a.xlsx', content)
    assert res['code'] == 'UNAUTHORIZED'


def test_template_has_layout_and_examples():
    template = excel.generate_template()
    assert template['filename'] == 'plantilla-importacion-productos.xlsx'
    rows = _sheet(template['content'])
    assert rows[0] == excel.COLUMNS
    assert len(rows) == 3


def test_export_round_trips_into_import_layout(session):
    t = tenant()
    centro = t['branches'][0]
    ensure_product(centro, 'Cafe', price='8.00', stock=4, extra=[{'variant': 'caja', 'units': 10, 'price': '75'}])
    res = excel.export_products(session, t['owner'].id, centro.id)
    assert res['success'], res
    assert res['product_count'] == 1
    assert res['filename'] == 'reporte-productos-centro.xlsx'
    rows = _sheet(res['content'])
    assert rows[0] == excel.COLUMNS
    assert rows[1][0] == 'Cafe'
    assert rows[1][10] == 'caja:10:75.00'
    fields, extra = excel.row_to_product(rows[1], excel.map_headers(rows[0]), 2)
    assert fields['price'] == Decimal('8.00')
    assert extra[0]['units'] == 10


def test_export_respects_branch_scope(session):
    t = tenant()
    centro, norte = t['branches']
    ensure_product(centro, 'Centro')
    ensure_product(norte, 'Norte')
    cashier = ensure_user('cashier@example.com')
    grant_branch(cashier, norte, 'cashier')
    res = excel.export_products(session, cashier.id)
    assert [r[0] for r in _sheet(res['content'])[1:]] == ['Norte']
    assert excel.export_products(session, cashier.id, centro.id)['code'] == 'UNAUTHORIZED'


def test_export_without_products_is_not_found(session):
    t = tenant()
    assert excel.export_products(session, t['owner'].id)['code'] == 'NOT_FOUND'


def test_spreadsheet_codec_reads_first_sheet_only():
    wb = Workbook()
    wb.active.append(['a', 1])
    wb.create_sheet('otra').append(['b', 2])
    out = BytesIO()
    wb.save(out)
    assert spreadsheet.parse(out.getvalue()) == [['a', 1]]
