from decimal import Decimal
from sqlalchemy import select
from sqlalchemy.exc import OperationalError
from stockhub.errors import StockConflict
from stockhub.models.audit import AuditLog
from stockhub.models.product import Product
from stockhub.services import store, transfer
from test_utils_seed import tenant, ensure_user, grant_branch, ensure_product, reload, presentations_of


def _setup(source_stock=20, target_stock=5):
    t = tenant()
    centro, norte = t['branches']
    source = ensure_product(centro, 'Harina', stock=source_stock, barcode='779123',
                            extra=[{'variant': 'bolsa', 'units': 10, 'price': '45'}])
    target = ensure_product(norte, 'Harina', stock=target_stock) if target_stock is not None else None
    return t, source, target


def _payload(t, source, quantity, **extra):
    data = {
        'product_id': source.id,
        'source_branch_id': t['branches'][0].id,
        'target_branch_id': t['branches'][1].id,
        'quantity': quantity,
    }
    data.update(extra)
    return data


def _stocks(*products):
    return tuple(reload(Product, p.id).stock for p in products)


def test_transfer_into_matching_product(session):
    t, source, target = _setup(20, 5)
    res = transfer.transfer_product_stock(session, t['owner'].id, _payload(t, source, 8))
    assert res['success'], res
    assert _stocks(source, target) == (12, 13)
    assert res['target_product_id'] == target.id
    assert res['created_target'] is False
    assert (res['source_stock_before'], res['source_stock_after']) == (20, 12)
    assert (res['target_stock_before'], res['target_stock_after']) == (5, 13)
    log = session.execute(select(AuditLog).where(AuditLog.action == 'PRODUCT.TRANSFER')).scalar_one()
    assert log.meta['quantity'] == 8
    assert log.meta['source_stock_after'] == 12


def test_transfer_matches_by_barcode(session):
    t, source, _ = _setup(10, None)
    renamed = ensure_product(t['branches'][1], 'Harina 000', stock=1, barcode='779123')
    res = transfer.transfer_product_stock(session, t['owner'].id, _payload(t, source, 4))
    assert res['target_product_id'] == renamed.id
    assert _stocks(source, renamed) == (6, 5)


def test_transfer_exceeding_stock_changes_nothing(session):
    t, source, target = _setup(3, 5)
    res = transfer.transfer_product_stock(session, t['owner'].id, _payload(t, source, 5))
    assert res['code'] == 'INSUFFICIENT_STOCK'
    assert 'Available: 3' in res['error']
    assert _stocks(source, target) == (3, 5)


def test_transfer_input_validation(session):
    t, source, target = _setup()
    same = _payload(t, source, 1, target_branch_id=t['branches'][0].id)
    assert transfer.transfer_product_stock(session, t['owner'].id, same)['code'] == 'VALIDATION_ERROR'
    assert transfer.transfer_product_stock(session, t['owner'].id, _payload(t, source, 0))['code'] == 'VALIDATION_ERROR'
    assert transfer.transfer_product_stock(session, t['owner'].id, _payload(t, source, 'abc'))['code'] == 'VALIDATION_ERROR'
    assert _stocks(source, target) == (20, 5)


def test_transfer_to_foreign_branch_is_cross_tenant(session):
    t, source, _ = _setup()
    other = tenant('Other', branches=('Lejos',))
    res = transfer.transfer_product_stock(session, t['owner'].id,
                                          _payload(t, source, 1, target_branch_id=other['branches'][0].id))
    assert res['code'] == 'CROSS_TENANT'
    assert _stocks(source) == (20,)


def test_branch_staff_cannot_transfer(session):
    t, source, _ = _setup()
    manager = ensure_user('manager@example.com')
    grant_branch(manager, t['branches'][0], 'manager')
    assert transfer.transfer_product_stock(session, manager.id, _payload(t, source, 1))['code'] == 'UNAUTHORIZED'


def test_transfer_to_selected_target(session):
    t, source, target = _setup()
    chosen = ensure_product(t['branches'][1], 'Otra Harina', stock=2)
    res = transfer.transfer_product_stock(session, t['owner'].id, _payload(t, source, 5, target_product_id=chosen.id))
    assert res['target_product_id'] == chosen.id
    assert _stocks(source, target, chosen) == (15, 5, 7)


def test_selected_target_must_live_in_target_branch(session):
    t, source, _ = _setup()
    res = transfer.transfer_product_stock(session, t['owner'].id, _payload(t, source, 5, target_product_id=source.id))
    assert res['code'] == 'NOT_FOUND'


def test_no_target_without_create_flag_is_not_found(session):
    t, source, _ = _setup(10, None)
    res = transfer.transfer_product_stock(session, t['owner'].id, _payload(t, source, 2))
    assert res['code'] == 'NOT_FOUND'
    assert _stocks(source) == (10,)


def test_create_target_copies_product_and_presentations(session):
    t, source, _ = _setup(10, None)
    res = transfer.transfer_product_stock(session, t['owner'].id, _payload(t, source, 4, create_if_not_exists=True))
    assert res['success'], res
    assert res['created_target'] is True
    created = reload(Product, res['target_product_id'])
    assert (created.branch_id, created.name, created.stock, created.price) == (
        t['branches'][1].id, 'Harina', 4, Decimal('5.00'))
    assert sorted(p.variant for p in presentations_of(created.id)) == ['bolsa', 'unidad']
    assert _stocks(source) == (6,)


def test_new_product_name_requires_create_flag(session):
    t, source, _ = _setup(10, None)
    res = transfer.transfer_product_stock(session, t['owner'].id, _payload(t, source, 4, new_product_name='Harina Norte'))
    assert res['code'] == 'VALIDATION_ERROR'
    named = transfer.transfer_product_stock(session, t['owner'].id, _payload(
        t, source, 4, new_product_name='Harina Norte', create_if_not_exists=True))
    assert reload(Product, named['target_product_id']).name == 'Harina Norte'


def test_failed_source_decrement_restores_target(session, monkeypatch):
    t, source, target = _setup(20, 5)
    real = store.compare_and_set_stock

    def failing(session_, product_id, expected_version, new_stock):
        if product_id == source.id:
            raise OperationalError('UPDATE', {}, Exception('connection reset'))
        return real(session_, product_id, expected_version, new_stock)
    monkeypatch.setattr(store, 'compare_and_set_stock', failing)
    res = transfer.transfer_product_stock(session, t['owner'].id, _payload(t, source, 8))
    assert res['code'] == 'PARTIAL_WRITE_FAILURE'
    assert _stocks(source, target) == (20, 5)


def test_failed_source_decrement_deletes_created_target(session, monkeypatch):
    t, source, _ = _setup(10, None)
    real = store.compare_and_set_stock

    def failing(session_, product_id, expected_version, new_stock):
        if product_id == source.id:
            raise OperationalError('UPDATE', {}, Exception('connection reset'))
        return real(session_, product_id, expected_version, new_stock)
    monkeypatch.setattr(store, 'compare_and_set_stock', failing)
    res = transfer.transfer_product_stock(session, t['owner'].id, _payload(t, source, 4, create_if_not_exists=True))
    assert res['code'] == 'PARTIAL_WRITE_FAILURE'
    remaining = session.execute(select(Product).where(Product.branch_id == t['branches'][1].id)).scalars().all()
    assert remaining == []
    assert _stocks(source) == (10,)


def test_compensation_keeps_concurrent_target_write(session, monkeypatch):
    t, source, target = _setup(20, 5)
    real = store.compare_and_set_stock

    def racing(session_, product_id, expected_version, new_stock):
        if product_id == source.id:
            # a sale of 1 unit lands on the target before the source write fails
            store.update_product_fields(session_, target.id, {'stock': 12})
            raise OperationalError('UPDATE', {}, Exception('connection reset'))
        return real(session_, product_id, expected_version, new_stock)
    monkeypatch.setattr(store, 'compare_and_set_stock', racing)
    res = transfer.transfer_product_stock(session, t['owner'].id, _payload(t, source, 8))
    assert res['code'] == 'PARTIAL_WRITE_FAILURE'
    assert _stocks(source, target) == (20, 4)


def test_concurrent_source_write_is_retried(session, monkeypatch):
    t, source, target = _setup(20, 5)
    real = store.compare_and_set_stock
    raced = []

    def racing(session_, product_id, expected_version, new_stock):
        if product_id == source.id and not raced:
            raced.append(True)
            store.update_product_fields(session_, source.id, {'stock': 19})
        return real(session_, product_id, expected_version, new_stock)
    monkeypatch.setattr(store, 'compare_and_set_stock', racing)
    res = transfer.transfer_product_stock(session, t['owner'].id, _payload(t, source, 8))
    assert res['success'], res
    assert _stocks(source, target) == (11, 13)


def test_gives_up_after_configured_attempts(session, app_instance, monkeypatch):
    t, source, target = _setup(20, 5)
    app_instance.config['STOCK_CAS_MAX_RETRIES'] = 2
    calls = []

    def always_conflict(*a, **k):
        calls.append(a)
        raise StockConflict()
    monkeypatch.setattr(store, 'compare_and_set_stock', always_conflict)
    res = transfer.transfer_product_stock(session, t['owner'].id, _payload(t, source, 8))
    assert res['code'] == 'STOCK_CONFLICT'
    assert len(calls) == 2
    assert _stocks(source, target) == (20, 5)


def test_import_products_from_branch(session):
    t = tenant()
    centro, norte = t['branches']
    for name in ('Arroz', 'Fideos', 'Aceite'):
        ensure_product(centro, name, stock=30, extra=[{'variant': 'pack', 'units': 5, 'price': '20'}])
    res = transfer.import_products_from_branch(session, t['owner'].id, centro.id, norte.id)
    assert res['success'], res
    assert (res['imported_count'], res['error_count'], res['total_products']) == (3, 0, 3)
    copies = session.execute(select(Product).where(Product.branch_id == norte.id)).scalars().all()
    assert sorted(p.name for p in copies) == ['Aceite', 'Arroz', 'Fideos']
    assert all(p.stock == 0 for p in copies)
    for p in copies:
        assert sorted(x.variant for x in presentations_of(p.id)) == ['pack', 'unidad']


def test_import_isolates_item_failures(session, monkeypatch):
    t = tenant()
    centro, norte = t['branches']
    for name in ('Arroz', 'Fideos', 'Aceite'):
        ensure_product(centro, name)
    real = store.insert_presentations
    calls = []

    def flaky(session_, product_id, rows):
        calls.append(product_id)
        if len(calls) == 2:
            raise OperationalError('INSERT', {}, Exception('write failed'))
        return real(session_, product_id, rows)
    monkeypatch.setattr(store, 'insert_presentations', flaky)
    res = transfer.import_products_from_branch(session, t['owner'].id, centro.id, norte.id)
    assert res['success']
    assert (res['imported_count'], res['error_count'], res['total_products']) == (2, 1, 3)
    assert res['errors'][0].startswith('Fideos:')
    copies = session.execute(select(Product).where(Product.branch_id == norte.id)).scalars().all()
    assert sorted(p.name for p in copies) == ['Aceite', 'Arroz']


def test_import_from_empty_branch_fails(session):
    t = tenant()
    centro, norte = t['branches']
    res = transfer.import_products_from_branch(session, t['owner'].id, centro.id, norte.id)
    assert res['code'] == 'NOT_FOUND'
    assert transfer.import_products_from_branch(session, t['owner'].id, centro.id, centro.id)['code'] == 'VALIDATION_ERROR'
