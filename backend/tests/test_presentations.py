from decimal import Decimal
from sqlalchemy.exc import OperationalError
from stockhub.models.product import ProductPresentation
from stockhub.services import presentations, store
from test_utils_seed import tenant, ensure_user, grant_branch, ensure_product, reload, presentations_of


def _product(t):
    return ensure_product(t['branches'][0], 'Gaseosa', price='5.00', extra=[
        {'variant': 'pack', 'units': 6, 'price': '25.00'},
        {'variant': 'caja', 'units': 24, 'price': '90.00'},
    ])


def _by_variant(product_id):
    return {p.variant: p for p in presentations_of(product_id)}


def test_replace_updates_inserts_and_deletes(session):
    t = tenant()
    p = _product(t)
    rows = _by_variant(p.id)
    res = presentations.update_presentations(session, t['owner'].id, p.id, [
        {'id': rows['pack'].id, 'variant': 'pack', 'units': 6, 'price': 27},
        {'variant': 'display', 'units': 12, 'price': 50},
    ])
    assert res['success'], res
    assert (res['created'], res['updated'], res['deleted']) == (1, 1, 1)
    after = _by_variant(p.id)
    assert set(after) == {'unidad', 'pack', 'display'}
    assert after['pack'].price == Decimal('27.00')
    assert after['unidad'].price == Decimal('5.00')


def test_empty_list_keeps_unidad(session):
    t = tenant()
    p = _product(t)
    unidad_before = _by_variant(p.id)['unidad']
    res = presentations.update_presentations(session, t['owner'].id, p.id, [])
    assert res['deleted'] == 2
    after = presentations_of(p.id)
    assert len(after) == 1
    assert (after[0].id, after[0].variant, after[0].units, after[0].price) == (
        unidad_before.id, 'unidad', 1, Decimal('5.00'))


def test_unidad_cannot_be_targeted_by_replace(session):
    t = tenant()
    p = _product(t)
    unidad = _by_variant(p.id)['unidad']
    by_id = presentations.update_presentations(session, t['owner'].id, p.id, [
        {'id': unidad.id, 'variant': 'otra', 'units': 2, 'price': 1},
    ])
    assert by_id['code'] == 'VALIDATION_ERROR'
    by_name = presentations.update_presentations(session, t['owner'].id, p.id, [
        {'variant': 'unidad', 'units': 1, 'price': 1},
    ])
    assert by_name['code'] == 'VALIDATION_ERROR'
    assert len(presentations_of(p.id)) == 3
    assert reload(ProductPresentation, unidad.id).price == Decimal('5.00')


def test_replace_rejects_foreign_and_duplicate_ids(session):
    t = tenant()
    p = _product(t)
    other = ensure_product(t['branches'][0], 'Otro', extra=[{'variant': 'pack', 'units': 2, 'price': 3}])
    foreign = _by_variant(other.id)['pack']
    res = presentations.update_presentations(session, t['owner'].id, p.id, [
        {'id': foreign.id, 'variant': 'pack', 'units': 2, 'price': 3},
    ])
    assert res['code'] == 'VALIDATION_ERROR'
    pack = _by_variant(p.id)['pack']
    dup = presentations.update_presentations(session, t['owner'].id, p.id, [
        {'id': pack.id, 'variant': 'pack', 'units': 6}, {'id': pack.id, 'variant': 'pack', 'units': 6},
    ])
    assert dup['code'] == 'VALIDATION_ERROR'


def test_failed_insert_reverts_updates_and_deletes_nothing(session, monkeypatch):
    t = tenant()
    p = _product(t)
    rows = _by_variant(p.id)

    def boom(*a, **k):
        raise OperationalError('INSERT', {}, Exception('unavailable'))
    monkeypatch.setattr(store, 'insert_presentations', boom)
    res = presentations.update_presentations(session, t['owner'].id, p.id, [
        {'id': rows['pack'].id, 'variant': 'six pack', 'units': 6, 'price': 30},
        {'variant': 'nuevo', 'units': 3, 'price': 10},
    ])
    assert res['code'] == 'PARTIAL_WRITE_FAILURE'
    after = _by_variant(p.id)
    assert set(after) == {'unidad', 'pack', 'caja'}
    assert after['pack'].price == Decimal('25.00')


def test_create_presentation_defaults_price_and_rejects_duplicates(session):
    t = tenant()
    p = _product(t)
    res = presentations.create_presentation(session, t['owner'].id, p.id, {'variant': 'docena', 'units': 12})
    assert res['success'], res
    assert res['presentation']['price'] == 5.0
    dup = presentations.create_presentation(session, t['owner'].id, p.id, {'variant': 'PACK', 'units': 6})
    assert dup['code'] == 'VALIDATION_ERROR'
    unidad = presentations.create_presentation(session, t['owner'].id, p.id, {'variant': 'unidad', 'units': 1})
    assert unidad['code'] == 'VALIDATION_ERROR'


def test_out_of_range_presentation_price_writes_nothing(session):
    t = tenant()
    p = _product(t)
    pack = _by_variant(p.id)['pack']
    res = presentations.create_presentation(session, t['owner'].id, p.id,
                                            {'variant': 'docena', 'units': 12, 'price': '1e30'})
    assert res['code'] == 'VALIDATION_ERROR'
    res = presentations.update_presentations(session, t['owner'].id, p.id, [
        {'id': pack.id, 'variant': 'pack', 'units': 6, 'price': '1e30'},
    ])
    assert res['code'] == 'VALIDATION_ERROR'
    rows = _by_variant(p.id)
    assert 'docena' not in rows
    assert rows['pack'].price == Decimal('25.00')
    assert 'caja' in rows


def test_update_and_toggle_single_presentation(session):
    t = tenant()
    p = _product(t)
    pack = _by_variant(p.id)['pack']
    res = presentations.update_presentation(session, t['owner'].id, pack.id, {'units': 8, 'price': '30.5'})
    assert res['fields'] == ['price', 'units']
    assert reload(ProductPresentation, pack.id).units == 8
    assert presentations.deactivate_presentation(session, t['owner'].id, pack.id)['is_active'] is False
    assert reload(ProductPresentation, pack.id).is_active is False
    assert presentations.activate_presentation(session, t['owner'].id, pack.id)['is_active'] is True
    assert reload(ProductPresentation, pack.id).is_active is True


def test_unidad_row_is_out_of_reach_of_single_edits(session):
    t = tenant()
    p = _product(t)
    unidad = _by_variant(p.id)['unidad']
    for res in (
        presentations.update_presentation(session, t['owner'].id, unidad.id, {'price': 1}),
        presentations.deactivate_presentation(session, t['owner'].id, unidad.id),
        presentations.activate_presentation(session, t['owner'].id, unidad.id),
    ):
        assert res['code'] == 'VALIDATION_ERROR'
    fresh = reload(ProductPresentation, unidad.id)
    assert fresh.is_active is True and fresh.price == Decimal('5.00')


def test_branch_staff_cannot_edit_presentations(session):
    t = tenant()
    p = _product(t)
    manager = ensure_user('manager@example.com')
    grant_branch(manager, t['branches'][0], 'manager')
    res = presentations.update_presentations(session, manager.id, p.id, [])
    assert res['code'] == 'UNAUTHORIZED'
    assert len(presentations_of(p.id)) == 3
