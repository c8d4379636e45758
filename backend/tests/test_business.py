from stockhub.models.business import Business, Branch
from stockhub.services import business
from test_utils_seed import tenant, ensure_user, grant_branch, reload, audit_actions


def test_validate_business_name(session):
    tenant('Acme')
    assert business.validate_business_name(session, 'Acme')['code'] == 'VALIDATION_ERROR'
    assert business.validate_business_name(session, 'Nueva')['available'] is True


def test_create_business_for_caller_without_one(session):
    user = ensure_user('founder@example.com')
    res = business.create_business(session, user.id, {'name': 'Almacen', 'tax_id': '30-1'})
    assert res['success'], res
    again = business.create_business(session, user.id, {'name': 'Segundo', 'tax_id': '30-2'})
    assert again['code'] == 'VALIDATION_ERROR'
    assert 'BUSINESS.CREATE' in audit_actions()


def test_update_business_never_changes_name(session):
    t = tenant()
    biz_id = t['business'].id
    renamed = business.update_business(session, t['owner'].id, biz_id, {'name': 'Otro'})
    assert renamed['code'] == 'VALIDATION_ERROR'
    res = business.update_business(session, t['owner'].id, biz_id, {'theme': 'green', 'tax_id': '20-9'})
    assert res['fields'] == ['tax_id', 'theme']
    fresh = reload(Business, biz_id)
    assert (fresh.name, fresh.theme, fresh.tax_id) == ('Acme', 'green', '20-9')
    assert business.update_business(session, t['owner'].id, biz_id, {'theme': 'pink'})['code'] == 'VALIDATION_ERROR'


def test_update_other_business_is_denied(session):
    t = tenant()
    other = tenant('Other')
    res = business.update_business(session, t['owner'].id, other['business'].id, {'theme': 'red'})
    assert res['code'] == 'UNAUTHORIZED'


def test_branch_management(session):
    t = tenant()
    created = business.create_branch(session, t['owner'].id, {'name': 'Sur', 'location': 'Ruta 3'})
    assert created['success']
    updated = business.update_branch(session, t['owner'].id, created['branch_id'], {'phone': '123'})
    assert updated['branch']['phone'] == '123'
    names = [b['name'] for b in business.get_branches(session, t['owner'].id)['branches']]
    assert names == ['Centro', 'Norte', 'Sur']
    assert business.create_branch(session, t['owner'].id, {'name': 'Sin lugar'})['code'] == 'VALIDATION_ERROR'


def test_branch_principal_sees_only_own_branch(session):
    t = tenant()
    cashier = ensure_user('cashier@example.com')
    grant_branch(cashier, t['branches'][1], 'cashier')
    res = business.get_branches(session, cashier.id)
    assert [b['id'] for b in res['branches']] == [t['branches'][1].id]
    assert business.create_branch(session, cashier.id, {'name': 'X', 'location': 'Y'})['code'] == 'UNAUTHORIZED'
    assert business.get_business(session, cashier.id)['business']['name'] == 'Acme'
    assert reload(Branch, t['branches'][0].id).name == 'Centro'
