from __future__ import annotations
import logging
from typing import Any, Dict
from sqlalchemy import select, func

from stockhub.constants.roles import BUSINESS_ROLES, ANY_STAFF, BUSINESS_THEMES, DEFAULT_THEME, ROLE_OWNER
from stockhub.decorators.audit import audit_log
from stockhub.decorators.operation import operation
from stockhub.errors import ValidationError, Unauthorized, NotFound
from stockhub.models.authz import BusinessUser, User
from stockhub.models.business import Business, Branch
from stockhub.services import store
from stockhub.services.policy import authorize, load_branch_in_business, resolve_business_id
from stockhub.services.saga import Saga
from stockhub.services.scope import BranchScope, NoScope, BusinessScope, resolve_scope
from stockhub.utils.serializers import business_json, branch_json
from stockhub.utils.validation import clean_text, require_text, parse_id, validate_choice

logger = logging.getLogger(__name__)


def _name_taken(session, name: str) -> bool:
    return session.execute(select(func.count()).select_from(Business).where(Business.name == name)).scalar_one() > 0


@operation('business.validate_name')
def validate_business_name(session, name):
    """Availability check; needs no caller."""
    name = require_text(name, 'name')
    if _name_taken(session, name):
        raise ValidationError('This business name is already in use')
    return {'name': name, 'available': True}


@operation('business.create')
@audit_log('BUSINESS.CREATE', entity='Business', entity_id_key='business_id', meta_keys=['business_name'])
def create_business(session, caller_id: int, data: Dict[str, Any]):
    """Business plus owner grant for a caller that has none yet."""
    if session.get(User, caller_id) is None:
        raise Unauthorized('Account not found')
    scope = resolve_scope(session, caller_id)
    if not isinstance(scope, NoScope):
        raise ValidationError('You already belong to a business')
    name = require_text(data.get('name'), 'name')
    tax_id = require_text(data.get('tax_id'), 'tax_id')
    if _name_taken(session, name):
        raise ValidationError('This business name is already in use')
    with Saga('business.create', session) as saga:
        business = saga.step(
            'creating business',
            lambda: store.insert_row(session, Business(
                name=name,
                tax_id=tax_id,
                description=clean_text(data.get('description')),
                website=clean_text(data.get('website')),
                theme=DEFAULT_THEME,
            )),
            compensate=lambda b: store.delete_row(session, Business, b.id),
        )
        saga.step('assigning owner', lambda: store.insert_row(session, BusinessUser(
            business_id=business.id, user_id=caller_id, role=ROLE_OWNER, is_active=True,
        )))
    return {'business_id': business.id, 'business_name': business.name}


BUSINESS_UPDATABLE = ('tax_id', 'description', 'website', 'theme')


@operation('business.update')
@audit_log('BUSINESS.UPDATE', entity='Business', entity_id_key='business_id', meta_keys=['fields'])
def update_business(session, caller_id: int, business_id, data: Dict[str, Any]):
    """Tax id, description, website and theme; the name is fixed at creation."""
    business_id = parse_id(business_id, 'business_id')
    scope = authorize(session, caller_id, BUSINESS_ROLES)
    if not isinstance(scope, BusinessScope) or scope.business_id != business_id:
        raise Unauthorized('You cannot edit this business')
    if 'name' in data:
        raise ValidationError('Business name cannot be changed')
    unknown = set(data) - set(BUSINESS_UPDATABLE)
    if unknown:
        raise ValidationError(f"Fields not updatable: {', '.join(sorted(unknown))}")
    values: Dict[str, Any] = {}
    if 'tax_id' in data:
        values['tax_id'] = require_text(data['tax_id'], 'tax_id')
    for key in ('description', 'website'):
        if key in data:
            values[key] = clean_text(data[key])
    if 'theme' in data:
        values['theme'] = validate_choice(data['theme'] or DEFAULT_THEME, BUSINESS_THEMES, 'theme')
    if not values:
        raise ValidationError('No fields to update')
    store.update_row(session, Business, business_id, values)
    business = session.get(Business, business_id, populate_existing=True)
    return {'business_id': business_id, 'fields': sorted(values), 'business': business_json(business)}


@operation('business.get')
def get_business(session, caller_id: int):
    scope = authorize(session, caller_id, ANY_STAFF)
    business = session.get(Business, resolve_business_id(scope))
    if business is None:
        raise NotFound('Business not found')
    return {'business': business_json(business), 'scope': scope.to_dict()}


# ---- branches ------------------------------------------------------------
@operation('branch.create')
@audit_log('BRANCH.CREATE', entity='Branch', entity_id_key='branch_id', meta_keys=['branch_name'])
def create_branch(session, caller_id: int, data: Dict[str, Any]):
    scope = authorize(session, caller_id, BUSINESS_ROLES)
    branch = store.insert_row(session, Branch(
        business_id=resolve_business_id(scope),
        name=require_text(data.get('name'), 'name'),
        location=require_text(data.get('location'), 'location'),
        phone=clean_text(data.get('phone')),
    ))
    return {'branch_id': branch.id, 'branch_name': branch.name}


@operation('branch.update')
@audit_log('BRANCH.UPDATE', entity='Branch', entity_id_key='branch_id', meta_keys=['fields'])
def update_branch(session, caller_id: int, branch_id, data: Dict[str, Any]):
    scope = authorize(session, caller_id, BUSINESS_ROLES)
    branch = load_branch_in_business(session, scope, branch_id)
    values: Dict[str, Any] = {}
    if 'name' in data:
        values['name'] = require_text(data['name'], 'name')
    if 'location' in data:
        values['location'] = require_text(data['location'], 'location')
    if 'phone' in data:
        values['phone'] = clean_text(data['phone'])
    if not values:
        raise ValidationError('No fields to update')
    store.update_row(session, Branch, branch.id, values)
    branch = session.get(Branch, branch.id, populate_existing=True)
    return {'branch_id': branch.id, 'fields': sorted(values), 'branch': branch_json(branch)}


@operation('branch.list')
def get_branches(session, caller_id: int):
    """All branches for business principals, only their own for branch principals."""
    scope = authorize(session, caller_id, ANY_STAFF)
    q = select(Branch).order_by(Branch.created_at.asc(), Branch.id.asc())
    if isinstance(scope, BranchScope):
        q = q.where(Branch.id == scope.branch_id)
    else:
        q = q.where(Branch.business_id == scope.business_id)
    return {'branches': [branch_json(b) for b in session.execute(q).scalars()]}


__all__ = [
    'validate_business_name', 'create_business', 'update_business', 'get_business',
    'create_branch', 'update_branch', 'get_branches',
]
