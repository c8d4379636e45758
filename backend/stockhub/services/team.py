"""Staff provisioning.

Only business principals manage staff. A staff member is an account plus exactly one
grant; removing the grant removes the account too.
"""
from __future__ import annotations
import logging
from decimal import Decimal
from typing import Any, Dict, Optional
from sqlalchemy import select, func

from stockhub.constants.roles import (
    ANY_STAFF, BRANCH_ROLES, BUSINESS_ROLES, LEVEL_BRANCH, LEVEL_BUSINESS, ROLE_MANAGER, ROLE_CASHIER,
    ROLE_ADMIN, ROLE_OWNER,
)
from stockhub.decorators.audit import audit_log
from stockhub.decorators.operation import operation
from stockhub.errors import CrossTenantViolation, NotFound, ValidationError
from stockhub.models.authz import BranchUser, BusinessUser, User
from stockhub.models.business import Branch
from stockhub.services import store
from stockhub.services.identity import create_account, delete_account
from stockhub.services.policy import assert_branch_access, authorize, load_branch_in_business
from stockhub.services.saga import Saga
from stockhub.services.scope import BranchScope
from stockhub.utils.serializers import money
from stockhub.utils.validation import clean_text, parse_id, parse_money, require_text, validate_choice

logger = logging.getLogger(__name__)

BUSINESS_LEVEL_ROLES = [ROLE_ADMIN, ROLE_OWNER]
BRANCH_LEVEL_ROLES = [ROLE_MANAGER, ROLE_CASHIER]


def _provision(session, data: Dict[str, Any], grant_factory, name: str):
    """Create the account, then the grant; the account is deleted if the grant fails."""
    with Saga(name, session) as saga:
        user = saga.step(
            'creating account',
            lambda: create_account(session, data.get('email'), data.get('password'), data.get('name'), data.get('phone')),
            compensate=lambda u: delete_account(session, u.id),
        )
        grant = saga.step('assigning role', lambda: store.insert_row(session, grant_factory(user)))
    return user, grant


@operation('team.create_admin')
@audit_log('TEAM.CREATE_ADMIN', entity='BusinessUser', entity_id_key='relation_id', meta_keys=['user_id', 'role'])
def create_admin_user(session, caller_id: int, data: Dict[str, Any]):
    scope = authorize(session, caller_id, BUSINESS_ROLES)
    role = validate_choice(data.get('role') or ROLE_ADMIN, BUSINESS_LEVEL_ROLES, 'role')
    require_text(data.get('name'), 'name')
    user, grant = _provision(
        session, data,
        lambda u: BusinessUser(business_id=scope.business_id, user_id=u.id, role=role, is_active=True),
        'team.create_admin',
    )
    return {'user_id': user.id, 'relation_id': grant.id, 'role': role, 'level': LEVEL_BUSINESS}


@operation('team.create_branch_employee')
@audit_log('TEAM.CREATE_EMPLOYEE', entity='BranchUser', entity_id_key='relation_id',
           meta_keys=['user_id', 'role', 'branch_id'])
def create_branch_employee(session, caller_id: int, data: Dict[str, Any]):
    scope = authorize(session, caller_id, BUSINESS_ROLES)
    branch = load_branch_in_business(session, scope, data.get('branch_id'))
    role = validate_choice(data.get('role'), BRANCH_LEVEL_ROLES, 'role')
    benefit = parse_money(data.get('benefit'), 'benefit', default=Decimal('0'))
    require_text(data.get('name'), 'name')
    user, grant = _provision(
        session, data,
        lambda u: BranchUser(branch_id=branch.id, user_id=u.id, role=role, is_active=True, benefit=benefit),
        'team.create_branch_employee',
    )
    return {'user_id': user.id, 'relation_id': grant.id, 'role': role, 'branch_id': branch.id, 'level': LEVEL_BRANCH}


@operation('team.list')
def get_business_users(session, caller_id: int, branch_id=None):
    """Active manager/cashier grants of the caller's business, with account details."""
    scope = authorize(session, caller_id, ANY_STAFF)
    q = (
        select(BranchUser, User, Branch)
        .join(User, User.id == BranchUser.user_id)
        .join(Branch, Branch.id == BranchUser.branch_id)
        .where(
            Branch.business_id == scope.business_id,
            BranchUser.is_active.is_(True),
            BranchUser.role.in_(sorted(BRANCH_ROLES)),
        )
        .order_by(BranchUser.id.asc())
    )
    if branch_id is not None:
        branch = load_branch_in_business(session, scope, branch_id)
        assert_branch_access(scope, branch.id)
        q = q.where(BranchUser.branch_id == branch.id)
    elif isinstance(scope, BranchScope):
        q = q.where(BranchUser.branch_id == scope.branch_id)
    users = [
        {
            'id': grant.id,
            'user_id': user.id,
            'name': user.name,
            'email': user.email,
            'phone': user.phone,
            'role': grant.role,
            'branch_id': branch.id,
            'branch_name': branch.name,
            'benefit': money(grant.benefit),
            'is_active': grant.is_active,
            'level': LEVEL_BRANCH,
        }
        for grant, user, branch in session.execute(q).all()
    ]
    return {'users': users}


def _load_relation(session, scope, relation_id, level: str):
    """Grant row of the caller's business at the given level."""
    relation_id = parse_id(relation_id, 'relation_id')
    level = validate_choice(level, [LEVEL_BUSINESS, LEVEL_BRANCH], 'level')
    if level == LEVEL_BUSINESS:
        grant = session.get(BusinessUser, relation_id, populate_existing=True)
        if grant is None:
            raise NotFound('User not found')
        if grant.business_id != scope.business_id:
            raise CrossTenantViolation('User does not belong to your business')
        return grant
    grant = session.get(BranchUser, relation_id, populate_existing=True)
    if grant is None:
        raise NotFound('User not found')
    branch = session.get(Branch, grant.branch_id)
    if branch is None or branch.business_id != scope.business_id:
        raise CrossTenantViolation('User does not belong to your business')
    return grant


def _active_owner_count(session, business_id: int) -> int:
    return session.execute(
        select(func.count()).select_from(BusinessUser).where(
            BusinessUser.business_id == business_id,
            BusinessUser.role == ROLE_OWNER,
            BusinessUser.is_active.is_(True),
        )
    ).scalar_one()


@operation('team.update')
@audit_log('TEAM.UPDATE', entity='User', entity_id_key='relation_id', meta_keys=['level', 'fields'])
def update_user(session, caller_id: int, relation_id, level: str, data: Dict[str, Any]):
    scope = authorize(session, caller_id, BUSINESS_ROLES)
    grant = _load_relation(session, scope, relation_id, level)
    user_values: Dict[str, Any] = {}
    grant_values: Dict[str, Any] = {}
    if 'name' in data:
        user_values['name'] = require_text(data['name'], 'name')
    if 'phone' in data:
        user_values['phone'] = clean_text(data['phone'])
    if 'role' in data:
        allowed = BUSINESS_LEVEL_ROLES if isinstance(grant, BusinessUser) else BRANCH_LEVEL_ROLES
        grant_values['role'] = validate_choice(data['role'], allowed, 'role')
        if (isinstance(grant, BusinessUser) and grant.role == ROLE_OWNER and grant_values['role'] != ROLE_OWNER
                and _active_owner_count(session, scope.business_id) <= 1):
            raise ValidationError('The business needs at least one active owner')
    if 'benefit' in data:
        if not isinstance(grant, BranchUser):
            raise ValidationError('Only branch staff have a benefit')
        grant_values['benefit'] = parse_money(data['benefit'], 'benefit')
    if not user_values and not grant_values:
        raise ValidationError('No fields to update')
    store.update_row(session, User, grant.user_id, user_values)
    store.update_row(session, type(grant), grant.id, grant_values)
    return {'relation_id': grant.id, 'user_id': grant.user_id, 'level': level,
            'fields': sorted(user_values) + sorted(grant_values)}


@operation('team.reset_benefit')
@audit_log('TEAM.RESET_BENEFIT', entity='BranchUser', entity_id_key='relation_id', meta_keys=['previous_benefit'])
def reset_user_benefit(session, caller_id: int, relation_id):
    scope = authorize(session, caller_id, BUSINESS_ROLES)
    grant = _load_relation(session, scope, relation_id, LEVEL_BRANCH)
    previous = grant.benefit
    store.update_row(session, BranchUser, grant.id, {'benefit': Decimal('0')})
    return {'relation_id': grant.id, 'previous_benefit': money(previous)}


@operation('team.delete')
@audit_log('TEAM.DELETE', entity='User', entity_id_key='user_id', meta_keys=['relation_id', 'level'])
def delete_user(session, caller_id: int, relation_id, level: str):
    """Hard delete the grant, then the account behind it."""
    scope = authorize(session, caller_id, BUSINESS_ROLES)
    grant = _load_relation(session, scope, relation_id, level)
    if grant.user_id == caller_id:
        raise ValidationError('You cannot delete yourself')
    if (isinstance(grant, BusinessUser) and grant.role == ROLE_OWNER and grant.is_active
            and _active_owner_count(session, scope.business_id) <= 1):
        raise ValidationError('The business needs at least one active owner')
    user_id: Optional[int] = grant.user_id
    grant_id = grant.id
    store.delete_row(session, type(grant), grant_id)
    delete_account(session, user_id)
    logger.info('team.delete: removed %s grant %s and account %s', level, grant_id, user_id)
    return {'relation_id': grant_id, 'user_id': user_id, 'level': level}


__all__ = [
    'create_admin_user', 'create_branch_employee', 'get_business_users', 'update_user',
    'reset_user_benefit', 'delete_user',
]
