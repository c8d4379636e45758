"""Identity gateway and account lifecycle.

Accounts are ``User`` rows with werkzeug password hashes; callers are identified by the
flask-jwt-extended access token whose identity is the user id as a string.
"""
from __future__ import annotations
import logging
import re
from typing import Any, Dict
from flask import current_app, has_app_context
from flask_jwt_extended import create_access_token, get_jwt_identity, verify_jwt_in_request
from flask_jwt_extended.exceptions import JWTExtendedException
from jwt.exceptions import PyJWTError
from sqlalchemy import select, func

from stockhub.constants.roles import DEFAULT_THEME, PENDING_TAX_ID, ROLE_OWNER
from stockhub.decorators.operation import operation
from stockhub.errors import Unauthenticated, ValidationError
from stockhub.models.authz import User, BusinessUser
from stockhub.models.business import Business
from stockhub.services import store
from stockhub.services.audit import record
from stockhub.services.saga import Saga
from stockhub.services.scope import BusinessScope, BranchScope, resolve_scope
from stockhub.utils.validation import clean_text, require_text

logger = logging.getLogger(__name__)

_EMAIL = re.compile(r'^[^@\s]+@[^@\s]+\.[^@\s]+$')
DEFAULT_MIN_PASSWORD_LENGTH = 8


def _min_password_length() -> int:
    if has_app_context():
        return int(current_app.config.get('MIN_PASSWORD_LENGTH', DEFAULT_MIN_PASSWORD_LENGTH))
    return DEFAULT_MIN_PASSWORD_LENGTH


def normalize_email(value) -> str:
    email = require_text(value, 'email').lower()
    if not _EMAIL.match(email):
        raise ValidationError('Invalid email')
    return email


def check_password(password) -> str:
    if not isinstance(password, str) or len(password) < _min_password_length():
        raise ValidationError(f'Password must be at least {_min_password_length()} characters')
    return password


def email_taken(session, email: str) -> bool:
    return session.execute(select(func.count()).select_from(User).where(User.email == email)).scalar_one() > 0


# ---- gateway -------------------------------------------------------------
def get_current_caller() -> int:
    """User id of the authenticated request, or ``Unauthenticated``."""
    try:
        verify_jwt_in_request()
        identity = get_jwt_identity()
    except (JWTExtendedException, PyJWTError):
        raise Unauthenticated()
    try:
        return int(identity)
    except (TypeError, ValueError):
        raise Unauthenticated()


def create_account(session, email, password, name=None, phone=None) -> User:
    email = normalize_email(email)
    check_password(password)
    if email_taken(session, email):
        raise ValidationError('This email is already registered')
    user = User(email=email, name=clean_text(name) or email.split('@')[0], phone=clean_text(phone), password_hash='')
    user.set_password(password)
    return store.insert_row(session, user)


def delete_account(session, user_id: int) -> int:
    return store.delete_row(session, User, user_id)


def authenticate(session, email, password) -> User:
    if not email or not password:
        raise ValidationError('email and password are required')
    user = session.execute(select(User).where(User.email == str(email).strip().lower())).scalar_one_or_none()
    if user is None or not user.verify_password(password):
        raise Unauthenticated('Invalid credentials')
    return user


def issue_token(user_id: int) -> str:
    # identity must be a string for flask-jwt-extended 4.x
    return create_access_token(identity=str(user_id))


# ---- operations ----------------------------------------------------------
@operation('auth.validate_email')
def validate_email(session, email):
    email = normalize_email(email)
    if email_taken(session, email):
        raise ValidationError('This email is already registered')
    return {'email': email}


@operation('auth.signup')
def signup_user(session, data: Dict[str, Any]):
    """Create account, business and owner grant; each failure undoes the earlier steps."""
    business_name = require_text(data.get('business_name'), 'business_name')
    require_text(data.get('name'), 'name')
    require_text(data.get('phone'), 'phone')
    email = normalize_email(data.get('email'))
    check_password(data.get('password'))
    taken = session.execute(select(func.count()).select_from(Business).where(Business.name == business_name)).scalar_one()
    if taken:
        raise ValidationError('This business name is already in use')

    with Saga('auth.signup', session) as saga:
        user = saga.step(
            'creating account',
            lambda: create_account(session, email, data.get('password'), data.get('name'), data.get('phone')),
            compensate=lambda u: delete_account(session, u.id),
        )
        business = saga.step(
            'creating business',
            lambda: store.insert_row(session, Business(
                name=business_name,
                tax_id=clean_text(data.get('tax_id')) or PENDING_TAX_ID,
                theme=DEFAULT_THEME,
            )),
            compensate=lambda b: store.delete_row(session, Business, b.id),
        )
        saga.step(
            'assigning owner',
            lambda: store.insert_row(session, BusinessUser(
                business_id=business.id, user_id=user.id, role=ROLE_OWNER, is_active=True,
            )),
        )
    record(session, user.id, 'BUSINESS.SIGNUP', 'Business', business.id, {'name': business.name})
    logger.info('signup: user %s created business %s', user.id, business.id)
    return {
        'user_id': user.id,
        'email': user.email,
        'business_id': business.id,
        'business_name': business.name,
    }


def _needs_tax_id(session, scope) -> bool:
    if not isinstance(scope, (BusinessScope, BranchScope)):
        return False
    business = session.get(Business, scope.business_id)
    return business is not None and (not business.tax_id or business.tax_id == PENDING_TAX_ID)


@operation('auth.login')
def login_user(session, email, password):
    user = authenticate(session, email, password)
    scope = resolve_scope(session, user.id)
    return {
        'access_token': issue_token(user.id),
        'user_id': user.id,
        'scope': scope.to_dict(),
        'needs_tax_id': _needs_tax_id(session, scope),
    }


@operation('auth.me')
def current_user(session, caller_id: int):
    user = session.get(User, caller_id)
    if user is None:
        raise Unauthenticated('Account no longer exists')
    scope = resolve_scope(session, user.id)
    return {
        'user': {'id': user.id, 'email': user.email, 'name': user.name, 'phone': user.phone},
        'scope': scope.to_dict(),
        'needs_tax_id': _needs_tax_id(session, scope),
    }


__all__ = [
    'get_current_caller', 'create_account', 'delete_account', 'authenticate', 'issue_token',
    'validate_email', 'signup_user', 'login_user', 'current_user', 'normalize_email', 'check_password',
]
