from flask import Blueprint, request
from stockhub import get_db
from stockhub.decorators.auth import require_caller
from stockhub.services import identity
from stockhub.utils.listing import respond

auth_bp = Blueprint('auth', __name__)


@auth_bp.post('/signup')
def signup():
    return respond(identity.signup_user(get_db(), request.get_json(silent=True) or {}), 201)


@auth_bp.post('/login')
def login():
    data = request.get_json(silent=True) or {}
    return respond(identity.login_user(get_db(), data.get('email'), data.get('password')))


@auth_bp.post('/validate-email')
def validate_email():
    data = request.get_json(silent=True) or {}
    return respond(identity.validate_email(get_db(), data.get('email')))


@auth_bp.get('/me')
@require_caller
def me(caller_id):
    return respond(identity.current_user(get_db(), caller_id))
