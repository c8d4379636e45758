from flask import Blueprint, request
from stockhub import get_db
from stockhub.decorators.auth import require_caller
from stockhub.services import business
from stockhub.utils.listing import respond

biz_bp = Blueprint('business', __name__)


@biz_bp.post('/validate-name')
def validate_name():
    data = request.get_json(silent=True) or {}
    return respond(business.validate_business_name(get_db(), data.get('name')))


@biz_bp.post('')
@require_caller
def create_business(caller_id):
    return respond(business.create_business(get_db(), caller_id, request.get_json(silent=True) or {}), 201)


@biz_bp.get('')
@require_caller
def get_business(caller_id):
    return respond(business.get_business(get_db(), caller_id))


@biz_bp.patch('/<int:business_id>')
@require_caller
def update_business(caller_id, business_id: int):
    return respond(business.update_business(get_db(), caller_id, business_id, request.get_json(silent=True) or {}))


# ---- branches ------------------------------------------------------------
@biz_bp.get('/branches')
@require_caller
def list_branches(caller_id):
    return respond(business.get_branches(get_db(), caller_id))


@biz_bp.post('/branches')
@require_caller
def create_branch(caller_id):
    return respond(business.create_branch(get_db(), caller_id, request.get_json(silent=True) or {}), 201)


@biz_bp.patch('/branches/<int:branch_id>')
@require_caller
def update_branch(caller_id, branch_id: int):
    return respond(business.update_branch(get_db(), caller_id, branch_id, request.get_json(silent=True) or {}))
