from flask import Blueprint, request
from stockhub import get_db
from stockhub.decorators.auth import require_caller
from stockhub.services import team
from stockhub.utils.listing import respond

team_bp = Blueprint('team', __name__)


@team_bp.get('/users')
@require_caller
def list_users(caller_id):
    return respond(team.get_business_users(get_db(), caller_id, request.args.get('branch_id')))


@team_bp.post('/admins')
@require_caller
def create_admin(caller_id):
    return respond(team.create_admin_user(get_db(), caller_id, request.get_json(silent=True) or {}), 201)


@team_bp.post('/employees')
@require_caller
def create_employee(caller_id):
    return respond(team.create_branch_employee(get_db(), caller_id, request.get_json(silent=True) or {}), 201)


@team_bp.patch('/<level>/<int:relation_id>')
@require_caller
def update_user(caller_id, level: str, relation_id: int):
    return respond(team.update_user(get_db(), caller_id, relation_id, level, request.get_json(silent=True) or {}))


@team_bp.post('/branch/<int:relation_id>/reset-benefit')
@require_caller
def reset_benefit(caller_id, relation_id: int):
    return respond(team.reset_user_benefit(get_db(), caller_id, relation_id))


@team_bp.delete('/<level>/<int:relation_id>')
@require_caller
def delete_user(caller_id, level: str, relation_id: int):
    return respond(team.delete_user(get_db(), caller_id, relation_id, level))
