from flask import Blueprint, request
from stockhub import get_db
from stockhub.decorators.auth import require_caller
from stockhub.services import presentations
from stockhub.utils.listing import respond

pres_bp = Blueprint('presentations', __name__)


@pres_bp.patch('/<int:presentation_id>')
@require_caller
def update_presentation(caller_id, presentation_id: int):
    return respond(presentations.update_presentation(
        get_db(), caller_id, presentation_id, request.get_json(silent=True) or {},
    ))


@pres_bp.post('/<int:presentation_id>/deactivate')
@require_caller
def deactivate_presentation(caller_id, presentation_id: int):
    return respond(presentations.deactivate_presentation(get_db(), caller_id, presentation_id))


@pres_bp.post('/<int:presentation_id>/activate')
@require_caller
def activate_presentation(caller_id, presentation_id: int):
    return respond(presentations.activate_presentation(get_db(), caller_id, presentation_id))
