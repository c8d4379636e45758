from __future__ import annotations
from io import BytesIO
from flask import Blueprint, request, current_app, make_response, send_file
from stockhub import get_db
from stockhub.config.pagination import normalize_pagination
from stockhub.decorators.auth import require_caller
from stockhub.errors import ValidationError
from stockhub.decorators.operation import failure
from stockhub.services import catalog, excel, presentations, transfer
from stockhub.services.spreadsheet import XLSX_MIME
from stockhub.utils.listing import respond, product_list_etag, handle_conditional, make_cached_response

products_bp = Blueprint('products', __name__)


def _list_args():
    try:
        page, limit, _ = normalize_pagination(
            request.args.get('page'),
            request.args.get('limit'),
            current_app.config.get('PRODUCTS_PAGE_LIMIT', 50),
            current_app.config.get('PRODUCTS_MAX_LIMIT', 200),
        )
    except ValueError as e:
        return None, failure(ValidationError(str(e)))
    return {
        'branch_id': request.args.get('branch_id'),
        'page': page,
        'limit': limit,
        'search': request.args.get('search'),
    }, None


def _listing(caller_id: int):
    args, error = _list_args()
    if error:
        return None, None, respond(error)
    result = catalog.get_products(get_db(), caller_id, **args)
    if not result['success']:
        return None, None, respond(result)
    return result, product_list_etag(result, caller_id, args['search']), None


# registered before the GET rule so HEAD requests land here
@products_bp.route('', methods=['HEAD'])
@require_caller
def head_products(caller_id):
    """Validator headers only."""
    _, etag, error = _listing(caller_id)
    if error:
        return error
    cond = handle_conditional(etag)
    if cond:
        return cond
    resp = make_response('', 200)
    resp.headers['ETag'] = etag
    return resp


@products_bp.get('')
@require_caller
def list_products(caller_id):
    result, etag, error = _listing(caller_id)
    if error:
        return error
    cond = handle_conditional(etag)
    if cond:
        return cond
    resp, _ = make_cached_response(result, etag)
    return resp


@products_bp.get('/<int:product_id>')
@require_caller
def get_product(caller_id, product_id: int):
    return respond(catalog.get_product(get_db(), caller_id, product_id))


@products_bp.post('')
@require_caller
def create_product(caller_id):
    return respond(catalog.create_product(get_db(), caller_id, request.get_json(silent=True) or {}), 201)


@products_bp.post('/simple')
@require_caller
def create_simple_product(caller_id):
    return respond(catalog.create_simple_product(get_db(), caller_id, request.get_json(silent=True) or {}), 201)


@products_bp.patch('/<int:product_id>')
@require_caller
def update_product(caller_id, product_id: int):
    return respond(catalog.update_product(get_db(), caller_id, product_id, request.get_json(silent=True) or {}))


@products_bp.delete('/<int:product_id>')
@require_caller
def delete_product(caller_id, product_id: int):
    return respond(catalog.delete_product(get_db(), caller_id, product_id))


@products_bp.post('/bulk-delete')
@require_caller
def delete_products(caller_id):
    data = request.get_json(silent=True) or {}
    return respond(catalog.delete_products(get_db(), caller_id, data.get('product_ids') or []))


@products_bp.put('/<int:product_id>/presentations')
@require_caller
def replace_presentations(caller_id, product_id: int):
    data = request.get_json(silent=True) or {}
    items = data.get('presentations') if isinstance(data, dict) else data
    return respond(presentations.update_presentations(get_db(), caller_id, product_id, items or []))


@products_bp.post('/<int:product_id>/presentations')
@require_caller
def create_presentation(caller_id, product_id: int):
    return respond(presentations.create_presentation(get_db(), caller_id, product_id, request.get_json(silent=True) or {}), 201)


@products_bp.post('/transfer')
@require_caller
def transfer_stock(caller_id):
    return respond(transfer.transfer_product_stock(get_db(), caller_id, request.get_json(silent=True) or {}))


@products_bp.post('/import-branch')
@require_caller
def import_from_branch(caller_id):
    data = request.get_json(silent=True) or {}
    return respond(transfer.import_products_from_branch(
        get_db(), caller_id, data.get('source_branch_id'), data.get('target_branch_id'),
    ))


@products_bp.post('/import-excel')
@require_caller
def import_from_excel(caller_id):
    upload = request.files.get('file')
    content = upload.read() if upload else b''
    return respond(excel.import_products_from_excel(
        get_db(), caller_id, request.form.get('branch_id'), upload.filename if upload else None, content,
    ))


def _download(content: bytes, filename: str):
    return send_file(BytesIO(content), mimetype=XLSX_MIME, as_attachment=True, download_name=filename)


@products_bp.get('/excel-template')
@require_caller
def excel_template(caller_id):
    template = excel.generate_template()
    return _download(template['content'], template['filename'])


@products_bp.get('/export')
@require_caller
def export_products(caller_id):
    result = excel.export_products(get_db(), caller_id, request.args.get('branch_id'))
    if not result['success']:
        return respond(result)
    return _download(result['content'], result['filename'])
