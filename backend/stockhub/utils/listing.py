from __future__ import annotations
from typing import Any, Dict, Iterable, Optional, Tuple
from flask import request, make_response
import hashlib
import json

from stockhub.errors import status_for


def respond(result: Dict[str, Any], status: int = 200):
    """Operation result -> (body, HTTP status); failures take the status of their error code."""
    if result.get('success'):
        return result, status
    return result, status_for(result.get('code'))


def compute_etag(parts: Iterable[Any]) -> str:
    seed = '|'.join(str(p) for p in parts)
    return hashlib.sha256(seed.encode()).hexdigest()[:32]


def product_list_etag(result: Dict[str, Any], caller_id: int, search: Optional[str] = None) -> str:
    """Hash of every listed field, presentations included, plus the page window."""
    pagination = result.get('pagination', {})
    rows = json.dumps(result.get('products', []), sort_keys=True, default=str)
    return compute_etag([caller_id, rows, pagination.get('total'), pagination.get('page'),
                         pagination.get('limit'), search or ''])


def handle_conditional(etag_value: str):
    """Return a 304 response when If-None-Match carries the current ETag, else None."""
    inm = request.headers.get('If-None-Match')
    if inm and etag_value in [tag.strip().strip('"') for tag in inm.split(',')]:
        resp = make_response('', 304)
        resp.headers['ETag'] = etag_value
        return resp
    return None


def make_cached_response(payload: Dict[str, Any], etag_value: str) -> Tuple[Any, str]:
    resp = make_response(payload)
    resp.headers['ETag'] = etag_value
    return resp, etag_value


__all__ = ['respond', 'compute_etag', 'product_list_etag', 'handle_conditional', 'make_cached_response']
