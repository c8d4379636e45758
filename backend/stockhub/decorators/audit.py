"""Audit logging decorator for mutating operations.

Usage:

@operation('product.create')
@audit_log('PRODUCT.CREATE', entity='Product', entity_id_key='product_id', meta_keys=['product_name'])
def create_product(session, caller_id, ...): ...

Parameters:
  action: audit action code (e.g. PRODUCT.TRANSFER)
  entity: entity label stored with the entry
  entity_id_key: key of the returned data dict whose value becomes entity_id
  meta_keys: keys projected from the returned data into meta
  meta_builder: callable(data, args, kwargs) -> dict; overrides meta_keys

The wrapped operation receives ``(session, caller_id, ...)`` and returns a data dict.
Only successful calls are audited; an operation that raises records nothing. A failing
audit write is logged and never turns a completed operation into a failure.
"""
from __future__ import annotations

import logging
from functools import wraps
from typing import Callable, Iterable, Optional

from stockhub.services.audit import record

logger = logging.getLogger(__name__)


def audit_log(
    action: str,
    *,
    entity: Optional[str] = None,
    entity_id_key: Optional[str] = None,
    meta_keys: Optional[Iterable[str]] = None,
    meta_builder: Optional[Callable[[dict, tuple, dict], dict]] = None,
):
    def outer(fn):
        @wraps(fn)
        def wrapper(session, caller_id, *args, **kwargs):
            data = fn(session, caller_id, *args, **kwargs)
            if not isinstance(data, dict):
                record(session, caller_id, action, entity, None, None)
                return data
            entity_id = data.get(entity_id_key) if entity_id_key else None
            meta = None
            if meta_builder:
                try:
                    meta = meta_builder(data, args, kwargs)
                except Exception:
                    logger.warning('audit meta builder failed for %s', action, exc_info=True)
            elif meta_keys:
                meta = {k: data.get(k) for k in meta_keys if k in data}
            record(session, caller_id, action, entity, entity_id, meta)
            return data
        return wrapper
    return outer
