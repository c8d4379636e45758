from __future__ import annotations
import logging
from decimal import Decimal
from typing import Any, Dict, Optional
from sqlalchemy.exc import SQLAlchemyError

from stockhub.errors import InfrastructureError
from stockhub.services import store
from stockhub.services.scope import resolve_scope, NoScope

logger = logging.getLogger(__name__)


def _json_safe(value):
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, dict):
        return {k: _json_safe(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_json_safe(v) for v in value]
    return value


def record(session, actor_user_id: Optional[int], action: str, entity: Optional[str] = None,
           entity_id=None, meta: Optional[Dict[str, Any]] = None):
    """Persist an audit entry after a completed operation.

    The actor's business is captured so entries can be listed per tenant. The entry is
    committed on its own; failures are logged and swallowed because the audited write
    has already committed.
    """
    try:
        business_id = None
        if actor_user_id is not None:
            scope = resolve_scope(session, actor_user_id)
            if not isinstance(scope, NoScope):
                business_id = scope.business_id
        return store.add_audit(session, actor_user_id, action, entity, entity_id, _json_safe(meta or {}), business_id)
    except (SQLAlchemyError, InfrastructureError):
        logger.warning('audit write failed for %s %s=%s', action, entity, entity_id, exc_info=True)
        return None
