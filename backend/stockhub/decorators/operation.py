"""Result-shape boundary for exposed operations.

Operations are written as plain functions ``fn(session, caller_id, ...) -> dict`` that raise
``DomainError`` subclasses. ``@operation`` turns them into functions that always return

    {'success': True, **data}
    {'success': False, 'error': <message>, 'code': <error code>}

Storage failures are rolled back, logged with traceback, and reported with a generic
message; the raw collaborator error never reaches the caller.
"""
from __future__ import annotations
import logging
from functools import wraps
from typing import Any, Dict

from sqlalchemy.exc import SQLAlchemyError

from stockhub.errors import DomainError, InfrastructureError

logger = logging.getLogger('stockhub.operations')


def failure(error: DomainError) -> Dict[str, Any]:
    return {'success': False, 'error': error.message, 'code': error.code}


def _rollback(session):
    try:
        session.rollback()
    except SQLAlchemyError:
        logger.exception('Rollback failed')


def operation(name: str):
    def outer(fn):
        @wraps(fn)
        def wrapper(session, *args, **kwargs):
            try:
                data = fn(session, *args, **kwargs) or {}
            except DomainError as e:
                _rollback(session)
                level = logging.ERROR if e.status >= 500 else logging.INFO
                logger.log(level, '%s rejected: %s [%s]', name, e.message, e.code)
                return failure(e)
            except SQLAlchemyError:
                _rollback(session)
                logger.exception('%s: storage failure', name)
                return failure(InfrastructureError())
            return {'success': True, **data}
        wrapper.operation_name = name
        return wrapper
    return outer


__all__ = ['operation', 'failure']
