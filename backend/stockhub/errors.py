"""Domain error taxonomy.

Service internals raise these; the ``operation`` decorator converts them into the
``{'success': False, 'error': ..., 'code': ...}`` result shape so nothing escapes an
exposed operation as an exception. ``status`` is the HTTP status the blueprints use.
"""
from __future__ import annotations
from typing import Optional


class DomainError(Exception):
    code = 'ERROR'
    status = 400
    default_message = 'Operation failed'

    def __init__(self, message: Optional[str] = None):
        super().__init__(message or self.default_message)
        self.message = message or self.default_message


class Unauthenticated(DomainError):
    code = 'UNAUTHENTICATED'
    status = 401
    default_message = 'Authentication required'


class Unauthorized(DomainError):
    code = 'UNAUTHORIZED'
    status = 403
    default_message = 'Not allowed'


class ValidationError(DomainError):
    code = 'VALIDATION_ERROR'
    status = 400
    default_message = 'Invalid input'


class CrossTenantViolation(DomainError):
    code = 'CROSS_TENANT'
    status = 403
    default_message = 'Resource does not belong to your business'


class NotFound(DomainError):
    code = 'NOT_FOUND'
    status = 404
    default_message = 'Not found'


class InsufficientStock(DomainError):
    code = 'INSUFFICIENT_STOCK'
    status = 409

    def __init__(self, available: int, requested: int):
        super().__init__(f'Insufficient stock. Available: {available} units, requested: {requested}')
        self.available = available
        self.requested = requested


class StockConflict(DomainError):
    """Optimistic version check lost against a concurrent stock write."""
    code = 'STOCK_CONFLICT'
    status = 409
    default_message = 'Stock was modified concurrently, try again'


class PartialWriteFailure(DomainError):
    code = 'PARTIAL_WRITE_FAILURE'
    status = 500
    default_message = 'Operation failed and was rolled back'


class InfrastructureError(DomainError):
    code = 'INFRASTRUCTURE_ERROR'
    status = 503
    default_message = 'Storage unavailable, try again later'


STATUS_BY_CODE = {
    cls.code: cls.status
    for cls in (
        DomainError, Unauthenticated, Unauthorized, ValidationError, CrossTenantViolation, NotFound,
        InsufficientStock, StockConflict, PartialWriteFailure, InfrastructureError,
    )
}


def status_for(code: Optional[str]) -> int:
    return STATUS_BY_CODE.get(code or '', 400)


__all__ = [
    'STATUS_BY_CODE', 'status_for', 'DomainError', 'Unauthenticated', 'Unauthorized', 'ValidationError', 'CrossTenantViolation',
    'NotFound', 'InsufficientStock', 'StockConflict', 'PartialWriteFailure', 'InfrastructureError',
]
