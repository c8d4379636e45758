"""Compensating step runner for multi-table writes without a shared transaction.

Usage:
    with Saga('product.create', session) as saga:
        product = saga.step('creating product', lambda: store.insert_product(session, ...),
                            compensate=lambda p: store.delete_product(session, p.id))
        saga.step('creating presentations', lambda: store.insert_presentations(session, product.id, rows))

Steps run in order and each successful step registers its inverse. When a later step
raises, the registered inverses run newest-first and the failure is reported as
``PartialWriteFailure`` (or re-raised unchanged when its type is in ``passthrough``).
A failure before any step committed is re-raised untouched, since nothing needs undoing.
"""
from __future__ import annotations
import logging
from typing import Any, Callable, List, Optional, Tuple, Type

from sqlalchemy.exc import SQLAlchemyError

from stockhub.errors import DomainError, PartialWriteFailure

logger = logging.getLogger(__name__)


class Saga:
    def __init__(self, name: str, session, passthrough: Tuple[Type[BaseException], ...] = ()):
        self.name = name
        self.session = session
        self.passthrough = passthrough
        self._undo: List[Tuple[str, Callable[[], Any]]] = []
        self._current: Optional[str] = None
        self.unrecovered: List[str] = []

    def step(self, label: str, action: Callable[[], Any], compensate: Optional[Callable[[Any], Any]] = None):
        self._current = label
        result = action()
        if compensate is not None:
            self._undo.append((label, lambda: compensate(result)))
        self._current = None
        return result

    @property
    def committed_steps(self) -> int:
        return len(self._undo)

    def compensate(self, reason: str) -> List[str]:
        """Run registered inverses newest-first; returns labels whose inverse failed."""
        try:
            self.session.rollback()
        except SQLAlchemyError:
            logger.exception('%s: rollback before compensation failed', self.name)
        failed = []
        while self._undo:
            label, undo = self._undo.pop()
            try:
                undo()
                logger.warning('%s: compensated "%s" after failure: %s', self.name, label, reason)
            except Exception:
                failed.append(label)
                logger.exception('%s: compensation for "%s" failed; data may be inconsistent', self.name, label)
        self.unrecovered = failed
        return failed

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        if exc is None or not self._undo:
            return False
        failed_step = self._current or 'a later step'
        failed = self.compensate(str(exc))
        if isinstance(exc, self.passthrough) and not failed:
            return False
        if not isinstance(exc, (DomainError, SQLAlchemyError)):
            return False
        message = f'Error {failed_step}; earlier changes were undone'
        if failed:
            message = f'Error {failed_step}; could not undo: {", ".join(failed)}'
        raise PartialWriteFailure(message) from exc


__all__ = ['Saga']
