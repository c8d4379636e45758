import pytest
from sqlalchemy.exc import IntegrityError
from stockhub.errors import PartialWriteFailure, StockConflict, ValidationError
from stockhub.services.saga import Saga


class FakeSession:
    def __init__(self):
        self.rollbacks = 0

    def rollback(self):
        self.rollbacks += 1


def fail(exc):
    raise exc


def test_steps_run_in_order_and_return_results():
    calls = []
    with Saga('demo', FakeSession()) as saga:
        a = saga.step('a', lambda: calls.append('a') or 1, compensate=lambda r: calls.append('undo a'))
        b = saga.step('b', lambda: calls.append('b') or 2)
    assert (a, b) == (1, 2)
    assert calls == ['a', 'b']


def test_later_failure_compensates_newest_first():
    calls = []
    session = FakeSession()
    with pytest.raises(PartialWriteFailure) as exc:
        with Saga('demo', session) as saga:
            saga.step('first', lambda: 'x', compensate=lambda r: calls.append(f'undo first {r}'))
            saga.step('second', lambda: 'y', compensate=lambda r: calls.append(f'undo second {r}'))
            saga.step('third', lambda: fail(IntegrityError('INSERT', {}, Exception('dup'))))
    assert calls == ['undo second y', 'undo first x']
    assert 'third' in exc.value.message
    assert session.rollbacks == 1


def test_failure_before_any_committed_step_is_reraised_untouched():
    with pytest.raises(ValidationError):
        with Saga('demo', FakeSession()) as saga:
            saga.step('first', lambda: fail(ValidationError('bad input')))


def test_passthrough_error_is_reraised_after_compensation():
    calls = []
    with pytest.raises(StockConflict):
        with Saga('demo', FakeSession(), passthrough=(StockConflict,)) as saga:
            saga.step('first', lambda: 1, compensate=lambda r: calls.append('undone'))
            saga.step('second', lambda: fail(StockConflict()))
    assert calls == ['undone']


def test_failed_compensation_is_named_in_the_error(caplog):
    def bad_undo(_):
        raise RuntimeError('cannot undo')
    saga = Saga('demo', FakeSession())
    with pytest.raises(PartialWriteFailure) as exc:
        with saga:
            saga.step('creating row', lambda: 1, compensate=bad_undo)
            saga.step('second', lambda: fail(ValidationError('boom')))
    assert 'could not undo: creating row' in exc.value.message
    assert saga.unrecovered == ['creating row']
    assert any(r.levelname == 'ERROR' for r in caplog.records)
