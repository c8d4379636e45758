from functools import wraps
from stockhub.decorators.operation import failure
from stockhub.errors import Unauthenticated
from stockhub.services.identity import get_current_caller


def require_caller(fn):
    """Authenticate the request and pass the caller's user id as the first argument."""
    @wraps(fn)
    def wrapper(*args, **kwargs):
        try:
            caller_id = get_current_caller()
        except Unauthenticated as e:
            return failure(e), e.status
        return fn(caller_id, *args, **kwargs)
    return wrapper
