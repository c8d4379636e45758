from __future__ import annotations
from dataclasses import dataclass
from typing import Iterable, List, Optional, Sequence
from sqlalchemy import select

from stockhub.constants.roles import BUSINESS_ROLES
from stockhub.errors import Unauthorized, CrossTenantViolation, NotFound
from stockhub.models.business import Branch
from stockhub.services.scope import BusinessScope, BranchScope, NoScope, Scope, resolve_scope
from stockhub.utils.validation import parse_id


@dataclass(frozen=True)
class Decision:
    allowed: bool
    reason: Optional[str] = None

    def __bool__(self):
        return self.allowed


ALLOW = Decision(True)


def require_role(scope: Scope, allowed: Iterable[str], required_branch_id: Optional[int] = None) -> Decision:
    """Pure policy check.

    Business principals pass any check that admits a business role, whatever branch is
    targeted. Branch principals pass only with an admitted role and, when a target branch
    is given, only for their own branch. ``NoScope`` never passes.
    """
    allowed = set(allowed)
    if isinstance(scope, BusinessScope):
        if allowed & BUSINESS_ROLES:
            return ALLOW
        return Decision(False, 'Business principals cannot perform this action')
    if isinstance(scope, BranchScope):
        if scope.role not in allowed:
            return Decision(False, f'Role {scope.role} cannot perform this action')
        if required_branch_id is not None and int(required_branch_id) != scope.branch_id:
            return Decision(False, 'You cannot act on other branches')
        return ALLOW
    return Decision(False, 'You have no business associated')


def enforce_role(scope: Scope, allowed: Iterable[str], required_branch_id: Optional[int] = None) -> Scope:
    decision = require_role(scope, allowed, required_branch_id)
    if not decision:
        raise Unauthorized(decision.reason)
    return scope


def authorize(session, caller_id: int, allowed: Iterable[str], required_branch_id: Optional[int] = None) -> Scope:
    """Resolve the caller's scope and enforce the role set in one step."""
    return enforce_role(resolve_scope(session, caller_id), allowed, required_branch_id)


def resolve_business_id(scope: Scope) -> int:
    if isinstance(scope, NoScope):
        raise Unauthorized('You have no business associated')
    return scope.business_id


def load_branch_in_business(session, scope: Scope, branch_id) -> Branch:
    """Return the branch if it belongs to the caller's business, else raise."""
    business_id = resolve_business_id(scope)
    branch = session.get(Branch, parse_id(branch_id, 'branch_id'))
    if branch is None:
        raise NotFound('Branch not found')
    if branch.business_id != business_id:
        raise CrossTenantViolation('Branch does not belong to your business')
    return branch


def load_branches_in_business(session, scope: Scope, branch_ids: Sequence) -> List[Branch]:
    """All-or-nothing variant of ``load_branch_in_business`` (order preserved)."""
    return [load_branch_in_business(session, scope, b) for b in branch_ids]


def visible_branch_ids(session, scope: Scope) -> List[int]:
    """Branches whose data the caller may read."""
    if isinstance(scope, BranchScope):
        return [scope.branch_id]
    if isinstance(scope, BusinessScope):
        return list(session.execute(select(Branch.id).where(Branch.business_id == scope.business_id)).scalars())
    return []


def assert_branch_access(scope: Scope, branch_id: int):
    """Branch principals are confined to their own branch for reads as well."""
    if isinstance(scope, BranchScope) and scope.branch_id != branch_id:
        raise Unauthorized('You cannot access other branches')


__all__ = [
    'Decision', 'require_role', 'enforce_role', 'authorize', 'resolve_business_id',
    'load_branch_in_business', 'load_branches_in_business', 'visible_branch_ids', 'assert_branch_access',
]
