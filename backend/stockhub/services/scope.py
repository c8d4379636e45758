"""Caller scope resolution.

A caller has at most one effective scope. Business grants (owner/admin) are looked up
first; only when none is active is the branch grant (manager/cashier) consulted. A user
holding both is always a business principal.
"""
from __future__ import annotations
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional, Union
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from stockhub.errors import InfrastructureError
from stockhub.models.authz import BusinessUser, BranchUser
from stockhub.models.business import Branch


@dataclass(frozen=True)
class BusinessScope:
    business_id: int
    role: str
    grant_id: Optional[int] = None

    kind = 'business'

    def to_dict(self):
        return {'level': self.kind, 'business_id': self.business_id, 'role': self.role}


@dataclass(frozen=True)
class BranchScope:
    branch_id: int
    business_id: int
    role: str
    benefit: Decimal = Decimal('0')
    grant_id: Optional[int] = None

    kind = 'branch'

    def to_dict(self):
        return {
            'level': self.kind,
            'business_id': self.business_id,
            'branch_id': self.branch_id,
            'role': self.role,
            'benefit': float(self.benefit or 0),
        }


@dataclass(frozen=True)
class NoScope:
    kind = 'none'

    def to_dict(self):
        return {'level': self.kind}


Scope = Union[BusinessScope, BranchScope, NoScope]


def resolve_scope(session, user_id: int) -> Scope:
    """Return the caller's effective scope.

    "No row" is a legitimate absence; any storage failure is re-raised as
    ``InfrastructureError`` instead of being mistaken for ``NoScope``.
    """
    try:
        bu = session.execute(
            select(BusinessUser)
            .where(BusinessUser.user_id == user_id, BusinessUser.is_active.is_(True))
            .order_by(BusinessUser.id.asc())
        ).scalars().first()
        if bu is not None:
            return BusinessScope(business_id=bu.business_id, role=bu.role, grant_id=bu.id)
        row = session.execute(
            select(BranchUser, Branch.business_id)
            .join(Branch, Branch.id == BranchUser.branch_id)
            .where(BranchUser.user_id == user_id, BranchUser.is_active.is_(True))
            .order_by(BranchUser.id.asc())
        ).first()
    except SQLAlchemyError as exc:
        raise InfrastructureError() from exc
    if row is not None:
        grant, business_id = row
        return BranchScope(
            branch_id=grant.branch_id,
            business_id=business_id,
            role=grant.role,
            benefit=grant.benefit if grant.benefit is not None else Decimal('0'),
            grant_id=grant.id,
        )
    return NoScope()


__all__ = ['BusinessScope', 'BranchScope', 'NoScope', 'Scope', 'resolve_scope']
