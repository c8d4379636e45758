"""Role names, system-managed presentation variant and other fixed vocabularies.
Role strings are persisted in businesses_users / branches_users; never rename them silently.
"""
from __future__ import annotations
from typing import FrozenSet

ROLE_OWNER = 'owner'
ROLE_ADMIN = 'admin'
ROLE_MANAGER = 'manager'
ROLE_CASHIER = 'cashier'

BUSINESS_ROLES: FrozenSet[str] = frozenset({ROLE_OWNER, ROLE_ADMIN})
BRANCH_ROLES: FrozenSet[str] = frozenset({ROLE_MANAGER, ROLE_CASHIER})
ALL_ROLES: FrozenSet[str] = BUSINESS_ROLES | BRANCH_ROLES

# Common allowed-role sets declared by operations
CATALOG_WRITERS = BUSINESS_ROLES
PRODUCT_DELETERS = BUSINESS_ROLES | {ROLE_MANAGER}
ANY_STAFF = ALL_ROLES

# Base presentation every product carries; managed by the catalog engine only
UNIT_VARIANT = 'unidad'

# Sentinel tax id stored at signup until the owner provides the real one
PENDING_TAX_ID = 'Pendiente'

BUSINESS_THEMES = ['neutral', 'green', 'red', 'blue', 'violet', 'orange']
DEFAULT_THEME = 'neutral'

LEVEL_BUSINESS = 'business'
LEVEL_BRANCH = 'branch'

__all__ = [
    'ROLE_OWNER', 'ROLE_ADMIN', 'ROLE_MANAGER', 'ROLE_CASHIER', 'BUSINESS_ROLES', 'BRANCH_ROLES',
    'ALL_ROLES', 'CATALOG_WRITERS', 'PRODUCT_DELETERS', 'ANY_STAFF', 'UNIT_VARIANT', 'PENDING_TAX_ID',
    'BUSINESS_THEMES', 'DEFAULT_THEME', 'LEVEL_BUSINESS', 'LEVEL_BRANCH',
]
