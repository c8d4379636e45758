#!/usr/bin/env python
"""Idempotent demo seed: one owner, one business, two branches and a small catalog.

Usage:
    python backend/scripts/seed_demo.py                 # seed normally
    python backend/scripts/seed_demo.py --show-summary  # print branch -> product counts afterwards
    python backend/scripts/seed_demo.py --create-schema # create tables first (prefer alembic upgrade)
"""
from __future__ import annotations
import os, sys, argparse, textwrap
from sqlalchemy import select, func

# Allow running from repo root
sys.path.append(os.path.abspath('backend'))

from stockhub import create_app, get_db  # type: ignore
from stockhub.models.authz import Base, User
from stockhub.models.business import Branch
from stockhub.models.product import Product
from stockhub.services import business, catalog, identity, team
from stockhub.services.scope import BusinessScope, resolve_scope

DEMO_BRANCHES = [
    {'name': 'Casa Central', 'location': 'Av. Principal 100'},
    {'name': 'Sucursal Norte', 'location': 'Calle Norte 45'},
]
DEMO_PRODUCTS = [
    {'name': 'Agua mineral 500ml', 'cost': 0.5, 'price': 1.0, 'stock': 120, 'barcode': '7790000000011',
     'presentations': [{'name': 'pack x6', 'price': 5.4}]},
    {'name': 'Galletitas de agua', 'cost': 0.8, 'price': 1.5, 'stock': 60, 'brand': 'Demo'},
    {'name': 'Yerba 1kg', 'cost': 3.0, 'price': 4.9, 'stock': 25},
]


def _fail(result, what):
    print(f"[ERROR] {what}: {result.get('error')} ({result.get('code')})")
    sys.exit(2)


def ensure_owner(session, email, password):
    user = session.execute(select(User).where(User.email == email)).scalar_one_or_none()
    if user is not None:
        return user.id
    result = identity.signup_user(session, {
        'business_name': os.getenv('SEED_BUSINESS_NAME', 'Demo Market'),
        'name': 'Owner',
        'phone': '0000000',
        'email': email,
        'password': password,
    })
    if not result['success']:
        _fail(result, 'signup')
    print(f"[INFO] Created owner {email} and business {result['business_name']}.")
    return result['user_id']


def ensure_branches(session, owner_id):
    scope = resolve_scope(session, owner_id)
    if not isinstance(scope, BusinessScope):
        print('[WARN] Seed owner has no business grant; skipping branches')
        return []
    existing = {b.name: b.id for b in session.execute(select(Branch).where(Branch.business_id == scope.business_id)).scalars()}
    ids = []
    for item in DEMO_BRANCHES:
        if item['name'] in existing:
            ids.append(existing[item['name']])
            continue
        result = business.create_branch(session, owner_id, item)
        if not result['success']:
            _fail(result, f"branch {item['name']}")
        ids.append(result['branch_id'])
    return ids


def ensure_products(session, owner_id, branch_id):
    names = set(session.execute(select(Product.name).where(Product.branch_id == branch_id)).scalars())
    created = 0
    for item in DEMO_PRODUCTS:
        if item['name'] in names:
            continue
        result = catalog.create_product(session, owner_id, dict(item, branch_id=branch_id))
        if not result['success']:
            _fail(result, f"product {item['name']}")
        created += 1
    return created


def ensure_staff(session, owner_id, branch_id):
    email = os.getenv('SEED_MANAGER_EMAIL', 'manager@example.com')
    if session.execute(select(User).where(User.email == email)).scalar_one_or_none() is not None:
        return 0
    result = team.create_branch_employee(session, owner_id, {
        'email': email,
        'name': 'Manager',
        'password': os.getenv('SEED_MANAGER_PASSWORD', 'ChangeMe123!'),
        'branch_id': branch_id,
        'role': 'manager',
    })
    if not result['success']:
        _fail(result, 'manager')
    print(f'[INFO] Created branch manager {email}.')
    return 1


def print_summary(session, branch_ids):
    rows = session.execute(
        select(Branch.name, func.count(Product.id))
        .outerjoin(Product, (Product.branch_id == Branch.id) & Product.is_active.is_(True))
        .where(Branch.id.in_(branch_ids))
        .group_by(Branch.id, Branch.name)
    ).all()
    if not rows:
        print("[INFO] No branches present.")
        return
    name_w = max(len(r[0]) for r in rows)
    print(f"{'Branch'.ljust(name_w)} | Products")
    print('-' * (name_w + 12))
    for name, cnt in rows:
        print(f"{name.ljust(name_w)} | {str(cnt).rjust(8)}")


def parse_args():
    p = argparse.ArgumentParser(
        description="Seed a demo business",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=textwrap.dedent("""Examples:\n  seed normally: seed_demo.py\n  show summary: seed_demo.py --show-summary\n"""),
    )
    p.add_argument('--show-summary', action='store_true', help='Print active product counts per branch after seeding')
    p.add_argument('--create-schema', action='store_true', help='Create missing tables before seeding')
    return p.parse_args()


def main():
    args = parse_args()
    app = create_app()
    with app.app_context():
        session = get_db()
        if args.create_schema:
            Base.metadata.create_all(session.get_bind())
        owner_id = ensure_owner(
            session,
            os.getenv('SEED_ADMIN_EMAIL', 'owner@example.com'),
            os.getenv('SEED_ADMIN_PASSWORD', 'ChangeMe123!'),
        )
        branch_ids = ensure_branches(session, owner_id)
        created = ensure_products(session, owner_id, branch_ids[0]) if branch_ids else 0
        staff = ensure_staff(session, owner_id, branch_ids[0]) if branch_ids else 0
        print(f"[DONE] Branches: {len(branch_ids)}, products created: {created}, staff created: {staff}")
        if args.show_summary:
            print_summary(session, branch_ids)


if __name__ == '__main__':
    main()
