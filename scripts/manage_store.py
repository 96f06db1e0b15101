"""CLI for store and API key management.

Usage::

    uv run python -m scripts.manage_store <command> [options]

Commands:
    create-store        Register a store by shop domain
    create-key          Generate an API key (optionally bound to a store)
    list-stores         List all stores with plan and key counts
    list-keys           List API keys for a store
    revoke-key          Revoke an API key by prefix
    deactivate-store    Deactivate a store (content generation stops)
"""

from __future__ import annotations

import argparse
import sys
from collections.abc import Callable
from datetime import UTC, datetime, timedelta

from sqlalchemy import create_engine, func, select
from sqlalchemy.orm import Session

from blog_gateway.auth.keys import generate_api_key
from blog_gateway.config import settings
from blog_gateway.storage.orm import APIKey, PlanLimit, Store


def get_sync_session() -> Session:
    """Create sync session for CLI operations.

    Uses the same database URL as the async app (psycopg v3
    handles both sync and async natively).
    """
    engine = create_engine(settings.database_url)
    return Session(engine)


def _find_store(session: Session, shop_domain: str) -> Store:
    store = session.execute(
        select(Store).where(Store.shop_domain == shop_domain)
    ).scalar_one_or_none()
    if store is None:
        print(f"Store not found: {shop_domain}", file=sys.stderr)
        sys.exit(1)
    return store


def create_store(args: argparse.Namespace) -> None:
    """Register a new store, optionally on a named plan."""
    with get_sync_session() as session:
        existing = session.execute(
            select(Store).where(Store.shop_domain == args.domain)
        ).scalar_one_or_none()
        if existing is not None:
            print(f"Store already exists: {args.domain}", file=sys.stderr)
            sys.exit(1)

        plan_id = None
        if args.plan:
            plan_id = session.execute(
                select(PlanLimit.id).where(PlanLimit.plan_name == args.plan)
            ).scalar_one_or_none()
            if plan_id is None:
                print(f"Plan not found: {args.plan}", file=sys.stderr)
                sys.exit(1)

        store = Store(shop_domain=args.domain, plan_id=plan_id)
        session.add(store)
        session.commit()
        plan = args.plan or "none (trial on first use)"
        print(f"Store created: {args.domain} (id: {store.id}, plan: {plan})")


def create_key(args: argparse.Namespace) -> None:
    """Generate an API key, bound to a store when ``--domain`` is given."""
    with get_sync_session() as session:
        store_id = None
        if args.domain:
            store_id = _find_store(session, args.domain).id

        full_key, key_hash, key_prefix = generate_api_key(args.env)
        expires_at = None
        if args.expires_days:
            expires_at = datetime.now(UTC) + timedelta(days=args.expires_days)

        api_key = APIKey(
            store_id=store_id,
            key_hash=key_hash,
            key_prefix=key_prefix,
            label=args.label,
            expires_at=expires_at,
        )
        session.add(api_key)
        session.commit()

        owner = args.domain or "gateway"
        print(f'API key created for "{owner}":')
        print(f"   Key:     {full_key}")
        print(f"   Prefix:  {key_prefix}")
        print(f"   Label:   {args.label}")
        if expires_at is not None:
            print(f"   Expires: {expires_at:%Y-%m-%d}")
        print()
        print("Save this key now -- it cannot be retrieved later!")


def list_stores(_args: argparse.Namespace) -> None:
    """List all stores with plan name and key counts."""
    with get_sync_session() as session:
        stmt = (
            select(
                Store.shop_domain,
                Store.is_active,
                PlanLimit.plan_name,
                func.count(APIKey.id).label("key_count"),
            )
            .outerjoin(PlanLimit, Store.plan_id == PlanLimit.id)
            .outerjoin(APIKey, Store.id == APIKey.store_id)
            .group_by(Store.id, PlanLimit.plan_name)
            .order_by(Store.shop_domain)
        )
        rows = session.execute(stmt).all()

        if not rows:
            print("No stores found.")
            return

        print("Stores:")
        for i, row in enumerate(rows, 1):
            status = "active" if row.is_active else "inactive"
            plan = row.plan_name or "no plan"
            keys = row.key_count
            print(
                f"  {i}. {row.shop_domain} ({plan}, {status}, "
                f"{keys} key{'s' if keys != 1 else ''})"
            )


def list_keys(args: argparse.Namespace) -> None:
    """List API keys for a store."""
    with get_sync_session() as session:
        store = _find_store(session, args.domain)
        keys = (
            session.execute(
                select(APIKey)
                .where(APIKey.store_id == store.id)
                .order_by(APIKey.created_at)
            )
            .scalars()
            .all()
        )

        if not keys:
            print(f'No keys for "{args.domain}".')
            return

        print(f'Keys for "{args.domain}":')
        for i, key in enumerate(keys, 1):
            status = "active" if key.is_active else "revoked"
            print(f"  {i}. {key.key_prefix} [{key.label}] {status}")


def revoke_key(args: argparse.Namespace) -> None:
    """Revoke an API key by its prefix."""
    with get_sync_session() as session:
        key = session.execute(
            select(APIKey).where(APIKey.key_prefix == args.prefix)
        ).scalar_one_or_none()
        if key is None:
            print(f"Key not found: {args.prefix}", file=sys.stderr)
            sys.exit(1)

        if not key.is_active:
            print(f"Key already revoked: {args.prefix}", file=sys.stderr)
            sys.exit(1)

        key.is_active = False
        session.commit()
        print(f"Key revoked: {args.prefix}")


def deactivate_store(args: argparse.Namespace) -> None:
    """Deactivate a store."""
    with get_sync_session() as session:
        store = _find_store(session, args.domain)
        if not store.is_active:
            print(f"Store already inactive: {args.domain}", file=sys.stderr)
            sys.exit(1)

        store.is_active = False
        session.commit()
        print(f"Store deactivated: {args.domain}")


def main() -> None:
    """Parse arguments and dispatch to command handler."""
    parser = argparse.ArgumentParser(description="Store management CLI")
    sub = parser.add_subparsers(dest="command", required=True)

    # create-store
    p = sub.add_parser("create-store", help="Register a store")
    p.add_argument("--domain", required=True, help="Shop domain")
    p.add_argument("--plan", default=None, help="Plan name, e.g. starter")

    # create-key
    p = sub.add_parser("create-key", help="Generate an API key")
    p.add_argument("--domain", default=None, help="Bind key to this shop domain")
    p.add_argument("--label", default="default", help="Key label")
    p.add_argument("--env", choices=["live", "test"], default="live")
    p.add_argument("--expires-days", type=int, default=None, help="Key lifetime")

    # list-stores
    sub.add_parser("list-stores", help="List all stores")

    # list-keys
    p = sub.add_parser("list-keys", help="List API keys for a store")
    p.add_argument("--domain", required=True, help="Shop domain")

    # revoke-key
    p = sub.add_parser("revoke-key", help="Revoke an API key")
    p.add_argument("--prefix", required=True, help="Key prefix to revoke")

    # deactivate-store
    p = sub.add_parser("deactivate-store", help="Deactivate a store")
    p.add_argument("--domain", required=True, help="Shop domain")

    args = parser.parse_args()
    commands: dict[str, Callable[[argparse.Namespace], None]] = {
        "create-store": create_store,
        "create-key": create_key,
        "list-stores": list_stores,
        "list-keys": list_keys,
        "revoke-key": revoke_key,
        "deactivate-store": deactivate_store,
    }
    commands[args.command](args)


if __name__ == "__main__":
    main()
