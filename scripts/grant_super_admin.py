from __future__ import annotations

import argparse
import asyncio
from datetime import datetime, timedelta, timezone
from uuid import UUID

from trialgate.access.admin_grants import grant_super_admin, revoke_super_admin
from trialgate.core.config import get_settings
from trialgate.core.logging import configure_logging
from trialgate.db.session import SessionLocal, dispose_engine


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Grant or revoke a time-bounded super-admin grant")
    parser.add_argument("--account-id", type=UUID, required=True)
    parser.add_argument("--granted-by", type=UUID, help="Active admin issuing the grant; omit to bootstrap")
    parser.add_argument("--days", type=int, default=30)
    parser.add_argument("--revoke", action="store_true")
    return parser.parse_args()


async def _run(args: argparse.Namespace) -> int:
    now_utc = datetime.now(timezone.utc)
    try:
        async with SessionLocal.begin() as session:
            if args.revoke:
                revoked = await revoke_super_admin(
                    session,
                    account_id=args.account_id,
                    revoked_by=args.granted_by,
                    now_utc=now_utc,
                )
                print(f"grant_super_admin: revoked={revoked} account_id={args.account_id}")  # noqa: T201
                return 0 if revoked else 1

            grant = await grant_super_admin(
                session,
                target_account_id=args.account_id,
                granted_by=args.granted_by,
                expires_at=now_utc + timedelta(days=max(1, args.days)),
                now_utc=now_utc,
                allow_bootstrap=True,
            )
            print(  # noqa: T201
                f"grant_super_admin: granted account_id={grant.account_id} "
                f"expires_at={grant.expires_at.isoformat()}"
            )
            return 0
    finally:
        await dispose_engine()


def main() -> int:
    configure_logging(get_settings().log_level)
    return asyncio.run(_run(_parse_args()))


if __name__ == "__main__":
    raise SystemExit(main())
