#!/usr/bin/env python3
"""Create the donation tables and, optionally, a first admin account.

    DATABASE_URL=sqlite:///./donations.db python init_db.py
    python init_db.py --database-url sqlite:///./donations.db \
        --admin-user admin --admin-password 's3cr3t'
"""
import argparse
import asyncio
import getpass
import os
import sys

from donationdesk.auth import passwords
from donationdesk.infra.sql import make_async_engine
from donationdesk.model.admins import AdminStore
from donationdesk.model.orm import Base


async def init_db(database_url: str, admin_user: str | None,
                  admin_password: str | None) -> None:
    engine, SessionAsync = make_async_engine(database_url)
    try:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        print('✅ tables created')

        if admin_user:
            async with SessionAsync() as session:
                admins = AdminStore(session)
                if await admins.count(admin_user):
                    print(f'admin {admin_user!r} already exists, skipping')
                else:
                    await admins.create(
                        admin_user, passwords.hash_password(admin_password)
                    )
                    print(f'✅ admin {admin_user!r} created')
                print(f'admin accounts: {await admins.count()}')
    finally:
        await engine.dispose()


def main():
    ap = argparse.ArgumentParser(
        description="Create tables and an optional admin account"
    )
    ap.add_argument(
        "--database-url", default=os.getenv("DATABASE_URL"),
        help="Database URL (default: $DATABASE_URL)"
    )
    ap.add_argument("--admin-user", help="create this admin account")
    ap.add_argument(
        "--admin-password",
        help="password for --admin-user (prompted when omitted)"
    )
    args = ap.parse_args()

    if not args.database_url:
        print("NEED DATABASE_URL or --database-url!")
        sys.exit(1)

    password = args.admin_password
    if args.admin_user and password is None:
        password = getpass.getpass(f"Password for {args.admin_user}: ")

    asyncio.run(init_db(args.database_url, args.admin_user, password))


if __name__ == '__main__':
    main()
