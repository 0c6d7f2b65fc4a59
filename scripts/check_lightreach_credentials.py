#!/usr/bin/env python3
"""
Authenticate against the configured LightReach (Palmetto Finance) environment.

Reads PALMETTO_FINANCE_ACCOUNT_EMAIL / PALMETTO_FINANCE_ACCOUNT_PASSWORD and
PALMETTO_FINANCE_ENVIRONMENT the same way the API does, requests a token and
reports when it expires. Optionally fetches one account to confirm API access.

Usage:
    python scripts/check_lightreach_credentials.py
    python scripts/check_lightreach_credentials.py --environment prod --account-id acc_123
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from datetime import datetime, timezone

from app.core.settings import get_settings
from app.services.finance.errors import FinanceError
from app.services.finance.lightreach import LightReachClient


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description=__doc__.strip().splitlines()[0])
    parser.add_argument("--environment", choices=("next", "prod"), help="override PALMETTO_FINANCE_ENVIRONMENT")
    parser.add_argument("--account-id", help="also fetch this account's status")
    return parser.parse_args(argv)


async def check(environment: str | None, account_id: str | None) -> int:
    settings = get_settings()
    if environment:
        settings = settings.model_copy(update={"lightreach_environment": environment})
    if not settings.has_lightreach_credentials:
        print("LightReach credentials are not configured (PALMETTO_FINANCE_ACCOUNT_EMAIL / _PASSWORD).")
        return 2

    client = LightReachClient.from_settings(settings)
    print(f"Environment: {settings.lightreach_environment} ({settings.lightreach_base_url})")
    try:
        await client.tokens.get_token()
        expires = datetime.fromtimestamp(client.tokens.expires_at, tz=timezone.utc)
        print(f"Authenticated. Token valid until {expires.isoformat()}")
        if account_id:
            response = await client.get_application_status(account_id)
            print(f"Account {account_id}: {response.status} ({response.lender_status or 'n/a'})")
    except FinanceError as exc:
        print(f"Check failed [{exc.code}]: {exc.message}")
        return 1
    finally:
        await client.close()
    return 0


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    return asyncio.run(check(args.environment, args.account_id))


if __name__ == "__main__":
    sys.exit(main())
