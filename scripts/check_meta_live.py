#!/usr/bin/env python3
"""Live preflight check against the Meta Graph API.

Runs the same read-only checks the publishing funnel runs before launch
(identity, compatibility, admin access, payment eligibility) with a real user
token.  With --create-campaign it also creates one PAUSED campaign so the
write path can be verified in Ads Manager without spending money.

Usage:
    python3 scripts/check_meta_live.py --token EAAB... --page 1234 --ad-account act_5678
    python3 scripts/check_meta_live.py ... --business 999 --create-campaign

Environment variables (set in .env):
    META_APP_ID / META_APP_SECRET  - optional, enables appsecret_proof
"""

from __future__ import annotations

import argparse
import asyncio
import os
import sys

# Ensure publisher is importable when running from any directory
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from publisher.platforms.base import Goal, LaunchSpec
from publisher.platforms.exceptions import PlatformError
from publisher.platforms.factory import get_platform_adapter
from publisher.platforms.meta_ads import ads_manager_url
from publisher.services.admin_access import AdminAccessVerifier
from publisher.services.compatibility import CompatibilityValidator
from publisher.services.payment import PaymentEligibilityChecker
from publisher.utils.redaction import redact_token


async def run_check(args: argparse.Namespace) -> bool:
    """Run the live checks. Returns True when every check passed."""
    adapter = get_platform_adapter(args.token, dry_run=False)
    ok = True

    print(f"\n1. Identity (token {redact_token(args.token)})...")
    try:
        me = await adapter.get_me()
    except PlatformError as exc:
        print(f"   FAILED: {exc.message}")
        return False
    print(f"   fb_user_id: {me.id} ({me.name or 'no name'})")

    print("\n2. Compatibility...")
    result = await CompatibilityValidator(adapter).validate(
        business_id=args.business, page_id=args.page, ad_account_id=args.ad_account
    )
    print(f"   ok={result.ok} {result.reason or ''}")
    ok = ok and result.ok

    if args.business:
        print("\n3. Admin access...")
        access = await AdminAccessVerifier(adapter).verify(
            args.token,
            fb_user_id=me.id,
            business_id=args.business,
            ad_account_id=args.ad_account,
        )
        print(f"   business_role={access.business_role} ad_account_role={access.ad_account_role}")
        for error in access.errors:
            print(f"   WARNING: {error}")
        ok = ok and access.admin_connected
    else:
        print("\n3. Admin access skipped (no --business)")

    print("\n4. Payment eligibility...")
    eligibility = await PaymentEligibilityChecker(adapter).check_eligibility(args.ad_account)
    print(f"   eligible={eligibility.eligible} status={eligibility.status} {eligibility.reason or ''}")
    ok = ok and eligibility.eligible

    if args.create_campaign:
        print("\n5. Creating campaign (PAUSED)...")
        spec = LaunchSpec(
            goal=Goal.WEBSITE,
            campaign_name=args.name,
            image_hash="unused",
            link_url="https://example.com",
        )
        try:
            campaign_id = await adapter.create_campaign(args.ad_account, spec)
        except PlatformError as exc:
            print(f"   FAILED: {exc.message}")
            return False
        print(f"   Campaign ID: {campaign_id}")
        print(f"   Ads Manager: {ads_manager_url(campaign_id, args.ad_account)}")
        print("   Delete it from Ads Manager when you're done.")

    return ok


def main():
    parser = argparse.ArgumentParser(description="Live preflight check against Meta")
    parser.add_argument("--token", required=True, help="Long-lived user access token")
    parser.add_argument("--page", required=True, help="Facebook Page id")
    parser.add_argument("--ad-account", required=True, help="Ad account id (act_ prefix optional)")
    parser.add_argument("--business", default=None, help="Business id")
    parser.add_argument(
        "--create-campaign",
        action="store_true",
        help="Also create one PAUSED campaign",
    )
    parser.add_argument("--name", default="[TEST] Publisher Live Check", help="Campaign name")
    args = parser.parse_args()

    print("=" * 60)
    print("META - LIVE PREFLIGHT CHECK")
    print("=" * 60)

    success = asyncio.run(run_check(args))

    print("\n" + "=" * 60)
    print("RESULT: PASSED" if success else "RESULT: FAILED")
    print("=" * 60)

    sys.exit(0 if success else 1)


if __name__ == "__main__":
    main()
