from __future__ import annotations

import argparse
import logging

import stripe

from app.config import Settings
from app.db import SessionLocal, init_db
from app.logger import setup_logging
from app.models import StripeCustomer
from app.services.stripe_billing import StripeBilling
from app.services.subscriptions import report_usage

logger = logging.getLogger("report_usage")


def _billed_users() -> list[int]:
    with SessionLocal() as db:
        return [row.user_id for row in db.query(StripeCustomer.user_id).all()]


def run(user_ids: list[int], gateway: StripeBilling) -> tuple[int, int]:
    """Report usage for each user; returns ``(reported, failed)``."""
    reported = failed = 0
    for user_id in user_ids:
        try:
            report = report_usage(gateway, user_id)
        except stripe.error.StripeError as exc:
            failed += 1
            logger.error("Usage report for user %s failed: %s", user_id, exc)
            continue
        if report is not None:
            reported += 1
    return reported, failed


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        description="Push per-account subscription counts to Stripe as usage."
    )
    target = parser.add_mutually_exclusive_group(required=True)
    target.add_argument("--user-id", type=int, action="append", help="User to report")
    target.add_argument("--all", action="store_true", help="Every user with a Stripe customer")
    args = parser.parse_args(argv)

    setup_logging()
    settings = Settings()
    init_db(settings)
    gateway = StripeBilling.from_settings(settings)
    if not gateway.configured:
        logger.error("STRIPE_SECRET_KEY is not set")
        return 1

    user_ids = _billed_users() if args.all else args.user_id
    reported, failed = run(user_ids, gateway)
    logger.info("Usage reported for %d of %d users", reported, len(user_ids))
    return 1 if failed else 0


if __name__ == "__main__":
    raise SystemExit(main())
