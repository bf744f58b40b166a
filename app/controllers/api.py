from fastapi import APIRouter

from . import (
    accounts,
    billing,
    creative_scores,
    facebook,
    proxy,
    reporting,
    stripe_routes,
    subscriptions,
    users,
    webhooks,
)

router = APIRouter(prefix="/api")
router.include_router(users.router)
router.include_router(accounts.router)
router.include_router(billing.router)
router.include_router(subscriptions.router)
# checkout sessions and the Stripe webhook
router.include_router(stripe_routes.router)
router.include_router(facebook.router)
# account-scoped campaign, insight and creative reports
router.include_router(reporting.router)
router.include_router(proxy.router)
router.include_router(creative_scores.router)
router.include_router(webhooks.router)
