from .base import Base
from .user import User
from .stripe_customer import StripeCustomer
from .ad_account import AdAccount
from .subscription import AdAccountSubscription
from .billing_history import PerAccountBillingHistory
from .creative_score import CreativeScore
from .facebook_session import FacebookSession
from .error_code import ErrorCode

__all__ = [
    "Base",
    "User",
    "StripeCustomer",
    "AdAccount",
    "AdAccountSubscription",
    "PerAccountBillingHistory",
    "CreativeScore",
    "FacebookSession",
    "ErrorCode",
]
