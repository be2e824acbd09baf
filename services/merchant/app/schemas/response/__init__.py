from .OnboardingResponse import OnboardingStatusResponse
from .DiscountResponse import ApplicableDiscountResponse
from .BillingResponse import CheckoutResponse, PortalResponse, SubscriptionResponse, WebhookResponse
from .MerchantReferralResponse import (
    MerchantReferralClaimResponse,
    MerchantReferralListResponse,
    MerchantReferralStats,
)
from .MessageResponse import MessageResponse

__all__ = [
    "OnboardingStatusResponse",
    "ApplicableDiscountResponse",
    "CheckoutResponse",
    "PortalResponse",
    "SubscriptionResponse",
    "WebhookResponse",
    "MerchantReferralClaimResponse",
    "MerchantReferralListResponse",
    "MerchantReferralStats",
    "MessageResponse",
]
