from .WalletResponse import (
    ClaimedMerchantsResponse,
    DiscountSummary,
    ExploreMerchantItem,
    MerchantSummary,
    UsageStatus,
    WalletItem,
    WalletResponse,
)
from .RedeemResponse import CouponPreviewResponse, RedeemResponse
from .IdentityResponse import (
    IdentityVerifiedResponse,
    PassResponse,
    PassVerifyResponse,
    VerificationTokenResponse,
)
from .MessageResponse import MessageResponse

__all__ = [
    "ClaimedMerchantsResponse",
    "DiscountSummary",
    "ExploreMerchantItem",
    "MerchantSummary",
    "UsageStatus",
    "WalletItem",
    "WalletResponse",
    "CouponPreviewResponse",
    "RedeemResponse",
    "IdentityVerifiedResponse",
    "PassResponse",
    "PassVerifyResponse",
    "VerificationTokenResponse",
    "MessageResponse",
]
