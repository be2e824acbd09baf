from .MerchantReviewResponse import MerchantReviewItem, VerificationFlags
from .JobResponse import ExpireSuspensionsResponse

__all__ = [
    "MerchantReviewItem",
    "VerificationFlags",
    "ExpireSuspensionsResponse",
]
