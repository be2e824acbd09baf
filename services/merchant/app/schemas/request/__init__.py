from .MerchantUpdateSchema import MerchantUpdateSchema
from .OnboardingStepSchema import OnboardingStepSchema
from .OnboardingCompleteSchema import OnboardingCompleteSchema
from .DiscountCreateSchema import DiscountCreateSchema
from .DiscountUpdateSchema import DiscountUpdateSchema
from .MerchantReferralCreateSchema import MerchantReferralCreateSchema

__all__ = [
    "MerchantUpdateSchema",
    "OnboardingStepSchema",
    "OnboardingCompleteSchema",
    "DiscountCreateSchema",
    "DiscountUpdateSchema",
    "MerchantReferralCreateSchema",
]
