from typing import List

from pydantic import BaseModel, Field

from libs.schemas import MerchantReferral


class MerchantReferralStats(BaseModel):
    totalReferred: int = Field(0)
    totalRegistered: int = Field(0, description="REGISTERED, TRIAL_ACTIVE or CONVERTED")
    totalConverted: int = Field(0)
    totalRewardsClaimed: int = Field(0)
    monthsEarned: int = Field(0, description="reward months of claimed referrals")
    availableMonths: int = Field(0, description="reward months of converted, unclaimed referrals")
    conversionRate: float = Field(0, description="converted / referred in percent")


class MerchantReferralListResponse(BaseModel):
    referrals: List[MerchantReferral] = Field(default_factory=list, description="newest first")
    stats: MerchantReferralStats


class MerchantReferralClaimResponse(BaseModel):
    message: str
    monthsApplied: int = Field(..., description="free months added")
    referral: MerchantReferral
