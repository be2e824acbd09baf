from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field


class ReferralStatus(str, Enum):
    PENDING = "PENDING"
    REGISTERED = "REGISTERED"
    COMPLETED = "COMPLETED"


class Referral(BaseModel):
    """
    Employee-to-person referral.
    """

    referralId: int = Field(..., description="referral primary key")
    referrerId: int = Field(..., description="referring user id")
    referrerCompanyId: int | None = Field(None)
    referredEmail: str = Field(..., description="invited email")
    referredUserId: int | None = Field(None)
    referredCompanyId: int | None = Field(None)
    status: ReferralStatus = Field(ReferralStatus.PENDING)
    referralCode: str = Field(..., description="referrer's code at the time")
    sameCompany: bool = Field(False)
    registeredAt: datetime | None = Field(None)
    completedAt: datetime | None = Field(None)
    createdAt: datetime | None = Field(None)

    class Config:
        from_attributes = True


class MerchantReferralStatus(str, Enum):
    PENDING = "PENDING"
    CONTACTED = "CONTACTED"
    REGISTERED = "REGISTERED"
    TRIAL_ACTIVE = "TRIAL_ACTIVE"
    CONVERTED = "CONVERTED"
    CHURNED = "CHURNED"
    REJECTED = "REJECTED"


class MerchantReferral(BaseModel):
    """
    Restaurant referred by an existing merchant.
    """

    referralId: int = Field(..., description="referral primary key")
    referrerMerchantId: int = Field(..., description="referring merchant id")
    referredBusinessName: str = Field(..., description="referred business")
    referredContactName: str | None = Field(None)
    referredEmail: str = Field(..., description="referred contact email")
    referredPhone: str | None = Field(None)
    referredCity: str | None = Field(None)
    referredState: str | None = Field(None)
    whyGoodFit: str | None = Field(None)
    referredMerchantId: int | None = Field(None, description="merchant created from the referral")
    status: MerchantReferralStatus = Field(MerchantReferralStatus.PENDING)
    referrerRewardMonths: int = Field(3)
    refereeRewardMonths: int = Field(9)
    referrerRewardClaimed: bool = Field(False)
    referrerRewardClaimedAt: datetime | None = Field(None)
    createdAt: datetime | None = Field(None)

    class Config:
        from_attributes = True
