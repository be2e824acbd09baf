from typing import List

from pydantic import BaseModel, Field, ConfigDict

from libs.schemas import Referral


class ReferralStats(BaseModel):
    pending: int = Field(0, description="invites not yet registered")
    registered: int = Field(0, description="registered, not yet redeemed")
    completed: int = Field(0, description="registered and redeemed")
    total: int = Field(0, description="all referrals")
    sameCompany: int = Field(0, description="registered or completed referrals at the same company")


class ReferralOverviewResponse(BaseModel):
    """Referral dashboard of the signed-in user."""

    referralCode: str = Field(..., description="own referral code", examples=["JAN-3F9A1C"])
    referralLink: str = Field(..., description="sign-up link", examples=["https://corbez.com/register?ref=JAN-3F9A1C"])
    companyName: str | None = Field(None, description="referrer's company")
    stats: ReferralStats = Field(..., description="referral counts")
    recentReferrals: List[Referral] = Field(default_factory=list, description="10 most recent referrals")


class ReferralValidateResponse(BaseModel):
    valid: bool = Field(..., description="code belongs to a user")
    referrerName: str = Field(..., description="referrer display name", examples=["Jane Doe"])
    companyName: str | None = Field(None, description="referrer's company", examples=["Acme Corp"])

    model_config = ConfigDict(
        json_schema_extra={"example": {"valid": True, "referrerName": "Jane Doe", "companyName": "Acme Corp"}}
    )
