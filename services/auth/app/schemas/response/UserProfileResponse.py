from datetime import datetime

from pydantic import BaseModel, Field, ConfigDict

from libs.schemas import OnboardingProgress


class UserProfileResponse(BaseModel):
    """Profile of the signed-in user."""

    userId: int = Field(..., description="user primary key")
    publicId: str = Field(..., description="display id", examples=["CB-7KQ2XM"])
    email: str = Field(..., description="login email")
    firstName: str = Field(..., description="first name")
    lastName: str = Field(..., description="last name")
    personalEmail: str | None = Field(None, description="personal email")
    phoneNumber: str | None = Field(None, description="phone number")
    role: str = Field(..., description="account role")
    emailVerified: bool = Field(..., description="email verified")
    accountCredits: int = Field(0, description="referral credits")
    referralCode: str | None = Field(None, description="own referral code", examples=["JAN-3F9A1C"])
    onboardingProgress: OnboardingProgress = Field(..., description="onboarding checklist")
    createdAt: datetime | None = Field(None, description="created at")

    class Config:
        from_attributes = True


class OnboardingResponse(BaseModel):
    progress: OnboardingProgress = Field(..., description="onboarding checklist")
    completedSteps: int = Field(..., description="steps done", examples=[3])
    totalSteps: int = Field(..., description="steps in the checklist", examples=[6])
    percentComplete: int = Field(..., description="0 to 100", examples=[50])
    isComplete: bool = Field(..., description="all steps done")
    completedAt: datetime | None = Field(None, description="when every step was first done")

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "progress": {
                    "emailVerified": True,
                    "companyLinked": True,
                    "firstDiscountClaimed": True,
                    "firstDiscountUsed": False,
                    "walletPassAdded": False,
                    "firstReferralSent": False,
                    "completedAt": None,
                },
                "completedSteps": 3,
                "totalSteps": 6,
                "percentComplete": 50,
                "isComplete": False,
                "completedAt": None,
            }
        }
    )
