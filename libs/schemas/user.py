from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field


class UserRole(str, Enum):
    EMPLOYEE = "EMPLOYEE"
    MERCHANT = "MERCHANT"
    COMPANY_ADMIN = "COMPANY_ADMIN"
    PLATFORM_ADMIN = "PLATFORM_ADMIN"


ONBOARDING_STEPS = (
    "emailVerified",
    "companyLinked",
    "firstDiscountClaimed",
    "firstDiscountUsed",
    "walletPassAdded",
    "firstReferralSent",
)


class OnboardingProgress(BaseModel):
    """
    Employee onboarding checklist.
    """

    emailVerified: bool = Field(False, description="email address confirmed")
    companyLinked: bool = Field(False, description="joined a company")
    firstDiscountClaimed: bool = Field(False, description="claimed a first coupon")
    firstDiscountUsed: bool = Field(False, description="redeemed a first coupon")
    walletPassAdded: bool = Field(False, description="created an employee pass")
    firstReferralSent: bool = Field(False, description="sent a first referral")
    completedAt: datetime | None = Field(None, description="when every step was first done")

    def completed_steps(self) -> int:
        return sum(1 for step in ONBOARDING_STEPS if getattr(self, step))

    def is_complete(self) -> bool:
        return self.completed_steps() == len(ONBOARDING_STEPS)


class User(BaseModel):
    """
    Login account. Every employee, merchant and company admin has one.
    """

    userId: int = Field(..., description="user primary key")
    publicId: str = Field(..., description="display id (CB-XXXXXX)")
    email: str = Field(..., description="login email (lower-case, unique)")
    passwordHash: str | None = Field(None, description="bcrypt hash")
    firstName: str = Field(..., description="first name")
    lastName: str = Field(..., description="last name")
    personalEmail: str | None = Field(None, description="personal email")
    phoneNumber: str | None = Field(None, description="phone number")
    role: UserRole = Field(..., description="account role")
    emailVerified: bool = Field(False, description="email verified")
    verificationToken: str | None = Field(None, description="email verification token")
    verificationExpiresAt: datetime | None = Field(None, description="verification token expiry")
    resetPasswordToken: str | None = Field(None, description="password reset token")
    resetPasswordExpiresAt: datetime | None = Field(None, description="password reset token expiry")
    referralCode: str | None = Field(None, description="own referral code")
    referredBy: int | None = Field(None, description="referring user id")
    accountCredits: int = Field(0, ge=0, description="referral credits")
    onboardingProgress: OnboardingProgress = Field(default_factory=OnboardingProgress)
    createdAt: datetime | None = Field(None, description="created at")

    @property
    def full_name(self) -> str:
        return f"{self.firstName} {self.lastName}".strip()

    class Config:
        from_attributes = True
