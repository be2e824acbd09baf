from pydantic import BaseModel, Field

from libs.schemas import ClaimedCoupon

from .WalletResponse import UsageStatus


class VerifiedEmployee(BaseModel):
    name: str
    company: str | None = None


class VerifiedDiscount(BaseModel):
    name: str | None = None
    percentage: float | None = None
    monthlyUsageLimit: int | None = None
    firstTimeBonus: float | None = Field(None, description="extra percentage on a first redemption")


class CouponPreviewResponse(BaseModel):
    valid: bool = Field(True)
    result: str = Field("VALID")
    coupon: ClaimedCoupon
    employee: VerifiedEmployee
    discount: VerifiedDiscount
    usageStatus: UsageStatus


class RedeemResponse(BaseModel):
    success: bool = Field(True)
    message: str
    appliedPercentage: float
    isFirstTimeBonus: bool = Field(False)
    usageRemaining: int | None = Field(None, description="null = unlimited")
    savings: float | None = Field(None, description="when orderAmount was given")
    coupon: ClaimedCoupon
