from datetime import datetime
from enum import Enum
from typing import List

from pydantic import BaseModel, Field


class CouponStatus(str, Enum):
    ACTIVE = "ACTIVE"
    REDEEMED = "REDEEMED"
    EXPIRED = "EXPIRED"
    CANCELLED = "CANCELLED"


class CouponUsage(BaseModel):
    redeemedAt: datetime = Field(..., description="redemption time")
    month: str = Field(..., description="YYYY-MM of the redemption")
    notes: str | None = Field(None, description="merchant notes")
    discountPercentage: float | None = Field(None, description="percentage applied")


class ClaimedCoupon(BaseModel):
    """
    Discount claimed by an employee, redeemable at one merchant.
    """

    couponId: int = Field(..., description="coupon primary key")
    employeeId: int = Field(..., description="employee id")
    discountId: int = Field(..., description="discount id")
    merchantId: int = Field(..., description="merchant id")
    uniqueCode: str = Field(..., description="8-character redemption code")
    status: CouponStatus = Field(CouponStatus.ACTIVE, description="coupon status")
    claimedAt: datetime = Field(..., description="claimed at")
    expiresAt: datetime | None = Field(None, description="expiry (None = never)")
    usageHistory: List[CouponUsage] = Field(default_factory=list)
    usageThisMonth: int = Field(0, ge=0, description="redemptions in lastResetMonth")
    lastResetMonth: str = Field(..., description="YYYY-MM the counter belongs to")
    redeemedAt: datetime | None = Field(None, description="last redemption")
    redemptionNotes: str | None = Field(None, description="last redemption notes")
    qrCodeUrl: str | None = Field(None, description="stored QR image id")

    class Config:
        from_attributes = True


class PassStatus(str, Enum):
    ACTIVE = "ACTIVE"
    REVOKED = "REVOKED"


class EmployeePass(BaseModel):
    """
    Signed identity pass an employee shows at the counter.
    """

    passId: str = Field(..., description="PASS-{employeeId}-{hex}")
    employeeId: int = Field(..., description="employee id")
    companyId: int = Field(..., description="company id")
    signature: str = Field(..., description="HMAC signature of the pass payload")
    status: PassStatus = Field(PassStatus.ACTIVE)
    usageCount: int = Field(0, ge=0)
    lastUsedAt: datetime | None = Field(None)
    createdAt: datetime | None = Field(None)

    class Config:
        from_attributes = True
