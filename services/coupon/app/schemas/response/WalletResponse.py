from datetime import datetime
from typing import List

from pydantic import BaseModel, ConfigDict, Field

from libs.schemas import ClaimedCoupon, DiscountType, MerchantLocation


class UsageStatus(BaseModel):
    usedThisMonth: int = Field(0, description="redemptions in the current month")
    monthlyLimit: int | None = Field(None, description="null = unlimited")
    remaining: int | None = Field(None, description="null = unlimited")
    canUseNow: bool = Field(True)
    resetsOn: datetime = Field(..., description="first day of next month (UTC)")


class MerchantSummary(BaseModel):
    merchantId: int
    businessName: str
    slug: str | None = None
    description: str | None = None
    logo: str | None = None
    location: MerchantLocation | None = None


class DiscountSummary(BaseModel):
    discountId: int
    name: str
    type: DiscountType
    percentage: float
    monthlyUsageLimit: int | None = None


class WalletItem(BaseModel):
    coupon: ClaimedCoupon
    merchant: MerchantSummary | None = None
    discount: DiscountSummary | None = None
    usageStatus: UsageStatus


class WalletResponse(BaseModel):
    coupons: List[WalletItem] = Field(default_factory=list)
    total: int = Field(0)


class ExploreMerchantItem(MerchantSummary):
    discount: DiscountSummary | None = Field(None, description="best discount for the caller")
    isNegotiated: bool = Field(False, description="discount negotiated for the caller's company")
    hasClaimed: bool = Field(False, description="caller holds an ACTIVE coupon here")
    distance: float | None = Field(None, description="miles from the given coordinates")

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "merchantId": 12,
                "businessName": "Taqueria Sol",
                "slug": "taqueria-sol",
                "discount": {"discountId": 34, "name": "Acme lunch", "type": "COMPANY", "percentage": 15},
                "isNegotiated": True,
                "hasClaimed": False,
                "distance": 0.42,
            }
        }
    )


class ClaimedMerchantsResponse(BaseModel):
    merchantIds: List[int] = Field(default_factory=list)
