from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field


class DiscountType(str, Enum):
    BASE = "BASE"
    COMPANY = "COMPANY"
    SPEND_THRESHOLD = "SPEND_THRESHOLD"


PRIORITY_BY_TYPE = {
    DiscountType.SPEND_THRESHOLD: 10,
    DiscountType.COMPANY: 5,
    DiscountType.BASE: 0,
}


class Discount(BaseModel):
    """
    Percentage-off rule offered by a merchant.
    """

    discountId: int = Field(..., description="discount primary key")
    merchantId: int = Field(..., description="merchant id")
    type: DiscountType = Field(..., description="discount tier")
    name: str = Field(..., description="display name")
    percentage: float = Field(..., ge=0, le=100, description="percent off")
    companyId: int | None = Field(None, description="negotiated company (COMPANY)")
    companyName: str | None = Field(None, description="negotiated company name (COMPANY)")
    minSpend: float | None = Field(None, description="minimum order (SPEND_THRESHOLD)")
    monthlyUsageLimit: int | None = Field(None, ge=1, le=100, description="uses per month (None = unlimited)")
    isActive: bool = Field(True, description="offered")
    priority: int = Field(0, description="tie-break priority")
    createdAt: datetime | None = Field(None, description="created at")

    class Config:
        from_attributes = True
