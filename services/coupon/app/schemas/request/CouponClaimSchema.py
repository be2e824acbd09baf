from pydantic import BaseModel, Field


class CouponClaimSchema(BaseModel):
    merchantId: int | None = Field(default=None, description="merchant id", examples=[12])
    discountId: int | None = Field(default=None, description="discount id", examples=[34])
