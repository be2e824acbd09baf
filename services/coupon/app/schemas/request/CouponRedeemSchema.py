from pydantic import BaseModel, Field


class CouponRedeemSchema(BaseModel):
    notes: str | None = Field(default=None, max_length=500, description="merchant notes", examples=["Table 4"])
    orderAmount: float | None = Field(default=None, ge=0, description="order total in USD", examples=[42.5])
