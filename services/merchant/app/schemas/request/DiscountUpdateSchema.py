from pydantic import BaseModel, Field


class DiscountUpdateSchema(BaseModel):
    name: str | None = Field(default=None, description="display name")
    percentage: float | None = Field(default=None, description="percent off (0-100)")
    isActive: bool | None = Field(default=None, description="offered")
    companyName: str | None = Field(default=None, description="negotiated company name")
    minSpend: float | None = Field(default=None, description="minimum order")
    monthlyUsageLimit: int | None = Field(default=None, description="uses per month, null clears the limit")
