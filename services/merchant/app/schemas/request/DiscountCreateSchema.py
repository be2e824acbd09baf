from pydantic import BaseModel, Field


class DiscountCreateSchema(BaseModel):
    type: str | None = Field(default=None, description="BASE | COMPANY | SPEND_THRESHOLD", examples=["BASE"])
    name: str | None = Field(default=None, description="display name", examples=["Everyday discount"])
    percentage: float | None = Field(default=None, description="percent off (0-100)", examples=[10])
    companyId: int | None = Field(default=None, description="negotiated company id (COMPANY)")
    companyName: str | None = Field(default=None, description="negotiated company name (COMPANY)")
    minSpend: float | None = Field(default=None, description="minimum order (SPEND_THRESHOLD)")
    monthlyUsageLimit: int | None = Field(default=None, description="uses per month, empty = unlimited")
