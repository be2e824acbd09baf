from pydantic import BaseModel, Field


class MerchantReferralCreateSchema(BaseModel):
    referredBusinessName: str = Field(..., min_length=2, max_length=100, examples=["Pho Palace"])
    referredEmail: str = Field(..., description="restaurant contact email", examples=["owner@phopalace.com"])
    referredContactName: str | None = Field(default=None, max_length=100)
    referredPhone: str | None = Field(default=None, max_length=20)
    referredCity: str | None = Field(default=None, max_length=100)
    referredState: str | None = Field(default=None, min_length=2, max_length=2)
    whyGoodFit: str | None = Field(default=None, max_length=500)
