from pydantic import BaseModel, Field


class MerchantRejectSchema(BaseModel):
    reason: str | None = Field(default=None, max_length=1000, description="shown to the merchant", examples=["Could not verify the business address"])
