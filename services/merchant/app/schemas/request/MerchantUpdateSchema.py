from pydantic import BaseModel, Field


class MerchantUpdateSchema(BaseModel):
    description: str | None = Field(default=None, max_length=1000, description="business description")
    logo: str | None = Field(default=None, description="logo url")
    contactEmail: str | None = Field(default=None, description="contact email")
    contactPhone: str | None = Field(default=None, description="contact phone")
    website: str | None = Field(default=None, description="website url")
