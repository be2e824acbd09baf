from pydantic import BaseModel, Field, ConfigDict


class VerifyInviteResponse(BaseModel):
    valid: bool = Field(..., description="invite can be used")
    companyName: str | None = Field(None, description="inviting company", examples=["Acme Corp"])
    email: str | None = Field(None, description="email the invite is bound to")

    model_config = ConfigDict(
        json_schema_extra={"example": {"valid": True, "companyName": "Acme Corp", "email": None}}
    )


class SuggestCompanyResponse(BaseModel):
    """Company matched from the registering email's domain."""

    found: bool = Field(..., description="a company uses this email domain")
    companyId: int | None = Field(None, description="company primary key")
    companyName: str | None = Field(None, description="company name", examples=["Acme Corp"])
    autoApprove: bool | None = Field(None, description="domain sign-ups join without an invite")
