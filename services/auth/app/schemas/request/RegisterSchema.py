from pydantic import BaseModel, Field


class RegisterSchema(BaseModel):
    """
    Registration request body.

    Every field is optional at the schema level; the join service reports
    missing required fields with its own message.
    """

    firstName: str | None = Field(default=None, description="first name")
    lastName: str | None = Field(default=None, description="last name")
    email: str | None = Field(default=None, description="login email")
    password: str | None = Field(default=None, description="password (at least 6 characters)")
    role: str | None = Field(default=None, description="EMPLOYEE | MERCHANT | COMPANY_ADMIN")
    inviteCode: str | None = Field(default=None, description="company invite code (employees)")
    referralCode: str | None = Field(default=None, description="referral code of the inviting user")
    companyName: str | None = Field(default=None, description="company name (company admins)")
    city: str | None = Field(default=None, description="company city (company admins)")
    state: str | None = Field(default=None, description="company state (company admins)")
    address: str | None = Field(default=None, description="company street address")
    zipCode: str | None = Field(default=None, description="company zip code")
    businessName: str | None = Field(default=None, description="business name (merchants)")
