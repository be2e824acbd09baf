from pydantic import BaseModel, Field


class SettingsUpdateSchema(BaseModel):
    """
    Company settings update. Only the fields sent are changed.
    """

    allowPublicDeals: bool | None = Field(default=None, description="employees see public deals")
    autoApproveEmployees: bool | None = Field(default=None, description="domain sign-ups join without invite")
    emailDomain: str | None = Field(default=None, description="corporate email domain, e.g. acme.com")
