from pydantic import BaseModel, Field


class ProfileUpdateSchema(BaseModel):
    """
    Profile update. Only the fields that are sent are changed.
    """

    firstName: str | None = Field(default=None, description="first name")
    lastName: str | None = Field(default=None, description="last name")
    personalEmail: str | None = Field(default=None, description="personal email")
    phoneNumber: str | None = Field(default=None, description="phone number")
