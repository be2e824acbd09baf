from pydantic import BaseModel, Field


class AdminCreateSchema(BaseModel):
    """
    Add an existing user as company admin.
    """

    email: str | None = Field(default=None, description="email of a registered user")
    role: str | None = Field(default=None, description="OWNER | HR | CONTACT")
    title: str | None = Field(default=None, description="custom title")
