from pydantic import BaseModel, Field


class EmailSchema(BaseModel):
    """Body of resend-verification and forgot-password."""

    email: str | None = Field(default=None, description="account email")
