from pydantic import BaseModel, Field


class ResetPasswordSchema(BaseModel):
    token: str | None = Field(default=None, description="reset token from the email link")
    password: str | None = Field(default=None, description="new password (at least 6 characters)")
