from pydantic import BaseModel, Field


class LoginSchema(BaseModel):
    email: str | None = Field(default=None, description="login email")
    password: str | None = Field(default=None, description="password")
