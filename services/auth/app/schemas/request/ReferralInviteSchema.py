from pydantic import BaseModel, Field


class ReferralInviteSchema(BaseModel):
    email: str | None = Field(default=None, description="email of the colleague to invite")
