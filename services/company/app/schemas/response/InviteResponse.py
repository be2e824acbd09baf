from typing import List

from pydantic import BaseModel, Field

from libs.schemas import InviteCode


class InviteCreateResponse(BaseModel):
    message: str = Field(..., description="result message", examples=["Created 3 invites"])
    invites: List[InviteCode] = Field(default_factory=list, description="created invites")
    skipped: List[str] = Field(default_factory=list, description="emails that already had an active invite")
