from typing import List

from pydantic import BaseModel, Field


class InviteCreateSchema(BaseModel):
    """
    Create invite codes.

    Send `emails` for bound invites that are mailed to each address, or
    `count` for that many unbound codes.
    """

    count: int | None = Field(default=None, description="number of unbound codes (1-100)")
    emails: List[str] | None = Field(default=None, description="addresses to invite")
    expiresInDays: int | None = Field(default=None, description="validity in days (1-365, default 30)")
