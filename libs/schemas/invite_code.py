from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field

from libs.common.timezone import ensure_utc, now_utc


class InviteStatus(str, Enum):
    ACTIVE = "ACTIVE"
    USED = "USED"
    EXPIRED = "EXPIRED"
    REVOKED = "REVOKED"


class InviteCode(BaseModel):
    """
    Single-use code that lets an employee join a company.
    """

    inviteId: int = Field(..., description="invite primary key")
    code: str = Field(..., description="XXXX-XXXX")
    companyId: int = Field(..., description="company id")
    createdBy: int = Field(..., description="creating user id")
    usedBy: int | None = Field(None, description="user who redeemed it")
    email: str | None = Field(None, description="bound email address")
    status: InviteStatus = Field(InviteStatus.ACTIVE)
    expiresAt: datetime = Field(..., description="expiry")
    usedAt: datetime | None = Field(None)
    createdAt: datetime | None = Field(None)

    def is_expired(self, now: datetime | None = None) -> bool:
        return ensure_utc(self.expiresAt) <= (now or now_utc())

    def effective_status(self, now: datetime | None = None) -> InviteStatus:
        """ACTIVE invites past their expiry read as EXPIRED."""
        if self.status == InviteStatus.ACTIVE and self.is_expired(now):
            return InviteStatus.EXPIRED
        return self.status

    class Config:
        from_attributes = True
