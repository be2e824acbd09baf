from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field


class EmployeeStatus(str, Enum):
    PENDING = "PENDING"
    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"
    SUSPENDED = "SUSPENDED"
    BANNED = "BANNED"


class Employee(BaseModel):
    """
    Membership of a user in a company.
    """

    employeeId: int = Field(..., description="employee primary key")
    userId: int = Field(..., description="user id (one employee record per user)")
    companyId: int = Field(..., description="company id")
    firstName: str = Field(..., description="first name")
    lastName: str = Field(..., description="last name")
    department: str | None = Field(None, description="department")
    jobTitle: str | None = Field(None, description="job title")
    status: EmployeeStatus = Field(EmployeeStatus.PENDING, description="membership status")
    invitedBy: int | None = Field(None, description="inviting user id")
    invitedAt: datetime | None = Field(None, description="invited at")
    joinedAt: datetime | None = Field(None, description="activated at")
    suspendedAt: datetime | None = Field(None, description="suspended at")
    suspendedBy: int | None = Field(None, description="suspending user id")
    suspensionReason: str | None = Field(None, description="suspension reason")
    suspendedUntil: datetime | None = Field(None, description="suspension end (None = open-ended)")
    bannedAt: datetime | None = Field(None, description="banned at")
    bannedBy: int | None = Field(None, description="banning user id")
    banReason: str | None = Field(None, description="ban reason")
    warningCount: int = Field(0, ge=0, description="warnings received")
    createdAt: datetime | None = Field(None, description="created at")

    @property
    def full_name(self) -> str:
        return f"{self.firstName} {self.lastName}".strip()

    def access_check(self) -> tuple[bool, str | None]:
        """
        Whether the employee may claim and redeem coupons.

        Returns:
            (can_access, reason) - reason is None when access is granted
        """
        if self.status == EmployeeStatus.ACTIVE:
            return True, None
        if self.status == EmployeeStatus.PENDING:
            return False, "Account pending activation"
        if self.status == EmployeeStatus.SUSPENDED:
            reason = self.suspensionReason or "No reason given"
            if self.suspendedUntil:
                return False, f"Account suspended until {self.suspendedUntil.strftime('%Y-%m-%d')}. Reason: {reason}"
            return False, f"Account suspended. Reason: {reason}"
        if self.status == EmployeeStatus.BANNED:
            return False, "Account permanently banned"
        return False, "Account inactive"

    class Config:
        from_attributes = True
