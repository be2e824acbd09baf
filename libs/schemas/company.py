from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field


class CompanyStatus(str, Enum):
    PENDING = "PENDING"
    ACTIVE = "ACTIVE"
    SUSPENDED = "SUSPENDED"


class AdminRole(str, Enum):
    OWNER = "OWNER"
    HR = "HR"
    CONTACT = "CONTACT"


class AdminStatus(str, Enum):
    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"
    PENDING = "PENDING"


class CompanySettings(BaseModel):
    allowPublicDeals: bool = Field(True, description="employees see public deals")
    autoApproveEmployees: bool = Field(False, description="domain sign-ups join without invite")
    emailDomain: str | None = Field(None, description="corporate email domain")


class Company(BaseModel):
    """
    Employer whose staff receive discounts.
    """

    companyId: int = Field(..., description="company primary key")
    name: str = Field(..., description="company name")
    slug: str = Field(..., description="unique url slug")
    address: str | None = Field(None, description="street address")
    city: str | None = Field(None, description="city")
    state: str | None = Field(None, description="state")
    zipCode: str | None = Field(None, description="zip code")
    country: str = Field("US", description="country")
    adminUserId: int | None = Field(None, description="founding admin user id")
    status: CompanyStatus = Field(CompanyStatus.PENDING, description="company status")
    settings: CompanySettings = Field(default_factory=CompanySettings)
    createdAt: datetime | None = Field(None, description="created at")

    class Config:
        from_attributes = True


class AdminPermissions(BaseModel):
    manageEmployees: bool = False
    manageInvites: bool = False
    manageAdmins: bool = False
    viewReports: bool = True


def default_permissions(role: AdminRole) -> AdminPermissions:
    if role == AdminRole.OWNER:
        return AdminPermissions(manageEmployees=True, manageInvites=True, manageAdmins=True, viewReports=True)
    if role == AdminRole.HR:
        return AdminPermissions(manageEmployees=True, manageInvites=True, manageAdmins=False, viewReports=True)
    return AdminPermissions(manageEmployees=False, manageInvites=False, manageAdmins=False, viewReports=True)


class CompanyAdmin(BaseModel):
    """
    Administrative role of a user within one company.
    """

    adminId: int = Field(..., description="admin record primary key")
    userId: int = Field(..., description="user id")
    companyId: int = Field(..., description="company id")
    role: AdminRole = Field(..., description="admin role")
    title: str | None = Field(None, description="custom title")
    status: AdminStatus = Field(AdminStatus.ACTIVE, description="admin status")
    invitedBy: int | None = Field(None, description="inviting user id")
    invitedAt: datetime | None = Field(None, description="invited at")
    acceptedAt: datetime | None = Field(None, description="accepted at")
    permissions: AdminPermissions = Field(default_factory=AdminPermissions)
    email: str | None = Field(None, description="admin email (joined from users)")
    createdAt: datetime | None = Field(None, description="created at")

    class Config:
        from_attributes = True
