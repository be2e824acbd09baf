from typing import Dict

from pydantic import BaseModel, Field, ConfigDict

from libs.schemas import AdminPermissions, Company


class AdminRoleInfo(BaseModel):
    role: str = Field(..., description="admin role", examples=["OWNER"])
    title: str | None = Field(None, description="custom title")
    permissions: AdminPermissions = Field(..., description="permission flags")


class CompanyStats(BaseModel):
    employees: Dict[str, int] = Field(default_factory=dict, description="employee count by status")
    totalEmployees: int = Field(0, description="all employee records")
    activeInvites: int = Field(0, description="ACTIVE, unexpired invite codes")


class CompanyMeResponse(BaseModel):
    """
    Company dashboard of the signed-in admin.
    """

    company: Company = Field(..., description="company with settings")
    admin: AdminRoleInfo = Field(..., description="caller's admin role")
    stats: CompanyStats = Field(..., description="roster and invite counts")

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "company": {
                    "companyId": 1,
                    "name": "Acme Corp",
                    "slug": "acme-corp",
                    "city": "Austin",
                    "state": "TX",
                    "country": "US",
                    "status": "ACTIVE",
                    "settings": {"allowPublicDeals": True, "autoApproveEmployees": False, "emailDomain": "acme.com"},
                },
                "admin": {
                    "role": "OWNER",
                    "title": None,
                    "permissions": {
                        "manageEmployees": True,
                        "manageInvites": True,
                        "manageAdmins": True,
                        "viewReports": True,
                    },
                },
                "stats": {"employees": {"ACTIVE": 12, "PENDING": 1}, "totalEmployees": 13, "activeInvites": 4},
            }
        }
    )
