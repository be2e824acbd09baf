from datetime import datetime

from pydantic import BaseModel, Field


class EmployeeListItem(BaseModel):
    """Row of the company roster."""

    employeeId: int = Field(..., description="employee primary key")
    userId: int = Field(..., description="user id")
    firstName: str = Field(..., description="first name")
    lastName: str = Field(..., description="last name")
    email: str | None = Field(None, description="login email")
    department: str | None = Field(None, description="department")
    jobTitle: str | None = Field(None, description="job title")
    status: str = Field(..., description="membership status", examples=["ACTIVE"])
    warningCount: int = Field(0, description="warnings received")
    joinedAt: datetime | None = Field(None, description="activated at")
    createdAt: datetime | None = Field(None, description="created at")

    class Config:
        from_attributes = True
