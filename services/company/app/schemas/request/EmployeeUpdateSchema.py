from pydantic import BaseModel, Field


class EmployeeUpdateSchema(BaseModel):
    status: str | None = Field(default=None, description="PENDING | ACTIVE | INACTIVE | SUSPENDED | BANNED")
    department: str | None = Field(default=None, description="department")
    jobTitle: str | None = Field(default=None, description="job title")
