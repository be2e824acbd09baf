from typing import Dict

from pydantic import BaseModel, Field


class AdminUpdateSchema(BaseModel):
    role: str | None = Field(default=None, description="OWNER | HR | CONTACT")
    title: str | None = Field(default=None, description="custom title")
    status: str | None = Field(default=None, description="ACTIVE | INACTIVE | PENDING")
    permissions: Dict[str, bool] | None = Field(default=None, description="permission flags to merge")
