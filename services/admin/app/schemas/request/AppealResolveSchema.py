from pydantic import BaseModel, Field


class AppealResolveSchema(BaseModel):
    approve: bool = Field(..., description="true reverses the original action")
