from pydantic import BaseModel, Field


class ExpireSuspensionsResponse(BaseModel):
    reactivated: int = Field(0, description="employees whose suspension ended")
