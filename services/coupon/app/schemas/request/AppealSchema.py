from pydantic import BaseModel, Field


class AppealSchema(BaseModel):
    message: str | None = Field(default=None, max_length=2000, description="why the action should be reversed")
