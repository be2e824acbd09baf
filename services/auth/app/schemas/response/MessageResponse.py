from pydantic import BaseModel, Field


class MessageResponse(BaseModel):
    message: str = Field(..., description="result message", examples=["Email verified successfully"])
