from pydantic import BaseModel, Field


class PassVerifySchema(BaseModel):
    passId: str | None = Field(default=None, description="scanned pass id", examples=["PASS-7-a1b2c3"])
    signature: str | None = Field(default=None, description="scanned pass signature")
