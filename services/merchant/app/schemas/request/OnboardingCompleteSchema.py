from pydantic import BaseModel, Field


class OnboardingCompleteSchema(BaseModel):
    acceptSecurityTerms: bool = Field(False, description="must be true")
