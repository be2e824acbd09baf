from pydantic import BaseModel, Field


class OnboardingStatusResponse(BaseModel):
    needsOnboarding: bool = Field(..., description="wizard not finished yet")
    currentStep: int = Field(..., description="first unfinished step (1-3)")
    onboardingCompleted: bool = Field(..., description="completion flag")
