from typing import Any, Dict

from pydantic import BaseModel, Field


class OnboardingStepSchema(BaseModel):
    """
    One step of the merchant onboarding wizard.

    step 1: businessName, description
    step 2: address, city, state, zipCode, phone
    step 3: avgOrderValue, priceTier, seatingCapacity, cateringAvailable, offersDelivery
    """

    step: int = Field(..., description="wizard step (1-3)", examples=[1])
    data: Dict[str, Any] = Field(default_factory=dict, description="fields of the step")
