from datetime import datetime

from pydantic import BaseModel, Field


class CheckoutResponse(BaseModel):
    url: str | None = Field(None, description="hosted checkout page")
    sessionId: str = Field(..., description="checkout session id")


class PortalResponse(BaseModel):
    url: str = Field(..., description="billing portal page")


class SubscriptionResponse(BaseModel):
    subscriptionStatus: str = Field(..., description="NONE | TRIALING | ACTIVE | PAST_DUE | CANCELED | UNPAID")
    stripeCustomerId: str | None = Field(None)
    stripeSubscriptionId: str | None = Field(None)
    currentPeriodEnd: datetime | None = Field(None)
    trialEnd: datetime | None = Field(None)
    cancelAtPeriodEnd: bool = Field(False)
    monthlyPrice: float = Field(9.99, description="USD per month")
    trialDays: int = Field(180, description="free trial length")
    hasActiveSubscription: bool = Field(False, description="TRIALING or ACTIVE")


class WebhookResponse(BaseModel):
    received: bool = Field(True)
