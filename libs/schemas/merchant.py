from datetime import datetime
from enum import Enum
from typing import List

from pydantic import BaseModel, Field


class MerchantStatus(str, Enum):
    PENDING = "PENDING"
    ACTIVE = "ACTIVE"
    SUSPENDED = "SUSPENDED"


class SubscriptionStatus(str, Enum):
    NONE = "NONE"
    TRIALING = "TRIALING"
    ACTIVE = "ACTIVE"
    PAST_DUE = "PAST_DUE"
    CANCELED = "CANCELED"
    UNPAID = "UNPAID"


class PriceTier(str, Enum):
    BUDGET = "$"
    MODERATE = "$$"
    UPSCALE = "$$$"
    FINE = "$$$$"


class SeatingCapacity(str, Enum):
    SMALL = "SMALL"
    MEDIUM = "MEDIUM"
    LARGE = "LARGE"


class MerchantLocation(BaseModel):
    locationId: int | None = Field(None, description="location primary key")
    address: str = Field(..., description="street address")
    city: str = Field(..., description="city")
    state: str = Field(..., description="two-letter state")
    zipCode: str = Field(..., description="zip code")
    country: str = Field("US", description="country")
    phone: str | None = Field(None, description="location phone")
    latitude: float | None = Field(None, description="latitude")
    longitude: float | None = Field(None, description="longitude")


class BusinessMetrics(BaseModel):
    avgOrderValue: float | None = Field(None, gt=0, description="average order value in USD")
    priceTier: PriceTier | None = Field(None, description="price tier")
    seatingCapacity: SeatingCapacity | None = Field(None, description="seating capacity")
    cateringAvailable: bool = Field(False, description="offers catering")
    offersDelivery: bool = Field(False, description="offers delivery")


class Merchant(BaseModel):
    """
    Restaurant account offering discounts.
    """

    merchantId: int = Field(..., description="merchant primary key")
    userId: int = Field(..., description="owning user id")
    businessName: str = Field(..., description="business name")
    slug: str | None = Field(None, description="url slug")
    description: str | None = Field(None, description="description")
    logo: str | None = Field(None, description="logo url")
    contactEmail: str | None = Field(None, description="contact email")
    contactPhone: str | None = Field(None, description="contact phone")
    website: str | None = Field(None, description="website")
    status: MerchantStatus = Field(MerchantStatus.PENDING, description="approval status")
    verifiedAt: datetime | None = Field(None, description="approved at")
    locations: List[MerchantLocation] = Field(default_factory=list)
    businessMetrics: BusinessMetrics = Field(default_factory=BusinessMetrics)
    stripeCustomerId: str | None = Field(None, description="Stripe customer id")
    stripeSubscriptionId: str | None = Field(None, description="Stripe subscription id")
    subscriptionStatus: SubscriptionStatus = Field(SubscriptionStatus.NONE)
    subscriptionCurrentPeriodEnd: datetime | None = Field(None)
    subscriptionTrialEnd: datetime | None = Field(None)
    subscriptionCancelAtPeriodEnd: bool = Field(False)
    onboardingCompleted: bool = Field(False, description="onboarding wizard finished")
    securityTermsAcceptedAt: datetime | None = Field(None)
    securityTermsVersion: str | None = Field(None)
    createdAt: datetime | None = Field(None, description="created at")

    def operation_check(self) -> tuple[bool, str | None]:
        """Whether the merchant may accept coupons."""
        if self.status == MerchantStatus.ACTIVE:
            return True, None
        if self.status == MerchantStatus.PENDING:
            return False, "Merchant account pending approval"
        return False, "Merchant account suspended"

    class Config:
        from_attributes = True
