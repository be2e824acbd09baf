from pydantic import BaseModel, Field

from libs.schemas import Merchant


class VerificationFlags(BaseModel):
    hasWebsite: bool = Field(False)
    hasMultipleLocations: bool = Field(False)
    recentSignup: bool = Field(False, description="signed up within 7 days")
    suspiciousEmail: bool = Field(False, description="contact email looks disposable")


class MerchantReviewItem(BaseModel):
    merchant: Merchant
    verification: VerificationFlags
