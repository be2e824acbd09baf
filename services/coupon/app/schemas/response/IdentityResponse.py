from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from libs.schemas import EmployeePass


class VerificationTokenResponse(BaseModel):
    token: str
    qrUrl: str = Field(..., description="URL the merchant scans")
    walletUrl: str = Field(..., description="page showing the token to the merchant")
    expiresAt: datetime


class VerifiedDiscount(BaseModel):
    percentage: float = Field(0, description="percent off at the calling merchant")
    name: str = Field("No discount configured")
    type: str = Field("NONE", description="BASE | COMPANY | SPEND_THRESHOLD | NONE")


class IdentityVerifiedResponse(BaseModel):
    verified: bool = Field(True)
    employeeName: str
    companyName: str | None = None
    email: str | None = None
    discount: VerifiedDiscount = Field(default_factory=VerifiedDiscount)


class PassQrPayload(BaseModel):
    passId: str
    employeeId: int
    companyId: int
    signature: str


class PassResponse(BaseModel):
    pass_: EmployeePass = Field(..., alias="pass")
    qrPayload: PassQrPayload

    model_config = ConfigDict(populate_by_name=True)


class PassVerifyResponse(BaseModel):
    valid: bool = Field(True)
    pass_: EmployeePass = Field(..., alias="pass")
    employeeName: str
    companyName: str | None = None

    model_config = ConfigDict(populate_by_name=True)
