from typing import List

from pydantic import BaseModel, Field, ConfigDict


class MerchantSavings(BaseModel):
    merchantId: int = Field(..., description="merchant primary key")
    businessName: str = Field(..., description="business name")
    logo: str | None = Field(None, description="logo url")
    avgOrderValue: float = Field(..., description="average order value in USD")
    discountPercentage: float = Field(..., description="best discount for the company")
    perVisitSavings: float = Field(..., description="saving on one order")
    perEmployeeSavings: float = Field(..., description="monthly saving of one employee")
    potentialMonthlySavings: float = Field(..., description="monthly saving of every active employee")


class SavingsResponse(BaseModel):
    """
    Potential employee savings at every onboarded merchant.
    """

    employeeCount: int = Field(..., description="ACTIVE employees")
    merchants: List[MerchantSavings] = Field(default_factory=list, description="highest saving first")
    totalPotentialMonthlySavings: float = Field(..., description="sum over merchants")
    totalPotentialAnnualSavings: float = Field(..., description="monthly total x 12")

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "employeeCount": 10,
                "merchants": [
                    {
                        "merchantId": 7,
                        "businessName": "Taco Town",
                        "logo": None,
                        "avgOrderValue": 25.0,
                        "discountPercentage": 15.0,
                        "perVisitSavings": 3.75,
                        "perEmployeeSavings": 7.5,
                        "potentialMonthlySavings": 75.0,
                    }
                ],
                "totalPotentialMonthlySavings": 75.0,
                "totalPotentialAnnualSavings": 900.0,
            }
        }
    )
