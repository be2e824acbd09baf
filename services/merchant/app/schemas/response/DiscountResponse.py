from pydantic import BaseModel, ConfigDict, Field

from libs.schemas import Discount


class ApplicableDiscountResponse(BaseModel):
    """
    Discount a given order would get.
    """

    discount: Discount | None = Field(None, description="winning discount, null when none applies")
    percentage: float = Field(0, description="percent off")
    savings: float | None = Field(None, description="amount saved when orderAmount was given")
    finalAmount: float | None = Field(None, description="amount after the discount")

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "discount": None,
                "percentage": 15.0,
                "savings": 3.75,
                "finalAmount": 21.25,
            }
        }
    )
