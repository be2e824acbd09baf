from pydantic import BaseModel, Field, ConfigDict


class RegisterResponse(BaseModel):
    """
    Registration result.
    Returned with HTTP 201 Created; the user still has to verify the email.
    """

    message: str = Field(..., description="result message", examples=["Registration successful. Please check your email to verify your account."])
    userId: int = Field(..., description="user primary key", examples=[42])
    email: str = Field(..., description="registered email", examples=["jane@acme.com"])
    role: str = Field(..., description="account role", examples=["EMPLOYEE"])
    companyJoined: bool = Field(False, description="whether an employee record was created")

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "message": "Registration successful. Please check your email to verify your account.",
                "userId": 42,
                "email": "jane@acme.com",
                "role": "EMPLOYEE",
                "companyJoined": True,
            }
        }
    )
