from pydantic import BaseModel, Field, ConfigDict


class LoginResponse(BaseModel):
    """
    Login and refresh response.
    The refresh token travels in the X-REFRESH-TOKEN cookie.
    """

    accessToken: str = Field(..., description="access token", examples=["eyJhbGciOiJIUzI1NiIsInR5cCI6IkpXVCJ9..."])
    role: str = Field(..., description="account role", examples=["EMPLOYEE", "MERCHANT"])
    userName: str = Field(..., description="display name", examples=["Jane Doe"])

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "accessToken": "eyJhbGciOiJIUzI1NiIsInR5cCI6IkpXVCJ9...",
                "role": "EMPLOYEE",
                "userName": "Jane Doe",
            }
        }
    )
