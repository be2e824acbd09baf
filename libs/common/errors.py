"""
Service error codes and their HTTP mapping.
"""
from fastapi import HTTPException, status

STATUS_BY_CODE: dict[str, int] = {
    "ERR-IVD-VALUE": status.HTTP_400_BAD_REQUEST,
    "ERR-IVD-PARAM": status.HTTP_400_BAD_REQUEST,
    "ERR-DUP-VALUE": status.HTTP_400_BAD_REQUEST,
    "ERR-ALREADY-USED": status.HTTP_400_BAD_REQUEST,
    "ERR-EXPIRED": status.HTTP_400_BAD_REQUEST,
    "ERR-LIMIT-REACHED": status.HTTP_400_BAD_REQUEST,
    "ERR-UNAUTHORIZED": status.HTTP_401_UNAUTHORIZED,
    "ERR-PAYMENT-REQUIRED": status.HTTP_402_PAYMENT_REQUIRED,
    "ERR-NOT-YOURS": status.HTTP_403_FORBIDDEN,
    "ERR-FORBIDDEN": status.HTTP_403_FORBIDDEN,
    "ERR-ACCESS-DENIED": status.HTTP_403_FORBIDDEN,
    "ERR-NOT-FOUND": status.HTTP_404_NOT_FOUND,
    "ERR-CONFLICT": status.HTTP_409_CONFLICT,
    "ERR-RATE-LIMITED": status.HTTP_429_TOO_MANY_REQUESTS,
    "ERR-UNAVAILABLE": status.HTTP_503_SERVICE_UNAVAILABLE,
    "ERR-INTERNAL": status.HTTP_500_INTERNAL_SERVER_ERROR,
}


class ServiceError(Exception):
    """Business rule violation carrying an error code."""

    def __init__(self, code: str, message: str = "", **extra):
        super().__init__(message or code)
        self.code = code
        self.message = message
        self.extra = extra

    @property
    def status_code(self) -> int:
        return STATUS_BY_CODE.get(self.code, status.HTTP_400_BAD_REQUEST)


def to_http_exception(exc: ServiceError) -> HTTPException:
    detail = {"code": exc.code}
    if exc.message:
        detail["message"] = exc.message
    detail.update(exc.extra)
    return HTTPException(status_code=exc.status_code, detail=detail)


def forbidden(message: str = "") -> HTTPException:
    detail = {"code": "ERR-FORBIDDEN"}
    if message:
        detail["message"] = message
    return HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=detail)
