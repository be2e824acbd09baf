from typing import List, Tuple

from fastapi import APIRouter, Depends, Query, status

from libs.common import AuditLogger, ServiceError, get_request_audit, to_http_exception
from libs.schemas import Discount

from services.merchant.app.core.DiscountService import DiscountService
from services.merchant.app.dependencies import get_discount_service, merchant_only
from services.merchant.app.schemas.request import DiscountCreateSchema, DiscountUpdateSchema
from services.merchant.app.schemas.response import ApplicableDiscountResponse, MessageResponse

router = APIRouter(prefix="/merchant/discounts", tags=["Merchant Discounts"])


@router.get("", response_model=List[Discount])
async def list_discounts(
    current_user: Tuple[str, int] = Depends(merchant_only),
    discount_service: DiscountService = Depends(get_discount_service),
):
    """
    Every discount of the merchant, sorted by type, then priority and newest first.

    **Headers:**
    - `Authorization`: Bearer {accessToken}
    """
    _, user_id = current_user
    try:
        return await discount_service.list_discounts(user_id)
    except ServiceError as exc:
        raise to_http_exception(exc) from exc


@router.post(
    "",
    response_model=Discount,
    status_code=status.HTTP_201_CREATED,
    responses={
        400: {
            "description": "Invalid input or duplicate discount",
            "content": {
                "application/json": {
                    "example": {
                        "detail": {
                            "code": "ERR-DUP-VALUE",
                            "message": "Base discount already exists. Edit the existing one instead.",
                        }
                    }
                }
            },
        }
    },
)
async def create_discount(
    payload: DiscountCreateSchema,
    current_user: Tuple[str, int] = Depends(merchant_only),
    discount_service: DiscountService = Depends(get_discount_service),
    audit: AuditLogger = Depends(get_request_audit),
):
    """
    Create a BASE, COMPANY or SPEND_THRESHOLD discount.

    - COMPANY requires `companyName` (and optionally `companyId`)
    - SPEND_THRESHOLD requires `minSpend` > 0
    - `monthlyUsageLimit`: 1-100, empty for unlimited
    """
    subject_type, user_id = current_user
    try:
        return await discount_service.create_discount(
            user_id,
            payload.model_dump(),
            audit=audit.with_user(user_id, role=subject_type),
        )
    except ServiceError as exc:
        raise to_http_exception(exc) from exc


@router.get("/applicable", response_model=ApplicableDiscountResponse)
async def applicable_discount(
    current_user: Tuple[str, int] = Depends(merchant_only),
    companyId: int | None = Query(default=None, description="employee's company id"),
    companyName: str | None = Query(default=None, description="employee's company name"),
    orderAmount: float | None = Query(default=None, description="order total in USD"),
    discount_service: DiscountService = Depends(get_discount_service),
):
    """
    Discount an order qualifies for.

    **Query Parameters:**
    - `companyId`: resolve by company id (COMPANY discounts of that company)
    - `companyName`: without an id, match COMPANY discounts by name
    - `orderAmount`: enables spend thresholds and the savings figures
    """
    _, user_id = current_user
    try:
        return await discount_service.applicable(user_id, companyId, companyName, orderAmount)
    except ServiceError as exc:
        raise to_http_exception(exc) from exc


@router.put("/{discount_id}", response_model=Discount)
async def update_discount(
    discount_id: int,
    payload: DiscountUpdateSchema,
    current_user: Tuple[str, int] = Depends(merchant_only),
    discount_service: DiscountService = Depends(get_discount_service),
    audit: AuditLogger = Depends(get_request_audit),
):
    subject_type, user_id = current_user
    try:
        return await discount_service.update_discount(
            user_id,
            discount_id,
            payload.model_dump(exclude_unset=True),
            audit=audit.with_user(user_id, role=subject_type),
        )
    except ServiceError as exc:
        raise to_http_exception(exc) from exc


@router.post("/{discount_id}/toggle", response_model=Discount)
async def toggle_discount(
    discount_id: int,
    current_user: Tuple[str, int] = Depends(merchant_only),
    discount_service: DiscountService = Depends(get_discount_service),
    audit: AuditLogger = Depends(get_request_audit),
):
    """Switch a discount on or off."""
    subject_type, user_id = current_user
    try:
        return await discount_service.toggle_discount(user_id, discount_id, audit=audit.with_user(user_id, role=subject_type))
    except ServiceError as exc:
        raise to_http_exception(exc) from exc


@router.delete("/{discount_id}", response_model=MessageResponse)
async def delete_discount(
    discount_id: int,
    current_user: Tuple[str, int] = Depends(merchant_only),
    discount_service: DiscountService = Depends(get_discount_service),
    audit: AuditLogger = Depends(get_request_audit),
):
    subject_type, user_id = current_user
    try:
        await discount_service.delete_discount(user_id, discount_id, audit=audit.with_user(user_id, role=subject_type))
    except ServiceError as exc:
        raise to_http_exception(exc) from exc
    return MessageResponse(message="Discount deleted")
