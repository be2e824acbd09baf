from typing import List, Tuple

from fastapi import APIRouter, Depends, Query

from libs.common import AuditLogger, ServiceError, get_request_audit, to_http_exception
from libs.schemas import Merchant, ModerationAction

from services.admin.app.core.MerchantReviewService import MerchantReviewService
from services.admin.app.core.ModerationService import ModerationService
from services.admin.app.dependencies import get_merchant_review_service, get_moderation_service, platform_admin_only
from services.admin.app.schemas.request import MerchantRejectSchema, ModerationRequestSchema
from services.admin.app.schemas.response import MerchantReviewItem

router = APIRouter(prefix="/admin/merchants", tags=["Admin Merchants"])


@router.get("", response_model=List[MerchantReviewItem])
async def list_merchants(
    current_user: Tuple[str, int] = Depends(platform_admin_only),
    status: str = Query(default="pending", description="pending | active | suspended | all"),
    review_service: MerchantReviewService = Depends(get_merchant_review_service),
):
    """
    Merchants newest first, with verification hints for the reviewer.

    **Query Parameters:**
    - `status`: pending (default), active, suspended or all
    """
    try:
        return await review_service.list_merchants(status)
    except ServiceError as exc:
        raise to_http_exception(exc) from exc


@router.post("/{merchant_id}/approve", response_model=Merchant)
async def approve_merchant(
    merchant_id: int,
    current_user: Tuple[str, int] = Depends(platform_admin_only),
    review_service: MerchantReviewService = Depends(get_merchant_review_service),
    audit: AuditLogger = Depends(get_request_audit),
):
    """Activate a merchant and send the approval email."""
    subject_type, user_id = current_user
    try:
        return await review_service.approve(merchant_id, audit=audit.with_user(user_id, role=subject_type))
    except ServiceError as exc:
        raise to_http_exception(exc) from exc


@router.post("/{merchant_id}/reject", response_model=Merchant)
async def reject_merchant(
    merchant_id: int,
    payload: MerchantRejectSchema,
    current_user: Tuple[str, int] = Depends(platform_admin_only),
    review_service: MerchantReviewService = Depends(get_merchant_review_service),
    audit: AuditLogger = Depends(get_request_audit),
):
    subject_type, user_id = current_user
    try:
        return await review_service.reject(
            merchant_id, payload.reason, audit=audit.with_user(user_id, role=subject_type)
        )
    except ServiceError as exc:
        raise to_http_exception(exc) from exc


@router.post("/{merchant_id}/suspend", response_model=ModerationAction)
async def suspend_merchant(
    merchant_id: int,
    payload: ModerationRequestSchema,
    current_user: Tuple[str, int] = Depends(platform_admin_only),
    moderation_service: ModerationService = Depends(get_moderation_service),
    audit: AuditLogger = Depends(get_request_audit),
):
    """Suspend a merchant and switch off all of its discounts."""
    subject_type, user_id = current_user
    try:
        return await moderation_service.suspend_merchant(
            user_id,
            merchant_id,
            payload.reason,
            payload.details,
            audit=audit.with_user(user_id, role=subject_type),
        )
    except ServiceError as exc:
        raise to_http_exception(exc) from exc


@router.post("/{merchant_id}/reactivate", response_model=ModerationAction)
async def reactivate_merchant(
    merchant_id: int,
    payload: ModerationRequestSchema,
    current_user: Tuple[str, int] = Depends(platform_admin_only),
    moderation_service: ModerationService = Depends(get_moderation_service),
    audit: AuditLogger = Depends(get_request_audit),
):
    subject_type, user_id = current_user
    try:
        return await moderation_service.reactivate_merchant(
            user_id, merchant_id, payload.details, audit=audit.with_user(user_id, role=subject_type)
        )
    except ServiceError as exc:
        raise to_http_exception(exc) from exc
