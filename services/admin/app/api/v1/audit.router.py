from typing import List, Tuple

from fastapi import APIRouter, Depends, Query

from libs.common import AuditLogger, AuditQuery, get_audit_logger
from libs.schemas import AuditAction, AuditLog, AuditSeverity

from services.admin.app.dependencies import platform_admin_only

router = APIRouter(prefix="/admin/audit-logs", tags=["Admin Audit"])


@router.get("", response_model=List[AuditLog])
async def audit_logs(
    current_user: Tuple[str, int] = Depends(platform_admin_only),
    userId: int | None = Query(default=None),
    action: AuditAction | None = Query(default=None),
    resource: str | None = Query(default=None, description="resource type, e.g. Merchant"),
    severity: AuditSeverity | None = Query(default=None),
    limit: int = Query(default=50, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    audit: AuditLogger = Depends(get_audit_logger),
):
    """
    Stored audit entries, newest first.

    Queued entries are flushed before the query so recent events show up.
    """
    await audit.flush()
    return await audit.query(
        AuditQuery(
            userId=userId,
            action=action,
            resource=resource,
            severity=severity,
            limit=limit,
            offset=offset,
        )
    )
