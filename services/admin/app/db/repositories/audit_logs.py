from typing import Any, Callable, Dict, List

from sqlalchemy import text
from sqlalchemy.orm import Session

from libs.common.audit import AuditQuery
from libs.common.sql import SQLRepositoryBase, dump_json, load_json, utc
from libs.schemas import AuditLog

from services.admin.app.db.session import SessionLocal


def _to_audit_log(row) -> AuditLog:
    return AuditLog(
        logId=row["log_id"],
        action=row["action"],
        severity=row["severity"],
        resource=row["resource"],
        resourceId=row["resource_id"],
        description=row["description"],
        metadata=load_json(row["metadata"], {}),
        changes=load_json(row["changes"]),
        userId=row["user_id"],
        userEmail=row["user_email"],
        userRole=row["user_role"],
        ipAddress=row["ip_address"],
        userAgent=row["user_agent"],
        requestId=row["request_id"],
        success=bool(row["success"]),
        errorMessage=row["error_message"],
        createdAt=utc(row["created_at"]),
    )


class SQLAuditLogStore(SQLRepositoryBase):
    """
    audit_logs table behind the shared AuditLogger.

    Every service installs one at startup with audit_logger.use_store().
    """

    def __init__(self, session_factory: Callable[[], Session] = SessionLocal):
        super().__init__(session_factory)

    async def insert_many(self, entries: List[AuditLog]) -> None:
        if not entries:
            return
        rows = [
            {
                "action": entry.action.value,
                "severity": entry.severity.value,
                "resource": entry.resource,
                "resource_id": entry.resourceId,
                "description": entry.description,
                "metadata": dump_json(entry.metadata),
                "changes": dump_json(entry.changes),
                "user_id": entry.userId,
                "user_email": entry.userEmail,
                "user_role": entry.userRole,
                "ip_address": entry.ipAddress,
                "user_agent": entry.userAgent,
                "request_id": entry.requestId,
                "success": entry.success,
                "error_message": entry.errorMessage,
                "created_at": entry.createdAt,
            }
            for entry in entries
        ]

        def _insert():
            with self._session_factory() as session:
                session.execute(
                    text(
                        """
                        INSERT INTO audit_logs (
                            action, severity, resource, resource_id, description, metadata, changes,
                            user_id, user_email, user_role, ip_address, user_agent, request_id,
                            success, error_message, created_at
                        ) VALUES (
                            :action, :severity, :resource, :resource_id, :description, :metadata, :changes,
                            :user_id, :user_email, :user_role, :ip_address, :user_agent, :request_id,
                            :success, :error_message, :created_at
                        )
                        """
                    ),
                    rows,
                )
                session.commit()

        await self._run_in_thread(_insert)

    async def query(self, filters: AuditQuery) -> List[AuditLog]:
        conditions = []
        params: Dict[str, Any] = {"limit": filters.limit, "offset": filters.offset}
        if filters.userId is not None:
            conditions.append("user_id = :user_id")
            params["user_id"] = filters.userId
        if filters.action is not None:
            conditions.append("action = :action")
            params["action"] = filters.action.value
        if filters.resource is not None:
            conditions.append("resource = :resource")
            params["resource"] = filters.resource
        if filters.resourceId is not None:
            conditions.append("resource_id = :resource_id")
            params["resource_id"] = filters.resourceId
        if filters.severity is not None:
            conditions.append("severity = :severity")
            params["severity"] = filters.severity.value
        where = " AND ".join(conditions) or "1 = 1"

        def _query():
            with self._session_factory() as session:
                rows = (
                    session.execute(
                        text(
                            f"""
                            SELECT log_id, action, severity, resource, resource_id, description,
                                   metadata, changes, user_id, user_email, user_role, ip_address,
                                   user_agent, request_id, success, error_message, created_at
                            FROM audit_logs
                            WHERE {where}
                            ORDER BY created_at DESC, log_id DESC
                            LIMIT :limit OFFSET :offset
                            """
                        ),
                        params,
                    )
                    .mappings()
                    .all()
                )
                return [_to_audit_log(row) for row in rows]

        return await self._run_in_thread(_query)
