"""
Security/audit event logging.

Entries are queued in memory and written through an AuditLogStorePort in
batches. The queue is flushed when it reaches BATCH_SIZE entries, when a
CRITICAL entry is logged, or on an explicit flush().
"""
import logging
import traceback
import uuid
from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Protocol

from fastapi import Request

from libs.common.timezone import now_utc
from libs.schemas.audit_log import AuditAction, AuditLog, AuditSeverity

logger = logging.getLogger(__name__)

BATCH_SIZE = 100


@dataclass
class AuditQuery:
    userId: int | None = None
    action: AuditAction | None = None
    resource: str | None = None
    resourceId: str | None = None
    severity: AuditSeverity | None = None
    limit: int = 50
    offset: int = 0


class AuditLogStorePort(Protocol):
    async def insert_many(self, entries: List[AuditLog]) -> None: ...

    async def query(self, filters: AuditQuery) -> List[AuditLog]: ...


class InMemoryAuditLogStore(AuditLogStorePort):
    def __init__(self):
        self.entries: List[AuditLog] = []

    async def insert_many(self, entries: List[AuditLog]) -> None:
        for entry in entries:
            self.entries.append(entry.model_copy(update={"logId": len(self.entries) + 1}))

    async def query(self, filters: AuditQuery) -> List[AuditLog]:
        matches = [
            entry
            for entry in self.entries
            if (filters.userId is None or entry.userId == filters.userId)
            and (filters.action is None or entry.action == filters.action)
            and (filters.resource is None or entry.resource == filters.resource)
            and (filters.resourceId is None or entry.resourceId == filters.resourceId)
            and (filters.severity is None or entry.severity == filters.severity)
        ]
        matches.sort(key=lambda entry: entry.createdAt, reverse=True)
        return matches[filters.offset:filters.offset + filters.limit]


@dataclass
class AuditContext:
    userId: int | None = None
    userEmail: str | None = None
    userRole: str | None = None
    ipAddress: str | None = None
    userAgent: str | None = None
    requestId: str | None = None


@dataclass
class _SharedQueue:
    store: AuditLogStorePort
    entries: List[AuditLog] = field(default_factory=list)


def client_ip(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip.strip()
    if request.client and request.client.host:
        return request.client.host
    return "unknown"


class AuditLogger:
    """
    Queued audit logger.

    Loggers derived with with_user()/with_request() share the queue and
    store of the logger they came from.
    """

    def __init__(self, store: AuditLogStorePort | None = None):
        self._queue = _SharedQueue(store=store or InMemoryAuditLogStore())
        self.context = AuditContext()

    @property
    def store(self) -> AuditLogStorePort:
        return self._queue.store

    def use_store(self, store: AuditLogStorePort) -> None:
        self._queue.store = store

    @property
    def pending(self) -> List[AuditLog]:
        return list(self._queue.entries)

    def _derive(self, **changes) -> "AuditLogger":
        derived = AuditLogger.__new__(AuditLogger)
        derived._queue = self._queue
        derived.context = replace(self.context, **changes)
        return derived

    def with_user(self, user_id: int | None, email: str | None = None, role: str | None = None) -> "AuditLogger":
        return self._derive(userId=user_id, userEmail=email, userRole=role)

    def with_request(self, request: Request) -> "AuditLogger":
        return self._derive(
            requestId=str(uuid.uuid4()),
            ipAddress=client_ip(request),
            userAgent=request.headers.get("user-agent", "unknown"),
        )

    async def log(
        self,
        action: AuditAction,
        description: str,
        *,
        severity: AuditSeverity = AuditSeverity.INFO,
        resource: str | None = None,
        resource_id: Any = None,
        metadata: Dict[str, Any] | None = None,
        changes: Dict[str, Any] | None = None,
        success: bool = True,
        error_message: str | None = None,
    ) -> None:
        entry = AuditLog(
            action=action,
            severity=severity,
            resource=resource,
            resourceId=str(resource_id) if resource_id is not None else None,
            description=description,
            metadata=metadata or {},
            changes=changes,
            userId=self.context.userId,
            userEmail=self.context.userEmail,
            userRole=self.context.userRole,
            ipAddress=self.context.ipAddress,
            userAgent=self.context.userAgent,
            requestId=self.context.requestId,
            success=success,
            errorMessage=error_message,
            createdAt=now_utc(),
        )
        self._queue.entries.append(entry)

        if severity == AuditSeverity.CRITICAL or len(self._queue.entries) >= BATCH_SIZE:
            await self.flush()

    async def info(self, action: AuditAction, description: str, **kwargs) -> None:
        await self.log(action, description, severity=AuditSeverity.INFO, **kwargs)

    async def warn(self, action: AuditAction, description: str, **kwargs) -> None:
        await self.log(action, description, severity=AuditSeverity.WARNING, **kwargs)

    async def error(self, action: AuditAction, description: str, error: BaseException | None = None, **kwargs) -> None:
        await self.log(
            action,
            description,
            severity=AuditSeverity.ERROR,
            success=False,
            **self._error_fields(error, kwargs),
        )

    async def critical(self, action: AuditAction, description: str, error: BaseException | None = None, **kwargs) -> None:
        await self.log(
            action,
            description,
            severity=AuditSeverity.CRITICAL,
            success=False,
            **self._error_fields(error, kwargs),
        )

    async def log_change(
        self,
        action: AuditAction,
        resource: str,
        resource_id: Any,
        description: str,
        before: Dict[str, Any],
        after: Dict[str, Any],
    ) -> None:
        await self.log(
            action,
            description,
            resource=resource,
            resource_id=resource_id,
            changes={"before": before, "after": after},
        )

    async def flush(self) -> None:
        if not self._queue.entries:
            return

        batch = self._queue.entries[:BATCH_SIZE]
        del self._queue.entries[:BATCH_SIZE]
        try:
            await self._queue.store.insert_many(batch)
        except Exception as e:
            logger.error("[Audit] Failed to flush %d logs: %s", len(batch), e)
            self._queue.entries[:0] = batch

    async def query(self, filters: AuditQuery | None = None) -> List[AuditLog]:
        return await self._queue.store.query(filters or AuditQuery())

    @staticmethod
    def _error_fields(error: BaseException | None, kwargs: Dict[str, Any]) -> Dict[str, Any]:
        metadata = dict(kwargs.pop("metadata", None) or {})
        if error is not None:
            metadata["errorStack"] = "".join(traceback.format_exception(error))
            kwargs["error_message"] = str(error)
        kwargs["metadata"] = metadata
        return kwargs


# process-wide logger; services point it at their SQL store on startup
audit_logger = AuditLogger()


def get_audit_logger() -> AuditLogger:
    return audit_logger


def get_request_audit(request: Request) -> AuditLogger:
    """Route dependency: the process logger bound to the current request."""
    return get_audit_logger().with_request(request)
