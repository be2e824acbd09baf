from datetime import datetime
from typing import Any, Callable, Dict, List, Protocol

from sqlalchemy import text
from sqlalchemy.orm import Session

from libs.common.sql import SQLRepositoryBase, dump_json, load_json, set_clause, utc
from libs.common.timezone import now_utc
from libs.schemas import (
    AppealStatus,
    ModerationAction,
    ModerationActionType,
    ModerationDuration,
    ModerationReason,
    ModerationTarget,
)

from services.admin.app.db.session import SessionLocal


class ModerationActionRepositoryPort(Protocol):
    async def find_by_id(self, action_id: int) -> ModerationAction | None: ...

    async def create_action(
        self,
        performed_by: int | None,
        performed_by_role: str,
        action_type: ModerationActionType,
        reason: ModerationReason,
        target_type: ModerationTarget,
        target_id: int,
        reason_details: str | None = None,
        duration: ModerationDuration | None = None,
        expires_at: datetime | None = None,
        appealable: bool = False,
        appeal_deadline: datetime | None = None,
        previous_state: Dict[str, Any] | None = None,
        new_state: Dict[str, Any] | None = None,
    ) -> ModerationAction: ...

    async def history(self, target_type: ModerationTarget, target_id: int, limit: int = 50) -> List[ModerationAction]: ...

    async def pending_appeals(self) -> List[ModerationAction]: ...

    async def update_fields(self, action_id: int, fields: Dict[str, Any]) -> ModerationAction | None: ...


_COLUMNS = {
    "appealStatus": "appeal_status",
    "appealMessage": "appeal_message",
    "notificationSent": "notification_sent",
}

_SELECT = """
    SELECT action_id, performed_by, performed_by_role, action_type, reason, reason_details,
           target_type, target_id, duration_value, duration_unit, expires_at, appealable,
           appeal_deadline, appeal_status, appeal_message, previous_state, new_state,
           notification_sent, created_at
    FROM moderation_actions
"""


def _to_action(row) -> ModerationAction:
    duration = None
    if row["duration_unit"]:
        duration = ModerationDuration(value=row["duration_value"] or 0, unit=row["duration_unit"])
    return ModerationAction(
        actionId=row["action_id"],
        performedBy=row["performed_by"],
        performedByRole=row["performed_by_role"],
        actionType=row["action_type"],
        reason=row["reason"],
        reasonDetails=row["reason_details"],
        targetType=row["target_type"],
        targetId=row["target_id"],
        duration=duration,
        expiresAt=utc(row["expires_at"]),
        appealable=bool(row["appealable"]),
        appealDeadline=utc(row["appeal_deadline"]),
        appealStatus=row["appeal_status"] or AppealStatus.NONE,
        appealMessage=row["appeal_message"],
        previousState=load_json(row["previous_state"], {}),
        newState=load_json(row["new_state"], {}),
        notificationSent=bool(row["notification_sent"]),
        createdAt=utc(row["created_at"]),
    )


class SQLAlchemyModerationActionRepository(SQLRepositoryBase):
    def __init__(self, session_factory: Callable[[], Session] = SessionLocal):
        super().__init__(session_factory)

    async def _find_many(self, where: str, params: dict, limit: int | None = None) -> List[ModerationAction]:
        sql = f"{_SELECT} WHERE {where} ORDER BY created_at DESC, action_id DESC"
        if limit is not None:
            sql += " LIMIT :limit"
            params = {**params, "limit": limit}

        def _query():
            with self._session_factory() as session:
                rows = session.execute(text(sql), params).mappings().all()
                return [_to_action(row) for row in rows]

        return await self._run_in_thread(_query)

    async def find_by_id(self, action_id: int) -> ModerationAction | None:
        actions = await self._find_many("action_id = :action_id", {"action_id": action_id})
        return actions[0] if actions else None

    async def create_action(
        self,
        performed_by: int | None,
        performed_by_role: str,
        action_type: ModerationActionType,
        reason: ModerationReason,
        target_type: ModerationTarget,
        target_id: int,
        reason_details: str | None = None,
        duration: ModerationDuration | None = None,
        expires_at: datetime | None = None,
        appealable: bool = False,
        appeal_deadline: datetime | None = None,
        previous_state: Dict[str, Any] | None = None,
        new_state: Dict[str, Any] | None = None,
    ) -> ModerationAction:
        params = {
            "performed_by": performed_by,
            "performed_by_role": performed_by_role,
            "action_type": action_type.value,
            "reason": reason.value,
            "reason_details": reason_details,
            "target_type": target_type.value,
            "target_id": target_id,
            "duration_value": duration.value if duration else None,
            "duration_unit": duration.unit.value if duration else None,
            "expires_at": expires_at,
            "appealable": appealable,
            "appeal_deadline": appeal_deadline,
            "appeal_status": AppealStatus.NONE.value,
            "previous_state": dump_json(previous_state or {}),
            "new_state": dump_json(new_state or {}),
            "created_at": now_utc(),
        }

        def _insert():
            with self._session_factory() as session:
                result = session.execute(
                    text(
                        """
                        INSERT INTO moderation_actions (
                            performed_by, performed_by_role, action_type, reason, reason_details,
                            target_type, target_id, duration_value, duration_unit, expires_at,
                            appealable, appeal_deadline, appeal_status, previous_state, new_state,
                            notification_sent, created_at
                        ) VALUES (
                            :performed_by, :performed_by_role, :action_type, :reason, :reason_details,
                            :target_type, :target_id, :duration_value, :duration_unit, :expires_at,
                            :appealable, :appeal_deadline, :appeal_status, :previous_state, :new_state,
                            0, :created_at
                        )
                        """
                    ),
                    params,
                )
                session.commit()
                return result.lastrowid

        action_id = await self._run_in_thread(_insert)
        return await self.find_by_id(action_id)

    async def history(self, target_type: ModerationTarget, target_id: int, limit: int = 50) -> List[ModerationAction]:
        return await self._find_many(
            "target_type = :target_type AND target_id = :target_id",
            {"target_type": target_type.value, "target_id": target_id},
            limit=limit,
        )

    async def pending_appeals(self) -> List[ModerationAction]:
        return await self._find_many("appeal_status = :status", {"status": AppealStatus.PENDING.value})

    async def update_fields(self, action_id: int, fields: Dict[str, Any]) -> ModerationAction | None:
        if fields:
            clause, params = set_clause(fields, _COLUMNS)
            params["action_id"] = action_id

            def _update():
                with self._session_factory() as session:
                    session.execute(text(f"UPDATE moderation_actions SET {clause} WHERE action_id = :action_id"), params)
                    session.commit()

            await self._run_in_thread(_update)
        return await self.find_by_id(action_id)
