"""
Scheduled jobs of the admin service.

    corbez-expire-suspensions    lift employee suspensions whose end has passed
"""
import asyncio
import logging
import os

from libs.common import audit_logger

from services.admin.app.db.connection import settings
from services.admin.app.db.repositories.audit_logs import SQLAuditLogStore
from services.admin.app.dependencies import get_moderation_service

logger = logging.getLogger(__name__)


async def expire_suspensions() -> int:
    audit_logger.use_store(SQLAuditLogStore())
    try:
        return await get_moderation_service().process_expired_suspensions()
    finally:
        await audit_logger.flush()


def main() -> None:
    os.environ.setdefault("REDIS_URL", settings.REDIS_URL)
    logging.basicConfig(
        level=settings.LOG_LEVEL.upper(),
        format="%(asctime)s %(levelname)s %(name)s - %(message)s",
    )
    count = asyncio.run(expire_suspensions())
    logger.info("expire-suspensions finished: %d employees reactivated", count)


if __name__ == "__main__":
    main()
