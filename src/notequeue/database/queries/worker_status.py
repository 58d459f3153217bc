"""Worker status row queries.

The embedding_worker_status table holds at most one row (id = 1). Reads
return None before the first worker ever ran; writes upsert the row.
"""

from __future__ import annotations

from datetime import datetime

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from notequeue.database.models.worker_status import WORKER_STATUS_ROW_ID, WorkerStatusRow

logger = structlog.get_logger(__name__)


async def get_worker_status(session: AsyncSession) -> WorkerStatusRow | None:
    stmt = select(WorkerStatusRow).where(WorkerStatusRow.id == WORKER_STATUS_ROW_ID)
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def save_worker_status(
    session: AsyncSession,
    *,
    is_running: bool,
    last_heartbeat: datetime | None,
    started_at: datetime | None,
    tasks_processed: int,
    tasks_succeeded: int,
    tasks_failed: int,
) -> WorkerStatusRow:
    """Create or overwrite the single worker status row."""
    row = WorkerStatusRow(
        id=WORKER_STATUS_ROW_ID,
        is_running=is_running,
        last_heartbeat=last_heartbeat,
        started_at=started_at,
        tasks_processed=tasks_processed,
        tasks_succeeded=tasks_succeeded,
        tasks_failed=tasks_failed,
    )
    row = await session.merge(row)
    await session.commit()

    logger.debug(
        "worker_status_saved",
        is_running=is_running,
        tasks_processed=tasks_processed,
    )
    return row
