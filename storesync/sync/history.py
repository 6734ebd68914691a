"""
Run History

Persists one ``sync_runs`` row per orchestrator run: written as ``running``
at start, then overwritten with the final outcome and per-kind counters.
"""

import uuid
from datetime import datetime
from typing import Dict, List, Optional

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from storesync.database.models import RunStatus, RunTrigger, SyncRun

logger = structlog.get_logger(__name__)


class RunHistory:
    """Write and query sync run records"""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def start(self, run_id: uuid.UUID, tenant_id: str, trigger: RunTrigger, started_at: datetime) -> None:
        async with self._session_factory() as session:
            async with session.begin():
                session.add(
                    SyncRun(
                        run_id=run_id,
                        tenant_id=tenant_id,
                        trigger=RunTrigger(trigger).value,
                        status=RunStatus.RUNNING.value,
                        kind_stats={},
                        started_at=started_at,
                    )
                )

    async def finish(
        self,
        run_id: uuid.UUID,
        status: RunStatus,
        kind_stats: Dict[str, Dict[str, int]],
        completed_at: datetime,
        error_message: Optional[str] = None,
    ) -> None:
        async with self._session_factory() as session:
            async with session.begin():
                run = await session.get(SyncRun, run_id)
                if run is None:
                    logger.warning("Sync run row missing on finish", run_id=str(run_id))
                    return
                run.status = RunStatus(status).value
                run.kind_stats = kind_stats
                run.completed_at = completed_at
                run.error_message = error_message

    async def recent(self, tenant_id: str, limit: int = 20) -> List[SyncRun]:
        """Most recent runs for a tenant, newest first."""
        async with self._session_factory() as session:
            result = await session.execute(
                select(SyncRun)
                .where(SyncRun.tenant_id == tenant_id)
                .order_by(SyncRun.started_at.desc())
                .limit(limit)
            )
            return list(result.scalars().all())
