"""
Sync Orchestrator

Runs one full bulk sync for one tenant: customers, then products, then
orders, each paginated to exhaustion, every record normalized and upserted
as it arrives.

Failure containment:
- AuthError: the tenant run ends ``failed_auth``
- FetchError / TransientFetchError (after retries): the current kind is
  abandoned, the run continues with the next kind
- NormalizationError, StoreConflictError, StoreWriteError: the record is
  skipped
- Anything else: the run ends ``failed``

Single-flight: at most one run per tenant in this process. A second request
while one is in flight is a logged no-op.
"""

import asyncio
import time
import uuid
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional, Set

import structlog
from pydantic import BaseModel

from storesync.database.models import SYNC_ORDER, EntityKind, RunStatus, RunTrigger, Tenant
from storesync.sync import metrics
from storesync.sync.client import ShopifyClient
from storesync.sync.errors import AuthError, FetchError, StoreConflictError, StoreWriteError
from storesync.sync.history import RunHistory
from storesync.sync.normalizer import normalize
from storesync.sync.store import UpsertStore
from storesync.sync.tenants import TenantDirectory

logger = structlog.get_logger(__name__)


def utcnow() -> datetime:
    """Naive UTC timestamp, matching the DateTime columns."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


@dataclass
class KindStats:
    """Counters for one entity kind within a run"""
    fetched: int = 0
    created: int = 0
    updated: int = 0
    skipped: int = 0
    pages_failed: int = 0

    @property
    def has_errors(self) -> bool:
        return self.skipped > 0 or self.pages_failed > 0


class SyncRunResult(BaseModel):
    """Outcome of one tenant sync run"""
    run_id: uuid.UUID
    tenant_id: str
    trigger: RunTrigger
    status: RunStatus
    kind_stats: Dict[str, Dict[str, int]]
    error_message: Optional[str] = None
    started_at: datetime
    completed_at: datetime
    duration_seconds: float = 0


class SyncOrchestrator:
    """
    Per-tenant bulk sync with single-flight protection.

    Example:
        orchestrator = SyncOrchestrator(tenants, client, store, history)
        result = await orchestrator.run("t1", RunTrigger.MANUAL)
    """

    def __init__(
        self,
        tenants: TenantDirectory,
        client: ShopifyClient,
        store: UpsertStore,
        history: RunHistory,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.tenants = tenants
        self.client = client
        self.store = store
        self.history = history
        self._clock = clock
        self._in_flight: Set[str] = set()
        self._tasks: Set[asyncio.Task] = set()

    # =========================================================================
    # ENTRY POINTS
    # =========================================================================

    def is_running(self, tenant_id: str) -> bool:
        return tenant_id in self._in_flight

    @property
    def in_flight(self) -> Set[str]:
        return set(self._in_flight)

    def _claim(self, tenant_id: str, trigger: RunTrigger) -> bool:
        if tenant_id in self._in_flight:
            logger.info(
                "Sync already in flight, ignoring request",
                tenant_id=tenant_id,
                trigger=RunTrigger(trigger).value,
            )
            return False
        self._in_flight.add(tenant_id)
        metrics.RUNS_IN_FLIGHT.inc()
        return True

    def _release(self, tenant_id: str) -> None:
        self._in_flight.discard(tenant_id)
        metrics.RUNS_IN_FLIGHT.dec()

    async def run(self, tenant_id: str, trigger: RunTrigger = RunTrigger.MANUAL) -> Optional[SyncRunResult]:
        """
        Run a full sync for one tenant and wait for it.

        Returns:
            SyncRunResult, or None when a run for the tenant is already in
            flight (or a scheduled run finds the tenant deactivated)

        Raises:
            TenantNotFoundError: Unknown tenant
        """
        if not self._claim(tenant_id, trigger):
            return None
        try:
            return await self._run(tenant_id, RunTrigger(trigger))
        finally:
            self._release(tenant_id)

    def dispatch(self, tenant_id: str, trigger: RunTrigger = RunTrigger.SCHEDULED) -> bool:
        """
        Start a run as a background task without waiting for it.

        Returns:
            True if a run was started, False if one was already in flight
        """
        if not self._claim(tenant_id, trigger):
            return False

        task = asyncio.create_task(
            self._run_dispatched(tenant_id, RunTrigger(trigger)),
            name=f"sync:{tenant_id}",
        )
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return True

    async def _run_dispatched(self, tenant_id: str, trigger: RunTrigger) -> Optional[SyncRunResult]:
        try:
            return await self._run(tenant_id, trigger)
        except Exception:
            logger.exception("Dispatched sync run crashed", tenant_id=tenant_id, trigger=trigger.value)
            return None
        finally:
            self._release(tenant_id)

    async def drain(self, timeout: float) -> None:
        """Wait for dispatched runs to finish, cancelling any still running after ``timeout``."""
        if not self._tasks:
            return

        logger.info("Draining in-flight sync runs", runs=len(self._tasks), timeout_seconds=timeout)
        done, pending = await asyncio.wait(set(self._tasks), timeout=timeout)
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
            logger.warning("Cancelled sync runs at shutdown", runs=len(pending))

    # =========================================================================
    # RUN
    # =========================================================================

    async def _run(self, tenant_id: str, trigger: RunTrigger) -> Optional[SyncRunResult]:
        tenant = await self.tenants.get(tenant_id)
        if trigger == RunTrigger.SCHEDULED and not tenant.is_active:
            logger.info("Skipping scheduled sync for inactive tenant", tenant_id=tenant_id)
            return None

        run_id = uuid.uuid4()
        with structlog.contextvars.bound_contextvars(tenant_id=tenant_id, run_id=str(run_id)):
            return await self._execute(tenant, run_id, trigger)

    async def _execute(self, tenant: Tenant, run_id: uuid.UUID, trigger: RunTrigger) -> SyncRunResult:
        started_at = self._clock()
        started = time.monotonic()
        await self.history.start(run_id, tenant.tenant_id, trigger, started_at)
        logger.info("Sync run started", trigger=trigger.value)

        stats = {kind.value: KindStats() for kind in SYNC_ORDER}
        status = RunStatus.COMPLETED
        error_message = None

        try:
            for kind in SYNC_ORDER:
                await self._sync_kind(tenant, kind, stats[kind.value])
        except AuthError as e:
            status = RunStatus.FAILED_AUTH
            error_message = str(e)
            logger.warning("Sync run aborted, credential rejected", error=str(e))
        except asyncio.CancelledError:
            await self._finish(run_id, tenant, trigger, RunStatus.FAILED, stats, started_at, started, "cancelled")
            raise
        except Exception as e:
            status = RunStatus.FAILED
            error_message = f"{type(e).__name__}: {e}"
            logger.exception("Sync run failed unexpectedly")
        else:
            if any(s.has_errors for s in stats.values()):
                status = RunStatus.COMPLETED_WITH_ERRORS

        return await self._finish(run_id, tenant, trigger, status, stats, started_at, started, error_message)

    async def _finish(
        self,
        run_id: uuid.UUID,
        tenant: Tenant,
        trigger: RunTrigger,
        status: RunStatus,
        stats: Dict[str, KindStats],
        started_at: datetime,
        started: float,
        error_message: Optional[str],
    ) -> SyncRunResult:
        completed_at = self._clock()
        duration = time.monotonic() - started
        kind_stats = {kind: asdict(s) for kind, s in stats.items()}

        await self.history.finish(run_id, status, kind_stats, completed_at, error_message)
        metrics.SYNC_RUNS.labels(trigger=trigger.value, status=status.value).inc()
        metrics.SYNC_RUN_DURATION.labels(trigger=trigger.value).observe(duration)

        logger.info(
            "Sync run finished",
            status=status.value,
            duration_seconds=round(duration, 2),
            **{f"{kind}_{name}": value for kind, s in kind_stats.items() for name, value in s.items() if value},
        )
        return SyncRunResult(
            run_id=run_id,
            tenant_id=tenant.tenant_id,
            trigger=trigger,
            status=status,
            kind_stats=kind_stats,
            error_message=error_message,
            started_at=started_at,
            completed_at=completed_at,
            duration_seconds=round(duration, 3),
        )

    async def _sync_kind(self, tenant: Tenant, kind: EntityKind, stats: KindStats) -> None:
        cursor: Optional[str] = None
        while True:
            try:
                page = await self.client.fetch_page(tenant, kind, cursor)
            except AuthError:
                raise
            except FetchError as e:
                stats.pages_failed += 1
                logger.warning(
                    "Abandoning entity kind after fetch failure",
                    entity_kind=kind.value,
                    error=str(e),
                    error_type=type(e).__name__,
                )
                return

            stats.fetched += len(page.records)
            for raw in page.records:
                await self._apply(tenant.tenant_id, kind, raw, stats)

            if page.next_cursor is None:
                return
            cursor = page.next_cursor

    async def _apply(self, tenant_id: str, kind: EntityKind, raw: Any, stats: KindStats) -> None:
        result = normalize(kind, raw)
        if not result.ok:
            stats.skipped += 1
            metrics.RECORDS_SKIPPED.labels(entity_kind=kind.value, reason="normalization").inc()
            logger.warning(
                "Skipping record that failed normalization",
                entity_kind=kind.value,
                external_id=result.error.external_id,
                reason=result.error.reason,
            )
            return

        record = result.record
        try:
            outcome = await self.store.upsert(tenant_id, kind, record)
        except (StoreConflictError, StoreWriteError) as e:
            reason = "store_conflict" if isinstance(e, StoreConflictError) else "store_error"
            stats.skipped += 1
            metrics.RECORDS_SKIPPED.labels(entity_kind=kind.value, reason=reason).inc()
            logger.exception(
                "Skipping record the store could not write",
                entity_kind=kind.value,
                external_id=record.external_id,
                reason=reason,
            )
            return

        if outcome.created:
            stats.created += 1
        else:
            stats.updated += 1
        metrics.RECORDS_UPSERTED.labels(
            entity_kind=kind.value,
            source="sync",
            action="created" if outcome.created else "updated",
        ).inc()
