"""
Unit Tests - Fleet Scheduler
"""
from types import SimpleNamespace

from storesync.database.models import RunTrigger
from storesync.sync.scheduler import JOB_ID, FleetScheduler


class FakeDirectory:
    def __init__(self, tenant_ids=(), error=None):
        self.tenant_ids = list(tenant_ids)
        self.error = error

    async def list_active(self):
        if self.error is not None:
            raise self.error
        return [SimpleNamespace(tenant_id=t) for t in self.tenant_ids]


class FakeOrchestrator:
    def __init__(self, busy=(), broken=()):
        self.busy = set(busy)
        self.broken = set(broken)
        self.dispatched = []

    def dispatch(self, tenant_id, trigger):
        if tenant_id in self.broken:
            raise RuntimeError("event loop closed")
        self.dispatched.append((tenant_id, trigger))
        return tenant_id not in self.busy


class TestTick:
    """Tests for one scheduler tick"""

    async def test_dispatches_every_active_tenant(self):
        orchestrator = FakeOrchestrator()
        scheduler = FleetScheduler(FakeDirectory(["a", "b", "c"]), orchestrator)

        started = await scheduler.tick()

        assert started == 3
        assert orchestrator.dispatched == [
            ("a", RunTrigger.SCHEDULED),
            ("b", RunTrigger.SCHEDULED),
            ("c", RunTrigger.SCHEDULED),
        ]

    async def test_in_flight_tenants_are_not_counted(self):
        scheduler = FleetScheduler(FakeDirectory(["a", "b"]), FakeOrchestrator(busy={"a"}))

        assert await scheduler.tick() == 1

    async def test_listing_failure_is_contained(self):
        """Test a failing tenant listing skips the tick without raising"""
        orchestrator = FakeOrchestrator()
        scheduler = FleetScheduler(FakeDirectory(error=ConnectionError("db down")), orchestrator)

        assert await scheduler.tick() == 0
        assert orchestrator.dispatched == []

    async def test_dispatch_failure_does_not_stop_other_tenants(self):
        orchestrator = FakeOrchestrator(broken={"a"})
        scheduler = FleetScheduler(FakeDirectory(["a", "b"]), orchestrator)

        assert await scheduler.tick() == 1
        assert orchestrator.dispatched == [("b", RunTrigger.SCHEDULED)]

    async def test_tick_with_real_orchestrator(self, tenants, tenant, orchestrator, fake_shopify):
        """Test a tick dispatches without awaiting the run"""
        scheduler = FleetScheduler(tenants, orchestrator)

        assert await scheduler.tick() == 1
        assert orchestrator.is_running(tenant.tenant_id)

        await orchestrator.drain(timeout=5)
        assert not orchestrator.is_running(tenant.tenant_id)


class TestLifecycle:
    """Tests for start and shutdown"""

    async def test_start_registers_interval_job(self):
        scheduler = FleetScheduler(FakeDirectory(), FakeOrchestrator(), interval_seconds=3600)

        scheduler.start()
        try:
            assert scheduler.running
            job = scheduler._scheduler.get_job(JOB_ID)
            assert job is not None
            assert job.max_instances == 1
            assert job.coalesce is True
            assert job.trigger.interval.total_seconds() == 3600
        finally:
            scheduler.shutdown()

        assert not scheduler.running

    async def test_shutdown_without_start(self):
        scheduler = FleetScheduler(FakeDirectory(), FakeOrchestrator())

        scheduler.shutdown()

        assert not scheduler.running
