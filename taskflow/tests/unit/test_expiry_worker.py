from __future__ import annotations

import pytest

from taskflow.domain.entities import Actor, EntityReference
from taskflow.tests.utils.fakes import FakeBackends, FakeClock, host_organization, seed_board
from taskflow.workers.expiry_worker import WorkerSettings, sweep_expired


def test_worker_runs_sweep_on_an_hourly_cron() -> None:
    assert sweep_expired in WorkerSettings.functions
    assert len(WorkerSettings.cron_jobs) == 1
    assert WorkerSettings.queue_name == "taskflow:sweeper"


@pytest.mark.asyncio
async def test_sweep_job_returns_report_counts(services, backends: FakeBackends, clock: FakeClock) -> None:
    await host_organization(services.resolver)
    seed_board(backends)
    ref = EntityReference(entity_id="T1", entity_type="task", candidate_organization_id="org-1")
    await services.soft_delete.soft_delete(ref, Actor(id="u-1"))
    clock.advance(hours=30)

    result = await sweep_expired({"sweeper": services.sweeper})

    assert result == {"scanned": 1, "purged": 1, "skipped": 0, "failed": 0}
