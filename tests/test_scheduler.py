"""Tests for the periodic sync scheduler."""

import asyncio

from wrestling_sync.sync.entities import SEASONS
from wrestling_sync.sync.scheduler import SyncScheduler
from wrestling_sync.sync.service import SyncServiceContainer

from conftest import FakeRemoteSource, make_config, page


def make_scheduler(store, remote, **config):
    container = SyncServiceContainer(make_config(**config), store, remote, [SEASONS])
    return SyncScheduler(container.orchestrator, container.config)


def test_disabled_scheduler_does_not_start(test_db):
    scheduler = make_scheduler(test_db, FakeRemoteSource(), scheduler_enabled=False)

    asyncio.run(scheduler.start())

    assert not scheduler.is_running()
    assert scheduler.get_status()["task_status"] == "stopped"


def test_scheduler_does_not_start_when_sync_is_disabled(test_db):
    scheduler = make_scheduler(test_db, FakeRemoteSource(),
                               scheduler_enabled=True, enabled=False)

    asyncio.run(scheduler.start())

    assert not scheduler.is_running()


def test_scheduler_runs_full_syncs_periodically(test_db):
    remote = FakeRemoteSource({"seasons": [page("s-1", Name="Season 1")]})
    scheduler = make_scheduler(
        test_db, remote,
        scheduler_enabled=True,
        scheduler_initial_delay_seconds=0,
        scheduler_interval_seconds=1,
    )

    async def scenario():
        await scheduler.start()
        assert scheduler.is_running()
        await asyncio.sleep(0.2)
        status = scheduler.get_status()
        await scheduler.stop()
        return status

    status = asyncio.run(scenario())

    assert remote.fetch_calls == ["seasons"]
    assert status["running"] is True
    assert status["task_status"] == "running"
    assert status["last_run_success"] is True
    assert status["next_run_at"] is not None
    assert not scheduler.is_running()
    assert scheduler.get_status()["next_run_at"] is None
    assert test_db.count("seasons") == 1


def test_stop_cancels_a_pending_run(test_db):
    remote = FakeRemoteSource()
    scheduler = make_scheduler(test_db, remote, scheduler_enabled=True,
                               scheduler_initial_delay_seconds=60)

    async def scenario():
        await scheduler.start()
        await asyncio.sleep(0.01)
        await scheduler.stop()

    asyncio.run(scenario())

    assert remote.fetch_calls == []
    assert scheduler.get_status()["last_run_at"] is None


def test_run_once_reports_summary(test_db):
    scheduler = make_scheduler(test_db, FakeRemoteSource())

    summary = asyncio.run(scheduler.run_once())

    assert summary.success
    assert scheduler.get_status()["last_run_success"] is True
    assert scheduler.get_status()["last_run_at"] is not None


def test_scheduled_run_is_skipped_while_a_full_sync_runs(test_db):
    remote = FakeRemoteSource()
    scheduler = make_scheduler(test_db, remote)

    async def scenario():
        remote.gates["seasons"] = asyncio.Event()
        remote.entered["seasons"] = asyncio.Event()
        manual = asyncio.create_task(scheduler.orchestrator.run_all())
        await remote.entered["seasons"].wait()
        scheduled = await scheduler.run_once()
        remote.gates["seasons"].set()
        await manual
        return scheduled

    scheduled = asyncio.run(scenario())

    assert scheduled.rejected
    assert scheduler.get_status()["last_run_success"] is False
