"""Tests for TaskManager class"""

import asyncio
from datetime import datetime, timedelta
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio

from redraw.errors import TaskBusyError
from redraw.manager import SweepSchedule, TaskManager
from redraw.models import BrandInfo
from redraw.pipeline import BatchPipeline
from redraw.store import InMemoryTaskStore, utc_now

from conftest import FakeDesignClient, make_pages


def _build(client, concurrency=10, **kwargs):
    store = InMemoryTaskStore()
    pipeline = BatchPipeline(
        store, client, concurrency=concurrency, max_retries=3, backoff_seconds=0
    )
    return TaskManager(store, pipeline, **kwargs)


@pytest_asyncio.fixture
async def task_manager():
    """Create a fresh TaskManager instance for each test"""
    manager = _build(FakeDesignClient())
    yield manager
    # Cleanup: stop the manager if it was started
    if manager._worker_tasks:
        await manager.stop()


async def _create(manager, count=3):
    summary = await manager.store.create(make_pages(count), BrandInfo())
    return summary.id


async def _drain(manager, timeout=2.0):
    await asyncio.wait_for(manager.task_queue.join(), timeout)


def test_sweep_schedule_defaults():
    schedule = SweepSchedule(cron_expression="0 * * * *", max_age_seconds=3600)
    assert schedule.enabled is True
    assert schedule.next_run is None
    assert schedule.total_runs == 0
    assert schedule.consecutive_failures == 0


@pytest.mark.asyncio
async def test_task_manager_initialization(task_manager):
    """Test TaskManager initializes correctly"""
    assert task_manager.task_queue is not None
    assert task_manager.runs == {}
    assert task_manager._worker_tasks == []
    assert task_manager.sweep.max_age_seconds == 24 * 3600


@pytest.mark.asyncio
async def test_start_and_stop(task_manager):
    await task_manager.start()
    assert len(task_manager._worker_tasks) == 1
    assert task_manager._sweep_task is not None
    assert task_manager.sweep.next_run > datetime.now()

    await task_manager.stop()
    assert task_manager._worker_tasks == []
    assert task_manager._sweep_task is None


@pytest.mark.asyncio
async def test_enqueue_runs_in_background(task_manager):
    await task_manager.start()
    task_id = await _create(task_manager)

    assert await task_manager.enqueue(task_id) is True
    await _drain(task_manager)

    record = await task_manager.store.get(task_id)
    assert record.status == "completed"
    assert sorted(record.results) == [1, 2, 3]
    assert not task_manager.is_active(task_id)


@pytest.mark.asyncio
async def test_enqueue_same_task_twice(task_manager):
    """A task that is already queued is not queued again"""
    task_id = await _create(task_manager)

    assert await task_manager.enqueue(task_id) is True
    assert await task_manager.enqueue(task_id) is False
    assert task_manager.task_queue.qsize() == 1
    assert task_manager.is_active(task_id)


@pytest.mark.asyncio
async def test_enqueue_pending_oldest_first(task_manager):
    first = await _create(task_manager)
    second = await _create(task_manager)
    done = await _create(task_manager)
    await task_manager.store.update(done, status="completed")

    queued = await task_manager.enqueue_pending()

    assert queued == [first, second]


@pytest.mark.asyncio
async def test_configuration_error_marks_task_failed():
    client = FakeDesignClient(configured=False)
    manager = _build(client)
    await manager.start()
    try:
        task_id = await _create(manager)
        await manager.enqueue(task_id)
        await _drain(manager)

        record = await manager.store.get(task_id)
        assert record.status == "failed"
        assert "not configured" in record.error
        assert client.calls == []
    finally:
        await manager.stop()


@pytest.mark.asyncio
async def test_worker_survives_crashing_run(task_manager):
    """An unexpected error in one run does not stop the worker"""
    await task_manager.start()
    broken = await _create(task_manager)
    healthy = await _create(task_manager)

    original_run = task_manager.pipeline.run

    async def flaky_run(task_id, should_stop=None):
        if task_id == broken:
            raise RuntimeError("disk on fire")
        return await original_run(task_id, should_stop)

    task_manager.pipeline.run = flaky_run
    await task_manager.enqueue(broken)
    await task_manager.enqueue(healthy)
    await _drain(task_manager)

    assert (await task_manager.store.get(healthy)).status == "completed"
    assert (await task_manager.store.get(broken)).status == "pending"
    assert task_manager.runs == {}


@pytest.mark.asyncio
async def test_stop_before_start_skips_run(task_manager):
    task_id = await _create(task_manager)
    await task_manager.enqueue(task_id)
    assert task_manager.request_stop(task_id) is True

    await task_manager.start()
    await _drain(task_manager)

    record = await task_manager.store.get(task_id)
    assert record.status == "pending"
    assert record.results == {}
    assert not task_manager.is_active(task_id)


@pytest.mark.asyncio
async def test_stop_running_task_pauses_it():
    client = FakeDesignClient(delay=0.05)
    manager = _build(client, concurrency=1)
    await manager.start()
    try:
        task_id = await _create(manager, count=5)
        await manager.enqueue(task_id)
        while not client.calls:
            await asyncio.sleep(0.01)

        assert manager.request_stop(task_id) is True
        await _drain(manager)

        record = await manager.store.get(task_id)
        assert record.status == "processing"
        assert record.status_message == "Paused"
        assert 1 <= len(record.results) < 5
        assert record.failed_pages == []

        # Processing again resumes where it stopped
        await manager.enqueue(task_id)
        await _drain(manager)
        record = await manager.store.get(task_id)
        assert record.status == "completed"
        assert len(client.calls) == 5
    finally:
        await manager.stop()


def test_request_stop_unknown_task(task_manager):
    assert task_manager.request_stop("missing") is False


@pytest.mark.asyncio
async def test_run_foreground(task_manager):
    task_id = await _create(task_manager)

    report = await task_manager.run_foreground(task_id)

    assert report.status == "completed"
    assert not task_manager.is_active(task_id)


@pytest.mark.asyncio
async def test_run_foreground_rejects_busy_task(task_manager):
    task_id = await _create(task_manager)
    await task_manager.enqueue(task_id)

    with pytest.raises(TaskBusyError):
        await task_manager.run_foreground(task_id)


@pytest.mark.asyncio
async def test_redo_page_rejects_busy_task(task_manager):
    task_id = await _create(task_manager)
    await task_manager.enqueue(task_id)

    with pytest.raises(TaskBusyError):
        await task_manager.redo_page(task_id, 1)
    assert task_manager.pipeline.client.calls == []


@pytest.mark.asyncio
async def test_redo_page_on_idle_task(task_manager):
    task_id = await _create(task_manager)

    record = await task_manager.redo_page(task_id, 2, "Add a caption")

    assert sorted(record.results) == [2]
    assert task_manager.pipeline.client.requests[-1].extra_instructions == "Add a caption"


@pytest.mark.asyncio
async def test_sweep_expired_skips_active_runs(task_manager):
    old = await _create(task_manager)
    active = await _create(task_manager)
    for task_id in (old, active):
        record = await task_manager.store.get(task_id)
        record.created_at = utc_now() - timedelta(hours=30)
        await task_manager.store._save(record)
    await task_manager.enqueue(active)

    assert await task_manager.sweep_expired() == 1
    assert await task_manager.store.get(old) is None
    assert await task_manager.store.get(active) is not None


def test_calculate_next_run(task_manager):
    """Test calculating next run time from cron expression"""
    now = datetime.now()
    next_run = task_manager._calculate_next_run("*/5 * * * *")

    assert next_run > now
    assert next_run.minute % 5 == 0
    assert next_run - now <= timedelta(minutes=5)


@pytest.mark.asyncio
async def test_sweep_scheduler_runs_when_due(task_manager):
    task_manager.sweep_expired = AsyncMock(return_value=2)
    await task_manager.start()
    task_manager.sweep.next_run = datetime.now() - timedelta(seconds=1)

    await asyncio.sleep(1.5)

    task_manager.sweep_expired.assert_awaited()
    assert task_manager.sweep.total_runs == 1
    assert task_manager.sweep.total_removed == 2
    assert task_manager.sweep.last_run is not None
    assert task_manager.sweep.next_run > datetime.now()


@pytest.mark.asyncio
async def test_sweep_scheduler_counts_failures(task_manager):
    task_manager.sweep_expired = AsyncMock(side_effect=OSError("read-only"))
    await task_manager.start()
    task_manager.sweep.next_run = datetime.now() - timedelta(seconds=1)

    await asyncio.sleep(1.5)

    assert task_manager.sweep.consecutive_failures == 1
    assert task_manager.sweep.total_runs == 0
