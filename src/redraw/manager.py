"""Background execution of redraw tasks"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Dict, List, Literal, Optional

from croniter import croniter

from .errors import ConfigurationError, TaskBusyError, TaskNotFoundError
from .models import TaskRecord
from .pipeline import BatchPipeline, RunReport
from .store import TaskStore

logger = logging.getLogger(__name__)


@dataclass
class RunHandle:
    """A queued or running pipeline run for one task"""

    task_id: str
    mode: Literal["background", "foreground"] = "background"
    stop_event: asyncio.Event = field(default_factory=asyncio.Event)
    queued_at: datetime = field(default_factory=datetime.now)
    started_at: Optional[datetime] = None
    report: Optional[RunReport] = None


@dataclass
class SweepSchedule:
    """Cron configuration and state of the retention sweep"""

    cron_expression: str
    max_age_seconds: float
    enabled: bool = True

    # State tracking
    next_run: Optional[datetime] = None
    last_run: Optional[datetime] = None
    consecutive_failures: int = 0
    total_runs: int = 0
    total_removed: int = 0


class TaskManager:
    """Runs pipelines off the request path, one active run per task"""

    def __init__(
        self,
        store: TaskStore,
        pipeline: BatchPipeline,
        max_workers: int = 1,
        sweep_cron: str = "0 * * * *",
        retention_hours: float = 24,
    ):
        self.store = store
        self.pipeline = pipeline
        self.task_queue: asyncio.Queue = asyncio.Queue()
        self.runs: Dict[str, RunHandle] = {}
        self.max_workers = max_workers
        self.sweep = SweepSchedule(
            cron_expression=sweep_cron, max_age_seconds=retention_hours * 3600
        )
        self._worker_tasks = []
        self._sweep_task = None

    async def start(self):
        """Start the worker loops and the sweep scheduler"""
        if not self._worker_tasks:
            for i in range(self.max_workers):
                worker_task = asyncio.create_task(self._worker_loop(f"worker-{i}"))
                self._worker_tasks.append(worker_task)

            self.sweep.next_run = self._calculate_next_run(self.sweep.cron_expression)
            self._sweep_task = asyncio.create_task(self._sweep_scheduler())
            logger.info("manager event=started workers=%s", self.max_workers)

    async def stop(self):
        """Signal every active run to stop, then cancel the loops"""
        for handle in self.runs.values():
            handle.stop_event.set()

        tasks = list(self._worker_tasks)
        if self._sweep_task:
            tasks.append(self._sweep_task)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

        self._worker_tasks.clear()
        self._sweep_task = None
        logger.info("manager event=stopped")

    def is_active(self, task_id: str) -> bool:
        return task_id in self.runs

    def _claim(self, task_id: str, mode: str) -> RunHandle:
        if task_id in self.runs:
            raise TaskBusyError(task_id)
        handle = RunHandle(task_id=task_id, mode=mode)
        self.runs[task_id] = handle
        return handle

    def _release(self, handle: RunHandle):
        if self.runs.get(handle.task_id) is handle:
            del self.runs[handle.task_id]

    async def enqueue(self, task_id: str) -> bool:
        """Queue a background run. False if the task already has one."""
        try:
            self._claim(task_id, "background")
        except TaskBusyError:
            logger.info("manager event=already_active task_id=%s", task_id)
            return False

        await self.task_queue.put(task_id)
        logger.info("manager event=queued task_id=%s", task_id)
        return True

    async def enqueue_pending(self) -> List[str]:
        """Queue every pending or processing task, oldest first"""
        queued = []
        for record in await self.store.list_pending():
            if await self.enqueue(record.id):
                queued.append(record.id)
        return queued

    def request_stop(self, task_id: str) -> bool:
        """Ask a queued or running task to stop after its in-flight calls"""
        handle = self.runs.get(task_id)
        if handle is None:
            return False
        handle.stop_event.set()
        logger.info("manager event=stop_requested task_id=%s", task_id)
        return True

    async def run_foreground(
        self, task_id: str, should_stop: Optional[Callable[[], bool]] = None
    ) -> RunReport:
        """Run the pipeline for a task and wait for it"""
        handle = self._claim(task_id, "foreground")

        def stop_hook() -> bool:
            return handle.stop_event.is_set() or bool(should_stop and should_stop())

        try:
            return await self._execute(handle, stop_hook, propagate=True)
        finally:
            self._release(handle)

    async def redo_page(
        self, task_id: str, page_number: int, extra_instructions: Optional[str] = None
    ) -> TaskRecord:
        """Regenerate one page. Rejected while the task has an active run."""
        if self.is_active(task_id):
            raise TaskBusyError(task_id)
        return await self.pipeline.redo_page(task_id, page_number, extra_instructions)

    async def sweep_expired(self) -> int:
        """Delete expired task records, skipping tasks with an active run"""
        return await self.store.sweep_expired(
            self.sweep.max_age_seconds, exclude=list(self.runs)
        )

    async def _worker_loop(self, worker_id: str):
        """Background worker that runs queued tasks one at a time"""

        while True:
            task_id = await self.task_queue.get()
            handle = self.runs.get(task_id)
            try:
                if handle is None:
                    continue
                if handle.stop_event.is_set():
                    logger.info(
                        "manager event=skipped_stopped task_id=%s worker=%s",
                        task_id,
                        worker_id,
                    )
                    continue
                logger.info("manager event=run task_id=%s worker=%s", task_id, worker_id)
                await self._execute(handle, handle.stop_event.is_set, propagate=False)
            finally:
                if handle is not None:
                    self._release(handle)
                self.task_queue.task_done()

    async def _execute(
        self, handle: RunHandle, stop_hook: Callable[[], bool], propagate: bool
    ) -> Optional[RunReport]:
        """Run the pipeline inside an error boundary"""
        handle.started_at = datetime.now()
        try:
            handle.report = await self.pipeline.run(handle.task_id, stop_hook)
            return handle.report
        except ConfigurationError as e:
            logger.error(
                "manager event=configuration_error task_id=%s error=%s",
                handle.task_id,
                e,
            )
            if propagate:
                raise
        except TaskNotFoundError as e:
            logger.error("manager event=task_missing task_id=%s error=%s", handle.task_id, e)
            if propagate:
                raise
        except Exception:
            logger.exception("manager event=run_crashed task_id=%s", handle.task_id)
            if propagate:
                raise
        return None

    def _calculate_next_run(self, cron_expression: str) -> datetime:
        """Calculate the next run time based on cron expression"""
        return croniter(cron_expression, datetime.now()).get_next(datetime)

    async def _sweep_scheduler(self):
        """Background task that runs the retention sweep on its cron schedule"""

        while True:
            try:
                now = datetime.now()
                if (
                    self.sweep.enabled
                    and self.sweep.next_run
                    and now >= self.sweep.next_run
                ):
                    removed = await self.sweep_expired()
                    self.sweep.last_run = now
                    self.sweep.total_runs += 1
                    self.sweep.total_removed += removed
                    self.sweep.consecutive_failures = 0
                    self.sweep.next_run = self._calculate_next_run(
                        self.sweep.cron_expression
                    )

                await asyncio.sleep(1)  # Check every second

            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("manager event=sweep_failed")
                self.sweep.consecutive_failures += 1
                self.sweep.next_run = self._calculate_next_run(
                    self.sweep.cron_expression
                )
                await asyncio.sleep(5)  # Wait longer on error
