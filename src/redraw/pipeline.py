"""Batch pipeline that redraws every pending page of a task.

Pages without a result are processed in consecutive batches of
`concurrency` pages. Pages inside a batch run concurrently; batches run one
after another. Each page gets up to `max_retries` generation attempts with a
linear backoff. A stop hook is consulted before a page starts and before each
attempt; stopping never marks a page as failed.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Callable, List, Literal, Optional, Protocol

from .errors import (
    ConfigurationError,
    GenerationError,
    TaskNotFoundError,
    ValidationError,
)
from .models import TASK_STATES, DesignRequest, PageInput, TaskRecord
from .store import TaskStore

logger = logging.getLogger(__name__)

PAGE_OUTCOMES = Literal["succeeded", "failed", "stopped", "aborted"]


class DesignGenerator(Protocol):
    """What the pipeline needs from a generation client"""

    def ensure_configured(self) -> None: ...

    async def analyze_content(self, image_data: str) -> str: ...

    async def generate_design(self, request: DesignRequest) -> str: ...


def _never_stop() -> bool:
    return False


def failure_summary(page_numbers: List[int]) -> str:
    noun = "page" if len(page_numbers) == 1 else "pages"
    joined = ", ".join(str(number) for number in page_numbers)
    return f"{len(page_numbers)} {noun} failed: {joined}"


@dataclass
class RunReport:
    """Outcome of one pipeline run over a task"""

    task_id: str
    status: TASK_STATES = "processing"
    succeeded: List[int] = field(default_factory=list)
    failed: List[int] = field(default_factory=list)
    stopped: bool = False


class BatchPipeline:
    """Bounded-concurrency, retrying, resumable page generation"""

    def __init__(
        self,
        store: TaskStore,
        client: DesignGenerator,
        concurrency: int = 10,
        max_retries: int = 3,
        backoff_seconds: float = 1.0,
    ):
        if concurrency < 1:
            raise ValueError("concurrency must be at least 1")
        if max_retries < 1:
            raise ValueError("max_retries must be at least 1")
        self.store = store
        self.client = client
        self.concurrency = concurrency
        self.max_retries = max_retries
        self.backoff_seconds = backoff_seconds

    async def run(
        self, task_id: str, should_stop: Optional[Callable[[], bool]] = None
    ) -> RunReport:
        """Process every page that has no result yet"""
        should_stop = should_stop or _never_stop

        task = await self.store.get(task_id)
        if task is None:
            raise TaskNotFoundError(task_id)
        # Missing credentials abort before any page is attempted
        try:
            self.client.ensure_configured()
        except ConfigurationError as e:
            await self._abort(task_id, [], e)
            raise

        pending = task.pending_pages()
        logger.info(
            "pipeline event=start task_id=%s total_pages=%s pending=%s",
            task_id,
            task.total_pages,
            len(pending),
        )
        await self.store.update(
            task_id, status="processing", status_message="Preparing...", error=None
        )

        report = RunReport(task_id=task_id)
        fatal: List[ConfigurationError] = []

        def stop_hook() -> bool:
            return bool(fatal) or should_stop()

        for start in range(0, len(pending), self.concurrency):
            if should_stop():
                report.stopped = True
                break

            batch = pending[start : start + self.concurrency]
            numbers = [page.page_number for page in batch]
            await self.store.update(
                task_id,
                processing_pages=numbers,
                status_message=f"Generating pages {', '.join(map(str, numbers))}...",
            )

            # _process_page never raises, so every page of the batch settles
            outcomes = await asyncio.gather(
                *(self._process_page(task, page, stop_hook, fatal) for page in batch)
            )
            for number, outcome in zip(numbers, outcomes):
                if outcome == "succeeded":
                    report.succeeded.append(number)
                elif outcome == "failed":
                    report.failed.append(number)
                elif outcome == "stopped" and not fatal:
                    report.stopped = True

            if fatal:
                break

        if fatal:
            await self._abort(task_id, sorted(report.failed), fatal[0])
            report.status = "failed"
            raise fatal[0]
        return await self._finish(report)

    async def _process_page(
        self,
        task: TaskRecord,
        page: PageInput,
        should_stop: Callable[[], bool],
        fatal: List[ConfigurationError],
    ) -> PAGE_OUTCOMES:
        """One page inside its error boundary.

        A ConfigurationError is collected in `fatal` so the run can end once
        the batch settles; any other unexpected error fails only this page.
        """
        number = page.page_number
        try:
            return await self._generate_page(task, page, should_stop)
        except ConfigurationError as e:
            logger.error(
                "pipeline event=configuration_error task_id=%s page=%s error=%s",
                task.id,
                number,
                e,
            )
            fatal.append(e)
            outcome = "aborted"
        except Exception:
            logger.exception(
                "pipeline event=page_crashed task_id=%s page=%s", task.id, number
            )
            outcome = "failed"
        await self._discard(task.id, number)
        return outcome

    async def _generate_page(
        self, task: TaskRecord, page: PageInput, should_stop: Callable[[], bool]
    ) -> PAGE_OUTCOMES:
        number = page.page_number
        if should_stop():
            await self._discard(task.id, number)
            return "stopped"

        text = page.text_content
        if not text.strip():
            text = await self.client.analyze_content(page.image_base64)

        request = DesignRequest(
            image_data=page.image_base64,
            text_content=text,
            brand_info=task.brand_info,
            page_number=number,
            aspect_ratio=task.aspect_ratio,
        )

        for attempt in range(1, self.max_retries + 1):
            if should_stop():
                logger.info(
                    "pipeline event=page_stopped task_id=%s page=%s attempt=%s",
                    task.id,
                    number,
                    attempt,
                )
                await self._discard(task.id, number)
                return "stopped"

            try:
                image = await self.client.generate_design(request)
            except GenerationError as e:
                logger.warning(
                    "pipeline event=attempt_failed task_id=%s page=%s attempt=%s error=%s",
                    task.id,
                    number,
                    attempt,
                    e,
                )
                if attempt < self.max_retries:
                    await asyncio.sleep(attempt * self.backoff_seconds)
                continue

            try:
                await self.store.add_result(task.id, number, image)
            except TaskNotFoundError as e:
                logger.error(
                    "pipeline event=result_lost task_id=%s page=%s error=%s",
                    task.id,
                    number,
                    e,
                )
                return "failed"
            logger.info("pipeline event=page_done task_id=%s page=%s", task.id, number)
            return "succeeded"

        logger.error(
            "pipeline event=page_failed task_id=%s page=%s attempts=%s",
            task.id,
            number,
            self.max_retries,
        )
        await self._discard(task.id, number)
        return "failed"

    async def redo_page(
        self, task_id: str, page_number: int, extra_instructions: Optional[str] = None
    ) -> TaskRecord:
        """Regenerate one page on request, replacing any existing result.

        Makes a single attempt; errors propagate to the caller.
        """
        task = await self.store.get(task_id)
        if task is None:
            raise TaskNotFoundError(task_id)
        page = next((p for p in task.pages if p.page_number == page_number), None)
        if page is None:
            raise ValidationError(f"Task {task_id} has no page {page_number}")
        self.client.ensure_configured()

        text = page.text_content
        if not text.strip():
            text = await self.client.analyze_content(page.image_base64)

        image = await self.client.generate_design(
            DesignRequest(
                image_data=page.image_base64,
                text_content=text,
                brand_info=task.brand_info,
                page_number=page_number,
                aspect_ratio=task.aspect_ratio,
                extra_instructions=extra_instructions,
            )
        )
        record = await self.store.add_result(task_id, page_number, image)
        logger.info("pipeline event=page_redone task_id=%s page=%s", task_id, page_number)

        if record.status == "processing":
            return record
        if len(record.results) == record.total_pages:
            record = await self.store.update(
                task_id, status="completed", progress=100, error=None
            )
        elif record.status == "failed":
            # A failed task with at least one result is a partial completion
            missing = [p.page_number for p in record.pending_pages()]
            record = await self.store.update(
                task_id,
                status="completed",
                status_message="Completed with failed pages",
                error=failure_summary(missing),
            )
        return record

    async def _abort(
        self, task_id: str, failed: List[int], error: ConfigurationError
    ) -> None:
        """Record a run ended by missing configuration.

        The task is marked failed only when it has no result at all; otherwise
        it keeps its status so a later run can resume it.
        """
        try:
            record = await self.store.get(task_id)
            if record is None:
                raise TaskNotFoundError(task_id)
            await self.store.update(
                task_id,
                status=record.status if record.results else "failed",
                processing_pages=[],
                failed_pages=failed,
                status_message="Generation service is not configured",
                error=str(error),
            )
        except TaskNotFoundError as e:
            logger.error("pipeline event=abort_failed task_id=%s error=%s", task_id, e)

    async def _discard(self, task_id: str, page_number: int):
        try:
            await self.store.discard_processing(task_id, page_number)
        except TaskNotFoundError as e:
            logger.error(
                "pipeline event=discard_failed task_id=%s page=%s error=%s",
                task_id,
                page_number,
                e,
            )

    async def _finish(self, report: RunReport) -> RunReport:
        record = await self.store.get(report.task_id)
        if record is None:
            raise TaskNotFoundError(report.task_id)

        failed = sorted(report.failed)
        completed = len(record.results)
        fields = {"processing_pages": [], "failed_pages": failed}

        if completed == record.total_pages:
            fields.update(
                status="completed", progress=100, status_message="Completed", error=None
            )
        elif report.stopped:
            fields.update(
                status="processing",
                status_message="Paused",
                error=failure_summary(failed) if failed else None,
            )
        elif completed == 0:
            fields.update(
                status="failed",
                status_message="All pages failed",
                error=failure_summary(failed) if failed else None,
            )
        else:
            fields.update(
                status="completed",
                status_message="Completed with failed pages",
                error=failure_summary(failed) if failed else None,
            )

        await self.store.update(report.task_id, **fields)
        report.status = fields["status"]
        logger.info(
            "pipeline event=finish task_id=%s status=%s succeeded=%s failed=%s stopped=%s",
            report.task_id,
            report.status,
            len(report.succeeded),
            len(failed),
            report.stopped,
        )
        return report
