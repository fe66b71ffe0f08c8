"""Task record storage.

`TaskStore` implements every operation once on top of four backend
primitives. Read-modify-write operations hold a per-task lock so that
concurrent writers for the same task (one per in-flight page) merge field by
field instead of overwriting each other's results.
"""

import asyncio
import logging
import os
import re
import tempfile
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Union
from uuid import uuid4

import pydantic

from .errors import TaskNotFoundError, ValidationError
from .models import (
    BrandInfo,
    PageInput,
    TaskRecord,
    TaskSummary,
    compute_progress,
)

logger = logging.getLogger(__name__)

# Fields fixed at creation
_IMMUTABLE_FIELDS = {"id", "created_at", "updated_at", "pages", "total_pages"}
_TASK_ID_PATTERN = re.compile(r"^[A-Za-z0-9_-]+$")


def utc_now() -> datetime:
    return datetime.now(tz=timezone.utc)


class TaskStore:
    """Keyed storage for task records. Subclasses provide the backend."""

    def __init__(self) -> None:
        self._locks: Dict[str, asyncio.Lock] = {}

    # Backend primitives

    async def _load(self, task_id: str) -> Optional[TaskRecord]:
        raise NotImplementedError("Subclasses must implement _load()")

    async def _save(self, record: TaskRecord) -> None:
        raise NotImplementedError("Subclasses must implement _save()")

    async def _delete(self, task_id: str) -> None:
        raise NotImplementedError("Subclasses must implement _delete()")

    async def _load_all(self) -> List[TaskRecord]:
        raise NotImplementedError("Subclasses must implement _load_all()")

    # Operations

    def _lock_for(self, task_id: str) -> asyncio.Lock:
        lock = self._locks.get(task_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[task_id] = lock
        return lock

    async def create(
        self,
        pages: Optional[Iterable[Union[PageInput, Dict[str, Any]]]],
        brand_info: Union[BrandInfo, Dict[str, Any], None] = None,
        aspect_ratio: Optional[str] = None,
        file_name: Optional[str] = None,
    ) -> TaskSummary:
        """Create a pending task and return its summary"""
        pages = list(pages or [])
        if not pages:
            raise ValidationError("pages must be a non-empty list")

        now = utc_now()
        try:
            record = TaskRecord(
                id=str(uuid4()),
                status="pending",
                created_at=now,
                updated_at=now,
                total_pages=len(pages),
                file_name=file_name or "untitled.pdf",
                pages=pages,
                brand_info=brand_info if brand_info is not None else BrandInfo(),
                aspect_ratio=aspect_ratio or "16:9",
            )
        except pydantic.ValidationError as exc:
            raise ValidationError(
                "invalid task input", details={"errors": exc.errors()}
            ) from None

        page_numbers = [page.page_number for page in record.pages]
        if len(set(page_numbers)) != len(page_numbers):
            raise ValidationError("page numbers must be unique")

        await self._save(record)
        logger.info(
            "store event=created task_id=%s total_pages=%s aspect_ratio=%s",
            record.id,
            record.total_pages,
            record.aspect_ratio,
        )
        return record.summary()

    async def get(self, task_id: str) -> Optional[TaskRecord]:
        """Full record including page payloads, or None"""
        return await self._load(task_id)

    async def get_summary(self, task_id: str) -> Optional[TaskSummary]:
        record = await self._load(task_id)
        if record is None:
            return None
        return record.summary()

    async def _mutate(self, task_id: str, changes) -> TaskRecord:
        """Apply `changes(record) -> dict` under the task's lock and persist"""
        async with self._lock_for(task_id):
            record = await self._load(task_id)
            if record is None:
                raise TaskNotFoundError(task_id)

            fields = changes(record)
            data = record.model_dump()
            data.update(fields)
            # updated_at never moves backwards
            data["updated_at"] = max(utc_now(), record.updated_at)
            updated = TaskRecord.model_validate(data)

            await self._save(updated)
            return updated

    async def update(self, task_id: str, **fields: Any) -> TaskRecord:
        """Shallow-merge fields into the stored record"""
        unknown = set(fields) - set(TaskRecord.model_fields)
        if unknown:
            raise ValueError(f"Unknown task fields: {sorted(unknown)}")
        frozen = set(fields) & _IMMUTABLE_FIELDS
        if frozen:
            raise ValueError(f"Task fields cannot be updated: {sorted(frozen)}")

        return await self._mutate(task_id, lambda record: fields)

    async def add_result(
        self, task_id: str, page_number: int, image_data: str
    ) -> TaskRecord:
        """Store one page result and recompute progress"""

        def changes(record: TaskRecord) -> Dict[str, Any]:
            results = dict(record.results)
            results[page_number] = image_data
            return {
                "results": results,
                "current_page": page_number,
                "progress": compute_progress(len(results), record.total_pages),
                "processing_pages": [
                    p for p in record.processing_pages if p != page_number
                ],
                "failed_pages": [p for p in record.failed_pages if p != page_number],
            }

        return await self._mutate(task_id, changes)

    async def discard_processing(self, task_id: str, page_number: int) -> TaskRecord:
        """Remove one page from the in-flight set"""
        return await self._mutate(
            task_id,
            lambda record: {
                "processing_pages": [
                    p for p in record.processing_pages if p != page_number
                ]
            },
        )

    async def list_pending(self) -> List[TaskRecord]:
        """Tasks that are pending or processing, oldest first"""
        records = [
            record
            for record in await self._load_all()
            if record.status in ("pending", "processing")
        ]
        records.sort(key=lambda record: record.created_at)
        return records

    async def list(self, limit: int = 50) -> List[TaskSummary]:
        """Most recently updated tasks first"""
        records = await self._load_all()
        records.sort(key=lambda record: record.updated_at, reverse=True)
        return [record.summary() for record in records[:limit]]

    async def sweep_expired(
        self, max_age_seconds: float, exclude: Iterable[str] = ()
    ) -> int:
        """Delete records created more than max_age_seconds ago"""
        cutoff = utc_now() - timedelta(seconds=max_age_seconds)
        skip = set(exclude)
        removed = 0
        for record in await self._load_all():
            if record.created_at < cutoff and record.id not in skip:
                async with self._lock_for(record.id):
                    await self._delete(record.id)
                self._locks.pop(record.id, None)
                removed += 1
        if removed:
            logger.info("store event=swept removed=%s", removed)
        return removed


class InMemoryTaskStore(TaskStore):
    """Dictionary-backed store for tests and client-driven sessions"""

    def __init__(self) -> None:
        super().__init__()
        self._records: Dict[str, TaskRecord] = {}

    async def _load(self, task_id: str) -> Optional[TaskRecord]:
        record = self._records.get(task_id)
        return record.model_copy(deep=True) if record else None

    async def _save(self, record: TaskRecord) -> None:
        self._records[record.id] = record.model_copy(deep=True)

    async def _delete(self, task_id: str) -> None:
        self._records.pop(task_id, None)

    async def _load_all(self) -> List[TaskRecord]:
        return [record.model_copy(deep=True) for record in self._records.values()]

    def peek(self, task_id: str) -> Optional[TaskRecord]:
        """Synchronous read of the current record"""
        record = self._records.get(task_id)
        return record.model_copy(deep=True) if record else None


class FileTaskStore(TaskStore):
    """One JSON file per task under a directory"""

    def __init__(self, directory: Union[str, Path]) -> None:
        super().__init__()
        self.directory = Path(directory)

    def _path(self, task_id: str) -> Optional[Path]:
        if not _TASK_ID_PATTERN.match(task_id):
            return None
        return self.directory / f"{task_id}.json"

    def _read_file(self, path: Path) -> Optional[TaskRecord]:
        if not path.exists():
            return None
        try:
            return TaskRecord.model_validate_json(path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            logger.error("store event=read_failed path=%s error=%s", path, e)
            return None

    def _write_file(self, record: TaskRecord) -> None:
        self.directory.mkdir(parents=True, exist_ok=True)
        payload = record.model_dump_json(by_alias=True, indent=2)
        fd, tmp_name = tempfile.mkstemp(
            dir=self.directory, prefix=f".{record.id}.", suffix=".tmp"
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(payload)
            os.replace(tmp_name, self.directory / f"{record.id}.json")
        except BaseException:
            if os.path.exists(tmp_name):
                os.remove(tmp_name)
            raise

    def _read_all(self) -> List[TaskRecord]:
        if not self.directory.exists():
            return []
        records = []
        for path in sorted(self.directory.glob("*.json")):
            record = self._read_file(path)
            if record is not None:
                records.append(record)
        return records

    async def _load(self, task_id: str) -> Optional[TaskRecord]:
        path = self._path(task_id)
        if path is None:
            return None
        return await asyncio.to_thread(self._read_file, path)

    async def _save(self, record: TaskRecord) -> None:
        if self._path(record.id) is None:
            raise TaskNotFoundError(record.id)
        await asyncio.to_thread(self._write_file, record)

    async def _delete(self, task_id: str) -> None:
        path = self._path(task_id)
        if path is None:
            return
        await asyncio.to_thread(path.unlink, missing_ok=True)

    async def _load_all(self) -> List[TaskRecord]:
        return await asyncio.to_thread(self._read_all)
