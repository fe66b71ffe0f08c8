"""Client-driven redraw runs.

A `RedrawSession` keeps its task in memory and runs `BatchPipeline` in the
caller's own event loop, so the caller decides when to stop and resume.
`RemoteGenerationClient` lets such a session generate pages through a running
service's `POST /generate-image` endpoint.
"""

import asyncio
import functools
import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Dict, Iterable, List, Optional, Union

import requests

from .errors import ConfigurationError, GenerationError
from .models import BrandInfo, DesignRequest, PageInput, TaskRecord
from .pipeline import BatchPipeline, DesignGenerator, RunReport
from .store import InMemoryTaskStore

logger = logging.getLogger(__name__)


class RemoteGenerationClient:
    """Generation client backed by a redraw service's HTTP API"""

    def __init__(
        self, base_url: str, timeout: Optional[float] = None, max_workers: int = 10
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.available = True
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="redraw-remote"
        )

    def ensure_configured(self):
        """Raise unless the service can generate.

        After a missing-key response the service is asked again through
        `GET /generate-image`, so configuring it later clears the error.
        """
        if self.available:
            return
        try:
            response = requests.get(f"{self.base_url}/generate-image", timeout=self.timeout)
            data = response.json()
        except (requests.RequestException, ValueError) as e:
            raise ConfigurationError(
                f"Remote generation service is unreachable: {e}"
            ) from e
        if not isinstance(data, dict) or data.get("available") is not True:
            raise ConfigurationError("Remote generation service is not configured")
        logger.info("session event=remote_available base_url=%s", self.base_url)
        self.available = True

    def close(self):
        self._executor.shutdown(wait=False, cancel_futures=True)

    async def analyze_content(self, image_data: str) -> str:
        # The service analyzes pages that arrive without text
        return ""

    def _post(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        try:
            response = requests.post(
                f"{self.base_url}/generate-image", json=payload, timeout=self.timeout
            )
        except requests.RequestException as e:
            raise GenerationError(f"request failed: {e}") from e

        try:
            data = response.json()
        except ValueError:
            raise GenerationError(
                f"invalid response [{response.status_code}]",
                status_code=response.status_code,
                body=response.text,
            ) from None
        if not isinstance(data, dict):
            raise GenerationError(
                f"invalid response [{response.status_code}]",
                status_code=response.status_code,
                body=response.text,
            )

        if data.get("needsApiKey"):
            self.available = False
            raise ConfigurationError(data.get("error") or "API key is not configured")
        if not response.ok or not data.get("success"):
            raise GenerationError(
                data.get("error") or f"request failed [{response.status_code}]",
                status_code=response.status_code,
                body=response.text,
            )
        if not isinstance(data.get("generatedImage"), str) or not data["generatedImage"]:
            raise GenerationError("no image in response", body=response.text)
        self.available = True
        return data

    async def generate_design(self, request: DesignRequest) -> str:
        self.ensure_configured()
        payload = {
            "pageImage": request.image_data,
            "pageContent": request.text_content,
            "brandInfo": request.brand_info.to_json_dict(),
            "pageNumber": request.page_number,
            "aspectRatio": request.aspect_ratio,
            "additionalInstructions": request.extra_instructions,
        }
        loop = asyncio.get_running_loop()
        data = await loop.run_in_executor(
            self._executor, functools.partial(self._post, payload)
        )
        return data["generatedImage"]


class RedrawSession:
    """One deck redrawn in the foreground with stop and resume"""

    def __init__(
        self,
        pages: Iterable[Union[PageInput, Dict[str, Any]]],
        brand_info: Union[BrandInfo, Dict[str, Any]],
        client: DesignGenerator,
        aspect_ratio: str = "16:9",
        file_name: Optional[str] = None,
        concurrency: int = 10,
        max_retries: int = 3,
        backoff_seconds: float = 1.0,
    ):
        self.store = InMemoryTaskStore()
        self.pipeline = BatchPipeline(
            self.store,
            client,
            concurrency=concurrency,
            max_retries=max_retries,
            backoff_seconds=backoff_seconds,
        )
        self.task_id: Optional[str] = None
        self._pages = list(pages)
        self._brand_info = brand_info
        self._aspect_ratio = aspect_ratio
        self._file_name = file_name
        self._stop_requested = False

    async def _ensure_task(self) -> str:
        if self.task_id is None:
            summary = await self.store.create(
                self._pages, self._brand_info, self._aspect_ratio, self._file_name
            )
            self.task_id = summary.id
        return self.task_id

    def _should_stop(self) -> bool:
        return self._stop_requested

    async def run(self) -> RunReport:
        """Generate every page without a result"""
        task_id = await self._ensure_task()
        self._stop_requested = False
        report = await self.pipeline.run(task_id, self._should_stop)
        logger.info(
            "session event=run_finished task_id=%s status=%s stopped=%s",
            task_id,
            report.status,
            report.stopped,
        )
        return report

    async def resume(self) -> RunReport:
        """Continue after a stop; completed pages are skipped"""
        return await self.run()

    def stop(self):
        """No new pages or retries start; in-flight calls finish"""
        self._stop_requested = True

    async def redo_page(
        self, page_number: int, extra_instructions: Optional[str] = None
    ) -> TaskRecord:
        task_id = await self._ensure_task()
        return await self.pipeline.redo_page(task_id, page_number, extra_instructions)

    @property
    def record(self) -> Optional[TaskRecord]:
        if self.task_id is None:
            return None
        return self.store.peek(self.task_id)

    @property
    def results(self) -> Dict[int, str]:
        record = self.record
        return dict(record.results) if record else {}

    @property
    def progress(self) -> int:
        record = self.record
        return record.progress if record else 0

    @property
    def failed_pages(self) -> List[int]:
        record = self.record
        return list(record.failed_pages) if record else []
