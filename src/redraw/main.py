"""Main FastAPI application for redraw"""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from .api.router import router
from .config import Settings, get_settings
from .errors import (
    ConfigurationError,
    GenerationError,
    RedrawError,
    TaskBusyError,
    TaskNotFoundError,
    ValidationError,
)
from .generation import GenerationClient
from .manager import TaskManager
from .pipeline import BatchPipeline
from .store import FileTaskStore, TaskStore

logger = logging.getLogger(__name__)

ERROR_STATUS = {
    ValidationError: 400,
    ConfigurationError: 400,
    TaskNotFoundError: 404,
    TaskBusyError: 409,
    GenerationError: 500,
}


def configure_logging(level: str):
    logging.basicConfig(
        level=level.upper(),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )


async def redraw_error_handler(request: Request, exc: RedrawError) -> JSONResponse:
    status_code = next(
        (code for cls, code in ERROR_STATUS.items() if isinstance(exc, cls)), 500
    )
    content = {"success": False, "error": str(exc), "code": exc.code}
    if isinstance(exc, ConfigurationError):
        content["needsApiKey"] = True
    if status_code >= 500:
        logger.error(
            "api event=request_failed path=%s code=%s error=%s",
            request.url.path,
            exc.code,
            exc,
        )
    return JSONResponse(status_code=status_code, content=content)


async def request_validation_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    errors = exc.errors()
    first = errors[0] if errors else {}
    location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
    message = first.get("msg", "Invalid request")
    return JSONResponse(
        status_code=400,
        content={
            "success": False,
            "error": f"{location}: {message}" if location else message,
            "code": "VALIDATION_ERROR",
        },
    )


def create_app(
    settings: Optional[Settings] = None,
    store: Optional[TaskStore] = None,
    client: Optional[GenerationClient] = None,
) -> FastAPI:
    """Build the service with its store, generation client and task manager"""
    settings = settings or get_settings()
    configure_logging(settings.log_level)

    store = store if store is not None else FileTaskStore(settings.task_dir)
    client = client if client is not None else GenerationClient.from_settings(settings)
    pipeline = BatchPipeline(
        store,
        client,
        concurrency=settings.concurrency,
        max_retries=settings.max_retries,
        backoff_seconds=settings.retry_backoff_seconds,
    )
    manager = TaskManager(
        store,
        pipeline,
        max_workers=settings.worker_count,
        sweep_cron=settings.sweep_cron,
        retention_hours=settings.retention_hours,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Start the task manager on startup and stop it on shutdown"""
        await manager.start()

        yield  # App is running

        await manager.stop()
        close = getattr(client, "close", None)
        if close is not None:
            close()

    app = FastAPI(
        title="Redraw",
        description="Batch page redraw service",
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.store = store
    app.state.client = client
    app.state.pipeline = pipeline
    app.state.manager = manager

    app.add_exception_handler(RedrawError, redraw_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)

    # Include the router
    app.include_router(router)
    return app
