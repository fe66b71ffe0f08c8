"""Task routing endpoints"""

import logging
from typing import Optional

from fastapi import APIRouter, Query, Request

from ..errors import TaskNotFoundError, ValidationError
from ..models import (
    DEFAULT_BRAND,
    AnalyzeStyleRequest,
    CreateTaskRequest,
    DesignRequest,
    GenerateImageRequest,
    ProcessTaskRequest,
    RedoPageRequest,
    StopTaskRequest,
)

logger = logging.getLogger(__name__)

router = APIRouter(
    tags=["tasks"],
    responses={404: {"description": "Not found"}},
)


@router.get("/health")
async def health():
    return {"status": "ok"}


@router.post("/task/create")
async def create_task(body: CreateTaskRequest, request: Request):
    """Store a new pending task and return its summary"""
    if not body.pages:
        raise ValidationError("Missing page data")
    if body.brand_info is None:
        raise ValidationError("Missing brand info")

    store = request.app.state.store
    summary = await store.create(
        body.pages, body.brand_info, body.aspect_ratio, body.file_name
    )
    return {
        "success": True,
        "task": summary.to_json_dict(),
        "message": f"Task created with {summary.total_pages} pages to process",
    }


@router.post("/task/process")
async def process_tasks(request: Request, body: Optional[ProcessTaskRequest] = None):
    """Queue one task, or every pending task, for background processing.

    Returns as soon as the runs are queued; progress is reported through
    `GET /task/status`.
    """
    state = request.app.state
    state.client.ensure_configured()

    removed = await state.manager.sweep_expired()
    if removed:
        logger.info("api event=swept removed=%s", removed)

    task_id = body.task_id if body else None
    if task_id:
        if await state.store.get_summary(task_id) is None:
            raise TaskNotFoundError(task_id)
        queued = await state.manager.enqueue(task_id)
        message = (
            f"Background processing started for task {task_id}"
            if queued
            else f"Task {task_id} is already being processed"
        )
        return {
            "success": True,
            "message": message,
            "taskId": task_id,
            "queued": queued,
        }

    queued_ids = await state.manager.enqueue_pending()
    if not queued_ids:
        return {"success": True, "message": "No pending tasks", "processed": 0}
    return {
        "success": True,
        "message": f"Background processing started for {len(queued_ids)} tasks",
        "taskIds": queued_ids,
    }


@router.get("/task/process")
async def pending_tasks(request: Request):
    """Pending and processing tasks, oldest first"""
    pending = await request.app.state.store.list_pending()
    return {
        "pendingCount": len(pending),
        "tasks": [
            {
                "id": task.id,
                "status": task.status,
                "progress": task.progress,
                "totalPages": task.total_pages,
            }
            for task in pending
        ],
    }


@router.post("/task/stop")
async def stop_task(body: StopTaskRequest, request: Request):
    """Pause a queued or running task. Resume it with `POST /task/process`."""
    state = request.app.state
    if await state.store.get_summary(body.task_id) is None:
        raise TaskNotFoundError(body.task_id)
    stopped = state.manager.request_stop(body.task_id)
    return {"success": True, "stopped": stopped}


@router.post("/task/redo")
async def redo_page(body: RedoPageRequest, request: Request):
    """Regenerate a single page and replace its result"""
    record = await request.app.state.manager.redo_page(
        body.task_id, body.page_number, body.additional_instructions
    )
    return {"success": True, "task": record.summary().to_json_dict()}


@router.get("/task/status")
async def task_status(
    request: Request,
    task_id: Optional[str] = Query(None, alias="id"),
    results: bool = False,
    list_all: bool = Query(False, alias="list"),
):
    """Status of one task, optionally with its results, or the recent task list"""
    store = request.app.state.store
    if list_all:
        summaries = await store.list(limit=50)
        return {"success": True, "tasks": [s.to_json_dict() for s in summaries]}

    if not task_id:
        raise ValidationError("Missing task id")

    if results:
        record = await store.get(task_id)
        if record is None:
            raise TaskNotFoundError(task_id)
        task = record.summary().to_json_dict()
        task["results"] = {str(number): image for number, image in record.results.items()}
        return {"success": True, "task": task}

    summary = await store.get_summary(task_id)
    if summary is None:
        raise TaskNotFoundError(task_id)
    return {"success": True, "task": summary.to_json_dict()}


@router.post("/generate-image")
async def generate_image(body: GenerateImageRequest, request: Request):
    """Synchronous single-page generation"""
    client = request.app.state.client
    client.ensure_configured()
    if not body.page_image:
        raise ValidationError("Missing page image")

    content = body.page_content or ""
    if not content.strip():
        content = await client.analyze_content(body.page_image)

    image = await client.generate_design(
        DesignRequest(
            image_data=body.page_image,
            text_content=content,
            brand_info=body.brand_info or DEFAULT_BRAND,
            page_number=body.page_number,
            aspect_ratio=body.aspect_ratio,
            extra_instructions=body.additional_instructions,
        )
    )
    return {"success": True, "generatedImage": image, "pageNumber": body.page_number}


@router.get("/generate-image")
async def generation_available(request: Request):
    available = request.app.state.client.configured
    return {
        "available": available,
        "message": "API key is configured"
        if available
        else "Set GEMINI_API_KEY in .env.local",
    }


@router.post("/analyze-style")
async def analyze_style(body: AnalyzeStyleRequest, request: Request):
    """Extract a reusable style profile from reference images or PDFs"""
    if not body.files:
        raise ValidationError("Upload at least one reference file")
    profile = await request.app.state.client.analyze_style(body.files)
    return {"success": True, "styleProfile": profile.to_json_dict()}
