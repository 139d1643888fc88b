"""Render job API: submit renders, poll status, fetch results, cancel."""

from typing import Any, Dict, NoReturn, Optional

from fastapi import APIRouter, HTTPException, Query, status
from pydantic import BaseModel

from renderbridge.jobs.errors import (
    AlreadyTerminal,
    InvalidArgument,
    JobNotFound,
    NotReady,
    RenderJobError,
)
from renderbridge.jobs.models import JobRecord

router = APIRouter()

# Set by main.py during lifespan
_orchestrator = None


def set_orchestrator(orchestrator):
    global _orchestrator
    _orchestrator = orchestrator


def _require_orchestrator():
    if _orchestrator is None:
        raise HTTPException(status_code=503, detail="Render orchestrator not initialized")
    return _orchestrator


def raise_render_job_error(exc: RenderJobError) -> NoReturn:
    if isinstance(exc, InvalidArgument):
        status_code = status.HTTP_400_BAD_REQUEST
    elif isinstance(exc, JobNotFound):
        status_code = status.HTTP_404_NOT_FOUND
    elif isinstance(exc, (NotReady, AlreadyTerminal)):
        status_code = status.HTTP_409_CONFLICT
    else:
        status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    raise HTTPException(status_code=status_code, detail=str(exc)) from exc


class RenderSubmitRequest(BaseModel):
    imagePath: Optional[str] = None
    prompt: Optional[str] = None
    stylePreset: Optional[str] = None
    negativePrompt: Optional[str] = None
    backend: Optional[str] = None
    backendUrl: Optional[str] = None


class RenderSubmitResponse(BaseModel):
    jobId: str
    status: str
    message: str


def _record_view(record: JobRecord) -> Dict[str, Any]:
    return record.model_dump(mode="json", by_alias=True, exclude_none=True)


@router.post("/renders", response_model=RenderSubmitResponse, status_code=202)
async def submit_render(request: RenderSubmitRequest):
    """Queue a viewport capture for AI rendering."""
    orchestrator = _require_orchestrator()
    try:
        record = await orchestrator.submit(request.model_dump(exclude_none=True))
    except RenderJobError as exc:
        raise_render_job_error(exc)
    return RenderSubmitResponse(
        jobId=record.job_id,
        status=record.status.value,
        message="Render job queued. Poll GET /api/v1/renders/{id} for status.",
    )


@router.get("/renders")
async def list_renders(status_filter: Optional[str] = Query(None, alias="status")):
    """List render jobs, optionally only those in one status."""
    orchestrator = _require_orchestrator()
    try:
        records = orchestrator.list(status_filter)
    except RenderJobError as exc:
        raise_render_job_error(exc)
    return {
        "count": len(records),
        "jobs": [
            {
                "jobId": r.job_id,
                "status": r.status.value,
                "stylePreset": r.style_preset,
                "createdAt": r.created_at.isoformat(),
                "progress": r.progress,
            }
            for r in records
        ],
    }


@router.get("/renders/presets")
async def list_presets():
    """Available render style presets."""
    orchestrator = _require_orchestrator()
    return {"presets": orchestrator.presets()}


@router.get("/renders/{job_id}")
async def get_render_status(job_id: str):
    """Current record of a render job."""
    orchestrator = _require_orchestrator()
    try:
        record = orchestrator.status(job_id)
    except RenderJobError as exc:
        raise_render_job_error(exc)
    return _record_view(record)


@router.get("/renders/{job_id}/result")
async def get_render_result(job_id: str, include_content: bool = False):
    """Result of a completed render; image bytes (base64) only when asked for."""
    orchestrator = _require_orchestrator()
    try:
        result = orchestrator.result(job_id, include_content=include_content)
    except RenderJobError as exc:
        raise_render_job_error(exc)
    except FileNotFoundError:
        raise HTTPException(status_code=410, detail="Render artifact no longer exists")
    return {
        "jobId": result.job_id,
        "resultImage": result.result_image,
        "prompt": result.prompt,
        "stylePreset": result.style_preset,
        "base64Image": result.content_base64,
    }


@router.post("/renders/{job_id}/cancel")
async def cancel_render(job_id: str):
    """Mark a queued or running render cancelled. A running backend is not killed."""
    orchestrator = _require_orchestrator()
    try:
        record = orchestrator.cancel(job_id)
    except RenderJobError as exc:
        raise_render_job_error(exc)
    return {
        "jobId": record.job_id,
        "status": record.status.value,
        "message": f"Job {record.job_id} cancelled",
    }
