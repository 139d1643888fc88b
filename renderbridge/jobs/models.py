"""Render job record and submission models."""

from datetime import datetime, timezone
from enum import Enum
from typing import Optional
from urllib.parse import urlparse

from pydantic import BaseModel, ConfigDict, field_validator
from pydantic.alias_generators import to_camel

from renderbridge.jobs.errors import InvalidTransition


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class JobStatus(str, Enum):
    QUEUED = "queued"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


TERMINAL_STATUSES = frozenset(
    {JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED}
)


class _CamelModel(BaseModel):
    # Persisted and served with camelCase keys; unknown keys are ignored on load.
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )


class RenderRequest(_CamelModel):
    """Parameters of one render submission."""
    image_path: str
    prompt: str = "architectural visualization"
    style_preset: str = "photorealistic"
    negative_prompt: str = ""
    backend: str = "automatic1111"
    backend_url: str = "http://localhost:7860"

    @field_validator("image_path", "backend", "style_preset")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("must not be blank")
        return value

    @field_validator("backend_url")
    @classmethod
    def _absolute_uri(cls, value: str) -> str:
        value = value.strip()
        parsed = urlparse(value)
        if not parsed.scheme or not parsed.netloc:
            raise ValueError(f"not an absolute URI: {value!r}")
        return value


class JobRecord(RenderRequest):
    """Persisted lifecycle of one render job.

    Transition helpers never mutate the record; they return an updated copy
    and raise InvalidTransition when the state machine forbids the move.
    """
    job_id: str
    status: JobStatus
    progress: Optional[float] = None
    result_image: Optional[str] = None
    error: Optional[str] = None
    created_at: datetime
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    @classmethod
    def from_request(cls, job_id: str, request: RenderRequest) -> "JobRecord":
        return cls(
            job_id=job_id,
            status=JobStatus.QUEUED,
            progress=0.0,
            created_at=_utcnow(),
            **request.model_dump(),
        )

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def _require(self, *allowed: JobStatus, target: JobStatus) -> None:
        if self.status not in allowed:
            raise InvalidTransition(
                f"Job {self.job_id}: cannot move from {self.status.value} to {target.value}"
            )

    def mark_processing(self) -> "JobRecord":
        self._require(JobStatus.QUEUED, target=JobStatus.PROCESSING)
        return self.model_copy(update={
            "status": JobStatus.PROCESSING,
            "progress": 0.0,
            "started_at": _utcnow(),
        })

    def with_progress(self, progress: float) -> "JobRecord":
        self._require(JobStatus.PROCESSING, target=JobStatus.PROCESSING)
        progress = min(100.0, max(0.0, float(progress)))
        if progress <= (self.progress or 0.0):
            return self
        return self.model_copy(update={"progress": progress})

    def mark_completed(self, result_image: str) -> "JobRecord":
        self._require(JobStatus.PROCESSING, target=JobStatus.COMPLETED)
        return self.model_copy(update={
            "status": JobStatus.COMPLETED,
            "progress": 100.0,
            "result_image": result_image,
            "completed_at": _utcnow(),
        })

    def mark_failed(self, error: str) -> "JobRecord":
        self._require(JobStatus.PROCESSING, target=JobStatus.FAILED)
        return self.model_copy(update={
            "status": JobStatus.FAILED,
            "error": error or "unknown error",
            "completed_at": _utcnow(),
        })

    def mark_cancelled(self) -> "JobRecord":
        self._require(JobStatus.QUEUED, JobStatus.PROCESSING, target=JobStatus.CANCELLED)
        return self.model_copy(update={
            "status": JobStatus.CANCELLED,
            "completed_at": _utcnow(),
        })

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True, exclude_none=True, indent=2)

    @classmethod
    def from_json(cls, data: str) -> "JobRecord":
        return cls.model_validate_json(data)


class RenderResult(BaseModel):
    """Result of a completed job, with the artifact bytes only on request."""
    job_id: str
    result_image: str
    prompt: str
    style_preset: str
    content_base64: Optional[str] = None
