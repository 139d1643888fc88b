"""Public entry point for render jobs: submit, poll, fetch, cancel, list."""

import base64
import logging
import os
import uuid
from typing import Any, Dict, List, Mapping, Optional, Union

from pydantic import ValidationError
from pydantic.alias_generators import to_snake

from renderbridge.jobs.dispatcher import JobDispatcher
from renderbridge.jobs.errors import (
    AlreadyTerminal,
    InvalidArgument,
    InvalidTransition,
    JobAlreadyExists,
    NotReady,
)
from renderbridge.jobs.models import JobRecord, JobStatus, RenderRequest, RenderResult
from renderbridge.render.presets import PRESETS
from renderbridge.storage.job_store import JobStore
from renderbridge.storage.temp_results import RenderOutputStore

logger = logging.getLogger(__name__)

_MAX_ID_ATTEMPTS = 5


def new_job_id() -> str:
    return uuid.uuid4().hex[:8]


class JobOrchestrator:
    """Creates render jobs and answers every question about them from the store.

    Nothing here waits for a render: ``submit`` persists a queued record,
    hands the job id to the dispatcher and returns.
    """

    def __init__(
        self,
        store: JobStore,
        dispatcher: JobDispatcher,
        outputs: RenderOutputStore,
        defaults: Optional[Mapping[str, Any]] = None,
        id_factory=new_job_id,
    ):
        self._store = store
        self._dispatcher = dispatcher
        self._outputs = outputs
        self._defaults: Dict[str, Any] = _snake_keys(defaults or {})
        self._id_factory = id_factory

    def _validate(self, request: Union[RenderRequest, Mapping[str, Any]]) -> RenderRequest:
        if not isinstance(request, RenderRequest):
            payload = {**self._defaults, **_snake_keys(request)}
            try:
                request = RenderRequest.model_validate(payload)
            except ValidationError as exc:
                raise InvalidArgument(_describe(exc)) from exc
        if not os.path.isfile(request.image_path):
            raise InvalidArgument(f"Image file not found: {request.image_path}")
        return request

    async def submit(self, request: Union[RenderRequest, Mapping[str, Any]]) -> JobRecord:
        request = self._validate(request)

        for _ in range(_MAX_ID_ATTEMPTS):
            record = JobRecord.from_request(self._id_factory(), request)
            try:
                self._store.create(record)
                break
            except JobAlreadyExists:
                logger.warning("Job id %s already taken, generating another", record.job_id)
        else:
            raise JobAlreadyExists(record.job_id)

        await self._dispatcher.submit(record.job_id)
        logger.info("Job %s: queued (%s, style=%s)",
                    record.job_id, record.image_path, record.style_preset)
        return record

    def status(self, job_id: str) -> JobRecord:
        return self._store.read(job_id)

    def result(self, job_id: str, include_content: bool = False) -> RenderResult:
        record = self._store.read(job_id)
        if record.status != JobStatus.COMPLETED:
            raise NotReady(job_id, record.status.value)

        content = None
        if include_content:
            content = base64.b64encode(
                self._outputs.read_artifact(record.result_image)
            ).decode("ascii")

        return RenderResult(
            job_id=record.job_id,
            result_image=record.result_image,
            prompt=record.prompt,
            style_preset=record.style_preset,
            content_base64=content,
        )

    def cancel(self, job_id: str) -> JobRecord:
        try:
            record = self._store.update(job_id, JobRecord.mark_cancelled)
        except InvalidTransition as exc:
            raise AlreadyTerminal(f"Cannot cancel a finished job: {job_id}") from exc
        logger.info("Job %s: cancelled", job_id)
        return record

    def list(self, status: Optional[Union[JobStatus, str]] = None) -> List[JobRecord]:
        if status is not None and not isinstance(status, JobStatus):
            try:
                status = JobStatus(status)
            except ValueError:
                raise InvalidArgument(f"Unknown job status: {status}") from None
        return self._store.list(status)

    def presets(self) -> Dict[str, dict]:
        return {name: preset.to_dict() for name, preset in PRESETS.items()}


def _snake_keys(values: Mapping[str, Any]) -> Dict[str, Any]:
    # Callers may use either imagePath or image_path; absent means "use the default".
    return {to_snake(k): v for k, v in values.items() if v is not None}


def _describe(exc: ValidationError) -> str:
    parts = []
    for err in exc.errors():
        loc = ".".join(str(p) for p in err["loc"]) or "request"
        parts.append(f"{loc}: {err['msg']}")
    return "; ".join(parts)
