"""Runs one render job from queued to a terminal state."""

import asyncio
import logging
import os
import traceback
from typing import Optional

from renderbridge.jobs.errors import InvalidTransition, JobNotFound, RenderJobError
from renderbridge.jobs.models import JobRecord, JobStatus
from renderbridge.render.backend import BackendInvocation, BackendInvoker
from renderbridge.render.presets import get_preset
from renderbridge.storage.job_store import JobStore
from renderbridge.storage.temp_results import RenderOutputStore

logger = logging.getLogger(__name__)

NO_ARTIFACT_ERROR = "backend reported success but produced no artifact"


class RenderExecutor:
    """Supervises exactly one backend invocation per job.

    Every state change is written through the job store, off the event loop
    since file-backed stores block on disk I/O. A job that was
    cancelled while it ran keeps its cancelled state; the late outcome is
    logged and dropped.
    """

    def __init__(self, store: JobStore, invoker: BackendInvoker, outputs: RenderOutputStore):
        self._store = store
        self._invoker = invoker
        self._outputs = outputs

    async def execute(self, job_id: str) -> Optional[JobRecord]:
        try:
            record = await self._update(job_id, JobRecord.mark_processing)
        except InvalidTransition:
            logger.info("Job %s: no longer queued, skipping render", job_id)
            return None
        except JobNotFound:
            logger.warning("Job %s: record vanished before dispatch", job_id)
            return None

        invocation = BackendInvocation(
            job_id=record.job_id,
            image_path=record.image_path,
            prompt=record.prompt,
            negative_prompt=record.negative_prompt,
            style_preset=record.style_preset,
            backend=record.backend,
            backend_url=record.backend_url,
            output_dir=self._outputs.output_dir,
        )
        if get_preset(invocation.style_preset) is None:
            logger.info("Job %s: passing unknown style preset %r through",
                        job_id, invocation.style_preset)

        reported = 0

        async def on_progress(progress: float) -> None:
            # One write per whole percent at most
            nonlocal reported
            if int(progress) <= reported:
                return
            reported = int(progress)
            await self._report_progress(job_id, progress)

        logger.info("Job %s: rendering via %s at %s", job_id, invocation.backend, invocation.backend_url)
        try:
            result = await self._invoker.invoke(invocation, on_progress=on_progress)
        except Exception as e:
            logger.error("Job %s: backend invocation raised %s", job_id, e)
            logger.debug("%s", traceback.format_exc())
            return await self._finish(job_id, error=f"{type(e).__name__}: {e}")

        if not result.ok:
            logger.warning("Job %s: backend failed (exit code %s)", job_id, result.exit_code)
            return await self._finish(job_id, error=result.error or "render backend failed")

        artifact = self._resolve_artifact(job_id, result.artifact_path)
        if artifact is None:
            return await self._finish(job_id, error=NO_ARTIFACT_ERROR)
        return await self._finish(job_id, result_image=artifact)

    def _resolve_artifact(self, job_id: str, declared: Optional[str]) -> Optional[str]:
        if declared and os.path.isfile(declared):
            return declared

        fallback = self._outputs.default_result_path(job_id)
        if declared:
            logger.warning("Job %s: declared result %s does not exist, trying %s",
                           job_id, declared, fallback)
        else:
            logger.warning("Job %s: backend declared no result, trying %s", job_id, fallback)
        if os.path.isfile(fallback):
            return fallback
        logger.error("Job %s: no render artifact found", job_id)
        return None

    async def _update(self, job_id: str, mutator) -> JobRecord:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self._store.update, job_id, mutator)

    async def _report_progress(self, job_id: str, progress: float) -> None:
        try:
            await self._update(job_id, lambda r: r.with_progress(progress))
        except InvalidTransition:
            logger.debug("Job %s: ignoring progress %.1f, job is no longer processing", job_id, progress)
        except (RenderJobError, OSError) as e:
            logger.warning("Job %s: could not record progress %.1f: %s", job_id, progress, e)

    async def _finish(
        self,
        job_id: str,
        result_image: Optional[str] = None,
        error: Optional[str] = None,
    ) -> Optional[JobRecord]:
        def terminal(record: JobRecord) -> JobRecord:
            if result_image is not None:
                return record.mark_completed(result_image)
            return record.mark_failed(error)

        try:
            record = await self._update(job_id, terminal)
        except InvalidTransition:
            loop = asyncio.get_running_loop()
            current = await loop.run_in_executor(None, self._store.read, job_id)
            logger.info("Job %s: already %s, discarding render outcome",
                        job_id, current.status.value)
            return current

        if record.status == JobStatus.COMPLETED:
            logger.info("Job %s: completed -> %s", job_id, record.result_image)
        else:
            logger.info("Job %s: failed: %s", job_id, record.error)
        return record
