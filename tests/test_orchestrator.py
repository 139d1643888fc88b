from __future__ import annotations

import asyncio
import base64
import itertools
from contextlib import asynccontextmanager

import pytest

from fakes import FakeInvoker, write_default_artifact
from renderbridge.jobs.errors import (
    AlreadyTerminal,
    InvalidArgument,
    JobAlreadyExists,
    JobNotFound,
    NotReady,
)
from renderbridge.jobs.in_process_queue import InProcessQueue
from renderbridge.jobs.models import JobStatus, RenderRequest
from renderbridge.jobs.orchestrator import JobOrchestrator
from renderbridge.render.backend import BackendResult
from renderbridge.render.executor import RenderExecutor

_ORDER = {
    JobStatus.QUEUED: 0,
    JobStatus.PROCESSING: 1,
    JobStatus.COMPLETED: 2,
    JobStatus.FAILED: 2,
    JobStatus.CANCELLED: 2,
}


@asynccontextmanager
async def running(store, outputs, invoker, concurrency=2, **kwargs):
    queue = InProcessQueue(RenderExecutor(store, invoker, outputs).execute, concurrency=concurrency)
    orchestrator = JobOrchestrator(store, queue, outputs, **kwargs)
    await queue.start()
    try:
        yield orchestrator, queue
    finally:
        await queue.stop()


@pytest.mark.asyncio
async def test_submit_returns_queued_job_then_completes(store, outputs, image_path) -> None:
    async with running(store, outputs, FakeInvoker()) as (orchestrator, queue):
        record = await orchestrator.submit(RenderRequest(image_path=image_path, prompt="lobby"))

        assert record.status is JobStatus.QUEUED
        assert orchestrator.status(record.job_id).status in (JobStatus.QUEUED, JobStatus.PROCESSING)

        await queue.join()

    done = orchestrator.status(record.job_id)
    assert done.status is JobStatus.COMPLETED
    assert done.prompt == "lobby"
    assert orchestrator.result(record.job_id).result_image == done.result_image


@pytest.mark.asyncio
async def test_status_is_monotonic_while_polling(store, outputs, image_path) -> None:
    gate = asyncio.Event()
    invoker = FakeInvoker(gate=gate, progress=(30, 70))
    async with running(store, outputs, invoker) as (orchestrator, queue):
        job_id = (await orchestrator.submit({"imagePath": image_path})).job_id
        seen = [orchestrator.status(job_id).status]

        await invoker.started.wait()
        seen.append(orchestrator.status(job_id).status)
        gate.set()
        while not orchestrator.status(job_id).is_terminal:
            seen.append(orchestrator.status(job_id).status)
            await asyncio.sleep(0)
        seen.append(orchestrator.status(job_id).status)

    ranks = [_ORDER[s] for s in seen]
    assert ranks == sorted(ranks)
    assert seen[0] is JobStatus.QUEUED
    assert JobStatus.PROCESSING in seen
    assert seen[-1] is JobStatus.COMPLETED


@pytest.mark.asyncio
async def test_status_without_transition_is_identical(store, outputs, image_path) -> None:
    gate = asyncio.Event()
    async with running(store, outputs, FakeInvoker(gate=gate)) as (orchestrator, _):
        job_id = (await orchestrator.submit({"imagePath": image_path})).job_id
        first = orchestrator.status(job_id)
        assert all(orchestrator.status(job_id) == first for _ in range(5))
        gate.set()


@pytest.mark.asyncio
async def test_concurrent_submissions_are_disjoint(store, outputs, image_path) -> None:
    async with running(store, outputs, FakeInvoker(), concurrency=4) as (orchestrator, queue):
        records = await asyncio.gather(*(
            orchestrator.submit({"imagePath": image_path, "prompt": f"view {i}"})
            for i in range(20)
        ))
        await queue.join()

    ids = [r.job_id for r in records]
    assert len(set(ids)) == 20
    for i, job_id in enumerate(ids):
        stored = orchestrator.status(job_id)
        assert stored.prompt == f"view {i}"
        assert stored.status is JobStatus.COMPLETED
        assert job_id in stored.result_image
    assert len(orchestrator.list()) == 20


@pytest.mark.asyncio
async def test_identical_submissions_get_independent_outcomes(store, outputs, image_path) -> None:
    calls = itertools.count()

    def first_fails(invocation):
        if next(calls) == 0:
            return BackendResult(ok=False, exit_code=1, error="OOM")
        return write_default_artifact(invocation)

    async with running(store, outputs, FakeInvoker(first_fails), concurrency=1) as (orchestrator, queue):
        a = await orchestrator.submit({"imagePath": image_path})
        b = await orchestrator.submit({"imagePath": image_path})
        await queue.join()

    assert a.job_id != b.job_id
    assert orchestrator.status(a.job_id).status is JobStatus.FAILED
    assert orchestrator.status(b.job_id).status is JobStatus.COMPLETED


@pytest.mark.asyncio
async def test_backend_oom_ends_failed(store, outputs, image_path) -> None:
    invoker = FakeInvoker(lambda inv: BackendResult(ok=False, exit_code=137, error="OOM"))
    async with running(store, outputs, invoker) as (orchestrator, queue):
        job_id = (await orchestrator.submit({"imagePath": image_path})).job_id
        await queue.join()

    record = orchestrator.status(job_id)
    assert record.status is JobStatus.FAILED
    assert "OOM" in record.error
    with pytest.raises(NotReady):
        orchestrator.result(job_id)


@pytest.mark.asyncio
async def test_result_before_completion_is_not_ready(store, outputs, image_path) -> None:
    gate = asyncio.Event()
    async with running(store, outputs, FakeInvoker(gate=gate)) as (orchestrator, _):
        job_id = (await orchestrator.submit({"imagePath": image_path})).job_id
        with pytest.raises(NotReady):
            orchestrator.result(job_id)
        gate.set()


@pytest.mark.asyncio
async def test_result_content_only_on_request(store, outputs, image_path) -> None:
    async with running(store, outputs, FakeInvoker()) as (orchestrator, queue):
        job_id = (await orchestrator.submit({"imagePath": image_path})).job_id
        await queue.join()

    assert orchestrator.result(job_id).content_base64 is None
    content = orchestrator.result(job_id, include_content=True).content_base64
    assert base64.b64decode(content) == b"\x89PNG fake"


@pytest.mark.asyncio
async def test_missing_image_is_rejected_without_record(store, outputs, tmp_path) -> None:
    async with running(store, outputs, FakeInvoker()) as (orchestrator, queue):
        before = len(orchestrator.list())
        with pytest.raises(InvalidArgument):
            await orchestrator.submit({"imagePath": str(tmp_path / "nope.png")})
        with pytest.raises(InvalidArgument):
            await orchestrator.submit({"prompt": "no image at all"})
        assert len(orchestrator.list()) == before
        assert queue.pending == 0


@pytest.mark.asyncio
async def test_invalid_endpoint_is_rejected(store, outputs, image_path) -> None:
    async with running(store, outputs, FakeInvoker()) as (orchestrator, _):
        with pytest.raises(InvalidArgument, match=r"backend_?[uU]rl"):
            await orchestrator.submit({"imagePath": image_path, "backendUrl": "not a uri"})


@pytest.mark.asyncio
async def test_defaults_fill_missing_fields(store, outputs, image_path) -> None:
    defaults = {"style_preset": "sketch", "backend_url": "http://render-host:7860"}
    async with running(store, outputs, FakeInvoker(), defaults=defaults) as (orchestrator, queue):
        a = await orchestrator.submit({"imagePath": image_path})
        b = await orchestrator.submit({"image_path": image_path, "stylePreset": "blueprint"})
        await queue.join()

    assert a.style_preset == "sketch"
    assert a.backend_url == "http://render-host:7860"
    assert b.style_preset == "blueprint"


@pytest.mark.asyncio
async def test_cancel_queued_job_is_never_rendered(store, outputs, image_path) -> None:
    gate = asyncio.Event()
    invoker = FakeInvoker(gate=gate)
    async with running(store, outputs, invoker, concurrency=1) as (orchestrator, queue):
        first = await orchestrator.submit({"imagePath": image_path})
        second = await orchestrator.submit({"imagePath": image_path})
        await invoker.started.wait()

        assert orchestrator.status(second.job_id).status is JobStatus.QUEUED
        assert orchestrator.cancel(second.job_id).status is JobStatus.CANCELLED

        gate.set()
        await queue.join()

    assert [c.job_id for c in invoker.calls] == [first.job_id]
    assert orchestrator.status(first.job_id).status is JobStatus.COMPLETED
    assert orchestrator.status(second.job_id).status is JobStatus.CANCELLED


@pytest.mark.asyncio
async def test_cancel_processing_job_survives_backend_completion(store, outputs, image_path) -> None:
    gate = asyncio.Event()
    invoker = FakeInvoker(gate=gate)
    async with running(store, outputs, invoker) as (orchestrator, queue):
        job_id = (await orchestrator.submit({"imagePath": image_path})).job_id
        await invoker.started.wait()
        orchestrator.cancel(job_id)
        gate.set()
        await queue.join()

    record = orchestrator.status(job_id)
    assert record.status is JobStatus.CANCELLED
    assert record.result_image is None


@pytest.mark.asyncio
async def test_cancel_finished_job_is_rejected(store, outputs, image_path) -> None:
    async with running(store, outputs, FakeInvoker()) as (orchestrator, queue):
        job_id = (await orchestrator.submit({"imagePath": image_path})).job_id
        await queue.join()

    before = orchestrator.status(job_id)
    with pytest.raises(AlreadyTerminal):
        orchestrator.cancel(job_id)
    assert orchestrator.status(job_id) == before


@pytest.mark.asyncio
async def test_unknown_job(store, outputs) -> None:
    async with running(store, outputs, FakeInvoker()) as (orchestrator, _):
        with pytest.raises(JobNotFound):
            orchestrator.status("deadbeef")
        with pytest.raises(JobNotFound):
            orchestrator.cancel("deadbeef")
        with pytest.raises(JobNotFound):
            orchestrator.result("deadbeef")


@pytest.mark.asyncio
async def test_id_collision_retries_generation(store, outputs, image_path) -> None:
    ids = iter(["aaaa0001", "aaaa0001", "aaaa0002"])
    async with running(store, outputs, FakeInvoker(), id_factory=lambda: next(ids)) as (orchestrator, queue):
        first = await orchestrator.submit({"imagePath": image_path})
        second = await orchestrator.submit({"imagePath": image_path})
        await queue.join()

    assert (first.job_id, second.job_id) == ("aaaa0001", "aaaa0002")


@pytest.mark.asyncio
async def test_id_collision_gives_up_eventually(store, outputs, image_path) -> None:
    async with running(store, outputs, FakeInvoker(), id_factory=lambda: "samesame") as (orchestrator, queue):
        await orchestrator.submit({"imagePath": image_path})
        with pytest.raises(JobAlreadyExists):
            await orchestrator.submit({"imagePath": image_path})
        await queue.join()


@pytest.mark.asyncio
async def test_worker_pool_bounds_concurrent_renders(store, outputs, image_path) -> None:
    gate = asyncio.Event()
    invoker = FakeInvoker(gate=gate)
    async with running(store, outputs, invoker, concurrency=2) as (orchestrator, queue):
        ids = [(await orchestrator.submit({"imagePath": image_path})).job_id for _ in range(5)]
        for _ in range(200):
            if len(invoker.calls) == 2:
                break
            await asyncio.sleep(0.01)
        await asyncio.sleep(0.05)

        assert len(invoker.calls) == 2
        assert len(orchestrator.list(JobStatus.PROCESSING)) == 2
        assert len(orchestrator.list("queued")) == 3
        assert queue.active == 2

        gate.set()
        await queue.join()

    assert all(orchestrator.status(i).status is JobStatus.COMPLETED for i in ids)


@pytest.mark.asyncio
async def test_list_rejects_unknown_status(store, outputs) -> None:
    async with running(store, outputs, FakeInvoker()) as (orchestrator, _):
        with pytest.raises(InvalidArgument):
            orchestrator.list("exploded")


def test_presets_catalogue(store, outputs) -> None:
    orchestrator = JobOrchestrator(store, InProcessQueue(FakeInvoker().invoke), outputs)
    presets = orchestrator.presets()
    assert set(presets) == {
        "photorealistic", "sketch", "watercolor", "blueprint", "night_render", "minimalist",
    }
    assert presets["night_render"]["steps"] == 35
