"""RenderBridge - FastAPI application for asynchronous AI render jobs."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from renderbridge.config import Settings, settings
from renderbridge.api.v1.router import v1_router
from renderbridge.api.v1 import health as health_api
from renderbridge.api.v1 import renders as renders_api
from renderbridge.jobs.in_process_queue import InProcessQueue
from renderbridge.jobs.orchestrator import JobOrchestrator
from renderbridge.render.backend import SubprocessBackendInvoker
from renderbridge.render.executor import RenderExecutor
from renderbridge.storage.job_store import FileJobStore
from renderbridge.storage.temp_results import RenderOutputStore

logger = logging.getLogger(__name__)


class RenderService:
    """Wires store, backend, worker pool and orchestrator from settings."""

    def __init__(self, config: Settings, invoker=None):
        self.store = FileJobStore(config.jobs_dir)
        self.outputs = RenderOutputStore(
            config.resolved_output_dir, ttl_hours=config.output_ttl_hours
        )
        self.invoker = invoker or SubprocessBackendInvoker(
            python=config.backend_python,
            script=config.backend_script,
            timeout=config.render_timeout_seconds,
        )
        self.executor = RenderExecutor(self.store, self.invoker, self.outputs)
        self.dispatcher = InProcessQueue(
            worker_fn=self.executor.execute,
            concurrency=config.max_concurrent_renders,
        )
        self.orchestrator = JobOrchestrator(
            self.store,
            self.dispatcher,
            self.outputs,
            defaults={
                "prompt": config.default_prompt,
                "style_preset": config.default_style_preset,
                "backend": config.default_backend,
                "backend_url": config.default_backend_url,
            },
        )


def create_app(config: Settings = settings, invoker=None) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Startup and shutdown logic."""
        logger.info("Starting RenderBridge on port %s", config.service_port)
        logger.info("Jobs dir: %s", config.jobs_dir)
        logger.info("Output dir: %s", config.resolved_output_dir)
        logger.info("Backend: %s %s", config.backend_python, config.backend_script)

        service = RenderService(config, invoker=invoker)
        await service.dispatcher.start()
        app.state.render_service = service

        # Wire the orchestrator and worker pool into API endpoints
        renders_api.set_orchestrator(service.orchestrator)
        health_api.set_dispatcher(service.dispatcher)

        yield

        logger.info("Shutting down RenderBridge")
        await service.dispatcher.stop()
        renders_api.set_orchestrator(None)
        health_api.set_dispatcher(None)
        service.outputs.cleanup_expired()

    app = FastAPI(
        title="RenderBridge",
        description="Asynchronous AI rendering of CAD viewport captures",
        version="0.1.0",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(v1_router)  # All /api/v1/* endpoints
    return app


logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

app = create_app()


def main() -> None:
    import uvicorn

    uvicorn.run("renderbridge.main:app", host="0.0.0.0", port=settings.service_port)


if __name__ == "__main__":
    main()
