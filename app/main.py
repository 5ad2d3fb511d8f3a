import asyncio
from contextlib import asynccontextmanager, suppress

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.api.routes import research
from app.config import settings
from app.models.errors import InvalidTransitionError, JobNotFoundError
from app.services.logger import logger
from app.services.queue_service import ResearchQueueService, build_default_queue


async def run_maintenance(queue: ResearchQueueService, interval_s: float) -> None:
    """Expire stale jobs on a fixed interval until cancelled."""
    while True:
        await asyncio.sleep(interval_s)
        try:
            await queue.expire_stale_jobs()
        except Exception as e:
            logger.error(f"Maintenance pass failed: {e}")


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    queue: ResearchQueueService | None = getattr(app.state, "queue", None)
    if queue is None:
        queue = build_default_queue()
        app.state.queue = queue
    init_schema = getattr(queue.store, "init_schema", None)
    if init_schema is not None:
        await init_schema()
    maintenance = asyncio.create_task(
        run_maintenance(queue, settings.maintenance_interval_seconds),
        name="research-maintenance",
    )
    logger.info(f"Research queue ready (max_concurrency={queue.max_concurrency})")
    yield
    # Shutdown
    maintenance.cancel()
    with suppress(asyncio.CancelledError):
        await maintenance
    await queue.shutdown()
    queue.event_bus.close()
    close_store = getattr(queue.store, "close", None)
    if close_store is not None:
        await close_store()


def create_app(queue: ResearchQueueService | None = None) -> FastAPI:
    app = FastAPI(
        title="SecondOrder Research Jobs",
        description="Queued deep research: decomposition, hybrid retrieval, scoring, synthesis",
        version="0.2.0",
        lifespan=lifespan,
    )
    app.state.queue = queue

    # CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origin_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(JobNotFoundError)
    async def job_not_found(request: Request, exc: JobNotFoundError):
        return JSONResponse(status_code=404, content={"detail": str(exc)})

    @app.exception_handler(InvalidTransitionError)
    async def invalid_transition(request: Request, exc: InvalidTransitionError):
        return JSONResponse(status_code=409, content={"detail": str(exc)})

    # Routes
    app.include_router(research.router)

    @app.get("/api/health")
    async def health():
        return {"status": "ok", "service": "secondorder-research"}

    return app


app = create_app()
