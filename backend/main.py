"""
Homework Grader API - main entry point.
Creates FastAPI app, sets up lifespan (task queue workers, cleanup loop), CORS,
request logging middleware, registers all routes.
"""

import asyncio
import os
import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, APIRouter, Request
from fastapi.middleware.cors import CORSMiddleware

from app.config import Settings, logger, get_settings, get_version_info
from app.routes import register_all_routes
from app.services.background import run_cleanup_loop
from app.services.grading import GradingInvoker
from app.services.homework import HomeworkPipeline
from app.services.task_queue import TaskQueue


def create_app(settings: Settings = None, backend=None) -> FastAPI:
    """Build the application; ``backend`` overrides the grading backend chosen from settings."""
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan manager - starts/stops task workers and cleanup"""
        logger.info("🚀 FastAPI app starting up...")
        os.makedirs(settings.upload_root, exist_ok=True)
        os.makedirs(settings.split_root, exist_ok=True)

        queue = TaskQueue.from_settings(settings)
        invoker = GradingInvoker.from_settings(settings, backend=backend)
        app.state.settings = settings
        app.state.task_queue = queue
        app.state.invoker = invoker
        app.state.pipeline = HomeworkPipeline.from_settings(settings, queue, invoker)

        queue.start()
        cleanup_task = asyncio.create_task(run_cleanup_loop(
            queue, settings.task_retention_hours, settings.cleanup_interval_seconds
        ))
        logger.info("REGISTERED ROUTES: %s", [getattr(r, "path", type(r).__name__) for r in app.routes])
        logger.info("=" * 60)

        yield

        logger.info("🛑 FastAPI app shutting down...")
        cleanup_task.cancel()
        try:
            await cleanup_task
        except asyncio.CancelledError:
            logger.info("✅ Cleanup loop stopped cleanly")
        await queue.close()

    app = FastAPI(title="Homework Grader API", lifespan=lifespan)

    # Create a router with the /api prefix
    api_router = APIRouter(prefix="/api")

    @api_router.get("/version")
    async def get_version():
        """Public version endpoint for deployment verification"""
        return get_version_info()

    register_all_routes(api_router)
    app.include_router(api_router)

    @app.get("/health")
    async def root_health_check():
        """Health check for liveness/readiness probes"""
        return {"status": "healthy", "service": "Homework Grader API"}

    @app.middleware("http")
    async def request_logging_middleware(request: Request, call_next):
        """Log method, path, status and latency for every request"""
        start_time = time.time()
        try:
            response = await call_next(request)
        except Exception as e:
            logger.error(f"Request failed: {request.method} {request.url.path}: {e}")
            raise
        response_time_ms = int((time.time() - start_time) * 1000)
        logger.info(f"{request.method} {request.url.path} -> {response.status_code} ({response_time_ms}ms)")
        return response

    app.add_middleware(
        CORSMiddleware,
        allow_credentials=True,
        allow_origins=settings.cors_origins,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    return app


app = create_app()
