from typing import Optional
from contextlib import asynccontextmanager
import asyncio
import time
import uuid
import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from application.api.route import chat, health, sessions, tools
from application.container import ServiceContainer
from infrastructure.config.settings import get_settings
from infrastructure.observability.logging import setup_logging

logger = structlog.get_logger(__name__)


def create_app(container: Optional[ServiceContainer] = None) -> FastAPI:
    """Build the HTTP application.

    Without an explicit container the services are built from settings when
    the app starts up.
    """

    settings = container.settings if container is not None else get_settings()
    setup_logging(
        log_level=settings.log_level,
        log_format=settings.log_format,
        service_name=settings.service_name,
        environment=settings.environment,
        version=settings.service_version
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if app.state.container is None:
            app.state.container = ServiceContainer.build(settings)
        services: ServiceContainer = app.state.container

        sweepers = [
            asyncio.create_task(services.cache.sweep_forever(settings.cache_sweep_interval_sec)),
            asyncio.create_task(services.rate_limiter.sweep_forever(settings.rate_limit_sweep_interval_sec)),
        ]
        logger.info("Coach server started", environment=settings.environment)
        try:
            yield
        finally:
            for task in sweepers:
                task.cancel()
            await asyncio.gather(*sweepers, return_exceptions=True)
            await services.background.shutdown()
            logger.info("Coach server shutdown")

    app = FastAPI(title="Coach Server", version=settings.service_version, lifespan=lifespan)
    app.state.container = container

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_allow_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def request_context_middleware(request: Request, call_next):
        structlog.contextvars.clear_contextvars()
        trace_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex
        structlog.contextvars.bind_contextvars(trace_id=trace_id)

        started = time.perf_counter()
        response = await call_next(request)
        duration_ms = (time.perf_counter() - started) * 1000

        services = request.app.state.container
        if services is not None:
            route = request.scope.get("route")
            services.metrics.record_request(
                request.method,
                getattr(route, "path", request.url.path),
                response.status_code,
                duration_ms
            )

        response.headers["X-Request-ID"] = trace_id
        return response

    app.include_router(health.router)
    app.include_router(sessions.router)
    app.include_router(chat.router)
    app.include_router(tools.router)
    return app
