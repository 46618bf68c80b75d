from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncContextManager, AsyncIterator, Callable

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from starlette.responses import Response

from .api.routes import router as api_router
from .core.config import Settings, get_settings
from .core.exceptions import OrchestrationError
from .core.logging import configure_logging, get_logger
from .dependencies import AppServices, open_services
from .schemas.tasks import ErrorResponse

logger = get_logger(name=__name__)


ServicesFactory = Callable[[Settings], AsyncContextManager[AppServices]]


def create_app(settings: Settings | None = None, *, services_factory: ServicesFactory | None = None) -> FastAPI:
    settings = settings or get_settings()
    open_app_services = services_factory or open_services

    @asynccontextmanager
    async def app_lifespan(app: FastAPI) -> AsyncIterator[None]:
        configure_logging(settings.observability.log_level)
        settings.require_credentials()
        async with open_app_services(settings) as services:
            app.state.services = services
            logger.info("app_started", environment=settings.environment)
            try:
                yield
            finally:
                app.state.services = None
                logger.info("app_stopping", active_jobs=services.dispatcher.active_jobs)

    app = FastAPI(title="agentflow", version="0.1.0", lifespan=app_lifespan)
    app.state.settings = settings
    app.state.services = None
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.frontend_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.include_router(api_router, prefix=settings.api_v1_prefix)

    @app.exception_handler(OrchestrationError)
    async def orchestration_error_handler(request: Request, exc: OrchestrationError) -> JSONResponse:
        logger.error("request_failed", path=request.url.path, error=str(exc), error_type=type(exc).__name__)
        body = ErrorResponse(detail=str(exc))
        return JSONResponse(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content=body.model_dump(mode="json"))

    @app.get("/", tags=["health"])
    async def root() -> dict[str, str]:
        return {"message": "agentflow orchestrator running"}

    if settings.observability.prometheus_enabled:

        @app.get("/metrics", tags=["observability"])
        async def metrics() -> Response:
            return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)

    return app


app = create_app()
