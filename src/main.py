"""FastAPI application for the spoiler-safe companion."""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from src.api.v1.router import router as v1_router
from src.core.config import Settings, get_settings
from src.core.database import DbSession, close_database, init_database
from src.core.exceptions import setup_exception_handlers
from src.core.health import HealthCheckService, HealthStatus
from src.core.logging import APP_LOGGER_NAME, setup_logging, setup_request_logging

logger = logging.getLogger(APP_LOGGER_NAME)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:  # noqa: ARG001
    """Open the database pool on startup and dispose of it on shutdown."""
    settings = get_settings()
    init_database(settings)
    logger.info(
        "Companion API started",
        extra={
            "env": settings.app_env,
            "answer_model": settings.anthropic_model,
            "content_embedding_model": settings.openai_embedding_model,
            "compact_embedding_model": settings.compact_embedding_model,
        },
    )
    yield
    logger.info("Companion API shutting down")
    await close_database()


def add_health_routes(app: FastAPI, settings: Settings) -> None:
    """Liveness, readiness and detailed component health."""

    @app.get("/health", tags=["health"])
    async def health_check() -> dict[str, str]:
        """Liveness probe; never touches a dependency."""
        return {"status": "healthy"}

    @app.get("/health/live", tags=["health"])
    async def liveness_check() -> dict[str, str]:
        return {"status": "healthy"}

    @app.get("/health/ready", tags=["health"])
    async def readiness_check(db_session: DbSession) -> JSONResponse:
        """503 when the chunk store is unreachable; a Redis outage only degrades."""
        health_service = HealthCheckService(db_session=db_session, settings=settings)
        result = await health_service.check_readiness()
        status_code = 503 if result.status == HealthStatus.UNHEALTHY else 200
        return JSONResponse(content=result.to_dict(), status_code=status_code)

    @app.get("/health/detailed", tags=["health"])
    async def detailed_health_check(db_session: DbSession) -> dict[str, Any]:
        health_service = HealthCheckService(db_session=db_session, settings=settings)
        result = await health_service.check_all()
        return result.to_dict()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()
    setup_logging(settings)

    app = FastAPI(
        title="Spoiler-Safe Companion API",
        description=(
            "Answers questions about a movie or TV episode using only the "
            "subtitles the viewer has already watched"
        ),
        version="0.1.0",
        lifespan=lifespan,
    )

    # Request logging wraps everything below it, CORS included
    setup_request_logging(app)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    setup_exception_handlers(app)

    add_health_routes(app, settings)
    app.include_router(v1_router)

    return app


app = create_app()


def run() -> None:
    """Run the API with uvicorn."""
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "src.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.is_development,
        log_level=settings.app_log_level.lower(),
    )


if __name__ == "__main__":
    run()
