import logging
import math
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from harmony_ai.bootstrap import build_service
from harmony_ai.config import Settings, settings as default_settings
from harmony_ai.errors import GenerationError, RateLimitExceeded
from harmony_ai.observability.tracing import configure_tracing
from harmony_ai.routers import generations
from harmony_ai.schemas.operations import format_violations
from harmony_ai.service import GenerationService

logger = logging.getLogger(__name__)


def configure_logging(settings: Settings) -> None:
    logging.basicConfig(
        level=logging.INFO if not settings.DEBUG else logging.DEBUG,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )


def create_app(settings: Optional[Settings] = None, service: Optional[GenerationService] = None) -> FastAPI:
    """
    Build the application.

    Args:
        service: Pre-built service (tests); otherwise built from settings at startup.
    """
    settings = settings or default_settings
    configure_logging(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Startup and shutdown logic"""
        logger.info(f"Environment: {settings.ENVIRONMENT}")
        configure_tracing(settings.TRACING_ENABLED, settings.TRACING_EXPORTER, settings.SERVICE_NAME)
        if getattr(app.state, "service", None) is None:
            app.state.service = build_service(settings)

        yield

        app.state.service.orchestrator.shutdown()
        logger.info("Shutting down application")

    app = FastAPI(
        title=settings.APP_NAME,
        description="AI content generation for artists: bios, images and music prompts",
        version="1.0.0",
        lifespan=lifespan,
        docs_url="/docs" if settings.DEBUG else None,
        redoc_url="/redoc" if settings.DEBUG else None,
    )
    app.state.service = service

    @app.exception_handler(GenerationError)
    async def generation_error_handler(request: Request, exc: GenerationError):
        headers = {}
        if isinstance(exc, RateLimitExceeded):
            headers["Retry-After"] = str(max(1, math.ceil(exc.retry_after)))
        if exc.status_code >= 500:
            logger.error(f"{exc.code} on {request.url.path}: {exc.message}")
        body = {"success": False, "message": exc.message, "code": exc.code}
        body.update({k: v for k, v in exc.details.items() if k not in body})
        return JSONResponse(status_code=exc.status_code, content=body, headers=headers)

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        violations = format_violations(exc)
        return JSONResponse(
            status_code=400,
            content={
                "success": False,
                "message": f"Invalid request: {'; '.join(violations)}",
                "code": "VALIDATION_ERROR",
                "violations": violations,
            },
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        return JSONResponse(
            status_code=exc.status_code,
            content={"success": False, "message": str(exc.detail), "code": f"HTTP_{exc.status_code}"},
            headers=getattr(exc, "headers", None),
        )

    # Global error handler
    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        logger.error(f"Unhandled exception: {str(exc)}", exc_info=True)
        return JSONResponse(
            status_code=500,
            content={
                "success": False,
                "message": str(exc) if settings.DEBUG else "Internal server error",
                "code": "INTERNAL_ERROR",
            },
        )

    @app.get("/health")
    async def health_check():
        return {
            "status": "healthy",
            "version": "1.0.0",
            "environment": settings.ENVIRONMENT
        }

    app.include_router(generations.router, prefix=settings.API_PREFIX, tags=["generations"])
    return app


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        create_app(),
        host="0.0.0.0",
        port=8000,
    )
