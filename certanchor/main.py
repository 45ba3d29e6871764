"""
Main FastAPI application entry point for CertAnchor Backend.
Configures the application, middleware, and routes.
"""

import asyncio
from contextlib import asynccontextmanager
from typing import Optional
from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError

from . import __version__
from .api.v1.certificates import router as certificates_router
from .api.v1.documents import router as documents_router
from .api.v1.health import router as health_router
from .api.v1.mint_queue import router as mint_queue_router
from .api.v1.verification import router as verification_router
from .core.config import Settings, get_settings
from .core.exceptions import CertAnchorError
from .core.middleware import setup_middleware_stack
from .db.mongo import connect_to_mongo, ensure_indexes
from .services.container import ServiceContainer, build_services
from .utils.logger import get_logger, setup_logger

logger = get_logger("main")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager for startup and shutdown events.
    Connects to MongoDB, builds the services and starts the embedded
    mint worker when enabled. Pre-built services skip the setup.
    """
    settings: Settings = app.state.settings
    handle = None
    worker_task = None
    stop_event = asyncio.Event()

    logger.info(f"Starting {settings.app_name}...")
    try:
        if getattr(app.state, "services", None) is None:
            settings.validate_startup()
            handle = await connect_to_mongo(settings)
            await ensure_indexes(handle.db)
            app.state.services = build_services(settings, handle.db)

        if settings.run_embedded_worker:
            worker_task = asyncio.create_task(app.state.services.worker.run_forever(stop_event))
            logger.info("Embedded mint worker started")

        logger.info("Application startup completed successfully")
    except Exception as e:
        logger.error(f"Failed to start application: {e}")
        if handle:
            handle.close()
        raise

    yield

    logger.info(f"Shutting down {settings.app_name}...")
    try:
        if worker_task:
            stop_event.set()
            await worker_task
        if handle:
            handle.close()
        logger.info("Application shutdown completed successfully")
    except Exception as e:
        logger.error(f"Error during shutdown: {e}")


def create_app(settings: Optional[Settings] = None, services: Optional[ServiceContainer] = None) -> FastAPI:
    """
    Build the FastAPI application.

    Args:
        settings: Application settings, defaults to the environment
        services: Pre-built services; when given, startup does not connect
            to MongoDB itself

    Returns:
        Configured FastAPI application
    """
    settings = settings or (services.settings if services else get_settings())
    setup_logger(level=settings.log_level)

    app = FastAPI(
        title="CertAnchor Backend API",
        description="Certificate issuance, verification and blockchain anchoring",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan
    )
    app.state.settings = settings
    app.state.services = services

    setup_middleware_stack(app)

    app.include_router(health_router)
    app.include_router(verification_router)
    app.include_router(certificates_router)
    app.include_router(mint_queue_router)
    app.include_router(documents_router)

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        """
        Handle request validation errors with detailed error messages.
        """
        logger.warning(f"Validation error on {request.url.path}: {exc.errors()}")

        return JSONResponse(
            status_code=422,
            content={
                "error": "Validation Error",
                "message": "Request validation failed",
                "details": jsonable_encoder(exc.errors())
            }
        )

    @app.exception_handler(CertAnchorError)
    async def certanchor_exception_handler(request: Request, exc: CertAnchorError):
        logger.error(f"Unhandled {exc.__class__.__name__} on {request.url.path}: {exc}")

        return JSONResponse(
            status_code=500,
            content={
                "error": exc.__class__.__name__,
                "message": str(exc)
            }
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        """
        Handle unexpected exceptions with proper logging and error response.
        """
        logger.error(f"Unhandled exception on {request.url.path}: {str(exc)}", exc_info=True)

        return JSONResponse(
            status_code=500,
            content={
                "error": "Internal Server Error",
                "message": "An unexpected error occurred"
            }
        )

    @app.get(
        "/",
        summary="Root Endpoint",
        description="Welcome endpoint for CertAnchor Backend API",
        tags=["root"]
    )
    async def root():
        return {
            "message": f"Welcome to {settings.app_name} API",
            "version": __version__,
            "service": settings.app_name,
            "docs": "/docs",
            "health": "/api/v1/health",
            "verify": "/api/v1/verify/{certificate_id}"
        }

    return app


app = create_app()
