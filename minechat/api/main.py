"""FastAPI application factory and configuration."""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

import structlog
from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from minechat.api.dependencies import get_storage
from minechat.api.routes import (
    account_router,
    admin_router,
    assistant_router,
    channels_router,
    conversations_router,
    health_router,
    webhooks_router,
)
from minechat.core.config import settings
from minechat.core.exceptions import AppException
from minechat.services.channels.messenger import get_messenger_adapter


logging.basicConfig(format="%(message)s", level=settings.log_level.upper())

# Configure structured logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer() if settings.log_format == "json" else structlog.dev.ConsoleRenderer(),
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler for startup/shutdown."""
    # Startup
    logger.info(
        "Starting MineChat channel engine",
        environment=settings.app_env,
        debug=settings.app_debug,
        messenger_configured=get_messenger_adapter().is_configured,
    )

    # Initialize storage
    storage = get_storage()

    # Seed demo tenant in development
    if settings.is_development:
        from minechat.storage.memory import InMemoryStorage
        if isinstance(storage, InMemoryStorage):
            await storage.seed_demo_tenant()
            logger.info("Seeded demo tenant for development")

    yield

    # Shutdown
    await get_messenger_adapter().close()
    logger.info("Shutting down MineChat channel engine")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title="MineChat Channel Engine",
        description="Messenger channel connection, webhook ingestion and AI replies for the MineChat inbox",
        version="0.1.0",
        docs_url="/docs" if settings.is_development else None,
        redoc_url="/redoc" if settings.is_development else None,
        lifespan=lifespan,
    )

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"] if settings.is_development else [],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Exception handlers
    @app.exception_handler(AppException)
    async def app_exception_handler(request: Request, exc: AppException) -> JSONResponse:
        """Handle application-specific exceptions."""
        logger.warning(
            "Application exception",
            code=exc.code,
            message=exc.message,
            details=exc.details,
            path=request.url.path,
        )
        return JSONResponse(
            status_code=exc.status_code,
            content={
                "error": exc.code,
                "message": exc.message,
                "details": exc.details,
            },
        )

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Handle unexpected exceptions."""
        logger.error("Unhandled exception", error=str(exc), exc_info=True)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "error": "INTERNAL_ERROR",
                "message": "An unexpected error occurred",
            },
        )

    # Include routers
    app.include_router(health_router)
    app.include_router(webhooks_router)
    app.include_router(channels_router)
    app.include_router(conversations_router)
    app.include_router(assistant_router)
    app.include_router(admin_router)
    app.include_router(account_router)

    # Root endpoint
    @app.get("/")
    async def root() -> dict[str, str]:
        """Root endpoint."""
        return {
            "service": "MineChat Channel Engine",
            "version": "0.1.0",
            "status": "running",
        }

    return app


# Create default app instance
app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "minechat.api.main:app",
        host=settings.app_host,
        port=settings.app_port,
        reload=settings.is_development,
    )
