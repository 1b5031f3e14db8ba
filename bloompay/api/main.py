"""
Main FastAPI application.

Flower order and payment API with:
- CORS configuration
- Error handling
- Request ID tracking
- Structured logging
- Prometheus metrics
- Payment timeout reaper running in the lifespan
"""
import time
import uuid
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, Optional

import structlog
from fastapi import FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from bloompay.config import Settings, get_settings
from bloompay.container import build_container
from bloompay.core.exceptions import BloomPayError
from bloompay.database.connection import close_db, init_db
from bloompay.integrations.gateway import PaymentGateway
from bloompay.monitoring.logging import setup_logging

from .errors import bloompay_error_handler, global_exception_handler, validation_error_handler
from .routes import (
    monitoring_router,
    order_item_router,
    order_router,
    payment_router,
    transaction_router,
)

logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, Any]:
    """
    Application lifespan manager.

    Handles startup and shutdown events.
    """
    container = app.state.container
    settings = container.settings

    logger.info(
        "application_startup",
        app_name=settings.app_name,
        env=settings.app_env,
        gateway_configured=settings.gateway_configured,
    )

    if container.engine is not None:
        try:
            await init_db(container.engine)
            logger.info("database_initialized")
        except Exception as e:
            logger.error("database_initialization_failed", error=str(e))
            raise

    if settings.payment_timeout_enabled:
        container.reaper.start()

    yield

    logger.info("application_shutdown")
    await container.reaper.stop()
    await container.gateway.close()
    if container.engine is not None:
        try:
            await close_db(container.engine)
            logger.info("database_connections_closed")
        except Exception as e:
            logger.error("database_shutdown_error", error=str(e))


async def add_request_id_middleware(request: Request, call_next: Any) -> Response:
    """
    Add request ID to all requests for tracing.

    Also adds timing information and structured logging context.
    """
    request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
    start_time = time.time()

    structlog.contextvars.bind_contextvars(
        request_id=request_id,
        method=request.method,
        path=request.url.path,
    )

    logger.info(
        "request_started",
        client_host=request.client.host if request.client else None,
    )

    try:
        response = await call_next(request)

        response.headers["X-Request-ID"] = request_id

        logger.info(
            "request_completed",
            status_code=response.status_code,
            duration_seconds=time.time() - start_time,
        )

        return response

    except Exception as e:
        logger.error(
            "request_failed",
            error=str(e),
            duration_seconds=time.time() - start_time,
        )
        raise

    finally:
        structlog.contextvars.clear_contextvars()


def create_app(
    settings: Optional[Settings] = None,
    gateway: Optional[PaymentGateway] = None,
    session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
) -> FastAPI:
    """
    Build the FastAPI application and wire its services.

    Args:
        settings: Application settings (defaults to the environment)
        gateway: Payment gateway adapter (defaults to PayOS)
        session_factory: Session factory (defaults to one on a new engine)

    Returns:
        FastAPI: The application
    """
    settings = settings or get_settings()
    setup_logging(settings)

    app = FastAPI(
        title="BloomPay",
        description=(
            "Flower shop order and payment API. Features: atomic stock reservation, "
            "PayOS payment links, idempotent redirect/webhook reconciliation and "
            "automatic cancellation of abandoned payments."
        ),
        version="1.0.0",
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
    )
    app.state.container = build_container(settings, gateway=gateway, session_factory=session_factory)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.get_allowed_origins_list(),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.middleware("http")(add_request_id_middleware)

    app.add_exception_handler(BloomPayError, bloompay_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(Exception, global_exception_handler)

    app.include_router(order_router)
    app.include_router(order_item_router)
    app.include_router(payment_router)
    app.include_router(transaction_router)
    app.include_router(monitoring_router)

    @app.get("/", tags=["root"])
    async def root() -> dict[str, Any]:
        """Root endpoint with API information."""
        return {
            "service": settings.app_name,
            "version": "1.0.0",
            "status": "operational",
            "environment": settings.app_env,
            "docs": "/docs",
            "health": "/health",
            "metrics": "/metrics",
        }

    return app


if __name__ == "__main__":
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "bloompay.api.main:create_app",
        factory=True,
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.debug,
        workers=settings.api_workers if not settings.debug else 1,
        log_level=settings.log_level.lower(),
    )
