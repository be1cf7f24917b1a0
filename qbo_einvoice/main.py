"""
FastAPI application factory with middleware, CORS, and request tracing.
"""

import uuid
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncGenerator

import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from qbo_einvoice.config import get_settings
from qbo_einvoice.dependencies import build_services
from qbo_einvoice.routers import auth, companies, customers, system, webhook
from qbo_einvoice.storage import get_audit_log, get_storage
from qbo_einvoice.utils.logging import configure_logging, get_logger

# Configure logging at module level
configure_logging()
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Application lifespan manager.
    Builds the service container unless one was installed beforehand (tests),
    and closes outbound HTTP clients on shutdown.
    """
    settings = get_settings()

    logger.info(
        "application_startup",
        version=app.version,
        environment=settings.intuit_env,
        dev_mode=settings.dev_mode,
    )

    if getattr(app.state, "services", None) is None:
        Path(settings.audit_log_path).parent.mkdir(parents=True, exist_ok=True)
        app.state.services = build_services(settings, storage=get_storage(), audit_log=get_audit_log())

    yield

    await app.state.services.aclose()
    logger.info("application_shutdown")


def create_app() -> FastAPI:
    """
    Application factory.
    Creates and configures FastAPI application instance.
    """
    settings = get_settings()

    app = FastAPI(
        title="QBO E-Invoice Bridge",
        description="QuickBooks Online webhooks to FIRS e-invoicing with IRN and QR code write-back",
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Request-ID"],
    )

    # Request tracing middleware
    @app.middleware("http")
    async def request_tracing_middleware(request: Request, call_next):
        """Add request ID to all requests."""
        request_id = request.headers.get("X-Request-ID", str(uuid.uuid4()))

        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(request_id=request_id)

        logger.info(
            "request_started",
            method=request.method,
            path=request.url.path,
            client=request.client.host if request.client else None,
        )

        try:
            response = await call_next(request)
            response.headers["X-Request-ID"] = request_id

            logger.info(
                "request_completed",
                method=request.method,
                path=request.url.path,
                status_code=response.status_code,
            )

            return response
        except Exception as e:
            logger.error(
                "request_failed",
                method=request.method,
                path=request.url.path,
                error=str(e),
                exc_info=True,
            )
            return JSONResponse(
                status_code=500,
                content={
                    "success": False,
                    "error": "Internal server error",
                    "request_id": request_id,
                },
                headers={"X-Request-ID": request_id},
            )

    app.include_router(webhook.router, tags=["Webhook"])
    app.include_router(auth.router, tags=["Authentication"])
    app.include_router(customers.router, tags=["Customers"])
    app.include_router(companies.router, prefix="/companies", tags=["Companies"])
    app.include_router(system.router, tags=["System"])

    logger.info("application_configured", routers_count=5)

    return app


# Create application instance
app = create_app()


if __name__ == "__main__":
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "qbo_einvoice.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.api_reload,
        log_level=settings.log_level.lower(),
    )
