"""
Order Fulfillment Service - Main FastAPI Application
"""
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager
from datetime import datetime, timezone
import logging

from storefront_orders.common_logging import setup_logging
from storefront_orders.common_instrumentation import instrument_service, setup_opentelemetry
from storefront_orders.api import coupon_routes, dependencies, inventory_routes, routes
from storefront_orders.db import database
from storefront_orders.errors import ValidationError
from storefront_orders.config import settings

VERSION = "1.0.0"

# Setup logging
setup_logging(
    service_name=settings.service_name,
    log_level=settings.log_level,
    log_format=settings.log_format,
    environment=settings.environment
)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan context manager for startup and shutdown events"""
    # Startup
    logger.info(f"Starting {settings.service_name}")
    logger.info(f"Environment: {settings.environment}")

    if settings.otel_enabled:
        setup_opentelemetry(
            service_name=settings.otel_service_name,
            otlp_endpoint=settings.otel_endpoint,
            enabled=settings.otel_enabled,
            environment=settings.environment
        )

    # Initialize database
    try:
        engine = database.init_database(settings.database_url)
        database.create_tables()
        logger.info("Database initialized successfully")
    except Exception as e:
        logger.error(f"Failed to initialize database: {e}")
        raise

    if settings.otel_enabled:
        instrument_service(engine=engine)

    dependencies.init_clients(settings)
    logger.info("Payment, carrier and email clients initialized")

    logger.info(f"{settings.service_name} started successfully")

    yield

    # Shutdown
    logger.info(f"Shutting down {settings.service_name}")
    await dependencies.close_clients()


# Create FastAPI app
app = FastAPI(
    title="Order Fulfillment Service",
    description="Order lifecycle, stock ledger, coupons and cancellation handling",
    version=VERSION,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json"
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Instrument FastAPI with OpenTelemetry
if settings.otel_enabled:
    instrument_service(app=app)

# Include API routes
app.include_router(routes.router)
app.include_router(inventory_routes.router)
app.include_router(coupon_routes.router)


@app.get("/health")
async def health_check():
    """Health check endpoint (liveness probe)"""
    return {
        "status": "healthy",
        "service": settings.service_name,
        "version": VERSION,
        "timestamp": datetime.now(timezone.utc).isoformat()
    }


@app.get("/ready")
async def readiness_check():
    """Readiness check endpoint (readiness probe)"""
    try:
        database.check_connection()

        # The carrier is not required to serve traffic
        carrier_ready = False
        if dependencies.carrier_client:
            carrier_ready = await dependencies.carrier_client.health_check()
        if not carrier_ready:
            logger.warning("Carrier is not reachable; shipment steps of cancellations will fail")

        return {
            "status": "ready",
            "service": settings.service_name,
            "database": "connected",
            "carrier": "connected" if carrier_ready else "disconnected",
            "timestamp": datetime.now(timezone.utc).isoformat()
        }
    except Exception as e:
        logger.error(f"Readiness check failed: {e}")
        return JSONResponse(
            status_code=503,
            content={
                "status": "not_ready",
                "service": settings.service_name,
                "database": "disconnected",
                "error": str(e),
                "timestamp": datetime.now(timezone.utc).isoformat()
            }
        )


@app.get("/")
async def root():
    """Root endpoint"""
    return {
        "service": settings.service_name,
        "version": VERSION,
        "docs": "/docs",
        "health": "/health",
        "ready": "/ready"
    }


@app.exception_handler(ValidationError)
async def validation_exception_handler(request: Request, exc: ValidationError):
    """Domain errors that escaped a route keep their status"""
    logger.warning(f"Rejected {request.method} {request.url.path}: {exc}")
    return JSONResponse(status_code=exc.status_code, content={"detail": str(exc)})


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Global exception handler"""
    logger.error(f"Unhandled exception: {exc}", exc_info=True)

    return JSONResponse(
        status_code=500,
        content={
            "detail": "Internal server error",
            "type": exc.__class__.__name__
        }
    )


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "storefront_orders.main:app",
        host="0.0.0.0",
        port=8004,
        reload=settings.debug,
        log_level=settings.log_level.lower()
    )
