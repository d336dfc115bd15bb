# app/main.py
"""
Main application file for Receets.

``create_app`` builds the FastAPI application together with its database,
payment gateway and event bus; each application owns its own instances.
"""

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from fastapi.encoders import jsonable_encoder
import logging
from datetime import datetime
from typing import Optional
import os

from app.api.api import api_router
from app.core.config import settings
from app.core.events import EventBus, setup_event_handlers
from app.core.exceptions import ReceetsException
from app.db.session import Database
from app.services.gateway import PaymentGateway, build_gateway

# --- Logging Configuration ---
LOG_LEVEL_NAME = os.environ.get("LOG_LEVEL", settings.LOG_LEVEL).upper()
LOG_LEVEL = getattr(logging, LOG_LEVEL_NAME, logging.INFO)

logging.basicConfig(level=LOG_LEVEL, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')
logger = logging.getLogger("app")
logger.setLevel(LOG_LEVEL)
# --- END: Logging Configuration ---

# Failure kind -> HTTP status at the request boundary
ERROR_STATUS_CODES = {
    "not_found": status.HTTP_404_NOT_FOUND,
    "invalid_state": status.HTTP_409_CONFLICT,
    "validation": status.HTTP_400_BAD_REQUEST,
    "payment_gateway": status.HTTP_502_BAD_GATEWAY,
    "refund_gateway": status.HTTP_502_BAD_GATEWAY,
    "permission": status.HTTP_403_FORBIDDEN,
    "conflict": status.HTTP_409_CONFLICT,
    "duplicate": status.HTTP_409_CONFLICT,
    "unauthorized": status.HTTP_401_UNAUTHORIZED,
}


def create_app(
    database: Optional[Database] = None,
    gateway: Optional[PaymentGateway] = None,
    event_bus: Optional[EventBus] = None,
) -> FastAPI:
    """
    Build the Receets API.

    Args:
        database: Database to use (defaults to one for settings.DATABASE_URL)
        gateway: Payment gateway (defaults to Stripe when a key is configured)
        event_bus: Event bus shared by all services of this application

    Returns:
        Configured FastAPI application
    """
    app = FastAPI(
        title=settings.PROJECT_NAME,
        description="API for the Receets point-of-sale and digital receipt platform",
        version="1.0.0",
        openapi_url=f"{settings.API_V1_STR}/openapi.json",
        docs_url=f"{settings.API_V1_STR}/docs",
        redoc_url=f"{settings.API_V1_STR}/redoc",
    )

    app.state.db = database or Database()
    app.state.gateway = gateway or build_gateway(settings)
    app.state.event_bus = event_bus or EventBus()

    # Set up CORS
    origins = [str(origin) for origin in settings.BACKEND_CORS_ORIGINS or [] if origin]
    logger.info(f"Processed CORS origins: {origins}")
    if origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=origins,
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
            expose_headers=["X-Total-Count"],
            max_age=86400,
        )

    # --- Domain Error Handler ---
    @app.exception_handler(ReceetsException)
    async def receets_exception_handler(request: Request, exc: ReceetsException):
        status_code = ERROR_STATUS_CODES.get(exc.kind, status.HTTP_500_INTERNAL_SERVER_ERROR)
        logger.warning(
            f"{request.method} {request.url.path} failed with {exc.kind}: {exc.message}",
            extra={"kind": exc.kind, "code": exc.code, "status_code": status_code},
        )
        headers = {"WWW-Authenticate": "Bearer"} if status_code == status.HTTP_401_UNAUTHORIZED else None
        return JSONResponse(
            status_code=status_code,
            content=jsonable_encoder(exc.to_dict()),
            headers=headers,
        )

    # --- Validation Error Handler ---
    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        error_details = jsonable_encoder(exc.errors())
        logger.warning(
            f"Request validation failed for {request.method} {request.url.path}: {error_details}"
        )
        return JSONResponse(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            content={"success": False, "kind": "validation", "detail": error_details},
        )

    # Log requests
    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        start_time = datetime.now()
        logger.info(f"-> Request: {request.method} {request.url.path}")
        try:
            response = await call_next(request)
            process_time = (datetime.now() - start_time).total_seconds()
            logger.info(f"<- Response: {response.status_code} ({process_time:.4f}s)")
            return response
        except Exception as e:
            process_time = (datetime.now() - start_time).total_seconds()
            logger.exception(
                f"!! Error during request processing for {request.method} {request.url.path} ({process_time:.4f}s): {e}"
            )
            raise

    # Set up event handlers
    setup_event_handlers(app, app.state.event_bus)

    @app.on_event("startup")
    async def create_schema_on_startup():
        """Create missing tables and check the database is reachable."""
        app.state.db.create_all()
        if not app.state.db.verify_connection():
            logger.error("Database connection could not be verified")

    @app.on_event("shutdown")
    async def dispose_database_on_shutdown():
        app.state.db.dispose()

    # Include the API router
    app.include_router(api_router, prefix=settings.API_V1_STR)

    # Root and Health Check Endpoints
    @app.get("/", tags=["Root"], summary="API Root Endpoint")
    def read_root():
        """Provides basic API information and links to documentation."""
        return {
            "message": "Welcome to Receets API",
            "project_name": settings.PROJECT_NAME,
            "version": "1.0.0",
            "environment": settings.ENVIRONMENT,
            "docs_url": app.docs_url,
            "openapi_url": app.openapi_url,
        }

    @app.get("/health", tags=["Health"], summary="API Health Check")
    def health_check():
        """Returns the operational status of the API."""
        return {"status": "ok", "timestamp": datetime.now().isoformat()}

    return app


app = create_app()
