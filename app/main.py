"""
HR Leave Service - FastAPI Application

- create_app() is the composition root: it owns the Database handle,
  created in the lifespan (or injected by tests) and disposed on shutdown
- Middleware order: CORS → CorrelationId → Logging
- Domain errors are rendered by a single AppException handler
"""
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional, Union

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text
from starlette.exceptions import HTTPException as StarletteHTTPException

from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from app.core.config import settings
from app.core.exceptions import AppException
from app.core.limiter import limiter
from app.core.logging import setup_logging
from app.core.middleware import CorrelationIdMiddleware, LoggingMiddleware
from app.database import Database
from app.routers.api_router import api_router

logger = logging.getLogger(__name__)


def create_app(database: Optional[Database] = None) -> FastAPI:
    setup_logging()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(f"Starting {settings.app_name} v{settings.version} ({settings.environment})")
        owns_database = database is None
        db_handle = database or Database(settings.database_url)
        try:
            db_handle.create_all()
            logger.info("Database initialized successfully")
        except Exception as e:
            logger.error(f"Database initialization failed: {e}", exc_info=True)
            raise
        app.state.database = db_handle

        yield

        logger.info("Gracefully shutting down...")
        if owns_database:
            db_handle.dispose()

    app = FastAPI(
        title=settings.app_name,
        version=settings.version,
        description="Leave requests, leave balances and leave policies for the HR platform",
        docs_url="/docs",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )
    if database is not None:
        app.state.database = database

    # Rate limiter
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

    # Middleware: last added runs first
    app.add_middleware(LoggingMiddleware)
    app.add_middleware(CorrelationIdMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=[settings.request_id_header, "X-Process-Time"],
    )

    _register_exception_handlers(app)
    app.include_router(api_router, prefix=settings.api_prefix)
    _register_operational_endpoints(app)
    return app


def _register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        """Handle FastAPI validation errors (422) with structured format."""
        errors = []
        for error in exc.errors():
            field = error["loc"][-1] if len(error["loc"]) > 0 else "unknown"
            errors.append({"field": str(field), "msg": error["msg"]})

        logger.warning(f"Validation Error: {errors}")
        return JSONResponse(
            status_code=422,
            content={"success": False, "errors": errors},
        )

    @app.exception_handler(AppException)
    async def app_exception_handler(request: Request, exc: AppException):
        """Handle domain-specific application exceptions."""
        logger.warning(f"AppException: {exc.message}", extra={"code": exc.error_code, "path": request.url.path})
        error = {"msg": exc.message, "code": exc.error_code}
        if exc.details:
            error["details"] = exc.details
        return JSONResponse(
            status_code=exc.status_code,
            content={"success": False, "errors": [error]},
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(StarletteHTTPException)
    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: Union[HTTPException, StarletteHTTPException]):
        """Handle standard HTTP exceptions."""
        return JSONResponse(
            status_code=exc.status_code,
            content={
                "success": False,
                "errors": [{"msg": exc.detail if isinstance(exc.detail, str) else "Request failed"}],
            },
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception):
        """Fallback handler for unhandled server errors."""
        logger.exception("Unhandled server error", extra={"path": request.url.path, "method": request.method})
        return JSONResponse(
            status_code=500,
            content={"success": False, "errors": [{"msg": "An unexpected server error occurred."}]},
        )


def _register_operational_endpoints(app: FastAPI) -> None:
    @app.get("/", tags=["Health"])
    def root():
        """API root endpoint."""
        return {
            "message": "HR Leave Service API",
            "version": settings.version,
            "docs": "/docs",
        }

    @app.get("/health", tags=["Health"])
    def health_check():
        """Liveness probe for load balancers and orchestrators."""
        return {
            "status": "up",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "version": settings.version,
            "environment": settings.environment,
        }

    @app.get("/readiness", tags=["Health"])
    def readiness_check(request: Request):
        """Readiness probe - verifies database connectivity."""
        try:
            with request.app.state.database.session() as session:
                session.execute(text("SELECT 1"))
            return {"status": "ready", "components": {"database": "connected"}}
        except Exception as e:
            logger.error(f"Readiness check failed: {e}")
            raise HTTPException(status_code=503, detail="Service not ready")


app = create_app()
