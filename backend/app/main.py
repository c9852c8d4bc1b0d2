"""FastAPI application entry point."""

import logging
import json
import sys
import time
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from app.core.rate_limit import limiter
from app.api.routes import api_router
from app.core.config import settings
from app.db.session import SessionLocal, init_db
from app.services.ccp_lockdown_service import InvalidReadingError
from app.services.record_store import RecordNotFoundError
from app.services.training_journey_service import RatchetViolation

# Configure logging - use JSON format in production, human-readable in dev
root_logger = logging.getLogger()
root_logger.setLevel(getattr(logging, settings.log_level))
root_logger.handlers.clear()

if settings.debug:
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s"))
else:
    class JSONFormatter(logging.Formatter):
        def format(self, record):
            return json.dumps({
                "ts": self.formatTime(record, self.datefmt),
                "level": record.levelname,
                "logger": record.name,
                "msg": record.getMessage(),
                "module": record.module,
                "line": record.lineno,
            })

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JSONFormatter())

root_logger.addHandler(handler)
logger = logging.getLogger(__name__)
request_logger = logging.getLogger("requests")


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Add security headers to all responses."""

    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        return response


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Middleware for logging all HTTP requests and responses."""

    async def dispatch(self, request: Request, call_next):
        # Skip logging for health checks
        if request.url.path in ["/health", "/", "/docs", "/openapi.json"]:
            return await call_next(request)

        start_time = time.time()
        client_ip = request.client.host if request.client else "unknown"
        request_logger.info(f"Request: {request.method} {request.url.path} - Client: {client_ip}")

        try:
            response = await call_next(request)
        except Exception as e:
            process_time = time.time() - start_time
            request_logger.error(
                f"Error: {request.method} {request.url.path} - "
                f"Exception: {str(e)} - Time: {process_time:.3f}s - Client: {client_ip}"
            )
            raise

        process_time = time.time() - start_time
        log_level = logging.WARNING if response.status_code >= 400 else logging.INFO
        request_logger.log(
            log_level,
            f"Response: {request.method} {request.url.path} - "
            f"Status: {response.status_code} - Time: {process_time:.3f}s - Client: {client_ip}"
        )
        return response


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    logger.info("Starting Compliance Engine")

    # Create tables if they don't exist (for SQLite dev)
    if settings.database_url.startswith("sqlite"):
        init_db()
        logger.info("Database tables created (SQLite mode)")

    yield

    logger.info("Shutting down Compliance Engine")


app = FastAPI(
    title="Restaurant Compliance Engine",
    description="Access, CCP lockdown, training journey and safety score gates",
    version="1.0.0",
    lifespan=lifespan,
    docs_url="/docs" if settings.debug else None,
    redoc_url="/redoc" if settings.debug else None,
)

# Rate limiting setup
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)


@app.exception_handler(RecordNotFoundError)
async def record_not_found_handler(request: Request, exc: RecordNotFoundError):
    return JSONResponse(status_code=status.HTTP_404_NOT_FOUND, content={"detail": str(exc)})


@app.exception_handler(RatchetViolation)
async def ratchet_violation_handler(request: Request, exc: RatchetViolation):
    logger.warning(f"Refused journey regression on {request.url.path}: {exc.fields}")
    return JSONResponse(status_code=status.HTTP_409_CONFLICT, content={"detail": str(exc)})


@app.exception_handler(InvalidReadingError)
async def invalid_reading_handler(request: Request, exc: InvalidReadingError):
    return JSONResponse(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, content={"detail": str(exc)})


# Security headers middleware
app.add_middleware(SecurityHeadersMiddleware)
# Request logging middleware
app.add_middleware(RequestLoggingMiddleware)
# CORS middleware - added last so it runs first (Starlette LIFO order)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization", "Accept", "Origin", "X-Requested-With"],
    max_age=600,
)

# Include API routes
app.include_router(api_router, prefix=settings.api_v1_prefix)


@app.get("/health")
def health_check():
    """Basic liveness check endpoint."""
    return {"status": "healthy", "version": "1.0.0"}


@app.get("/health/ready")
def readiness_check():
    """Readiness probe with database connectivity check."""
    db = None
    try:
        db = SessionLocal()
        db.execute(text("SELECT 1"))
        database = "healthy"
    except SQLAlchemyError as e:
        logger.error(f"Database health check failed: {e}")
        database = "unhealthy"
    finally:
        if db:
            db.close()

    return {
        "status": "ready" if database == "healthy" else "degraded",
        "version": "1.0.0",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "checks": {"database": database},
    }


@app.get("/")
def root():
    """Root endpoint."""
    return {
        "message": "Restaurant Compliance Engine API",
        "docs": "/docs",
        "health": "/health",
    }
