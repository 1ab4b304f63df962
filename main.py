"""
FORMCOACH Backend API
Real-time strength exercise coaching

FastAPI application entry point. Clients stream pose landmarks and receive
form errors, repetition counts, quality scores and readiness feedback.
"""

import logging
import sys
import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.base import BaseHTTPMiddleware

# Core utilities
from core.config import settings
from shared.utils import parse_log_level, setup_logger

LOG_LEVEL = parse_log_level(settings.LOG_LEVEL)

# ============================================
# Configure Root Logger First
# ============================================
logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
    handlers=[logging.StreamHandler(sys.stdout)]
)

# Service routers
from coach_service.router import router as coach_router
from coach_service.models import get_session_handler, list_profiles

# Setup logging
logger = setup_logger("formcoach.main", level=LOG_LEVEL)
request_logger = setup_logger("formcoach.requests", level=LOG_LEVEL)


# ============================================
# Request Logging Middleware
# ============================================

class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Log all incoming requests and responses with timing."""

    async def dispatch(self, request: Request, call_next):
        start_time = time.time()

        client_ip = request.client.host if request.client else "unknown"
        query_string = f"?{request.url.query}" if request.url.query else ""

        request_logger.info(f"-> {request.method} {request.url.path}{query_string}")
        request_logger.debug(f"    Client: {client_ip}")

        try:
            response = await call_next(request)

            process_time = (time.time() - start_time) * 1000
            request_logger.info(
                f"<- {request.method} {request.url.path} {response.status_code} ({process_time:.1f}ms)"
            )

            return response
        except Exception as e:
            process_time = (time.time() - start_time) * 1000
            request_logger.error(
                f"!! {request.method} {request.url.path} ERROR: {type(e).__name__}: {str(e)} ({process_time:.1f}ms)"
            )
            raise


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager for startup/shutdown."""
    # ===== STARTUP =====
    logger.info(f"{settings.APP_NAME} API starting up...")
    logger.info(f"Loaded {len(list_profiles())} exercise profiles, detection mode: {settings.DETECTION_MODE}")

    yield  # Application runs here

    # ===== SHUTDOWN =====
    logger.info(f"{settings.APP_NAME} API shutting down...")

    session_handler = get_session_handler()
    for session_id in list(session_handler.active_sessions):
        session_handler.complete_session(session_id)

    logger.info("Shutdown complete")


app = FastAPI(
    title="FORMCOACH API",
    description="Pose-based strength exercise coaching",
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan
)

# CORS configuration
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Add request logging middleware
app.add_middleware(RequestLoggingMiddleware)


# Health check endpoint
@app.get("/health")
async def health_check():
    """Health check endpoint for monitoring."""
    return {
        "status": "healthy",
        "service": "formcoach-api",
        "active_sessions": len(get_session_handler().active_sessions),
        "detection_mode": settings.DETECTION_MODE
    }


# Include service routers
app.include_router(coach_router, prefix="/api/coach", tags=["Coach Service"])


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=True)
