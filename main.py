"""
POSTUREIQ Backend API
Postural Deviation Analysis & Longitudinal Comparison

FastAPI application entry point with worker threads for
non-blocking landmark analysis.
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

# ============================================
# Configure Root Logger First
# ============================================
logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
    handlers=[logging.StreamHandler(sys.stdout)]
)

# Service routers
from posture_service.router import router as posture_router

from core.database import init_firebase, is_mock_mode
from core.threading import get_analysis_pool
from shared.utils import setup_logger

# Setup logging
log_level = logging.DEBUG if settings.DEBUG else logging.INFO
logger = setup_logger("postureiq.main", level=log_level)
request_logger = setup_logger("postureiq.requests", level=log_level)


# ============================================
# Request Logging Middleware
# ============================================

class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Log all incoming requests and responses with timing."""

    async def dispatch(self, request: Request, call_next):
        start_time = time.time()

        client_ip = request.client.host if request.client else "unknown"
        query_string = f"?{request.url.query}" if request.url.query else ""

        request_logger.info(f"➡️  {request.method} {request.url.path}{query_string}")
        request_logger.debug(f"    Client: {client_ip}")

        try:
            response = await call_next(request)

            process_time = (time.time() - start_time) * 1000

            if response.status_code < 300:
                status_emoji = "✅"
            elif response.status_code < 400:
                status_emoji = "↪️"
            elif response.status_code < 500:
                status_emoji = "⚠️"
            else:
                status_emoji = "❌"

            request_logger.info(
                f"{status_emoji} {request.method} {request.url.path} → {response.status_code} ({process_time:.1f}ms)"
            )

            return response
        except Exception as e:
            process_time = (time.time() - start_time) * 1000
            request_logger.error(
                f"💥 {request.method} {request.url.path} → ERROR: {type(e).__name__}: {str(e)} ({process_time:.1f}ms)",
                exc_info=True,
            )
            raise


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager for startup/shutdown."""
    # ===== STARTUP =====
    logger.info("🚀 POSTUREIQ API starting up...")

    # Initialize Firebase
    if init_firebase():
        logger.info("🔥 Firebase connected")
    else:
        logger.warning("⚠️ Running in MOCK MODE (no Firebase)")

    pool = get_analysis_pool()
    logger.info("✅ POSTUREIQ API ready!")

    yield  # Application runs here

    # ===== SHUTDOWN =====
    logger.info("👋 POSTUREIQ API shutting down...")
    pool.shutdown(wait=True)
    logger.info("✅ Shutdown complete")


app = FastAPI(
    title="POSTUREIQ API",
    description="Postural deviation analysis and longitudinal comparison for chiropractic care",
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
        "service": "postureiq-api",
        "firebase": "connected" if not is_mock_mode() else "mock",
    }


@app.get("/stats")
async def get_stats():
    """Get service statistics."""
    return {
        "analysis_pool": get_analysis_pool().get_stats(),
    }


# Include service routers
app.include_router(posture_router, prefix="/api/posture", tags=["Posture Service"])


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=True)
