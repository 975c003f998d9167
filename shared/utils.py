"""
POSTUREIQ Shared Utilities

Logging, response models and HTTP error mapping.
"""

import inspect
import logging
import sys
import time
from datetime import datetime, timezone
from functools import wraps
from typing import Any, Generic, Optional, TypeVar

from fastapi import HTTPException
from pydantic import BaseModel


# ============================================
# Logging Configuration
# ============================================

def setup_logger(name: str = "postureiq", level: int = logging.INFO) -> logging.Logger:
    """
    Set up a configured logger with console output.

    Usage:
        logger = setup_logger(__name__)
        logger.info("Hello from POSTUREIQ")
    """
    logger = logging.getLogger(name)
    logger.setLevel(level)

    # Avoid duplicate handlers
    if logger.handlers:
        return logger

    # Console handler with formatting
    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(level)

    formatter = logging.Formatter(
        fmt="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S"
    )
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    return logger


# Default logger for imports
logger = setup_logger("postureiq")


# ============================================
# Response Models
# ============================================

T = TypeVar('T')


class APIResponse(BaseModel, Generic[T]):
    """Standard API response wrapper."""
    success: bool = True
    message: str = "Operation completed successfully"
    data: Optional[T] = None
    timestamp: str = ""

    def __init__(self, **data):
        if "timestamp" not in data or not data["timestamp"]:
            data["timestamp"] = datetime.now(timezone.utc).isoformat()
        super().__init__(**data)


class ErrorResponse(BaseModel):
    """Standard error response."""
    success: bool = False
    error: str
    error_code: Optional[str] = None
    details: Optional[dict] = None
    timestamp: str = ""

    def __init__(self, **data):
        if "timestamp" not in data or not data["timestamp"]:
            data["timestamp"] = datetime.now(timezone.utc).isoformat()
        super().__init__(**data)


def success_response(data: Any = None, message: str = "Success") -> dict:
    """Create a success response dict."""
    return APIResponse(data=data, message=message).model_dump()


def error_response(error: str, error_code: str = None, details: dict = None) -> dict:
    """Create an error response dict."""
    return ErrorResponse(error=error, error_code=error_code, details=details).model_dump()


# ============================================
# Error Mapping
# ============================================

# Domain error code -> HTTP status
ERROR_STATUS_CODES = {
    "not_found": 404,
    "invalid_ordering": 422,
    "cross_patient": 422,
    "view_mismatch": 400,
    "precondition_not_met": 409,
    "assessment_locked": 409,
}


def to_http_exception(error: Exception, source: str = "request") -> HTTPException:
    """Translate a raised error into an HTTPException with an ErrorResponse body."""
    code = getattr(error, "code", None)
    if code in ERROR_STATUS_CODES:
        message = getattr(error, "message", str(error))
        details = getattr(error, "details", None)
        logger.warning(f"⚠️ {source} rejected ({code}): {message}")
        return HTTPException(
            status_code=ERROR_STATUS_CODES[code],
            detail=error_response(message, code, details),
        )
    if isinstance(error, ValueError):
        return HTTPException(status_code=400, detail=error_response(str(error), "invalid_input"))

    logger.error(f"Unhandled error in {source}: {error}", exc_info=error)
    return HTTPException(status_code=500, detail=error_response("Internal server error", "internal_error"))


# ============================================
# Decorators
# ============================================

def log_execution_time(func):
    """Decorator to log function execution time."""
    @wraps(func)
    async def async_wrapper(*args, **kwargs):
        start = time.perf_counter()
        result = await func(*args, **kwargs)
        elapsed = (time.perf_counter() - start) * 1000
        logger.debug(f"{func.__name__} executed in {elapsed:.2f}ms")
        return result

    @wraps(func)
    def sync_wrapper(*args, **kwargs):
        start = time.perf_counter()
        result = func(*args, **kwargs)
        elapsed = (time.perf_counter() - start) * 1000
        logger.debug(f"{func.__name__} executed in {elapsed:.2f}ms")
        return result

    if inspect.iscoroutinefunction(func):
        return async_wrapper
    return sync_wrapper


def handle_exceptions(func):
    """Decorator to catch exceptions and return proper HTTP errors."""
    @wraps(func)
    async def async_wrapper(*args, **kwargs):
        try:
            return await func(*args, **kwargs)
        except HTTPException:
            raise
        except Exception as e:
            raise to_http_exception(e, func.__name__) from e

    @wraps(func)
    def sync_wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except HTTPException:
            raise
        except Exception as e:
            raise to_http_exception(e, func.__name__) from e

    if inspect.iscoroutinefunction(func):
        return async_wrapper
    return sync_wrapper


# ============================================
# Utility Functions
# ============================================

def get_now() -> datetime:
    """Get current UTC datetime (timezone-aware)."""
    return datetime.now(timezone.utc)

