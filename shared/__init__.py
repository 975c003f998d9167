"""
POSTUREIQ Shared Module

Common utilities used across all services.
"""

from .utils import (
    setup_logger,
    APIResponse,
    ErrorResponse,
    success_response,
    error_response,
    handle_exceptions,
    log_execution_time,
    get_now,
)

__all__ = [
    'setup_logger',
    'APIResponse',
    'ErrorResponse',
    'success_response',
    'error_response',
    'handle_exceptions',
    'log_execution_time',
    'get_now',
]
