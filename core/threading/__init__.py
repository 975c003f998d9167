"""
POSTUREIQ Threading Module
"""

from .worker_pool import (
    WorkerPool,
    Task,
    TaskStatus,
    analysis_worker_pool,
    get_analysis_pool,
    run_analysis
)

__all__ = [
    'WorkerPool',
    'Task',
    'TaskStatus',
    'analysis_worker_pool',
    'get_analysis_pool',
    'run_analysis'
]
