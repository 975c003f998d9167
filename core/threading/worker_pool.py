"""
POSTUREIQ Worker Thread Pool

ThreadPoolExecutor for CPU-bound landmark analysis
without blocking the async event loop.
"""

import asyncio
import logging
import threading
import uuid
from concurrent.futures import ThreadPoolExecutor, Future
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Iterable, List, Optional

from core.config import settings

logger = logging.getLogger(__name__)


class TaskStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class Task:
    """Represents a processing task."""
    task_id: str
    func: Callable
    args: tuple = ()
    kwargs: dict = None
    status: TaskStatus = TaskStatus.PENDING
    result: Any = None
    error: Optional[str] = None
    created_at: datetime = None
    completed_at: datetime = None

    def __post_init__(self):
        if self.kwargs is None:
            self.kwargs = {}
        if self.created_at is None:
            self.created_at = datetime.now(timezone.utc)


class WorkerPool:
    """
    Thread pool for CPU-intensive operations.

    Features:
    - Fixed-size thread pool
    - Ordered fan-out / fan-in with map()
    - Async-compatible execution
    - Task tracking and cancellation
    """

    def __init__(self, max_workers: int = None, name: str = "worker_pool"):
        self.max_workers = max_workers or settings.THREAD_POOL_SIZE
        self.name = name

        # Thread pool
        self._executor = ThreadPoolExecutor(
            max_workers=self.max_workers,
            thread_name_prefix=f"{name}_"
        )

        # Task tracking
        self._tasks: dict[str, Task] = {}
        self._futures: dict[str, Future] = {}
        self._lock = threading.Lock()
        self._closed = False

        # Stats
        self._completed_count = 0
        self._failed_count = 0

        logger.info(f"🧵 WorkerPool '{name}' initialized (workers: {self.max_workers})")

    @property
    def is_closed(self) -> bool:
        return self._closed

    def submit(self, func: Callable, *args, task_id: str = None, **kwargs) -> str:
        """
        Submit a task to the thread pool.

        Returns:
            task_id for tracking
        """
        task_id = task_id or f"task_{uuid.uuid4().hex}"

        task = Task(task_id=task_id, func=func, args=args, kwargs=kwargs)

        with self._lock:
            self._tasks[task_id] = task

        # Submit to executor
        future = self._executor.submit(self._run_task, task)

        with self._lock:
            self._futures[task_id] = future

        logger.debug(f"Task {task_id} submitted")
        return task_id

    async def submit_async(self, func: Callable, *args, task_id: str = None, **kwargs) -> Any:
        """
        Submit and await a task result (async-friendly).
        """
        task_id = self.submit(func, *args, task_id=task_id, **kwargs)
        future = self._futures[task_id]
        try:
            return await asyncio.wrap_future(future)
        finally:
            self.forget([task_id])

    def map(self, func: Callable, items: Iterable[Any]) -> List[Any]:
        """
        Run func over items in parallel and return the results in input order.

        The first failure is re-raised once every task has been collected.
        Finished tasks are dropped from tracking.
        """
        task_ids = [self.submit(func, item) for item in items]
        results: List[Any] = []
        error: Optional[BaseException] = None

        try:
            for task_id in task_ids:
                try:
                    results.append(self._futures[task_id].result())
                except Exception as e:
                    if error is None:
                        error = e
        finally:
            self.forget(task_ids)

        if error is not None:
            raise error
        return results

    async def map_async(self, func: Callable, items: Iterable[Any]) -> List[Any]:
        """Async variant of map(); results keep input order."""
        return list(await asyncio.gather(*(self.submit_async(func, item) for item in items)))

    def _run_task(self, task: Task) -> Any:
        """Execute a task in the thread pool."""
        task.status = TaskStatus.RUNNING

        try:
            result = task.func(*task.args, **task.kwargs)

            task.status = TaskStatus.COMPLETED
            task.result = result
            task.completed_at = datetime.now(timezone.utc)

            with self._lock:
                self._completed_count += 1

            logger.debug(f"Task {task.task_id} completed")
            return result

        except Exception as e:
            task.status = TaskStatus.FAILED
            task.error = str(e)
            task.completed_at = datetime.now(timezone.utc)

            with self._lock:
                self._failed_count += 1

            logger.error(f"Task {task.task_id} failed: {e}")
            raise

    def forget(self, task_ids: Iterable[str]):
        """Stop tracking finished tasks."""
        with self._lock:
            for task_id in task_ids:
                self._tasks.pop(task_id, None)
                self._futures.pop(task_id, None)

    def get_task_status(self, task_id: str) -> Optional[TaskStatus]:
        """Get the status of a task."""
        task = self._tasks.get(task_id)
        return task.status if task else None

    def get_task_result(self, task_id: str) -> Optional[Any]:
        """Get the result of a completed task."""
        task = self._tasks.get(task_id)
        if task and task.status == TaskStatus.COMPLETED:
            return task.result
        return None

    # ========================================
    # Lifecycle
    # ========================================

    def shutdown(self, wait: bool = True):
        """Shutdown the thread pool."""
        logger.info(f"Shutting down WorkerPool '{self.name}'...")
        self._executor.shutdown(wait=wait)
        self._closed = True
        logger.info(f"WorkerPool '{self.name}' shutdown complete")

    def get_stats(self) -> dict:
        """Get pool statistics."""
        with self._lock:
            tasks = list(self._tasks.values())
        return {
            "name": self.name,
            "max_workers": self.max_workers,
            "closed": self._closed,
            "pending_tasks": len([t for t in tasks if t.status == TaskStatus.PENDING]),
            "running_tasks": len([t for t in tasks if t.status == TaskStatus.RUNNING]),
            "completed_tasks": self._completed_count,
            "failed_tasks": self._failed_count,
        }


# ============================================
# Global Worker Pool
# ============================================

# Landmark analysis pool (one task per posture image)
analysis_worker_pool = WorkerPool(name="posture_analysis")


def get_analysis_pool() -> WorkerPool:
    """Get the posture analysis worker pool, reopening it after a shutdown."""
    global analysis_worker_pool
    if analysis_worker_pool.is_closed:
        analysis_worker_pool = WorkerPool(name="posture_analysis")
    return analysis_worker_pool


async def run_analysis(func: Callable, *args, **kwargs) -> Any:
    """
    Run one analysis call on the analysis worker pool.

    Usage:
        result = await run_analysis(analyzer.analyze_image, image, height_cm)
    """
    return await get_analysis_pool().submit_async(func, *args, **kwargs)
