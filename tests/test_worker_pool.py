"""
Worker pool tests.
"""

import asyncio
import time

import pytest

from core.threading import TaskStatus, WorkerPool, get_analysis_pool, run_analysis
import core.threading.worker_pool as worker_pool_module


def slow_square(value):
    # Later items finish first so ordering is not an accident of timing
    time.sleep(0.01 * (5 - value))
    return value * value


def fail_on_three(value):
    if value == 3:
        raise ValueError("bad item")
    return value


class TestWorkerPool:
    """Fan-out / fan-in over the thread pool."""

    def test_map_keeps_input_order(self, worker_pool):
        assert worker_pool.map(slow_square, [1, 2, 3, 4]) == [1, 4, 9, 16]

    def test_map_reraises_first_failure(self, worker_pool):
        with pytest.raises(ValueError, match="bad item"):
            worker_pool.map(fail_on_three, [1, 2, 3, 4])

        stats = worker_pool.get_stats()
        assert stats["failed_tasks"] == 1
        assert stats["completed_tasks"] == 3

    def test_map_forgets_finished_tasks(self, worker_pool):
        worker_pool.map(slow_square, [1, 2])
        stats = worker_pool.get_stats()
        assert stats["pending_tasks"] == 0
        assert stats["running_tasks"] == 0

    def test_submit_tracks_task(self, worker_pool):
        task_id = worker_pool.submit(slow_square, 4, task_id="square-4")
        worker_pool._futures[task_id].result()

        assert worker_pool.get_task_status("square-4") == TaskStatus.COMPLETED
        assert worker_pool.get_task_result("square-4") == 16

    def test_map_async(self, worker_pool):
        assert asyncio.run(worker_pool.map_async(slow_square, [3, 1, 2])) == [9, 1, 4]

    def test_stats_shape(self, worker_pool):
        stats = worker_pool.get_stats()
        assert stats["name"] == "test_analysis"
        assert stats["max_workers"] == 2
        assert stats["closed"] is False


class TestAnalysisPool:

    def test_run_analysis(self):
        assert asyncio.run(run_analysis(slow_square, 3)) == 9

    def test_reopens_after_shutdown(self, monkeypatch):
        closed = WorkerPool(max_workers=1, name="closed_pool")
        closed.shutdown()
        monkeypatch.setattr(worker_pool_module, "analysis_worker_pool", closed)

        pool = get_analysis_pool()

        assert pool is not closed
        assert pool.is_closed is False
        assert pool.map(slow_square, [2]) == [4]
        pool.shutdown()
