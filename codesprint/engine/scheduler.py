"""
Bounded pool of grading workers.

Intake hands each pending submission to the pool and returns at once.
At most `max_pending` submissions are queued or running at any time;
further submissions are rejected with PoolSaturatedError instead of piling
up against the judge.
"""

import threading
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Dict, List, Optional

from ..models.models import GradeReport, Submission, Testcase
from ..utils.logger_config import get_logger
from .cancellation import CancellationToken
from .errors import GradingCancelled, PoolSaturatedError
from .grader import Grader

logger = get_logger("scheduler")


class GradingTask:
    """Handle on one detached grading job"""
    def __init__(self, submission_id: str, future: Future, cancel_token: CancellationToken):
        self.submission_id = submission_id
        self.future = future
        self.cancel_token = cancel_token

    def cancel(self) -> None:
        """Request cancellation; a running task stops at its next judge wait"""
        self.cancel_token.cancel()
        self.future.cancel()

    def done(self) -> bool:
        return self.future.done()

    def result(self, timeout: Optional[float] = None) -> Optional[GradeReport]:
        return self.future.result(timeout)


class GradingPool:
    def __init__(self, grader: Grader, max_workers: int = 8, max_pending: int = 64):
        if max_workers < 1:
            raise ValueError("max_workers must be at least 1")
        if max_pending < max_workers:
            raise ValueError("max_pending must be at least max_workers")
        self.grader = grader
        self.max_workers = max_workers
        self.max_pending = max_pending
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="grader")
        self._slots = threading.BoundedSemaphore(max_pending)
        self._tasks: Dict[str, GradingTask] = {}
        self._tasks_lock = threading.Lock()
        self._closed = False
        logger.info(f"Grading pool started: {max_workers} workers, {max_pending} pending slots")

    def submit(self, submission: Submission, testcases: Optional[List[Testcase]] = None) -> GradingTask:
        """
        Queue a submission for grading.

        Raises:
            PoolSaturatedError: every slot is taken or the pool is shut down
        """
        if self._closed:
            raise PoolSaturatedError("Grading pool is shut down")
        if not self._slots.acquire(blocking=False):
            logger.warning(f"Grading pool saturated, rejecting submission {submission.id}")
            raise PoolSaturatedError(f"Grading pool is full ({self.max_pending} submissions in flight)")

        cancel_token = CancellationToken()
        # Registration and the worker's _finish both take _tasks_lock, so a
        # job that completes at once cannot finish before it is registered
        with self._tasks_lock:
            try:
                future = self._executor.submit(self._run, submission, testcases, cancel_token)
            except RuntimeError as e:
                self._slots.release()
                raise PoolSaturatedError(f"Grading pool is shut down: {e}") from e
            task = GradingTask(submission.id, future, cancel_token)
            self._tasks[submission.id] = task
        # A job cancelled before it started never reaches _run
        future.add_done_callback(lambda f: self._finish(submission.id) if f.cancelled() else None)
        logger.debug(f"Queued submission {submission.id} for grading")
        return task

    def _run(
        self,
        submission: Submission,
        testcases: Optional[List[Testcase]],
        cancel_token: CancellationToken,
    ) -> Optional[GradeReport]:
        # The slot is freed before the result becomes visible to waiters
        try:
            if cancel_token.cancelled:
                logger.info(f"Submission {submission.id} cancelled before grading started")
                return None
            return self.grader.grade(submission, testcases, cancel_token)
        except GradingCancelled:
            return None
        except Exception as e:
            # Nobody awaits this job; an escaping error would only be stored on the future
            logger.error(f"Grading job for submission {submission.id} crashed: {e}", exc_info=True)
            return None
        finally:
            self._finish(submission.id)

    def _finish(self, submission_id: str) -> None:
        with self._tasks_lock:
            self._tasks.pop(submission_id, None)
        self._slots.release()

    def get_task(self, submission_id: str) -> Optional[GradingTask]:
        with self._tasks_lock:
            return self._tasks.get(submission_id)

    @property
    def in_flight(self) -> int:
        with self._tasks_lock:
            return len(self._tasks)

    def shutdown(self, wait: bool = True, cancel_pending: bool = False) -> None:
        self._closed = True
        if cancel_pending:
            with self._tasks_lock:
                tasks = list(self._tasks.values())
            for task in tasks:
                task.cancel()
        self._executor.shutdown(wait=wait)
        logger.info("Grading pool stopped")

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.shutdown()
