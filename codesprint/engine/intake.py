from typing import Any, Dict

from ..models.models import SubmissionStatus
from ..utils.logger_config import get_logger
from .errors import NotFoundError, PersistenceError, PoolSaturatedError, ValidationError
from .repository import Repository
from .scheduler import GradingPool

logger = get_logger("intake")


class SubmissionService:
    """
    Accepts a submission, stores it as pending and queues it for grading.
    The caller gets the id back right away; grading happens on the pool.
    """
    def __init__(self, repository: Repository, pool: GradingPool):
        self.repository = repository
        self.pool = pool

    def submit(self, user_id: str, contest_id: str, problem_id: str, language: str, code: str) -> Dict[str, Any]:
        """
        Validate and enqueue a submission.

        Returns:
            {"submission_id": ..., "status": "pending"}

        Raises:
            ValidationError: missing fields, or the problem has no test cases
            NotFoundError: unknown problem, or it does not belong to the contest
            PoolSaturatedError: no grading slot is free
        """
        if not user_id:
            raise ValidationError("User id is required")
        if not code or not language:
            raise ValidationError("Code and language are required")

        problem = self.repository.get_problem(problem_id)
        if problem is None or problem.contest_id != contest_id:
            raise NotFoundError(f"Problem {problem_id} not found in contest {contest_id}")

        testcases = self.repository.list_testcases(problem_id)
        if not testcases:
            raise ValidationError("No testcases found for this problem")

        submission = self.repository.create_submission(
            user_id=user_id,
            contest_id=contest_id,
            problem_id=problem_id,
            language=language,
            code=code,
        )
        submission.time_limit_ms = problem.time_limit_ms

        try:
            self.pool.submit(submission, testcases)
        except PoolSaturatedError:
            # Infrastructure failures surface as runtime errors, never as a stuck pending row
            try:
                self.repository.update_submission_result(submission.id, SubmissionStatus.RUNTIME_ERROR, 0, 0)
            except PersistenceError as e:
                logger.error(f"Failed to close rejected submission {submission.id}: {e}")
            raise

        logger.info(f"Accepted submission {submission.id} from {user_id} for problem {problem_id}")
        return {"submission_id": submission.id, "status": SubmissionStatus.PENDING.value}
