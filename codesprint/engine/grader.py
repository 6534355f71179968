from typing import List, Optional

from ..models.models import GradeReport, Submission, SubmissionStatus, Testcase
from ..utils.logger_config import get_logger
from .cancellation import CancellationToken
from .errors import (
    DispatchError, GradingCancelled, NotFoundError, PersistenceError, PollTimeoutError, ValidationError
)
from .executor import ExecutionClient
from .leaderboard import LeaderboardMaintainer
from .repository import Repository
from .verdict import map_verdict

logger = get_logger("grader")

FULL_SCORE = 100


class Grader:
    """
    Drives one submission through the judge, one test case at a time.

    The first non-accepted case decides the verdict and stops the run.
    The outcome is written back once; accepted submissions are then passed
    to the leaderboard maintainer.
    """
    def __init__(
        self,
        repository: Repository,
        executor: ExecutionClient,
        poll_max_attempts: int = 30,
        poll_interval: float = 2.0,
        leaderboard: Optional[LeaderboardMaintainer] = None,
    ):
        self.repository = repository
        self.executor = executor
        self.poll_max_attempts = poll_max_attempts
        self.poll_interval = poll_interval
        self.leaderboard = leaderboard or LeaderboardMaintainer(repository)

    def grade(
        self,
        submission: Submission,
        testcases: Optional[List[Testcase]] = None,
        cancel_token: Optional[CancellationToken] = None,
    ) -> GradeReport:
        """
        Grade a pending submission and persist the outcome.

        Args:
            submission: The submission to grade
            testcases: Cases to run, in order; loaded from the repository when omitted
            cancel_token: Token checked while waiting on the judge

        Returns:
            GradeReport with the final verdict, score and runtime

        Raises:
            ValidationError: the problem has no test cases
            GradingCancelled: the task was cancelled; nothing was persisted
        """
        if testcases is None:
            testcases = self.repository.list_testcases(submission.problem_id)
        if not testcases:
            raise ValidationError(f"Problem {submission.problem_id} has no test cases")

        logger.debug(f"Grading submission {submission.id} against {len(testcases)} test cases")

        final_status = SubmissionStatus.ACCEPTED
        runtime = 0
        dispatched = 0
        verdicts: List[SubmissionStatus] = []

        for index, testcase in enumerate(testcases, start=1):
            dispatched += 1
            try:
                token = self.executor.submit(
                    submission.code,
                    submission.language,
                    testcase.input,
                    submission.time_limit_ms,
                )
                result = self.executor.poll_until_terminal(
                    token,
                    max_attempts=self.poll_max_attempts,
                    interval=self.poll_interval,
                    cancel_token=cancel_token,
                )
            except (DispatchError, PollTimeoutError) as e:
                logger.warning(f"Submission {submission.id} test case {index}: judge failure treated as runtime error: {e}")
                verdicts.append(SubmissionStatus.RUNTIME_ERROR)
                final_status = SubmissionStatus.RUNTIME_ERROR
                break
            except GradingCancelled:
                logger.warning(f"Grading of submission {submission.id} cancelled at test case {index}; left pending")
                raise

            verdict = map_verdict(result.status_id, result.stdout, testcase.expected_output)
            if verdict == SubmissionStatus.PENDING:
                # Poll only returns terminal ids, so this is a judge anomaly
                logger.warning(f"Submission {submission.id} test case {index}: unexpected judge status {result.status_id}")
                verdict = SubmissionStatus.RUNTIME_ERROR
            verdicts.append(verdict)
            logger.debug(f"Submission {submission.id} test case {index}: {verdict.value} in {result.time_ms}ms")

            if verdict != SubmissionStatus.ACCEPTED:
                final_status = verdict
                break
            runtime = max(runtime, result.time_ms)

        score = FULL_SCORE if final_status == SubmissionStatus.ACCEPTED else 0
        report = GradeReport(
            submission_id=submission.id,
            status=final_status,
            score=score,
            runtime=runtime,
            dispatched=dispatched,
            verdicts=verdicts,
        )
        logger.info(
            f"Submission {submission.id} graded {final_status.value}: score={score} runtime={runtime}ms "
            f"after {dispatched}/{len(testcases)} test cases"
        )

        try:
            self.repository.update_submission_result(submission.id, final_status, score, runtime)
        except PersistenceError as e:
            # Known gap: the row stays pending, the verdict is not retried
            logger.error(f"Failed to persist result of submission {submission.id}: {e}", exc_info=True)
            return report

        report.persisted = True
        submission.status = final_status
        submission.score = score
        submission.runtime = runtime

        if final_status == SubmissionStatus.ACCEPTED:
            try:
                report.leaderboard_entry = self.leaderboard.apply(submission)
            except (PersistenceError, NotFoundError) as e:
                logger.error(f"Leaderboard update for submission {submission.id} failed: {e}", exc_info=True)
        return report
