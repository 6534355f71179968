"""
Storage capabilities the grading core depends on.

The grader and the leaderboard maintainer receive a Repository instead of
reaching for a global database handle, so tests can hand them a fake.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Callable, List, Optional, Tuple

from ..models.models import (
    Contest, LeaderboardEntry, Problem, Submission, SubmissionStatus, Testcase
)

# (user_id, problem_id, first accepted time, penalty minutes)
SolveCredit = Tuple[str, str, datetime, int]


class Repository(ABC):

    @abstractmethod
    def create_submission(
        self,
        user_id: str,
        contest_id: str,
        problem_id: str,
        language: str,
        code: str,
        created_at: Optional[datetime] = None,
    ) -> Submission:
        """Persist a new submission in the pending state"""

    @abstractmethod
    def get_submission(self, submission_id: str, include_code: bool = False) -> Optional[Submission]:
        ...

    @abstractmethod
    def list_user_submissions(self, contest_id: str, user_id: Optional[str] = None) -> List[Submission]:
        """Submissions of a contest, newest first, optionally for one user"""

    @abstractmethod
    def get_contest(self, contest_id: str) -> Optional[Contest]:
        ...

    @abstractmethod
    def get_problem(self, problem_id: str) -> Optional[Problem]:
        ...

    @abstractmethod
    def list_testcases(self, problem_id: str) -> List[Testcase]:
        """All test cases of a problem, in creation order"""

    @abstractmethod
    def update_submission_result(
        self, submission_id: str, status: SubmissionStatus, score: int, runtime: int
    ) -> None:
        """
        Write the grading outcome as one atomic update.

        Raises:
            PersistenceError: the row is missing or the write failed
        """

    @abstractmethod
    def credit_first_accepted(
        self,
        contest_id: str,
        user_id: str,
        problem_id: str,
        penalty_of: Callable[[datetime], int],
        fallback_solved_at: Optional[datetime] = None,
    ) -> Optional[LeaderboardEntry]:
        """
        Atomically credit a solved problem to a leaderboard entry.

        In one transaction, takes the earliest accepted submission for the
        (contest, user, problem) triple (or `fallback_solved_at` when none is
        stored) as the solve time and `penalty_of(solve time)` as its penalty.
        Creates or increments the (contest, user) entry when the problem has
        not been credited before; when it has, but with a later solve time,
        moves the credit to the earlier time and adjusts the penalty.

        Returns:
            The updated entry, or None when nothing changed

        Raises:
            PersistenceError: the transaction could not be committed
        """

    @abstractmethod
    def get_leaderboard_entry(self, contest_id: str, user_id: str) -> Optional[LeaderboardEntry]:
        ...

    @abstractmethod
    def list_leaderboard(self, contest_id: str) -> List[LeaderboardEntry]:
        """Entries ranked by solved count desc, penalty asc, last solve asc"""

    @abstractmethod
    def list_first_accepted(self, contest_id: str) -> List[Tuple[str, str, datetime]]:
        """(user_id, problem_id, earliest accepted time) for every solved pair"""

    @abstractmethod
    def replace_leaderboard(self, contest_id: str, credits: List[SolveCredit]) -> List[LeaderboardEntry]:
        """Replace the contest's aggregate and credit ledger in one transaction"""
