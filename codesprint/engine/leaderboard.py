"""
Incremental leaderboard maintenance.

A (contest, user) entry changes only when a problem is solved for the
first time: solved_count goes up by one and the minutes from contest start
to the first accepted submission are added to the penalty. Updates for the
same (contest, user) are serialized in-process by a per-key lock. The
store applies each credit in a single retried transaction keyed by problem,
so racing accepted submissions count once even across maintainers.
"""

import math
import threading
import weakref
from datetime import datetime
from typing import List, Optional, Tuple

from ..models.models import LeaderboardEntry, Submission, SubmissionStatus
from ..utils.logger_config import get_logger
from .errors import NotFoundError
from .repository import Repository

logger = get_logger("leaderboard")


def penalty_minutes(solved_at: datetime, start_time: datetime) -> int:
    """Whole minutes from contest start to `solved_at`, floored.

    Submissions stamped before the contest start give a negative value,
    which is kept as-is.
    """
    return math.floor((solved_at - start_time).total_seconds() / 60)


class LeaderboardMaintainer:
    def __init__(self, repository: Repository):
        self.repository = repository
        # Entries disappear once no thread holds or waits on the lock
        self._locks: "weakref.WeakValueDictionary[Tuple[str, str], threading.Lock]" = weakref.WeakValueDictionary()
        self._locks_guard = threading.Lock()

    def _lock_for(self, contest_id: str, user_id: str) -> threading.Lock:
        key = (contest_id, user_id)
        with self._locks_guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.Lock()
                self._locks[key] = lock
            return lock

    def apply(self, submission: Submission) -> Optional[LeaderboardEntry]:
        """
        Credit a graded submission to its user's leaderboard entry.

        Only the first accepted submission per (user, contest, problem) has
        any effect; the penalty is taken from the earliest accepted
        submission on record for that problem, even when it finished
        grading after a later one.

        Returns:
            The updated entry, or None when nothing changed

        Raises:
            NotFoundError: the contest does not exist
            PersistenceError: the credit could not be written
        """
        if submission.status != SubmissionStatus.ACCEPTED:
            return None

        contest = self.repository.get_contest(submission.contest_id)
        if contest is None:
            raise NotFoundError(f"Contest {submission.contest_id} not found")

        def penalty_of(solved_at: datetime) -> int:
            return penalty_minutes(solved_at, contest.start_time)

        with self._lock_for(submission.contest_id, submission.user_id):
            entry = self.repository.credit_first_accepted(
                submission.contest_id,
                submission.user_id,
                submission.problem_id,
                penalty_of,
                fallback_solved_at=submission.created_at,
            )

        if entry is None:
            logger.debug(
                f"Problem {submission.problem_id} already solved by {submission.user_id}; leaderboard unchanged"
            )
            return None

        logger.info(
            f"Leaderboard {submission.contest_id}/{submission.user_id}: "
            f"solved={entry.solved_count} penalty={entry.penalty}"
        )
        return entry

    def leaderboard(self, contest_id: str) -> List[LeaderboardEntry]:
        return self.repository.list_leaderboard(contest_id)

    def rebuild(self, contest_id: str) -> List[LeaderboardEntry]:
        """Recompute the contest's leaderboard from accepted submissions"""
        contest = self.repository.get_contest(contest_id)
        if contest is None:
            raise NotFoundError(f"Contest {contest_id} not found")

        credits = [
            (user_id, problem_id, solved_at, penalty_minutes(solved_at, contest.start_time))
            for user_id, problem_id, solved_at in self.repository.list_first_accepted(contest_id)
        ]
        entries = self.repository.replace_leaderboard(contest_id, credits)
        logger.info(f"Rebuilt leaderboard for {contest_id}: {len(entries)} entries from {len(credits)} solves")
        return entries
