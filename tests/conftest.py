from __future__ import annotations

import threading
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional, Tuple, Union

import pytest

from codesprint.engine.errors import PersistenceError
from codesprint.engine.repository import Repository, SolveCredit
from codesprint.engine.storage import DuckDBStorage
from codesprint.models.models import (
    Contest, ExecutionResult, LeaderboardEntry, Problem, Submission, SubmissionStatus, Testcase, generate_id
)

CONTEST_START = datetime(2026, 3, 1, 9, 0, 0)


def passed(stdout: str, time_ms: int = 0) -> ExecutionResult:
    """Judge status 3: ran to completion, output still to be compared"""
    return ExecutionResult(token="", status_id=3, status_description="Accepted", stdout=stdout, time_ms=time_ms)


def judged(status_id: int, time_ms: int = 0) -> ExecutionResult:
    return ExecutionResult(token="", status_id=status_id, status_description=f"status {status_id}", time_ms=time_ms)


Outcome = Union[ExecutionResult, Exception]


class FakeExecutor:
    """Scripted stand-in for ExecutionClient.

    `outcomes` is either a list consumed one entry per dispatch, or a
    callable receiving (code, stdin) and returning the outcome. An exception
    outcome is raised from submit() when `fail_submit` is set, otherwise
    from poll_until_terminal().
    """

    base_url = "http://judge.test"

    def __init__(self, outcomes: Union[List[Outcome], Callable[[str, str], Outcome]], fail_submit: bool = False):
        self.outcomes = outcomes
        self.fail_submit = fail_submit
        self.dispatched: List[Tuple[str, str, Optional[int]]] = []
        self._results: Dict[str, Outcome] = {}
        self._lock = threading.Lock()
        self.connected = True

    def submit(self, code: str, language: str, stdin: str, time_limit_ms: Optional[int] = None) -> str:
        with self._lock:
            index = len(self.dispatched)
            self.dispatched.append((code, stdin, time_limit_ms))
            if callable(self.outcomes):
                outcome = self.outcomes(code, stdin)
            else:
                outcome = self.outcomes[index]
            token = f"tok-{index}"
            self._results[token] = outcome
        if isinstance(outcome, Exception) and self.fail_submit:
            raise outcome
        return token

    def poll_until_terminal(self, token, max_attempts=30, interval=2.0, cancel_token=None, deadline=None):
        outcome = self._results[token]
        if isinstance(outcome, Exception):
            raise outcome
        return ExecutionResult(
            token=token,
            status_id=outcome.status_id,
            status_description=outcome.status_description,
            stdout=outcome.stdout,
            time_ms=outcome.time_ms,
        )

    def check_connection(self) -> bool:
        return self.connected


class FakeRepository(Repository):
    """In-memory repository; every method runs under one lock"""

    def __init__(self):
        self._lock = threading.RLock()
        self.contests: Dict[str, Contest] = {}
        self.problems: Dict[str, Problem] = {}
        self.testcases: Dict[str, List[Testcase]] = {}
        self.submissions: Dict[str, Submission] = {}
        self.entries: Dict[Tuple[str, str], LeaderboardEntry] = {}
        self.solves: Dict[Tuple[str, str, str], Tuple[datetime, int]] = {}
        self.fail_updates = False
        self.update_calls: List[Tuple[str, SubmissionStatus, int, int]] = []

    def add_contest(self, start_time: datetime = CONTEST_START) -> Contest:
        contest = Contest(id=generate_id(), title="Spring Round", start_time=start_time)
        self.contests[contest.id] = contest
        return contest

    def add_problem(self, contest_id: str, cases: List[Tuple[str, str]], time_limit_ms: int = 1000) -> Problem:
        problem = Problem(id=generate_id(), contest_id=contest_id, title="A+B", time_limit_ms=time_limit_ms)
        self.problems[problem.id] = problem
        self.testcases[problem.id] = [
            Testcase(id=generate_id(), problem_id=problem.id, input=i, expected_output=o, is_sample=(n == 0))
            for n, (i, o) in enumerate(cases)
        ]
        return problem

    def create_submission(self, user_id, contest_id, problem_id, language, code, created_at=None) -> Submission:
        with self._lock:
            submission = Submission(
                id=generate_id(),
                user_id=user_id,
                problem_id=problem_id,
                contest_id=contest_id,
                language=language,
                code=code,
                created_at=created_at or datetime.now(),
            )
            self.submissions[submission.id] = submission
            return self._copy(submission)

    def _copy(self, submission: Submission) -> Submission:
        return Submission(
            id=submission.id,
            user_id=submission.user_id,
            problem_id=submission.problem_id,
            contest_id=submission.contest_id,
            language=submission.language,
            code=submission.code,
            created_at=submission.created_at,
            status=submission.status,
            score=submission.score,
            runtime=submission.runtime,
        )

    def get_submission(self, submission_id, include_code=False):
        with self._lock:
            submission = self.submissions.get(submission_id)
            return self._copy(submission) if submission else None

    def list_user_submissions(self, contest_id, user_id=None):
        with self._lock:
            found = [
                self._copy(s) for s in self.submissions.values()
                if s.contest_id == contest_id and (user_id is None or s.user_id == user_id)
            ]
        return sorted(found, key=lambda s: s.created_at, reverse=True)

    def get_contest(self, contest_id):
        return self.contests.get(contest_id)

    def get_problem(self, problem_id):
        return self.problems.get(problem_id)

    def list_testcases(self, problem_id):
        return list(self.testcases.get(problem_id, []))

    def update_submission_result(self, submission_id, status, score, runtime):
        with self._lock:
            self.update_calls.append((submission_id, status, score, runtime))
            if self.fail_updates:
                raise PersistenceError("database is read-only")
            submission = self.submissions.get(submission_id)
            if submission is None:
                raise PersistenceError(f"Submission {submission_id} not found")
            submission.status = status
            submission.score = score
            submission.runtime = runtime

    def _earliest_accepted(self, contest_id, user_id, problem_id):
        times = [
            s.created_at for s in self.submissions.values()
            if (s.contest_id, s.user_id, s.problem_id) == (contest_id, user_id, problem_id)
            and s.status == SubmissionStatus.ACCEPTED
        ]
        return min(times) if times else None

    def credit_first_accepted(self, contest_id, user_id, problem_id, penalty_of, fallback_solved_at=None):
        with self._lock:
            solved_at = self._earliest_accepted(contest_id, user_id, problem_id) or fallback_solved_at
            if solved_at is None:
                return None
            penalty = penalty_of(solved_at)
            key = (contest_id, user_id, problem_id)
            credited = self.solves.get(key)
            if credited is not None and credited[0] <= solved_at:
                return None
            self.solves[key] = (solved_at, penalty)

            entry = self.entries.get((contest_id, user_id))
            if entry is None:
                entry = LeaderboardEntry(contest_id, user_id, 0, 0, solved_at)
                self.entries[(contest_id, user_id)] = entry
            if credited is None:
                entry.solved_count += 1
                entry.penalty += penalty
            else:
                entry.penalty += penalty - credited[1]
            entry.last_submission_time = max(
                t for (c, u, _), (t, _) in self.solves.items() if (c, u) == (contest_id, user_id)
            )
            return LeaderboardEntry(contest_id, user_id, entry.solved_count, entry.penalty, entry.last_submission_time)

    def get_leaderboard_entry(self, contest_id, user_id):
        return self.entries.get((contest_id, user_id))

    def list_leaderboard(self, contest_id):
        entries = sorted(
            (e for (c, _), e in self.entries.items() if c == contest_id),
            key=LeaderboardEntry.sort_key,
        )
        for position, entry in enumerate(entries, start=1):
            entry.rank = position
        return entries

    def list_first_accepted(self, contest_id):
        firsts: Dict[Tuple[str, str], datetime] = {}
        for s in self.submissions.values():
            if s.contest_id == contest_id and s.status == SubmissionStatus.ACCEPTED:
                key = (s.user_id, s.problem_id)
                firsts[key] = min(firsts.get(key, s.created_at), s.created_at)
        return [(u, p, t) for (u, p), t in sorted(firsts.items())]

    def replace_leaderboard(self, contest_id, credits: List[SolveCredit]):
        with self._lock:
            self.entries = {k: v for k, v in self.entries.items() if k[0] != contest_id}
            self.solves = {k: v for k, v in self.solves.items() if k[0] != contest_id}
            for user_id, problem_id, solved_at, penalty in credits:
                self.solves[(contest_id, user_id, problem_id)] = (solved_at, penalty)
                entry = self.entries.setdefault((contest_id, user_id), LeaderboardEntry(contest_id, user_id, 0, 0, solved_at))
                entry.solved_count += 1
                entry.penalty += penalty
                entry.last_submission_time = max(entry.last_submission_time, solved_at)
        return self.list_leaderboard(contest_id)


@pytest.fixture
def repo() -> FakeRepository:
    return FakeRepository()


@pytest.fixture
def storage(tmp_path) -> DuckDBStorage:
    store = DuckDBStorage(str(tmp_path / "codesprint.duckdb"))
    yield store
    store.close()


def at(minutes: float) -> datetime:
    """A moment `minutes` after CONTEST_START"""
    return CONTEST_START + timedelta(minutes=minutes)
