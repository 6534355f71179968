from enum import Enum
from typing import Dict, List, Optional, Any
from datetime import datetime
import uuid


# Helper function to generate unique IDs
def generate_id() -> str:
    """Generate a unique ID for entities"""
    return str(uuid.uuid4())


class SubmissionStatus(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    WRONG_ANSWER = "wrong_answer"
    TIME_LIMIT_EXCEEDED = "time_limit_exceeded"
    COMPILATION_ERROR = "compilation_error"
    RUNTIME_ERROR = "runtime_error"
    MEMORY_LIMIT_EXCEEDED = "memory_limit_exceeded"

    @property
    def is_terminal(self) -> bool:
        return self is not SubmissionStatus.PENDING


class Contest:
    def __init__(self, id: str, title: str, start_time: datetime, end_time: Optional[datetime] = None):
        self.id = id
        self.title = title
        self.start_time = start_time
        self.end_time = end_time

    def to_dict(self) -> Dict:
        return {
            "id": self.id,
            "title": self.title,
            "start_time": self.start_time.isoformat() if self.start_time else None,
            "end_time": self.end_time.isoformat() if self.end_time else None,
        }


class Problem:
    def __init__(
        self,
        id: str,
        contest_id: str,
        title: str,
        time_limit_ms: int = 1000,
        memory_limit_mb: int = 256,
    ):
        self.id = id
        self.contest_id = contest_id
        self.title = title
        self.time_limit_ms = time_limit_ms
        self.memory_limit_mb = memory_limit_mb

    def to_dict(self) -> Dict:
        return {
            "id": self.id,
            "contest_id": self.contest_id,
            "title": self.title,
            "time_limit_ms": self.time_limit_ms,
            "memory_limit_mb": self.memory_limit_mb,
        }


class Testcase:
    """A hidden or sample case of a problem; all of them are used for grading"""
    def __init__(
        self,
        id: str,
        problem_id: str,
        input: str,
        expected_output: str,
        is_sample: bool = False,
        created_at: Optional[datetime] = None,
    ):
        self.id = id
        self.problem_id = problem_id
        self.input = input
        self.expected_output = expected_output
        self.is_sample = is_sample
        self.created_at = created_at

    def to_dict(self) -> Dict:
        return {
            "id": self.id,
            "problem_id": self.problem_id,
            "input": self.input,
            "expected_output": self.expected_output,
            "is_sample": self.is_sample,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


class ExecutionResult:
    """One judge run as reported by the execution service. Never persisted."""

    TERMINAL_STATUS_IDS = frozenset(range(3, 9))

    def __init__(
        self,
        token: str,
        status_id: int,
        status_description: str = "",
        stdout: str = "",
        stderr: str = "",
        compile_output: str = "",
        time_ms: int = 0,
        memory_kb: int = 0,
    ):
        self.token = token
        self.status_id = status_id
        self.status_description = status_description
        self.stdout = stdout
        self.stderr = stderr
        self.compile_output = compile_output
        self.time_ms = time_ms
        self.memory_kb = memory_kb

    @property
    def is_terminal(self) -> bool:
        return self.status_id in self.TERMINAL_STATUS_IDS

    def to_dict(self) -> Dict:
        return {
            "token": self.token,
            "status": {"id": self.status_id, "description": self.status_description},
            "stdout": self.stdout,
            "stderr": self.stderr,
            "compile_output": self.compile_output,
            "time_ms": self.time_ms,
            "memory_kb": self.memory_kb,
        }


class Submission:
    """A contestant's code for one problem of one contest"""
    def __init__(
        self,
        id: str,
        user_id: str,
        problem_id: str,
        contest_id: str,
        language: str,
        code: str,
        created_at: datetime,
        status: SubmissionStatus = SubmissionStatus.PENDING,
        score: int = 0,
        runtime: int = 0,
        time_limit_ms: Optional[int] = None,
    ):
        self.id = id
        self.user_id = user_id
        self.problem_id = problem_id
        self.contest_id = contest_id
        self.language = language
        self.code = code
        self.created_at = created_at
        self.status = status
        self.score = score
        self.runtime = runtime
        # Carried from the problem at intake, not stored on the row
        self.time_limit_ms = time_limit_ms

    def to_dict(self, include_code: bool = False) -> Dict:
        result = {
            "id": self.id,
            "user_id": self.user_id,
            "problem_id": self.problem_id,
            "contest_id": self.contest_id,
            "language": self.language,
            "status": self.status.value,
            "score": self.score,
            "runtime": self.runtime,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

        if include_code:
            result["code"] = self.code

        return result


class LeaderboardEntry:
    def __init__(
        self,
        contest_id: str,
        user_id: str,
        solved_count: int = 0,
        penalty: int = 0,
        last_submission_time: Optional[datetime] = None,
        rank: Optional[int] = None,
    ):
        self.contest_id = contest_id
        self.user_id = user_id
        self.solved_count = solved_count
        self.penalty = penalty
        self.last_submission_time = last_submission_time
        self.rank = rank

    def sort_key(self):
        last = self.last_submission_time or datetime.max
        return (-self.solved_count, self.penalty, last)

    def to_dict(self) -> Dict:
        result = {
            "contest_id": self.contest_id,
            "user_id": self.user_id,
            "solved_count": self.solved_count,
            "penalty": self.penalty,
            "last_submission_time": self.last_submission_time.isoformat() if self.last_submission_time else None,
        }
        if self.rank is not None:
            result["rank"] = self.rank
        return result


class GradeReport:
    """Outcome of grading one submission, returned by the grader"""
    def __init__(
        self,
        submission_id: str,
        status: SubmissionStatus,
        score: int,
        runtime: int,
        dispatched: int,
        verdicts: Optional[List[SubmissionStatus]] = None,
        persisted: bool = False,
        leaderboard_entry: Optional[LeaderboardEntry] = None,
    ):
        self.submission_id = submission_id
        self.status = status
        self.score = score
        self.runtime = runtime
        self.dispatched = dispatched
        self.verdicts = verdicts or []
        self.persisted = persisted
        self.leaderboard_entry = leaderboard_entry

    def to_dict(self) -> Dict[str, Any]:
        return {
            "submission_id": self.submission_id,
            "status": self.status.value,
            "score": self.score,
            "runtime": self.runtime,
            "dispatched": self.dispatched,
            "verdicts": [v.value for v in self.verdicts],
            "persisted": self.persisted,
            "leaderboard_entry": self.leaderboard_entry.to_dict() if self.leaderboard_entry else None,
        }
