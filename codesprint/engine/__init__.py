"""
Grading engine for CodeSprint.

This package contains the judge client, verdict mapping, the grading
orchestrator, the leaderboard maintainer, the worker pool and storage.
"""

from .cancellation import CancellationToken
from .errors import (
    CodeSprintError, DispatchError, GradingCancelled, NotFoundError, PersistenceError,
    PollTimeoutError, PoolSaturatedError, ValidationError
)
from .executor import ExecutionClient, map_language
from .verdict import map_verdict, normalize_output, outputs_match
from .repository import Repository
from .storage import DuckDBStorage
from .leaderboard import LeaderboardMaintainer, penalty_minutes
from .grader import Grader
from .scheduler import GradingPool, GradingTask
from .intake import SubmissionService

__all__ = [
    "CancellationToken",
    "CodeSprintError", "DispatchError", "GradingCancelled", "NotFoundError", "PersistenceError",
    "PollTimeoutError", "PoolSaturatedError", "ValidationError",
    "ExecutionClient", "map_language",
    "map_verdict", "normalize_output", "outputs_match",
    "Repository", "DuckDBStorage",
    "LeaderboardMaintainer", "penalty_minutes",
    "Grader", "GradingPool", "GradingTask", "SubmissionService"
]
