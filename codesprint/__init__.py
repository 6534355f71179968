"""
CodeSprint - contest submission grading

Grades contest submissions against hidden test cases through an external
Judge0 service and keeps a per-contest leaderboard of solved problems and
time penalty.
"""

from .models.models import (
    Contest, ExecutionResult, GradeReport, LeaderboardEntry, Problem, Submission,
    SubmissionStatus, Testcase, generate_id
)
from .engine.storage import DuckDBStorage
from .engine.executor import ExecutionClient
from .engine.grader import Grader
from .engine.leaderboard import LeaderboardMaintainer
from .engine.scheduler import GradingPool
from .engine.intake import SubmissionService

__version__ = "0.1.0"
__all__ = [
    "Contest", "ExecutionResult", "GradeReport", "LeaderboardEntry", "Problem", "Submission",
    "SubmissionStatus", "Testcase", "generate_id",
    "DuckDBStorage", "ExecutionClient", "Grader", "LeaderboardMaintainer", "GradingPool",
    "SubmissionService"
]
