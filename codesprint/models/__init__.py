"""
Models package for CodeSprint.

This package contains the data models shared by the grading engine,
the storage layer and the API.
"""

from .models import (
    Contest,
    ExecutionResult,
    GradeReport,
    LeaderboardEntry,
    Problem,
    Submission,
    SubmissionStatus,
    Testcase,
    generate_id
)

__all__ = [
    "Contest",
    "ExecutionResult",
    "GradeReport",
    "LeaderboardEntry",
    "Problem",
    "Submission",
    "SubmissionStatus",
    "Testcase",
    "generate_id"
]
