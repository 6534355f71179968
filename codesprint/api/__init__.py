"""
API module for CodeSprint.

This module provides the REST endpoints for submission intake, submission
lookup and the contest leaderboard.
"""

from .server import create_app, run_api

__all__ = ["create_app", "run_api"]
