"""Exception hierarchy shared by the grading engine, storage and API."""


class CodeSprintError(Exception):
    """Base class for all CodeSprint errors"""


class ValidationError(CodeSprintError):
    """Caller input is malformed or incomplete"""


class NotFoundError(CodeSprintError):
    """A referenced contest, problem or submission does not exist"""


class DispatchError(CodeSprintError):
    """The execution service is unreachable or rejected a request"""


class PollTimeoutError(CodeSprintError, TimeoutError):
    """Polling ran out of attempts before the judge reached a terminal status"""


class GradingCancelled(CodeSprintError):
    """The grading task was cancelled while waiting on the judge"""


class PersistenceError(CodeSprintError):
    """A write to the submission store failed"""


class PoolSaturatedError(CodeSprintError):
    """The grading pool has no free slot for another submission"""
