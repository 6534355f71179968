"""
Translation of judge statuses into submission verdicts.

Only status 3 (the program ran to completion) is re-checked against the
expected output; every other terminal status maps to a fixed verdict.
"""

import re
from typing import Optional

from ..models.models import SubmissionStatus

_LINE_BREAK = re.compile(r"\r\n|\r|\n")

JUDGE_STATUS_VERDICTS = {
    4: SubmissionStatus.WRONG_ANSWER,
    5: SubmissionStatus.TIME_LIMIT_EXCEEDED,
    6: SubmissionStatus.COMPILATION_ERROR,
    7: SubmissionStatus.RUNTIME_ERROR,
    8: SubmissionStatus.MEMORY_LIMIT_EXCEEDED,
}

JUDGE_STATUS_PASSED = 3


def normalize_output(text: Optional[str]) -> str:
    """
    Canonical form used for output comparison.

    Splits on CRLF, CR and LF, drops trailing empty fragments and joins
    the lines back with a single LF. Interior whitespace and case are kept.
    """
    if not text:
        return ""
    lines = _LINE_BREAK.split(text)
    while lines and lines[-1] == "":
        lines.pop()
    return "\n".join(lines)


def outputs_match(actual: Optional[str], expected: Optional[str]) -> bool:
    return normalize_output(actual) == normalize_output(expected)


def map_verdict(status_id: int, stdout: Optional[str], expected_output: Optional[str]) -> SubmissionStatus:
    """
    Map a judge status id (plus the output check for passed runs) to a verdict.

    Unknown ids map to PENDING; callers only pass terminal results, so
    seeing PENDING here means the judge reported something unexpected.
    """
    if status_id == JUDGE_STATUS_PASSED:
        if outputs_match(stdout, expected_output):
            return SubmissionStatus.ACCEPTED
        return SubmissionStatus.WRONG_ANSWER
    return JUDGE_STATUS_VERDICTS.get(status_id, SubmissionStatus.PENDING)
