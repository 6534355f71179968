"""
Client for a Judge0-compatible code execution service.

Each call submits one (code, language, stdin) unit and reads the result
back by token. The client holds no per-submission state, so one instance
is shared by every grading worker.
"""

import time
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Optional

import requests

from ..models.models import ExecutionResult
from ..utils.logger_config import get_logger
from .cancellation import CancellationToken
from .errors import DispatchError, GradingCancelled, PollTimeoutError

logger = get_logger("executor")

# Judge0 language ids
LANGUAGE_C = 50        # C (GCC 9.2.0)
LANGUAGE_CPP = 54      # C++ (GCC 9.2.0)
LANGUAGE_PYTHON = 92   # Python (3.8.1)

DEFAULT_LANGUAGE_ID = LANGUAGE_C

LANGUAGE_IDS = {
    "c": LANGUAGE_C,
    "cpp": LANGUAGE_CPP,
    "c++": LANGUAGE_CPP,
    "python": LANGUAGE_PYTHON,
    "python3": LANGUAGE_PYTHON,
}


def map_language(tag: str) -> int:
    """Convert a submission language tag to a Judge0 language id.

    Unknown tags fall back to C instead of being rejected.
    """
    language_id = LANGUAGE_IDS.get(tag)
    if language_id is None:
        logger.warning(f"Unknown language tag {tag!r}, falling back to C")
        return DEFAULT_LANGUAGE_ID
    return language_id


def parse_time_ms(time_str: Any) -> int:
    """Parse Judge0's seconds string ("0.012") to whole milliseconds, rounded down"""
    if time_str is None or time_str == "":
        return 0
    try:
        return int(Decimal(str(time_str)) * 1000)
    except (InvalidOperation, ValueError):
        return 0


def parse_memory_kb(memory: Any) -> int:
    try:
        return int(memory)
    except (TypeError, ValueError):
        return 0


class ExecutionClient:
    """
    Stateless wrapper around the Judge0 submission protocol.
    """
    def __init__(
        self,
        base_url: str = "http://localhost:2358",
        request_timeout: float = 10,
        session: Optional[requests.Session] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.request_timeout = request_timeout
        self.session = session or requests.Session()
        logger.debug(f"Initialized ExecutionClient with judge at {self.base_url}")

    def submit(self, code: str, language: str, stdin: str, time_limit_ms: Optional[int] = None) -> str:
        """
        Submit one run to the judge without waiting for it.

        Args:
            code: Source code to compile and run
            language: Submission language tag, see map_language
            stdin: Input fed to the program
            time_limit_ms: Optional CPU time limit forwarded to the judge

        Returns:
            The judge token identifying the run

        Raises:
            DispatchError: judge unreachable or the request was not accepted
        """
        payload: Dict[str, Any] = {
            "source_code": code,
            "language_id": map_language(language),
            "stdin": stdin,
        }
        if time_limit_ms:
            payload["cpu_time_limit"] = time_limit_ms / 1000

        url = f"{self.base_url}/submissions"
        try:
            response = self.session.post(
                url,
                params={"base64_encoded": "false", "wait": "false"},
                json=payload,
                timeout=self.request_timeout,
            )
        except requests.RequestException as e:
            raise DispatchError(f"Failed to submit to judge: {e}") from e

        if response.status_code != 201:
            raise DispatchError(f"Judge returned status {response.status_code} on submit")

        body = self._decode(response)
        token = body.get("token")
        if not token:
            raise DispatchError("Judge response did not include a token")
        logger.debug(f"Submitted run to judge, token {token}")
        return token

    def fetch(self, token: str) -> ExecutionResult:
        """
        Read the current state of a run. The status may still be queued or running.

        Raises:
            DispatchError: transport failure, non-200 response or malformed payload
        """
        url = f"{self.base_url}/submissions/{token}"
        try:
            response = self.session.get(
                url,
                params={"base64_encoded": "false"},
                timeout=self.request_timeout,
            )
        except requests.RequestException as e:
            raise DispatchError(f"Failed to get result from judge: {e}") from e

        if response.status_code != 200:
            raise DispatchError(f"Judge returned status {response.status_code} for token {token}")

        body = self._decode(response)
        status = body.get("status")
        if not isinstance(status, dict):
            raise DispatchError(f"Judge result for token {token} has no status object")
        status_id = status.get("id")
        if isinstance(status_id, bool) or not isinstance(status_id, int):
            raise DispatchError(f"Judge result for token {token} has a malformed status id: {status_id!r}")

        return ExecutionResult(
            token=body.get("token") or token,
            status_id=status_id,
            status_description=self._text(status, "description", token),
            stdout=self._text(body, "stdout", token),
            stderr=self._text(body, "stderr", token),
            compile_output=self._text(body, "compile_output", token),
            time_ms=parse_time_ms(body.get("time")),
            memory_kb=parse_memory_kb(body.get("memory")),
        )

    def poll_until_terminal(
        self,
        token: str,
        max_attempts: int = 30,
        interval: float = 2.0,
        cancel_token: Optional[CancellationToken] = None,
        deadline: Optional[float] = None,
    ) -> ExecutionResult:
        """
        Fetch a run until it reaches a terminal status.

        Waits `interval` seconds between attempts. The wait goes through the
        cancellation token, so cancelling a task wakes it immediately.
        `deadline` (seconds from now) caps the total wait on top of
        `max_attempts`.

        Raises:
            DispatchError: a fetch failed
            PollTimeoutError: no terminal status within the attempt or time budget
            GradingCancelled: the cancellation token was triggered
        """
        cancel_token = cancel_token or CancellationToken()
        expires_at = time.monotonic() + deadline if deadline is not None else None
        attempt = 0

        for attempt in range(1, max_attempts + 1):
            if cancel_token.cancelled:
                raise GradingCancelled(f"Polling of {token} cancelled")

            result = self.fetch(token)
            if result.is_terminal:
                logger.debug(f"Token {token} terminal after {attempt} attempt(s): {result.status_description}")
                return result

            if attempt == max_attempts:
                break
            delay = interval
            if expires_at is not None:
                remaining = expires_at - time.monotonic()
                if remaining <= 0:
                    break
                delay = min(interval, remaining)
            if cancel_token.wait(delay):
                raise GradingCancelled(f"Polling of {token} cancelled")

        raise PollTimeoutError(f"Run {token} did not finish after {attempt} attempt(s)")

    def check_connection(self) -> bool:
        """Probe the judge's /about endpoint"""
        try:
            response = self.session.get(f"{self.base_url}/about", timeout=self.request_timeout)
        except requests.RequestException as e:
            logger.warning(f"Judge health check failed: {e}")
            return False
        return response.status_code == 200

    def _decode(self, response: requests.Response) -> Dict[str, Any]:
        try:
            body = response.json()
        except ValueError as e:
            raise DispatchError(f"Judge returned a non-JSON body: {e}") from e
        if not isinstance(body, dict):
            raise DispatchError("Judge returned an unexpected JSON payload")
        return body

    def _text(self, body: Dict[str, Any], key: str, token: str) -> str:
        value = body.get(key)
        if value is None:
            return ""
        if not isinstance(value, str):
            raise DispatchError(f"Judge result for token {token} has a non-text {key}")
        return value
